import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

from dotenv import load_dotenv

DEFAULT_ALLOWED_IMAGE_TYPES = frozenset(
    {"image/png", "image/jpeg", "image/gif", "image/webp"}
)


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class QuerySettings:
    default_page_size: int = 10
    max_page_size: int = 10


@dataclass(frozen=True)
class UploadSettings:
    upload_dir: str = os.path.join("public", "images")
    temp_dir: str = os.path.join("public", "temp")
    public_prefix: str = "images"
    min_file_size: int = 2 * 1024
    max_file_size: int = 10 * 1024 * 1024
    allowed_mime_types: FrozenSet[str] = DEFAULT_ALLOWED_IMAGE_TYPES
    chunk_size: int = 64 * 1024


@dataclass(frozen=True)
class Settings:
    mongo_uri: str = "mongodb://127.0.0.1:27017/weblarek"
    jwt_secret_key: str = "change-me-in-production"
    access_token_expiry_minutes: int = 10
    allowed_origins: Tuple[str, ...] = ("http://localhost:5173",)
    default_admin_email: str = ""
    log_level: str = "INFO"
    trusted_proxy_hops: int = 1
    query: QuerySettings = field(default_factory=QuerySettings)
    upload: UploadSettings = field(default_factory=UploadSettings)

    @classmethod
    def from_env(cls, base_dir: Optional[str] = None) -> "Settings":
        load_dotenv()

        base_dir = base_dir or os.getcwd()
        public_dir = os.path.join(base_dir, "public")

        allowed_origins = [os.getenv("ORIGIN_ALLOW", "http://localhost:5173").strip()]
        cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
        if cors_extra:
            for origin in cors_extra.split(","):
                trimmed = origin.strip()
                if trimmed:
                    allowed_origins.append(trimmed)

        max_page_size = max(1, _env_int("MAX_PAGE_SIZE", 10))

        return cls(
            mongo_uri=os.getenv("MONGO_URI")
            or os.getenv("DB_ADDRESS")
            or cls.mongo_uri,
            jwt_secret_key=os.getenv("JWT_SECRET_KEY")
            or os.getenv("AUTH_ACCESS_TOKEN_SECRET")
            or cls.jwt_secret_key,
            access_token_expiry_minutes=_env_int(
                "AUTH_ACCESS_TOKEN_EXPIRY_MINUTES", 10
            ),
            allowed_origins=tuple(origin for origin in allowed_origins if origin),
            default_admin_email=(os.getenv("DEFAULT_ADMIN_EMAIL") or "").strip().lower(),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
            trusted_proxy_hops=max(0, _env_int("TRUSTED_PROXY_HOPS", 1)),
            query=QuerySettings(
                default_page_size=min(
                    max(1, _env_int("DEFAULT_PAGE_SIZE", 10)), max_page_size
                ),
                max_page_size=max_page_size,
            ),
            upload=UploadSettings(
                upload_dir=os.path.join(
                    public_dir, os.getenv("UPLOAD_PATH", "images")
                ),
                temp_dir=os.path.join(
                    public_dir, os.getenv("UPLOAD_PATH_TEMP", "temp")
                ),
                public_prefix=(
                    os.getenv("UPLOAD_PUBLIC_PREFIX")
                    or os.getenv("UPLOAD_PATH")
                    or "images"
                ).strip("/"),
                min_file_size=_env_int("MIN_UPLOAD_SIZE_BYTES", 2 * 1024),
                max_file_size=_env_int("MAX_UPLOAD_SIZE_MB", 10) * 1024 * 1024,
            ),
        )
