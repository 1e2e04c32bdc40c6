"""Upload lifecycle: validate, stage, sniff, promote.

A ticket moves ``received -> validated -> staged -> committed`` or ends in
``rejected``. Bytes are written to the staging directory under a random
name, the real content type is sniffed from those bytes, and only then is the
file renamed into the public directory under a freshly generated name. A file
is never reachable under its public name before every check has passed.
"""

import enum
import logging
import os
import re
import secrets
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from larek.config import UploadSettings
from larek.errors import StorageError, ValidationError
from larek.storage import LocalFileStore

logger = logging.getLogger(__name__)

MIME_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}
MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    # Pillow reports JPEGs carrying a multi-picture (MPF) segment as MPO.
    "image/mpo": "image/jpeg",
}
GENERATED_NAME_PATTERN = re.compile(r"[0-9a-f]{32}\.(?:png|jpg|gif|webp)")
STAGING_SUFFIX = ".part"


class UploadState(str, enum.Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    STAGED = "staged"
    COMMITTED = "committed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class UploadCandidate:
    declared_mime_type: Optional[str]
    size_bytes: int


@dataclass(frozen=True)
class ValidatedFile:
    mime_type: str
    size_bytes: int


@dataclass
class UploadTicket:
    declared_mime_type: Optional[str]
    size_bytes: int
    state: UploadState = UploadState.RECEIVED
    sniffed_mime_type: Optional[str] = None
    staging_name: Optional[str] = None
    staging_path: Optional[str] = None
    generated_name: Optional[str] = None
    final_path: Optional[str] = None
    rejection: Optional[str] = None

    def reject(self, reason: str) -> None:
        self.state = UploadState.REJECTED
        self.rejection = reason


def normalize_mime_type(value: Optional[str]) -> str:
    # Drop parameters such as "; charset=binary".
    normalized = str(value or "").split(";", 1)[0].strip().lower()
    return MIME_ALIASES.get(normalized, normalized)


def validate(
    candidate: UploadCandidate, settings: UploadSettings
) -> Tuple[Optional[ValidatedFile], Optional[str]]:
    if candidate.size_bytes < settings.min_file_size:
        return (
            None,
            f"The file is too small. The minimum size is {settings.min_file_size} bytes.",
        )
    if candidate.size_bytes > settings.max_file_size:
        return (
            None,
            f"The file is too large. The maximum size is {settings.max_file_size} bytes.",
        )

    mime_type = normalize_mime_type(candidate.declared_mime_type)
    if mime_type not in settings.allowed_mime_types:
        return None, "Unsupported file type. Upload PNG, JPEG, GIF or WEBP images."

    return ValidatedFile(mime_type=mime_type, size_bytes=candidate.size_bytes), None


class PillowSniffer:
    def sniff(self, path: str) -> Optional[str]:
        with open(path, "rb") as handle:
            try:
                with Image.open(handle) as image:
                    image_format = image.format
                    image.verify()
            except (
                UnidentifiedImageError,
                Image.DecompressionBombError,
                SyntaxError,
                ValueError,
                OSError,
            ) as exc:
                logger.info("Content sniffing could not identify an image: %s", exc)
                return None
        return normalize_mime_type(Image.MIME.get(image_format or "")) or None


class UploadManager:
    def __init__(
        self,
        settings: UploadSettings,
        file_store: Optional[LocalFileStore] = None,
        sniffer: Optional[PillowSniffer] = None,
    ):
        self.settings = settings
        self.file_store = file_store or LocalFileStore()
        self.sniffer = sniffer or PillowSniffer()

    def accept(
        self, stream: BinaryIO, declared_mime_type: Optional[str], size_bytes: int
    ) -> UploadTicket:
        ticket = UploadTicket(
            declared_mime_type=declared_mime_type, size_bytes=size_bytes
        )

        validated, reason = validate(
            UploadCandidate(declared_mime_type, size_bytes), self.settings
        )
        if reason:
            ticket.reject(reason)
            raise ValidationError(reason)
        ticket.state = UploadState.VALIDATED

        ticket.staging_name = f"{secrets.token_hex(16)}{STAGING_SUFFIX}"
        ticket.staging_path = self._staging_path(ticket.staging_name)

        try:
            self.file_store.mkdir_all(self.settings.temp_dir)
            written = self.file_store.write(
                ticket.staging_path, self._read_chunks(stream)
            )
            ticket.size_bytes = written
            ticket.state = UploadState.STAGED

            if written < self.settings.min_file_size:
                raise ValidationError(
                    f"The file is too small. The minimum size is {self.settings.min_file_size} bytes."
                )

            sniffed = self.sniffer.sniff(ticket.staging_path)
            ticket.sniffed_mime_type = sniffed
            if sniffed not in self.settings.allowed_mime_types:
                raise ValidationError("The file content is not a supported image.")
            if sniffed != validated.mime_type:
                raise ValidationError(
                    "The file content does not match its declared type."
                )
        except ValidationError as exc:
            self._cleanup(ticket)
            ticket.reject(exc.message)
            raise
        except OSError as exc:
            self._cleanup(ticket)
            ticket.reject("storage failure")
            raise StorageError(f"Could not stage upload: {exc}") from exc
        except Exception:
            self._cleanup(ticket)
            ticket.reject("interrupted")
            raise

        return ticket

    def commit(self, ticket: UploadTicket) -> str:
        if ticket.state is not UploadState.STAGED:
            raise ValueError("Only staged uploads can be committed.")

        extension = MIME_EXTENSIONS[ticket.sniffed_mime_type]
        try:
            self.file_store.mkdir_all(self.settings.upload_dir)
            generated_name = f"{secrets.token_hex(16)}{extension}"
            while self.file_store.exists(self._final_path(generated_name)):
                generated_name = f"{secrets.token_hex(16)}{extension}"
            final_path = self._final_path(generated_name)
            self.file_store.move(self._staging_path(ticket.staging_name), final_path)
        except OSError as exc:
            self._cleanup(ticket)
            ticket.reject("storage failure")
            raise StorageError(f"Could not promote upload: {exc}") from exc

        ticket.generated_name = generated_name
        ticket.final_path = final_path
        ticket.state = UploadState.COMMITTED
        logger.info(
            "Committed upload %s (%s, %d bytes)",
            generated_name,
            ticket.sniffed_mime_type,
            ticket.size_bytes,
        )
        return self.public_url(generated_name)

    def public_url(self, generated_name: str) -> str:
        return f"/{self.settings.public_prefix}/{generated_name}"

    def resolve_name(self, file_name: Optional[str]) -> Optional[str]:
        candidate = str(file_name or "").strip()
        prefix = f"/{self.settings.public_prefix}/"
        if candidate.startswith(prefix):
            candidate = candidate[len(prefix):]
        if not GENERATED_NAME_PATTERN.fullmatch(candidate):
            return None
        return candidate

    def is_committed(self, file_name: Optional[str]) -> bool:
        generated_name = self.resolve_name(file_name)
        if not generated_name:
            return False
        return self.file_store.exists(self._final_path(generated_name))

    def discard(self, file_name: Optional[str]) -> bool:
        generated_name = self.resolve_name(file_name)
        if not generated_name:
            return False
        try:
            return self.file_store.delete(self._final_path(generated_name))
        except OSError as exc:
            logger.warning("Unable to remove stored file %s: %s", generated_name, exc)
            return False

    def _read_chunks(self, stream: BinaryIO) -> Iterator[bytes]:
        total = 0
        while True:
            chunk = stream.read(self.settings.chunk_size)
            if not chunk:
                break
            total += len(chunk)
            if total > self.settings.max_file_size:
                raise ValidationError(
                    f"The file is too large. The maximum size is {self.settings.max_file_size} bytes."
                )
            yield chunk

    def _cleanup(self, ticket: UploadTicket) -> None:
        if not ticket.staging_name:
            return
        try:
            self.file_store.delete(self._staging_path(ticket.staging_name))
        except OSError as exc:
            logger.warning(
                "Unable to remove staged upload %s: %s", ticket.staging_name, exc
            )

    def _staging_path(self, staging_name: str) -> str:
        return os.path.join(self.settings.temp_dir, staging_name)

    def _final_path(self, generated_name: str) -> str:
        return os.path.join(self.settings.upload_dir, generated_name)
