from typing import Dict, Tuple

import bcrypt
from flask_jwt_extended import create_access_token, get_jwt_identity

from larek.errors import AuthorizationError
from larek.querying import AuthContext
from larek.validation import normalize_email, normalize_object_id_value

ALLOWED_USER_ROLES = {"admin", "customer"}


def normalize_role(value) -> str:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in ALLOWED_USER_ROLES else "customer"


def hash_password(password: str) -> bytes:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())


def check_password(password: str, hashed) -> bool:
    if not hashed:
        return False
    if isinstance(hashed, str):
        hashed = hashed.encode("utf-8")
    return bcrypt.checkpw(password.encode("utf-8"), hashed)


def issue_access_token(user_document: Dict) -> str:
    return create_access_token(identity=str(user_document["_id"]))


class Authenticator:
    """Resolves the bearer of the current access token to a stored user."""

    def __init__(self, db, default_admin_email: str = ""):
        self.db = db
        self.default_admin_email = normalize_email(default_admin_email)

    def get_user_role(self, user_document) -> str:
        if not user_document:
            return "customer"

        email = normalize_email(user_document.get("email"))
        if self.default_admin_email and email == self.default_admin_email:
            return "admin"

        return normalize_role(user_document.get("role", "customer"))

    def current_user(self) -> Dict:
        user_id = normalize_object_id_value(get_jwt_identity())
        user_document = (
            self.db.users.find_one({"_id": user_id}) if user_id else None
        )
        if not user_document:
            raise AuthorizationError("Access denied.")
        return user_document

    def current_context(self) -> Tuple[Dict, AuthContext]:
        user_document = self.current_user()
        return user_document, AuthContext(
            subject_id=str(user_document["_id"]),
            role=self.get_user_role(user_document),
        )

    def require_role(self, *roles: str) -> Tuple[Dict, AuthContext]:
        allowed = {normalize_role(role) for role in roles if role}
        user_document, auth = self.current_context()

        if auth.role == "admin" or not allowed or auth.role in allowed:
            return user_document, auth

        raise AuthorizationError()

    def require_admin(self) -> Tuple[Dict, AuthContext]:
        return self.require_role("admin")
