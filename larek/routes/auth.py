from datetime import datetime

from flask import jsonify, request
from flask_jwt_extended import jwt_required
from pymongo.errors import DuplicateKeyError

from larek.auth import check_password, hash_password, issue_access_token
from larek.errors import AuthenticationError, ConflictError, ValidationError
from larek.serializers import serialize_customer
from larek.validation import is_valid_email, normalize_email, require_text

MIN_PASSWORD_LENGTH = 6


def register_auth_routes(app, db, authenticator):
    def render_session(user_document):
        return {
            "access_token": issue_access_token(user_document),
            "user": serialize_customer(
                user_document, role=authenticator.get_user_role(user_document)
            ),
        }

    @app.route("/api/auth/register", methods=["POST"])
    def register():
        payload = request.get_json(silent=True) or {}
        name = require_text(payload, "name", min_length=2, max_length=30)
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password", ""))

        if not is_valid_email(email):
            raise ValidationError("Please provide a valid email address.")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
            )
        if db.users.find_one({"email": email}, {"_id": 1}):
            raise ConflictError("An account with this email already exists.")

        user_document = {
            "email": email,
            "name": name,
            "password": hash_password(password),
            "role": "admin" if email == authenticator.default_admin_email else "customer",
            "created_at": datetime.utcnow(),
        }
        try:
            insert_result = db.users.insert_one(user_document)
        except DuplicateKeyError:
            raise ConflictError("An account with this email already exists.")
        user_document["_id"] = insert_result.inserted_id

        app.logger.info("Registered account %s", insert_result.inserted_id)
        return jsonify(render_session(user_document)), 201

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password", ""))

        if not email or not password:
            raise ValidationError("Email and password are required.")

        user_document = db.users.find_one({"email": email})
        if not user_document or not check_password(
            password, user_document.get("password")
        ):
            raise AuthenticationError("Invalid credentials.")

        db.users.update_one(
            {"_id": user_document["_id"]},
            {"$set": {"last_login_at": datetime.utcnow()}},
        )
        return jsonify(render_session(user_document))

    @app.route("/api/auth/user", methods=["GET"])
    @jwt_required()
    def current_user_profile():
        user_document, auth = authenticator.current_context()
        return jsonify(serialize_customer(user_document, role=auth.role))
