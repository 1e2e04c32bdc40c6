import os
from datetime import timedelta
from typing import Optional

from flask import Flask
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError
from werkzeug.middleware.proxy_fix import ProxyFix

from larek.auth import Authenticator
from larek.config import Settings
from larek.errors import register_error_handlers
from larek.logging_config import configure_logging
from larek.querying import QueryBuilder
from larek.routes import register_routes
from larek.uploads import UploadManager

MULTIPART_OVERHEAD_BYTES = 1024 * 1024


def ensure_indexes(app, db) -> None:
    try:
        db.users.create_index([("email", ASCENDING)], unique=True)
        db.users.create_index([("created_at", DESCENDING)])
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure indexes for users: %s", exc)

    try:
        db.products.create_index([("title", ASCENDING)], unique=True)
        db.products.create_index([("created_at", DESCENDING)])
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure indexes for products: %s", exc)

    try:
        db.orders.create_index([("order_number", ASCENDING)], unique=True)
        db.orders.create_index([("created_at", DESCENDING)])
        db.orders.create_index([("customer", ASCENDING), ("created_at", DESCENDING)])
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure indexes for orders: %s", exc)


def create_app(settings: Optional[Settings] = None, db=None) -> Flask:
    """Create and configure the Flask application."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = Flask(__name__)

    if settings.trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=settings.trusted_proxy_hops,
            x_proto=settings.trusted_proxy_hops,
            x_host=settings.trusted_proxy_hops,
            x_port=settings.trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = settings.jwt_secret_key
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(
        minutes=settings.access_token_expiry_minutes
    )
    app.config["MONGO_URI"] = settings.mongo_uri
    app.config["MAX_CONTENT_LENGTH"] = (
        settings.upload.max_file_size + MULTIPART_OVERHEAD_BYTES
    )

    # --- Initialize extensions ---
    CORS(app, supports_credentials=True, origins=list(settings.allowed_origins) or "*")
    jwt = JWTManager(app)
    if db is None:
        db = PyMongo(app).db

    ensure_indexes(app, db)

    authenticator = Authenticator(db, settings.default_admin_email)
    query_builder = QueryBuilder(settings.query)
    upload_manager = UploadManager(settings.upload)

    register_error_handlers(app, jwt)
    register_routes(app, db, authenticator, query_builder, upload_manager)

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port)
