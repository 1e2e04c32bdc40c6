"""Pytest configuration and shared fixtures."""

import io
import os
from datetime import datetime

import mongomock
import pytest
from flask_jwt_extended import create_access_token
from PIL import Image

from larek.app import create_app
from larek.auth import hash_password
from larek.config import QuerySettings, Settings, UploadSettings

ADMIN_EMAIL = "admin@larek.test"
CUSTOMER_PASSWORD = "secret-password"


def make_image_bytes(image_format="JPEG", size=(64, 64)) -> bytes:
    """Random-noise image so the encoder cannot compress it to almost nothing."""
    width, height = size
    image = Image.frombytes("RGB", size, os.urandom(width * height * 3))
    buffer = io.BytesIO()
    save_options = {"quality": 95} if image_format == "JPEG" else {}
    image.save(buffer, format=image_format, **save_options)
    return buffer.getvalue()


def list_files(directory) -> list:
    if not os.path.isdir(directory):
        return []
    return sorted(os.listdir(directory))


@pytest.fixture
def upload_settings(tmp_path):
    return UploadSettings(
        upload_dir=str(tmp_path / "public" / "images"),
        temp_dir=str(tmp_path / "public" / "temp"),
    )


@pytest.fixture
def settings(upload_settings):
    return Settings(
        mongo_uri="mongodb://localhost:27017/larek-test",
        jwt_secret_key="test-secret-key-that-is-long-enough-for-hs256",
        default_admin_email=ADMIN_EMAIL,
        log_level="WARNING",
        trusted_proxy_hops=0,
        query=QuerySettings(default_page_size=10, max_page_size=10),
        upload=upload_settings,
    )


@pytest.fixture
def db():
    return mongomock.MongoClient().larek_test


@pytest.fixture
def app(settings, db):
    app = create_app(settings=settings, db=db)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def insert_user(db, email, name, role="customer"):
    document = {
        "email": email,
        "name": name,
        "password": hash_password(CUSTOMER_PASSWORD),
        "role": role,
        "created_at": datetime.utcnow(),
    }
    document["_id"] = db.users.insert_one(document).inserted_id
    return document


def auth_headers(app, user_document) -> dict:
    with app.app_context():
        token = create_access_token(identity=str(user_document["_id"]))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_user(db):
    return insert_user(db, ADMIN_EMAIL, "Admin", role="admin")


@pytest.fixture
def customer_user(db):
    return insert_user(db, "buyer@larek.test", "Buyer")


@pytest.fixture
def other_customer(db):
    return insert_user(db, "other@larek.test", "Other Buyer")


@pytest.fixture
def admin_headers(app, admin_user):
    return auth_headers(app, admin_user)


@pytest.fixture
def customer_headers(app, customer_user):
    return auth_headers(app, customer_user)


@pytest.fixture
def other_headers(app, other_customer):
    return auth_headers(app, other_customer)
