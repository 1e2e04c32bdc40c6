import io
import logging
from unittest.mock import patch

from pymongo.errors import ServerSelectionTimeoutError

from larek.app import create_app
from larek.config import Settings
from larek.errors import GENERIC_SERVER_MESSAGE
from larek.logging_config import HANDLER_NAME, configure_logging


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_unknown_route_is_json_404(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert "message" in response.get_json()


def test_store_failure_is_generic_500(client, db):
    with patch.object(
        type(db.products), "find", side_effect=ServerSelectionTimeoutError("10.0.0.5:27017 refused")
    ):
        response = client.get("/api/products")

    assert response.status_code == 500
    assert response.get_json() == {"message": GENERIC_SERVER_MESSAGE}


def test_unexpected_error_is_generic_500(app, client):
    @app.route("/boom")
    def boom():
        raise RuntimeError("/var/secret/path exploded")

    response = client.get("/boom")
    assert response.status_code == 500
    assert "/var/secret" not in response.get_data(as_text=True)


def test_oversized_body_is_refused(app, client, customer_headers):
    app.config["MAX_CONTENT_LENGTH"] = 1024
    response = client.post(
        "/api/upload",
        data={"file": (io.BytesIO(b"x" * 4096), "big.jpg", "image/jpeg")},
        headers=customer_headers,
        content_type="multipart/form-data",
    )
    assert response.status_code == 413


def test_index_failures_are_logged_not_fatal(settings, db, caplog):
    with patch.object(
        type(db.users), "create_index", side_effect=ServerSelectionTimeoutError("down")
    ):
        with caplog.at_level(logging.WARNING):
            app = create_app(settings=settings, db=db)

    assert app is not None
    assert "Unable to ensure indexes" in caplog.text


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("MONGO_URI", "mongodb://db:27017/shop")
    monkeypatch.setenv("MAX_PAGE_SIZE", "25")
    monkeypatch.setenv("DEFAULT_PAGE_SIZE", "40")
    monkeypatch.setenv("UPLOAD_PATH", "media")
    monkeypatch.setenv("MAX_UPLOAD_SIZE_MB", "2")
    monkeypatch.setenv("DEFAULT_ADMIN_EMAIL", " Boss@Shop.test ")
    monkeypatch.delenv("UPLOAD_PUBLIC_PREFIX", raising=False)

    settings = Settings.from_env(base_dir=str(tmp_path))

    assert settings.mongo_uri == "mongodb://db:27017/shop"
    assert settings.query.max_page_size == 25
    assert settings.query.default_page_size == 25
    assert settings.upload.upload_dir == str(tmp_path / "public" / "media")
    assert settings.upload.public_prefix == "media"
    assert settings.upload.max_file_size == 2 * 1024 * 1024
    assert settings.default_admin_email == "boss@shop.test"


def test_configure_logging_installs_one_handler():
    root_logger = logging.getLogger()
    configure_logging("INFO")
    configure_logging("DEBUG")

    named = [h for h in root_logger.handlers if h.get_name() == HANDLER_NAME]
    assert len(named) == 1
    assert root_logger.level == logging.DEBUG
