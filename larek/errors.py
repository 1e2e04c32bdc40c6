from flask import jsonify
from flask_jwt_extended import JWTManager
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException

GENERIC_SERVER_MESSAGE = "Something went wrong on our side. Please try again later."


class AppError(Exception):
    status_code = 500
    default_message = GENERIC_SERVER_MESSAGE

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "The request contains invalid data."


class AuthenticationError(AppError):
    status_code = 401
    default_message = "Authentication is required."


class AuthorizationError(AppError):
    status_code = 403
    default_message = "You need additional permissions to perform this action."


class NotFoundError(AppError):
    status_code = 404
    default_message = "The requested resource was not found."


class ConflictError(AppError):
    status_code = 409
    default_message = "The resource already exists."


class StorageError(AppError):
    """Failure of the document store or the filesystem.

    The message handed to the client is always the generic one; whatever
    detail was passed in stays in the server log.
    """

    status_code = 500

    def __init__(self, detail=None):
        super().__init__(GENERIC_SERVER_MESSAGE)
        self.detail = detail


def register_error_handlers(app, jwt: JWTManager) -> None:
    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        if error.status_code >= 500:
            app.logger.error(
                "%s: %s",
                type(error).__name__,
                getattr(error, "detail", None) or error.message,
                exc_info=error,
            )
        return jsonify({"message": error.message}), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return jsonify({"message": error.description}), error.code

    @app.errorhandler(PyMongoError)
    def handle_store_error(error: PyMongoError):
        app.logger.error("Document store failure: %s", error, exc_info=error)
        return jsonify({"message": GENERIC_SERVER_MESSAGE}), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.exception("Unhandled error: %s", error)
        return jsonify({"message": GENERIC_SERVER_MESSAGE}), 500

    @jwt.unauthorized_loader
    def handle_missing_token(reason: str):
        return jsonify({"message": "Authentication is required."}), 401

    @jwt.invalid_token_loader
    def handle_invalid_token(reason: str):
        return jsonify({"message": "Invalid access token."}), 401

    @jwt.expired_token_loader
    def handle_expired_token(jwt_header, jwt_payload):
        return jsonify({"message": "The access token has expired."}), 401
