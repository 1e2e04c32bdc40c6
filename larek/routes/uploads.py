import os

from flask import jsonify, request, send_from_directory
from flask_jwt_extended import jwt_required

from larek.errors import ValidationError


def measure_stream(stream) -> int:
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def register_upload_routes(app, authenticator, upload_manager):
    settings = upload_manager.settings

    @app.route("/api/upload", methods=["POST"])
    @jwt_required()
    def upload_file():
        _, auth = authenticator.current_context()

        upload = request.files.get("file")
        if upload is None:
            upload = next(iter(request.files.values()), None)
        if upload is None or not upload.filename:
            raise ValidationError("No file was provided.")

        ticket = upload_manager.accept(
            upload.stream, upload.mimetype, measure_stream(upload.stream)
        )
        file_name = upload_manager.commit(ticket)

        app.logger.info("File %s uploaded by %s", file_name, auth.subject_id)
        return jsonify({"fileName": file_name}), 201

    @app.route(f"/{settings.public_prefix}/<path:filename>")
    def serve_uploaded_file(filename: str):
        return send_from_directory(os.path.abspath(settings.upload_dir), filename)
