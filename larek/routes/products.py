from datetime import datetime

from flask import jsonify, request
from flask_jwt_extended import jwt_required
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from werkzeug.utils import secure_filename

from larek.errors import ConflictError, NotFoundError, ValidationError
from larek.querying import PRODUCTS, AuthContext
from larek.serializers import serialize_product
from larek.validation import parse_price, require_object_id, require_text

GUEST = AuthContext(subject_id="", role="guest")
MISSING = object()


def register_product_routes(app, db, authenticator, query_builder, upload_manager):
    def render_product(product_document):
        return serialize_product(product_document, public_url=upload_manager.public_url)

    def fetch_product(product_id: str):
        target_id = require_object_id(product_id, "product identifier")
        product_document = db.products.find_one({"_id": target_id})
        if not product_document:
            raise NotFoundError("Product not found.")
        return product_document

    def ensure_unique_title(title: str, exclude_id=None):
        query = {"title": title}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if db.products.find_one(query, {"_id": 1}):
            raise ConflictError("A product with this title already exists.")

    def normalize_image_payload(raw_image):
        if not isinstance(raw_image, dict):
            raise ValidationError("Field image must include fileName and originalName.")

        generated_name = upload_manager.resolve_name(raw_image.get("fileName"))
        if not generated_name or not upload_manager.is_committed(generated_name):
            raise ValidationError("Field image must reference an uploaded file.")

        original_name = secure_filename(str(raw_image.get("originalName") or ""))
        return {"file_name": generated_name, "original_name": original_name}

    def read_price(payload):
        raw_price = payload.get("price", MISSING)
        if raw_price is MISSING:
            return MISSING
        return parse_price(raw_price)

    @app.route("/api/products", methods=["GET"])
    def list_products():
        spec = query_builder.build_spec(request.args, GUEST, PRODUCTS)
        page = query_builder.execute(spec, db[PRODUCTS.collection])
        return jsonify(page.to_dict(render_product))

    @app.route("/api/products/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        return jsonify(render_product(fetch_product(product_id)))

    @app.route("/api/products", methods=["POST"])
    @jwt_required()
    def create_product():
        _, auth = authenticator.require_admin()
        payload = request.get_json(silent=True) or {}

        title = require_text(payload, "title", min_length=2, max_length=30)
        category = require_text(payload, "category", max_length=100)
        description = require_text(payload, "description", max_length=2000)
        price = read_price(payload)
        image = normalize_image_payload(payload.get("image"))

        ensure_unique_title(title)

        product_document = {
            "title": title,
            "category": category,
            "description": description,
            "price": None if price is MISSING else price,
            "image": image,
            "created_at": datetime.utcnow(),
        }
        try:
            insert_result = db.products.insert_one(product_document)
        except DuplicateKeyError:
            raise ConflictError("A product with this title already exists.")
        product_document["_id"] = insert_result.inserted_id

        app.logger.info("Product %s created by %s", title, auth.subject_id)
        return jsonify(render_product(product_document)), 201

    @app.route("/api/products/<product_id>", methods=["PATCH"])
    @jwt_required()
    def update_product(product_id: str):
        _, auth = authenticator.require_admin()
        product_document = fetch_product(product_id)
        payload = request.get_json(silent=True) or {}

        update_fields = {}
        if "title" in payload:
            title = require_text(payload, "title", min_length=2, max_length=30)
            ensure_unique_title(title, exclude_id=product_document["_id"])
            update_fields["title"] = title
        if "category" in payload:
            update_fields["category"] = require_text(payload, "category", max_length=100)
        if "description" in payload:
            update_fields["description"] = require_text(
                payload, "description", max_length=2000
            )
        price = read_price(payload)
        if price is not MISSING:
            update_fields["price"] = price

        previous_image = (product_document.get("image") or {}).get("file_name")
        if "image" in payload:
            update_fields["image"] = normalize_image_payload(payload.get("image"))

        if not update_fields:
            raise ValidationError("Provide at least one field to update.")

        try:
            updated_product = db.products.find_one_and_update(
                {"_id": product_document["_id"]},
                {"$set": update_fields},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise ConflictError("A product with this title already exists.")
        if not updated_product:
            raise NotFoundError("Product not found.")

        new_image = (update_fields.get("image") or {}).get("file_name")
        if new_image and previous_image and previous_image != new_image:
            upload_manager.discard(previous_image)

        app.logger.info("Product %s updated by %s", product_id, auth.subject_id)
        return jsonify(render_product(updated_product))

    @app.route("/api/products/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: str):
        _, auth = authenticator.require_admin()
        product_document = fetch_product(product_id)

        db.products.delete_one({"_id": product_document["_id"]})
        stored_image = (product_document.get("image") or {}).get("file_name")
        if stored_image:
            upload_manager.discard(stored_image)

        app.logger.info("Product %s deleted by %s", product_id, auth.subject_id)
        return jsonify(render_product(product_document))
