from flask import jsonify, request
from flask_jwt_extended import jwt_required
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from larek.errors import ConflictError, NotFoundError, ValidationError
from larek.querying import CUSTOMERS
from larek.serializers import serialize_customer
from larek.validation import (
    is_valid_email,
    normalize_email,
    require_object_id,
    require_text,
)

PRIVATE_FIELDS = {"password": 0}


def register_customer_routes(app, db, authenticator, query_builder):
    def render_customer(user_document):
        return serialize_customer(
            user_document, role=authenticator.get_user_role(user_document)
        )

    @app.route("/api/customers", methods=["GET"])
    @jwt_required()
    def list_customers():
        _, auth = authenticator.require_admin()
        spec = query_builder.build_spec(request.args, auth, CUSTOMERS)
        page = query_builder.execute(spec, db[CUSTOMERS.collection])
        return jsonify(page.to_dict(render_customer))

    @app.route("/api/customers/<customer_id>", methods=["GET"])
    @jwt_required()
    def get_customer(customer_id: str):
        authenticator.require_admin()
        target_id = require_object_id(customer_id, "customer identifier")

        user_document = db.users.find_one({"_id": target_id}, PRIVATE_FIELDS)
        if not user_document:
            raise NotFoundError("Customer not found.")
        return jsonify(render_customer(user_document))

    @app.route("/api/customers/<customer_id>", methods=["PATCH"])
    @jwt_required()
    def update_customer(customer_id: str):
        _, auth = authenticator.require_admin()
        target_id = require_object_id(customer_id, "customer identifier")
        payload = request.get_json(silent=True) or {}

        update_fields = {}
        if payload.get("name"):
            update_fields["name"] = require_text(
                payload, "name", min_length=2, max_length=30
            )
        if payload.get("email"):
            email = normalize_email(payload.get("email"))
            if not is_valid_email(email):
                raise ValidationError("Please provide a valid email address.")
            if db.users.find_one({"email": email, "_id": {"$ne": target_id}}):
                raise ConflictError("An account with this email already exists.")
            update_fields["email"] = email

        if not update_fields:
            raise ValidationError("Provide a name or email to update.")

        try:
            updated_user = db.users.find_one_and_update(
                {"_id": target_id},
                {"$set": update_fields},
                projection=PRIVATE_FIELDS,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise ConflictError("An account with this email already exists.")

        if not updated_user:
            raise NotFoundError("Customer not found.")

        app.logger.info("Customer %s updated by %s", customer_id, auth.subject_id)
        return jsonify(render_customer(updated_user))

    @app.route("/api/customers/<customer_id>", methods=["DELETE"])
    @jwt_required()
    def delete_customer(customer_id: str):
        _, auth = authenticator.require_admin()
        target_id = require_object_id(customer_id, "customer identifier")

        user_document = db.users.find_one({"_id": target_id}, PRIVATE_FIELDS)
        if not user_document:
            raise NotFoundError("Customer not found.")
        if str(target_id) == auth.subject_id:
            raise ValidationError("You cannot delete your own account.")
        if authenticator.get_user_role(user_document) == "admin" and (
            normalize_email(user_document.get("email"))
            == authenticator.default_admin_email
        ):
            raise ValidationError("The default administrator account cannot be deleted.")

        db.users.delete_one({"_id": target_id})

        app.logger.info("Customer %s deleted by %s", customer_id, auth.subject_id)
        display_name = user_document.get("name") or "Customer"
        return jsonify({"message": f"{display_name} has been removed."})
