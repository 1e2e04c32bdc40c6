import math
from datetime import datetime

from bson import ObjectId
from flask import jsonify, request
from flask_jwt_extended import jwt_required
from pymongo import ReturnDocument

from larek.errors import NotFoundError, ValidationError
from larek.querying import ORDER_STATUSES, ORDERS, PAYMENT_TYPES, AuthContext
from larek.serializers import build_customer_map, serialize_order
from larek.validation import (
    is_valid_email,
    normalize_email,
    normalize_object_id_list,
    parse_order_number,
    parse_price,
    require_phone,
    require_text,
    strip_markup,
)

ORDER_COUNTER_ID = "order_number"
MAX_COMMENT_LENGTH = 500


def next_order_number(db) -> int:
    counter = db.counters.find_one_and_update(
        {"_id": ORDER_COUNTER_ID},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(counter["seq"])


def register_order_routes(app, db, authenticator, query_builder):
    def render_order_page(auth: AuthContext):
        spec = query_builder.build_spec(request.args, auth, ORDERS)
        page = query_builder.execute(spec, db[ORDERS.collection])
        customer_map = build_customer_map(db, page.items)
        return jsonify(
            page.to_dict(lambda document: serialize_order(document, customer_map))
        )

    def render_order(order_document):
        customer_map = build_customer_map(db, [order_document])
        return jsonify(serialize_order(order_document, customer_map))

    def find_order(order_number: str, auth: AuthContext):
        query = {"order_number": parse_order_number(order_number)}
        if not auth.is_admin:
            query["customer"] = ObjectId(auth.subject_id)
        order_document = db.orders.find_one(query)
        if not order_document:
            raise NotFoundError("Order not found.")
        return order_document

    def resolve_order_items(raw_items):
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationError("Include at least one product in the order.")

        product_ids = normalize_object_id_list(raw_items)
        products = {
            document["_id"]: document
            for document in db.products.find({"_id": {"$in": list(set(product_ids))}})
        }

        items = []
        for product_id in product_ids:
            product_document = products.get(product_id)
            if not product_document:
                raise ValidationError(f"Product {product_id} was not found.")
            if product_document.get("price") is None:
                raise ValidationError(
                    f"Product {product_document.get('title', product_id)} is not for sale."
                )
            items.append(
                {
                    "product_id": product_id,
                    "title": product_document.get("title", ""),
                    "price": float(product_document["price"]),
                }
            )
        return items

    @app.route("/api/orders", methods=["GET"])
    @jwt_required()
    def list_orders():
        _, auth = authenticator.current_context()
        return render_order_page(auth)

    @app.route("/api/orders/my", methods=["GET"])
    @jwt_required()
    def list_my_orders():
        _, auth = authenticator.current_context()
        return render_order_page(AuthContext(subject_id=auth.subject_id, role="customer"))

    @app.route("/api/orders/my/<order_number>", methods=["GET"])
    @jwt_required()
    def get_my_order(order_number: str):
        _, auth = authenticator.current_context()
        own_scope = AuthContext(subject_id=auth.subject_id, role="customer")
        return render_order(find_order(order_number, own_scope))

    @app.route("/api/orders/<order_number>", methods=["GET"])
    @jwt_required()
    def get_order(order_number: str):
        _, auth = authenticator.current_context()
        return render_order(find_order(order_number, auth))

    @app.route("/api/orders", methods=["POST"])
    @jwt_required()
    def create_order():
        current_user, auth = authenticator.current_context()
        payload = request.get_json(silent=True) or {}

        payment = str(payload.get("payment") or "").strip().lower()
        if payment not in PAYMENT_TYPES:
            raise ValidationError(
                f"Payment must be one of: {', '.join(PAYMENT_TYPES)}."
            )

        email = normalize_email(payload.get("email"))
        if not is_valid_email(email):
            raise ValidationError("Please provide a valid email address.")

        phone = require_phone(payload.get("phone"))
        address = require_text(payload, "address", max_length=200)

        comment = strip_markup(payload.get("comment"))
        if len(comment) > MAX_COMMENT_LENGTH:
            raise ValidationError(
                f"Comment must be at most {MAX_COMMENT_LENGTH} characters long."
            )

        provided_total = parse_price(payload.get("total"), field="total")
        if provided_total is None:
            raise ValidationError("Field total is required.")

        items = resolve_order_items(payload.get("items"))
        calculated_total = round(sum(item["price"] for item in items), 2)
        if not math.isclose(calculated_total, provided_total, abs_tol=0.005):
            raise ValidationError("The order total does not match the listed prices.")

        order_document = {
            "order_number": next_order_number(db),
            "status": "new",
            "total_amount": calculated_total,
            "payment": payment,
            "email": email,
            "phone": phone,
            "delivery_address": address,
            "comment": comment,
            "items": items,
            "customer": current_user["_id"],
            "created_at": datetime.utcnow(),
        }
        insert_result = db.orders.insert_one(order_document)
        order_document["_id"] = insert_result.inserted_id

        app.logger.info(
            "Order %s placed by %s", order_document["order_number"], auth.subject_id
        )

        customer_map = {current_user["_id"]: current_user}
        return jsonify(serialize_order(order_document, customer_map)), 201

    @app.route("/api/orders/<order_number>", methods=["PATCH"])
    @jwt_required()
    def update_order(order_number: str):
        authenticator.require_admin()
        number = parse_order_number(order_number)
        payload = request.get_json(silent=True) or {}

        update_fields = {}
        if payload.get("status") is not None:
            status = str(payload.get("status")).strip().lower()
            if status not in ORDER_STATUSES:
                raise ValidationError(
                    f"Status must be one of: {', '.join(ORDER_STATUSES)}."
                )
            update_fields["status"] = status
        if payload.get("phone") is not None:
            update_fields["phone"] = require_phone(payload.get("phone"))

        if not update_fields:
            raise ValidationError("Provide a status or phone to update.")

        updated_order = db.orders.find_one_and_update(
            {"order_number": number},
            {"$set": update_fields},
            return_document=ReturnDocument.AFTER,
        )
        if not updated_order:
            raise NotFoundError("Order not found.")
        return render_order(updated_order)

    @app.route("/api/orders/<order_number>", methods=["DELETE"])
    @jwt_required()
    def delete_order(order_number: str):
        _, auth = authenticator.require_admin()
        number = parse_order_number(order_number)

        deleted_order = db.orders.find_one_and_delete({"order_number": number})
        if not deleted_order:
            raise NotFoundError("Order not found.")

        app.logger.info("Order %s deleted by %s", number, auth.subject_id)
        return render_order(deleted_order)
