from datetime import datetime
from typing import Dict, Iterable, Optional

from bson import ObjectId


def serialize_datetime(value) -> Optional[str]:
    return value.isoformat() + "Z" if isinstance(value, datetime) else None


def serialize_customer(user_document, role: Optional[str] = None) -> Dict:
    if not user_document:
        return {}

    return {
        "id": str(user_document.get("_id")),
        "name": user_document.get("name", "") or "",
        "email": user_document.get("email", "") or "",
        "role": role or user_document.get("role") or "customer",
        "createdAt": serialize_datetime(user_document.get("created_at")),
    }


def serialize_product(product_document, public_url=None) -> Dict:
    if not product_document:
        return {}

    image = product_document.get("image") or {}
    file_name = image.get("file_name") or ""
    price = product_document.get("price")

    return {
        "id": str(product_document.get("_id")),
        "title": product_document.get("title", "") or "",
        "description": product_document.get("description", "") or "",
        "category": product_document.get("category", "") or "",
        "price": price if price is None else float(price),
        "image": {
            "fileName": public_url(file_name) if public_url and file_name else file_name,
            "originalName": image.get("original_name") or "",
        },
        "createdAt": serialize_datetime(product_document.get("created_at")),
    }


def build_customer_map(db, order_documents: Iterable[Dict]) -> Dict[ObjectId, Dict]:
    customer_ids = {
        document.get("customer")
        for document in order_documents
        if isinstance(document.get("customer"), ObjectId)
    }
    if not customer_ids:
        return {}
    cursor = db.users.find(
        {"_id": {"$in": list(customer_ids)}}, {"name": 1, "email": 1}
    )
    return {document["_id"]: document for document in cursor}


def serialize_order(order_document, customer_map=None) -> Dict:
    if not order_document:
        return {}

    customer_id = order_document.get("customer")
    customer_document = (customer_map or {}).get(customer_id)
    customer = {"id": str(customer_id) if customer_id else ""}
    if customer_document:
        customer["name"] = customer_document.get("name", "") or ""
        customer["email"] = customer_document.get("email", "") or ""

    items = []
    for entry in order_document.get("items") or []:
        if not isinstance(entry, dict):
            continue
        items.append(
            {
                "productId": str(entry.get("product_id") or ""),
                "title": entry.get("title", "") or "",
                "price": entry.get("price"),
            }
        )

    return {
        "id": str(order_document.get("_id")),
        "orderNumber": order_document.get("order_number"),
        "status": order_document.get("status", "new"),
        "totalAmount": order_document.get("total_amount", 0),
        "payment": order_document.get("payment", ""),
        "email": order_document.get("email", "") or "",
        "phone": order_document.get("phone", "") or "",
        "deliveryAddress": order_document.get("delivery_address", "") or "",
        "comment": order_document.get("comment", "") or "",
        "items": items,
        "customer": customer,
        "createdAt": serialize_datetime(order_document.get("created_at")),
    }
