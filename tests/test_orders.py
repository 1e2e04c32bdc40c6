from datetime import datetime

import pytest

from larek.routes.orders import next_order_number


@pytest.fixture
def products(db):
    documents = [
        {"title": "Lime Soda", "price": 120.0, "category": "drinks", "created_at": datetime(2024, 1, 1)},
        {"title": "Key Lime Tart", "price": 380.5, "category": "sweets", "created_at": datetime(2024, 1, 2)},
        {"title": "Priceless Thing", "price": None, "category": "other", "created_at": datetime(2024, 1, 3)},
    ]
    for document in documents:
        document["_id"] = db.products.insert_one(document).inserted_id
    return documents


def insert_order(db, customer, number, *, total=100.0, status="new", title="Lime Soda", created_at=None):
    document = {
        "order_number": number,
        "status": status,
        "total_amount": total,
        "payment": "card",
        "email": customer["email"],
        "phone": "+79990001122",
        "delivery_address": "Somewhere 1",
        "comment": "",
        "items": [{"product_id": None, "title": title, "price": total}],
        "customer": customer["_id"],
        "created_at": created_at or datetime(2024, 1, number),
    }
    document["_id"] = db.orders.insert_one(document).inserted_id
    return document


@pytest.fixture
def seeded_orders(db, customer_user, other_customer):
    own = [insert_order(db, customer_user, number) for number in (1, 2, 3)]
    foreign = [insert_order(db, other_customer, number) for number in (4, 5)]
    return own, foreign


def order_payload(products, **overrides):
    payload = {
        "items": [str(products[0]["_id"]), str(products[1]["_id"])],
        "payment": "card",
        "email": "buyer@larek.test",
        "phone": "+7 (999) 000-11-22",
        "address": "Moscow, Lime street 1",
        "total": 500.5,
        "comment": "<b>Ring twice</b>",
    }
    payload.update(overrides)
    return payload


def test_list_requires_token(client):
    response = client.get("/api/orders")
    assert response.status_code == 401
    assert "message" in response.get_json()


def test_invalid_page_and_oversized_page_size_is_rejected(client, admin_headers, seeded_orders):
    response = client.get("/api/orders?page=abc&pageSize=9999", headers=admin_headers)
    assert response.status_code == 400
    assert "pageSize" in response.get_json()["message"]


def test_invalid_page_defaults_to_first(client, admin_headers, seeded_orders):
    response = client.get("/api/orders?page=abc&pageSize=2", headers=admin_headers)
    assert response.status_code == 200
    body = response.get_json()
    assert body["pagination"] == {
        "totalCount": 5,
        "totalPages": 3,
        "currentPage": 1,
        "pageSize": 2,
    }
    assert [order["orderNumber"] for order in body["items"]] == [5, 4]


def test_non_admin_owner_parameter_is_ignored(client, customer_headers, customer_user, other_customer, seeded_orders):
    response = client.get(
        f"/api/orders?owner={other_customer['_id']}", headers=customer_headers
    )
    assert response.status_code == 200
    body = response.get_json()
    assert body["pagination"]["totalCount"] == 3
    assert {order["customer"]["id"] for order in body["items"]} == {str(customer_user["_id"])}


def test_admin_can_filter_by_owner(client, admin_headers, other_customer, seeded_orders):
    response = client.get(
        f"/api/orders?owner={other_customer['_id']}", headers=admin_headers
    )
    body = response.get_json()
    assert body["pagination"]["totalCount"] == 2
    assert {order["customer"]["email"] for order in body["items"]} == {"other@larek.test"}


def test_my_orders_are_narrowed_even_for_admin(client, db, admin_headers, admin_user, seeded_orders):
    insert_order(db, admin_user, 6)
    response = client.get("/api/orders/my", headers=admin_headers)
    body = response.get_json()
    assert body["pagination"]["totalCount"] == 1
    assert body["items"][0]["orderNumber"] == 6


def test_search_treats_pattern_characters_literally(client, db, admin_headers, customer_user):
    insert_order(db, customer_user, 1, title="Lime (large)")
    insert_order(db, customer_user, 2, title="Lime large")

    response = client.get("/api/orders?search=(large)", headers=admin_headers)
    body = response.get_json()
    assert [order["orderNumber"] for order in body["items"]] == [1]

    response = client.get("/api/orders?search=.*", headers=admin_headers)
    assert response.get_json()["pagination"]["totalCount"] == 0


def test_search_matches_order_number(client, admin_headers, seeded_orders):
    response = client.get("/api/orders?search=4", headers=admin_headers)
    assert [order["orderNumber"] for order in response.get_json()["items"]] == [4]


def test_status_and_amount_filters(client, db, admin_headers, customer_user):
    insert_order(db, customer_user, 1, total=50, status="completed")
    insert_order(db, customer_user, 2, total=500, status="completed")
    insert_order(db, customer_user, 3, total=500, status="new")

    response = client.get(
        "/api/orders?status=completed&totalAmountFrom=100", headers=admin_headers
    )
    assert [order["orderNumber"] for order in response.get_json()["items"]] == [2]

    response = client.get("/api/orders?status=lost", headers=admin_headers)
    assert response.status_code == 400


def test_reserved_query_keys_are_rejected(client, admin_headers, seeded_orders):
    response = client.get("/api/orders?status[$ne]=new", headers=admin_headers)
    assert response.status_code == 400


def test_order_lookup_by_number(client, customer_headers, admin_headers, seeded_orders):
    response = client.get("/api/orders/2", headers=customer_headers)
    assert response.status_code == 200
    assert response.get_json()["orderNumber"] == 2

    assert client.get("/api/orders/4", headers=customer_headers).status_code == 404
    assert client.get("/api/orders/4", headers=admin_headers).status_code == 200
    assert client.get("/api/orders/abc", headers=admin_headers).status_code == 404
    assert client.get("/api/orders/my/4", headers=admin_headers).status_code == 404
    assert client.get("/api/orders/my/1", headers=customer_headers).status_code == 200


def test_create_order(client, db, customer_headers, customer_user, products):
    response = client.post(
        "/api/orders", json=order_payload(products), headers=customer_headers
    )
    assert response.status_code == 201
    body = response.get_json()

    assert body["orderNumber"] == 1
    assert body["status"] == "new"
    assert body["totalAmount"] == 500.5
    assert body["phone"] == "+79990001122"
    assert body["comment"] == "Ring twice"
    assert [item["title"] for item in body["items"]] == ["Lime Soda", "Key Lime Tart"]
    assert body["customer"]["id"] == str(customer_user["_id"])

    stored = db.orders.find_one({"order_number": 1})
    assert stored["customer"] == customer_user["_id"]

    second = client.post(
        "/api/orders", json=order_payload(products), headers=customer_headers
    )
    assert second.get_json()["orderNumber"] == 2


@pytest.mark.parametrize(
    "overrides",
    [
        {"total": 10},
        {"payment": "cash"},
        {"email": "not-an-email"},
        {"phone": "12"},
        {"address": ""},
        {"items": []},
        {"items": ["not-an-id"]},
        {"comment": "x" * 501},
        {"total": None},
    ],
)
def test_create_order_validation(client, customer_headers, products, overrides):
    response = client.post(
        "/api/orders", json=order_payload(products, **overrides), headers=customer_headers
    )
    assert response.status_code == 400
    assert response.get_json()["message"]


def test_create_order_rejects_unknown_and_unpriced_products(client, customer_headers, products):
    from bson import ObjectId

    response = client.post(
        "/api/orders",
        json=order_payload(products, items=[str(ObjectId())], total=0),
        headers=customer_headers,
    )
    assert response.status_code == 400

    response = client.post(
        "/api/orders",
        json=order_payload(products, items=[str(products[2]["_id"])], total=0),
        headers=customer_headers,
    )
    assert response.status_code == 400


def test_update_order_is_admin_only(client, customer_headers, admin_headers, seeded_orders):
    response = client.patch(
        "/api/orders/1", json={"status": "delivering"}, headers=customer_headers
    )
    assert response.status_code == 403

    response = client.patch(
        "/api/orders/1",
        json={"status": "delivering", "phone": "+70000000000"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.get_json()["status"] == "delivering"
    assert response.get_json()["phone"] == "+70000000000"

    response = client.patch(
        "/api/orders/1", json={"status": "teleported"}, headers=admin_headers
    )
    assert response.status_code == 400

    response = client.patch(
        "/api/orders/99", json={"status": "new"}, headers=admin_headers
    )
    assert response.status_code == 404


def test_delete_order(client, db, admin_headers, customer_headers, seeded_orders):
    assert client.delete("/api/orders/1", headers=customer_headers).status_code == 403

    response = client.delete("/api/orders/1", headers=admin_headers)
    assert response.status_code == 200
    assert response.get_json()["orderNumber"] == 1
    assert db.orders.find_one({"order_number": 1}) is None

    assert client.delete("/api/orders/1", headers=admin_headers).status_code == 404


def test_next_order_number_is_sequential(db):
    assert [next_order_number(db) for _ in range(3)] == [1, 2, 3]


@pytest.mark.parametrize(
    "order_number", ["123456789012345678901234", "9223372036854775808"]
)
def test_order_number_beyond_store_integers_is_not_found(client, admin_headers, seeded_orders, order_number):
    assert client.get(f"/api/orders/{order_number}", headers=admin_headers).status_code == 404
    assert client.get(f"/api/orders/my/{order_number}", headers=admin_headers).status_code == 404
    assert client.delete(f"/api/orders/{order_number}", headers=admin_headers).status_code == 404


def test_huge_page_and_numeric_search_are_served(client, admin_headers, seeded_orders):
    response = client.get("/api/orders?page=99999999999999999999", headers=admin_headers)
    assert response.status_code == 200
    assert response.get_json()["pagination"]["currentPage"] == 1

    response = client.get(
        "/api/orders?search=123456789012345678901234", headers=admin_headers
    )
    assert response.status_code == 200
    assert response.get_json()["items"] == []
