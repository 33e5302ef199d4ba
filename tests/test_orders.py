import pytest
import requests
from bson import ObjectId

from aura_store.mailer import send_order_confirmation
from aura_store.payments import compute_signature


@pytest.fixture
def order_payload(make_product, shipping_address):
    product = make_product(name="Beard Balm", price=250)
    return {
        "items": [
            {"productId": str(product["_id"]), "name": "Beard Balm", "price": 250, "quantity": 2}
        ],
        "shippingAddress": shipping_address,
        "totalAmount": 500,
        "paymentMethod": "COD",
    }


def place(client, headers, payload):
    return client.post("/api/orders", json=payload, headers=headers)


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload
        self.text = str(payload)

    def json(self):
        return self._payload


def test_cod_order_starts_pending_and_sends_confirmation(
    client, user_headers, order_payload, outbox
):
    response = place(client, user_headers, order_payload)

    assert response.status_code == 201
    order = response.get_json()["order"]
    assert order["status"] == "pending"
    assert order["paymentStatus"] == "pending"
    assert order["isPaid"] is False
    assert order["shippingAddress"]["pincode"] == "560001"
    assert outbox["orders"] == [ObjectId(order["_id"])]


def test_order_creation_survives_mail_failure(client, user_headers, order_payload, monkeypatch):
    monkeypatch.setattr(
        "aura_store.routes.orders.send_order_confirmation", send_order_confirmation
    )
    response = place(client, user_headers, order_payload)
    assert response.status_code == 201


def test_gateway_order_needs_payment_id(client, db, user_headers, order_payload):
    response = place(client, user_headers, {**order_payload, "paymentMethod": "Razorpay"})
    assert response.status_code == 400
    assert db.orders.count_documents({}) == 0

    response = place(
        client,
        user_headers,
        {
            **order_payload,
            "paymentMethod": "Razorpay",
            "paymentDetails": {"razorpayPaymentId": "pay_1"},
        },
    )
    order = response.get_json()["order"]
    assert order["paymentStatus"] == "paid"
    assert order["status"] == "processing"
    assert order["paidAt"] is not None


def test_order_validation_failures(client, user_headers, order_payload):
    assert place(client, user_headers, {**order_payload, "items": []}).status_code == 400
    assert place(client, user_headers, {**order_payload, "totalAmount": 0}).status_code == 400
    response = place(client, user_headers, {**order_payload, "paymentMethod": "Cash"})
    assert response.status_code == 400


def test_card_details_are_masked(client, db, user_headers, order_payload):
    place(
        client,
        user_headers,
        {
            **order_payload,
            "paymentMethod": "Credit Card",
            "paymentDetails": {"cardNumber": "4242424242424242", "cvv": "123"},
        },
    )
    stored = db.orders.find_one()
    assert stored["paymentDetails"]["cardNumber"] == "************4242"
    assert "cvv" not in stored["paymentDetails"]


def test_my_orders_lists_only_callers_orders(
    client, user_headers, make_user, auth_headers, order_payload
):
    place(client, user_headers, order_payload)
    other_headers = auth_headers(make_user())
    place(client, other_headers, order_payload)

    for path in ("/api/orders", "/api/orders/my-orders"):
        orders = client.get(path, headers=user_headers).get_json()["orders"]
        assert len(orders) == 1


def test_order_detail_is_owner_or_admin_only(
    client, user_headers, admin_headers, make_user, auth_headers, order_payload
):
    order_id = place(client, user_headers, order_payload).get_json()["orderId"]

    assert client.get(f"/api/orders/{order_id}", headers=user_headers).status_code == 200
    assert client.get(f"/api/orders/{order_id}", headers=admin_headers).status_code == 200
    stranger = auth_headers(make_user())
    assert client.get(f"/api/orders/{order_id}", headers=stranger).status_code == 403
    assert client.get(f"/api/orders/{ObjectId()}", headers=user_headers).status_code == 404


def test_all_orders_is_admin_only(client, user_headers, admin_headers, order_payload):
    place(client, user_headers, order_payload)
    assert client.get("/api/orders/all", headers=user_headers).status_code == 403
    orders = client.get("/api/orders/all", headers=admin_headers).get_json()["orders"]
    assert orders[0]["user"]["email"] == "shopper@example.com"


def test_cancel_pending_order(client, db, user_headers, order_payload):
    order_id = place(client, user_headers, order_payload).get_json()["orderId"]

    response = client.patch(
        f"/api/orders/{order_id}/cancel", json={"reason": "Changed my mind"}, headers=user_headers
    )

    assert response.status_code == 200
    assert response.get_json()["order"]["status"] == "cancelled"
    assert db.orders.find_one()["cancellationReason"] == "Changed my mind"


def test_cancel_shipped_order_fails(client, db, user_headers, order_payload):
    order_id = place(client, user_headers, order_payload).get_json()["orderId"]
    db.orders.update_one({"_id": ObjectId(order_id)}, {"$set": {"status": "shipped"}})

    response = client.patch(f"/api/orders/{order_id}/cancel", headers=user_headers)

    assert response.status_code == 400
    assert db.orders.find_one()["status"] == "shipped"


def test_admin_status_update(client, db, user_headers, admin_headers, order_payload):
    order_id = place(client, user_headers, order_payload).get_json()["orderId"]

    bad = client.patch(
        f"/api/orders/{order_id}/status", json={"status": "lost"}, headers=admin_headers
    )
    assert bad.status_code == 400

    forbidden = client.patch(
        f"/api/orders/{order_id}/status", json={"status": "shipped"}, headers=user_headers
    )
    assert forbidden.status_code == 403

    shipped = client.patch(
        f"/api/orders/{order_id}/status",
        json={"status": "shipped", "trackingNumber": "TRK123"},
        headers=admin_headers,
    ).get_json()["order"]
    assert shipped["trackingNumber"] == "TRK123"

    delivered = client.patch(
        f"/api/orders/{order_id}/status",
        json={"status": "delivered", "paymentStatus": "paid"},
        headers=admin_headers,
    ).get_json()["order"]
    assert delivered["isDelivered"] is True
    assert delivered["deliveredAt"] is not None
    assert delivered["isPaid"] is True


def test_create_gateway_order(client, user_headers, monkeypatch):
    calls = []

    def fake_post(url, json=None, auth=None, timeout=None):
        calls.append({"url": url, "json": json, "auth": auth})
        return FakeResponse(200, {"id": "order_abc", "amount": json["amount"], "currency": "INR"})

    monkeypatch.setattr(requests, "post", fake_post)

    response = client.post("/api/orders/razorpay", json={"amount": 50000}, headers=user_headers)

    assert response.status_code == 200
    assert response.get_json() == {
        "success": True,
        "id": "order_abc",
        "amount": 50000,
        "currency": "INR",
    }
    assert calls[0]["url"] == "https://razorpay.invalid/v1/orders"
    assert calls[0]["auth"] == ("rzp_test_key", "rzp_test_secret")
    assert calls[0]["json"]["payment_capture"] == 1


def test_gateway_failure_maps_to_bad_gateway(client, user_headers, monkeypatch):
    monkeypatch.setattr(
        requests, "post", lambda *args, **kwargs: FakeResponse(401, {"error": "auth"})
    )
    response = client.post("/api/orders/razorpay", json={"amount": 100}, headers=user_headers)
    assert response.status_code == 502


def test_gateway_order_rejects_non_positive_amount(client, user_headers):
    response = client.post("/api/orders/razorpay", json={"amount": 0}, headers=user_headers)
    assert response.status_code == 400


def test_verify_payment_creates_paid_order(client, db, user_headers, order_payload):
    signature = compute_signature("order_abc", "pay_xyz", "rzp_test_secret")

    response = client.post(
        "/api/orders/razorpay/verify",
        json={
            "razorpay_order_id": "order_abc",
            "razorpay_payment_id": "pay_xyz",
            "razorpay_signature": signature,
            "orderData": order_payload,
        },
        headers=user_headers,
    )

    assert response.status_code == 200
    stored = db.orders.find_one()
    assert stored["paymentMethod"] == "Razorpay"
    assert stored["paymentStatus"] == "paid"
    assert stored["paymentDetails"]["razorpayOrderId"] == "order_abc"


def test_verify_payment_rejects_bad_signature(client, db, user_headers, order_payload):
    response = client.post(
        "/api/orders/razorpay/verify",
        json={
            "razorpay_order_id": "order_abc",
            "razorpay_payment_id": "pay_xyz",
            "razorpay_signature": compute_signature("order_abc", "pay_other", "rzp_test_secret"),
            "orderData": order_payload,
        },
        headers=user_headers,
    )

    assert response.status_code == 400
    assert db.orders.count_documents({}) == 0


@pytest.mark.parametrize("status", ["shipped", "delivered"])
def test_admin_cannot_cancel_fulfilled_order(
    client, db, user_headers, admin_headers, order_payload, status
):
    order_id = place(client, user_headers, order_payload).get_json()["orderId"]
    db.orders.update_one({"_id": ObjectId(order_id)}, {"$set": {"status": status}})

    response = client.patch(
        f"/api/orders/{order_id}/status", json={"status": "cancelled"}, headers=admin_headers
    )

    assert response.status_code == 400
    assert db.orders.find_one()["status"] == status


def test_admin_can_cancel_processing_order(
    client, db, user_headers, admin_headers, order_payload
):
    order_id = place(client, user_headers, order_payload).get_json()["orderId"]
    db.orders.update_one({"_id": ObjectId(order_id)}, {"$set": {"status": "processing"}})

    response = client.patch(
        f"/api/orders/{order_id}/status", json={"status": "cancelled"}, headers=admin_headers
    )

    assert response.status_code == 200
    assert db.orders.find_one()["status"] == "cancelled"
