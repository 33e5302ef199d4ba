import hashlib
import hmac
from datetime import timedelta

import pytest
from bson import ObjectId

from aura_store.config import parse_duration
from aura_store.errors import ValidationError
from aura_store.models import (
    MAX_SESSION_HISTORY,
    add_default_entry,
    build_order_document,
    build_product_fields,
    mask_payment_method,
    normalize_address,
    remove_default_entry,
    rotate_session,
    validate_registration,
    validate_review_fields,
)
from aura_store.payments import compute_signature, verify_payment_signature
from aura_store.ratings import summarize_ratings

ADDRESS = {
    "street": "1 Main St",
    "city": "Pune",
    "state": "MH",
    "country": "India",
    "pincode": "411001",
}


def test_rotate_session_archives_active_session_and_caps_history():
    security = {}
    for attempt in range(MAX_SESSION_HISTORY + 3):
        security = rotate_session(security, f"10.0.0.{attempt}", "pytest")

    history = security["sessionHistory"]
    assert len(history) == MAX_SESSION_HISTORY
    assert all(not entry["isActive"] for entry in history)
    assert all("logoutTime" in entry for entry in history)
    assert history[0]["ipAddress"] == f"10.0.0.{MAX_SESSION_HISTORY + 1}"
    assert security["currentSession"]["isActive"] is True
    assert security["lastLogin"] == security["currentSession"]["loginTime"]


def test_summarize_ratings_rounds_to_one_decimal():
    assert summarize_ratings([5, 4, 4]) == {"average": 4.3, "count": 3}
    assert summarize_ratings([4, 5]) == {"average": 4.5, "count": 2}
    assert summarize_ratings([]) == {"average": 0, "count": 0}


def test_signature_matches_hmac_of_order_and_payment_ids():
    expected = hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
    assert compute_signature("order_1", "pay_1", "secret") == expected
    assert verify_payment_signature("order_1", "pay_1", expected, "secret")
    assert not verify_payment_signature("order_1", "pay_2", expected, "secret")
    assert not verify_payment_signature("order_1", "pay_1", expected, "other")


def test_mask_payment_method_keeps_last_four_digits():
    masked = mask_payment_method({"cardNumber": "4111111111111234", "cvv": "123"})
    assert masked["cardNumber"] == "************1234"
    assert masked["cvv"] == "***"


def test_default_entries_stay_unique():
    first = add_default_entry([], {"_id": ObjectId(), "isDefault": False})
    assert first[0]["isDefault"] is True

    second_entry = {"_id": ObjectId(), "isDefault": True}
    entries = add_default_entry(first, second_entry)
    assert [entry["isDefault"] for entry in entries] == [False, True]

    remaining, removed = remove_default_entry(entries, second_entry["_id"])
    assert removed
    assert remaining[0]["isDefault"] is True

    _, removed = remove_default_entry(remaining, ObjectId())
    assert not removed


def test_normalize_address_accepts_aliases():
    address = normalize_address({"line1": " 5 Park Ave ", "zipCode": "10001", "town": "NYC"})
    assert address == {"street": "5 Park Ave", "city": "NYC", "pincode": "10001"}


def test_validate_registration_rejects_short_password():
    with pytest.raises(ValidationError) as excinfo:
        validate_registration({"name": "A", "email": "a@example.com", "password": "123"})
    assert "at least 6" in excinfo.value.message


def test_validate_registration_normalizes_email_and_phone():
    name, email, _, phone = validate_registration(
        {
            "name": " Asha ",
            "email": " Asha@Example.COM ",
            "password": "secret123",
            "phoneNumber": "+91 98765-43210",
        }
    )
    assert name == "Asha"
    assert email == "asha@example.com"
    assert phone == "919876543210"


def test_review_rating_must_be_whole_number_in_range():
    with pytest.raises(ValidationError):
        validate_review_fields({"rating": 6, "title": "t", "review": "r"})
    with pytest.raises(ValidationError):
        validate_review_fields({"rating": 3.5, "title": "t", "review": "r"})
    with pytest.raises(ValidationError):
        validate_review_fields({"rating": 4, "title": "x" * 101, "review": "r"})
    assert validate_review_fields({"rating": 4, "title": "t", "review": "r"})["rating"] == 4


def test_product_fields_derive_in_stock_and_reject_bad_category():
    fields = build_product_fields(
        {
            "name": "Oil",
            "description": "d",
            "price": "12.5",
            "category": "Skincare",
            "stockQuantity": "0",
            "tags": '["a", "b"]',
        }
    )
    assert fields["inStock"] is False
    assert fields["price"] == 12.5
    assert fields["tags"] == ["a", "b"]
    assert fields["brand"] == "AURA"

    with pytest.raises(ValidationError) as excinfo:
        build_product_fields({"name": "Oil", "description": "d", "price": 1, "category": "Food"})
    assert any("Category" in error for error in excinfo.value.errors)


def test_gateway_order_is_paid_immediately():
    order = build_order_document(
        ObjectId(),
        {
            "items": [{"productId": str(ObjectId()), "name": "Oil", "price": 100, "quantity": 2}],
            "shippingAddress": ADDRESS,
            "totalAmount": 200,
            "paymentMethod": "Razorpay",
            "paymentDetails": {"razorpayPaymentId": "pay_123"},
        },
    )
    assert order["status"] == "processing"
    assert order["paymentStatus"] == "paid"
    assert order["isPaid"] is True
    assert order["paidAt"] is not None


def test_card_order_masks_card_details():
    order = build_order_document(
        ObjectId(),
        {
            "items": [{"productId": str(ObjectId()), "price": 100, "quantity": 1}],
            "shippingAddress": ADDRESS,
            "totalAmount": 100,
            "paymentMethod": "Credit Card",
            "paymentDetails": {"cardNumber": "4111111111111234", "cvv": "999"},
        },
    )
    assert order["status"] == "pending"
    assert order["paymentStatus"] == "pending"
    assert order["paymentDetails"]["cardNumber"] == "************1234"
    assert "cvv" not in order["paymentDetails"]


def test_order_requires_complete_address():
    with pytest.raises(ValidationError) as excinfo:
        build_order_document(
            ObjectId(),
            {
                "items": [{"productId": str(ObjectId())}],
                "shippingAddress": {"street": "x"},
                "totalAmount": 10,
                "paymentMethod": "COD",
            },
        )
    assert "city" in excinfo.value.message


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("7d", timedelta(days=7)),
        ("24h", timedelta(hours=24)),
        ("30m", timedelta(minutes=30)),
        ("3600", timedelta(seconds=3600)),
        ("soon", timedelta(days=1)),
    ],
)
def test_parse_duration(raw, expected):
    assert parse_duration(raw, timedelta(days=1)) == expected
