import time

from flask import Blueprint, current_app, g, jsonify, request

from ..errors import ValidationError
from ..extensions import get_db
from ..mailer import send_order_confirmation
from ..models import (
    CANCELLABLE_STATUSES,
    GATEWAY_PAYMENT_METHOD,
    ORDER_STATUSES,
    PAYMENT_STATUSES,
    build_order_document,
    parse_object_id,
    safe_float,
    serialize_order,
    utcnow,
)
from ..payments import PaymentGatewayError, create_gateway_order, verify_payment_signature
from ..security import admin_required, is_owner_or_admin, login_required

orders_bp = Blueprint("orders", __name__)


def fetch_order(order_id: str):
    object_id = parse_object_id(order_id)
    if object_id is None:
        return None, (jsonify({"success": False, "message": "Invalid order ID"}), 400)

    order_document = get_db().orders.find_one({"_id": object_id})
    if not order_document:
        return None, (jsonify({"success": False, "message": "Order not found"}), 404)

    return order_document, None


def place_order(user_document, payload):
    """Insert an order for ``user_document`` and mail the receipt."""
    db = get_db()
    order_document = build_order_document(user_document["_id"], payload)
    result = db.orders.insert_one(order_document)
    order_document["_id"] = result.inserted_id
    current_app.logger.info(
        "Order %s created for user %s (%s %s)",
        result.inserted_id,
        user_document["_id"],
        order_document["paymentMethod"],
        order_document["totalAmount"],
    )
    send_order_confirmation(order_document, user_document)
    return order_document


def apply_status_update(order_document, payload):
    """Validate ``status``/``paymentStatus`` changes and return the ``$set`` document."""
    status = payload.get("status")
    payment_status = payload.get("paymentStatus")
    if status is None and payment_status is None:
        raise ValidationError("Please provide a status or paymentStatus")

    now = utcnow()
    updates = {"updatedAt": now}
    if status is not None:
        status = str(status).strip().lower()
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Status must be one of: {', '.join(ORDER_STATUSES)}")
        current_status = order_document.get("status")
        if (
            status == "cancelled"
            and current_status != "cancelled"
            and current_status not in CANCELLABLE_STATUSES
        ):
            raise ValidationError("Order cannot be cancelled in current status")
        updates["status"] = status
        if status == "delivered" and not order_document.get("isDelivered"):
            updates["isDelivered"] = True
            updates["deliveredAt"] = now
        if status == "shipped" and payload.get("trackingNumber"):
            updates["trackingNumber"] = str(payload["trackingNumber"]).strip()

    if payment_status is not None:
        payment_status = str(payment_status).strip().lower()
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(
                f"Payment status must be one of: {', '.join(PAYMENT_STATUSES)}"
            )
        updates["paymentStatus"] = payment_status
        if payment_status == "paid" and not order_document.get("isPaid"):
            updates["isPaid"] = True
            updates["paidAt"] = now

    return updates


def load_order_customers(order_docs):
    user_ids = list({document.get("user") for document in order_docs})
    customers = get_db().users.find({"_id": {"$in": user_ids}}, {"name": 1, "email": 1})
    return {customer["_id"]: customer for customer in customers}


def list_orders_for(user_id):
    order_docs = get_db().orders.find({"user": user_id}).sort("createdAt", -1)
    return jsonify(
        {"success": True, "orders": [serialize_order(document) for document in order_docs]}
    )


@orders_bp.route("/", methods=["POST"])
@login_required
def create_order():
    payload = request.get_json(silent=True) or {}
    order_document = place_order(g.current_user, payload)
    return (
        jsonify(
            {
                "success": True,
                "message": "Order created successfully",
                "orderId": str(order_document["_id"]),
                "order": serialize_order(order_document),
            }
        ),
        201,
    )


@orders_bp.route("/", methods=["GET"])
@orders_bp.route("/my-orders", methods=["GET"])
@login_required
def my_orders():
    return list_orders_for(g.current_user["_id"])


@orders_bp.route("/all", methods=["GET"])
@admin_required
def all_orders():
    db = get_db()
    order_docs = list(db.orders.find().sort("createdAt", -1))
    users = load_order_customers(order_docs)
    return jsonify(
        {
            "success": True,
            "orders": [
                serialize_order(document, users.get(document.get("user")))
                for document in order_docs
            ],
        }
    )


@orders_bp.route("/razorpay", methods=["POST"])
@login_required
def create_razorpay_order():
    payload = request.get_json(silent=True) or {}
    amount = safe_float(payload.get("amount"), 0)
    if amount <= 0:
        return jsonify({"success": False, "message": "Invalid order amount"}), 400

    currency = str(payload.get("currency") or "INR").strip().upper()
    receipt = str(payload.get("receipt") or f"receipt_{int(time.time() * 1000)}")
    notes = payload.get("notes") or {"user_id": str(g.current_user["_id"])}

    try:
        gateway_order = create_gateway_order(int(amount), currency, receipt, notes)
    except PaymentGatewayError as exc:
        return jsonify({"success": False, "message": str(exc)}), 502

    return jsonify(
        {
            "success": True,
            "id": gateway_order.get("id"),
            "amount": gateway_order.get("amount"),
            "currency": gateway_order.get("currency"),
        }
    )


@orders_bp.route("/razorpay/verify", methods=["POST"])
@login_required
def verify_razorpay_payment():
    payload = request.get_json(silent=True) or {}
    gateway_order_id = str(payload.get("razorpay_order_id") or "").strip()
    payment_id = str(payload.get("razorpay_payment_id") or "").strip()
    signature = str(payload.get("razorpay_signature") or "").strip()

    if not gateway_order_id or not payment_id or not signature:
        return (
            jsonify({"success": False, "message": "Missing payment verification details"}),
            400,
        )

    if not verify_payment_signature(
        gateway_order_id, payment_id, signature, current_app.config["RAZORPAY_KEY_SECRET"]
    ):
        current_app.logger.warning(
            "Payment signature mismatch for gateway order %s", gateway_order_id
        )
        return jsonify({"success": False, "message": "Payment verification failed"}), 400

    order_data = payload.get("orderData")
    if not isinstance(order_data, dict) or not order_data:
        return jsonify({"success": True, "message": "Payment verified successfully"})

    order_payload = {
        **order_data,
        "paymentMethod": GATEWAY_PAYMENT_METHOD,
        "paymentDetails": {
            "razorpayOrderId": gateway_order_id,
            "razorpayPaymentId": payment_id,
            "razorpaySignature": signature,
        },
    }
    order_document = place_order(g.current_user, order_payload)
    return jsonify(
        {
            "success": True,
            "message": "Payment verified and order created successfully",
            "orderId": str(order_document["_id"]),
            "order": serialize_order(order_document),
        }
    )


@orders_bp.route("/<order_id>", methods=["GET"])
@login_required
def get_order(order_id: str):
    order_document, load_error = fetch_order(order_id)
    if load_error:
        return load_error

    if not is_owner_or_admin(order_document.get("user"), g.current_user):
        return jsonify({"success": False, "message": "Not authorized"}), 403

    return jsonify({"success": True, "order": serialize_order(order_document)})


@orders_bp.route("/<order_id>/status", methods=["PATCH"])
@admin_required
def update_order_status(order_id: str):
    db = get_db()
    order_document, load_error = fetch_order(order_id)
    if load_error:
        return load_error

    updates = apply_status_update(order_document, request.get_json(silent=True) or {})
    db.orders.update_one({"_id": order_document["_id"]}, {"$set": updates})
    current_app.logger.info("Order %s updated: %s", order_document["_id"], updates)

    updated_order = db.orders.find_one({"_id": order_document["_id"]})
    return jsonify({"success": True, "order": serialize_order(updated_order)})


@orders_bp.route("/<order_id>/cancel", methods=["PATCH"])
@login_required
def cancel_order(order_id: str):
    db = get_db()
    order_document, load_error = fetch_order(order_id)
    if load_error:
        return load_error

    if not is_owner_or_admin(order_document.get("user"), g.current_user):
        return jsonify({"success": False, "message": "Not authorized"}), 403

    if order_document.get("status") not in CANCELLABLE_STATUSES:
        return (
            jsonify(
                {"success": False, "message": "Order cannot be cancelled in current status"}
            ),
            400,
        )

    payload = request.get_json(silent=True) or {}
    db.orders.update_one(
        {"_id": order_document["_id"]},
        {
            "$set": {
                "status": "cancelled",
                "cancellationReason": str(payload.get("reason") or "").strip() or None,
                "updatedAt": utcnow(),
            }
        },
    )
    updated_order = db.orders.find_one({"_id": order_document["_id"]})
    return jsonify({"success": True, "order": serialize_order(updated_order)})
