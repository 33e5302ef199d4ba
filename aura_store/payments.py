import hashlib
import hmac
from typing import Dict, Optional

import requests
from flask import current_app

GATEWAY_TIMEOUT_SECONDS = 15


class PaymentGatewayError(Exception):
    pass


def compute_signature(gateway_order_id: str, payment_id: str, secret: str) -> str:
    message = f"{gateway_order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_payment_signature(
    gateway_order_id: str, payment_id: str, signature: str, secret: str
) -> bool:
    if not secret or not signature:
        return False
    expected = compute_signature(gateway_order_id, payment_id, secret)
    return hmac.compare_digest(expected, str(signature))


def create_gateway_order(
    amount: int,
    currency: str,
    receipt: str,
    notes: Optional[Dict[str, str]] = None,
) -> Dict:
    """Create a Razorpay order. ``amount`` is in the smallest currency unit."""
    key_id = current_app.config.get("RAZORPAY_KEY_ID")
    key_secret = current_app.config.get("RAZORPAY_KEY_SECRET")
    if not key_id or not key_secret:
        raise PaymentGatewayError("Razorpay configuration is incomplete.")

    payload = {
        "amount": amount,
        "currency": currency,
        "receipt": receipt,
        "notes": notes or {},
        "payment_capture": 1,
    }
    url = f"{current_app.config['RAZORPAY_API_URL']}/orders"
    current_app.logger.info(
        "Creating Razorpay order for %s %s (%s)", amount, currency, receipt
    )

    try:
        response = requests.post(
            url,
            json=payload,
            auth=(key_id, key_secret),
            timeout=GATEWAY_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        current_app.logger.error("Razorpay request failed: %s", exc)
        raise PaymentGatewayError("Failed to reach the payment provider.") from exc

    if response.status_code not in (200, 201):
        current_app.logger.error(
            "Razorpay order creation failed (%s): %s",
            response.status_code,
            response.text,
        )
        raise PaymentGatewayError("Failed to create payment order")

    return response.json()
