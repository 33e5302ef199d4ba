"""Transactional mail rendered with Jinja templates and delivered by Resend."""
from typing import Dict, List, Optional, Tuple

import resend
from flask import current_app, render_template

from .models import safe_float, safe_positive_int, utcnow

STORE_NAME = "AURA 3D Store"

OTP_SUBJECTS = {
    "register": "AURA - Verify your email",
    "password_reset": "AURA - Password reset code",
    "verify_email": "AURA - Confirm your email address",
}


def send_email_via_resend(payload: Dict[str, object]) -> Tuple[bool, Optional[str]]:
    configured_api_key = (current_app.config.get("RESEND_API_KEY") or "").strip()
    if not configured_api_key:
        return False, "Resend API key is not configured."

    resend.api_key = configured_api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        return False, str(exc)

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)

    return True, None


def send_otp_email(recipient_email: str, otp: str, purpose: str) -> Tuple[bool, Optional[str]]:
    expiration_minutes = current_app.config.get("OTP_EXPIRATION_MINUTES", 10)
    html_body = render_template(
        "emails/otp_email.html",
        otp=otp,
        purpose=purpose,
        expiration_minutes=expiration_minutes,
        store_name=STORE_NAME,
        year=utcnow().year,
    )
    text_body = (
        f"Your {STORE_NAME} verification code is {otp}. "
        f"It expires in {expiration_minutes} minutes."
    )
    payload: Dict[str, object] = {
        "from": current_app.config["MAIL_SENDER"],
        "to": [recipient_email],
        "subject": OTP_SUBJECTS.get(purpose, OTP_SUBJECTS["register"]),
        "html": html_body,
        "text": text_body,
    }

    sent, error_details = send_email_via_resend(payload)
    if not sent:
        current_app.logger.error(
            "OTP dispatch failed for %s: %s", recipient_email, error_details
        )
    return sent, error_details


def normalize_order_email_items(items: List[Dict]) -> List[Dict]:
    normalized_items: List[Dict] = []
    for entry in items or []:
        if not isinstance(entry, dict):
            continue
        quantity = safe_positive_int(entry.get("quantity"), 1) or 1
        price_value = round(safe_float(entry.get("price"), 0.0), 2)
        normalized_items.append(
            {
                "name": str(entry.get("name") or "").strip() or "Product",
                "quantity": quantity,
                "price": price_value,
                "line_total": round(price_value * quantity, 2),
            }
        )
    return normalized_items


def send_order_confirmation(order_document: Dict, user_document: Dict) -> bool:
    """Mail an order receipt. Failures are logged and never raised."""
    recipient_email = (user_document or {}).get("email")
    if not recipient_email:
        current_app.logger.warning(
            "User email not found, skipping confirmation email for order %s",
            order_document.get("_id"),
        )
        return False

    try:
        html_body = render_template(
            "emails/order_confirmation.html",
            order=order_document,
            order_id=str(order_document.get("_id")),
            items=normalize_order_email_items(order_document.get("items")),
            address=order_document.get("shippingAddress") or {},
            customer_name=user_document.get("name", ""),
            total=round(safe_float(order_document.get("totalAmount"), 0.0), 2),
            store_name=STORE_NAME,
            year=utcnow().year,
        )
        payload: Dict[str, object] = {
            "from": current_app.config["MAIL_SENDER"],
            "to": [recipient_email],
            "subject": f"AURA - Order Confirmation #{order_document.get('_id')}",
            "html": html_body,
        }
        sent, error_details = send_email_via_resend(payload)
    except Exception as exc:
        sent, error_details = False, str(exc)

    if sent:
        current_app.logger.info("Order confirmation email sent to %s", recipient_email)
    else:
        current_app.logger.error(
            "Error sending confirmation email for order %s: %s",
            order_document.get("_id"),
            error_details,
        )
    return sent
