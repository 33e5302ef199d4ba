import secrets
from datetime import timedelta
from typing import Optional, Tuple

import bcrypt

from .models import utcnow

OTP_LENGTH = 6
MAX_FAILED_OTP_ATTEMPTS = 5

PURPOSE_REGISTER = "register"
PURPOSE_PASSWORD_RESET = "password_reset"
PURPOSE_VERIFY_EMAIL = "verify_email"


def generate_otp_code(length: int = OTP_LENGTH) -> str:
    upper_bound = 10**length
    return f"{secrets.randbelow(upper_bound):0{length}d}"


def issue_otp(db, email: str, purpose: str, expiration_minutes: int) -> Tuple[str, object]:
    """Replace any code on record for ``email`` with a fresh one."""
    otp = generate_otp_code()
    now = utcnow()
    expires_at = now + timedelta(minutes=expiration_minutes)

    db.otps.delete_one({"email": email})
    db.otps.insert_one(
        {
            "email": email,
            "purpose": purpose,
            "otpHash": bcrypt.hashpw(otp.encode("utf-8"), bcrypt.gensalt()),
            "createdAt": now,
            "expiresAt": expires_at,
            "verified": False,
            "failedAttempts": 0,
        }
    )
    return otp, expires_at


def find_active_otp(db, email: str, purpose: Optional[str] = None):
    record = db.otps.find_one({"email": email})
    if not record:
        return None

    expires_at = record.get("expiresAt")
    if not expires_at or expires_at < utcnow():
        db.otps.delete_one({"_id": record["_id"]})
        return None

    if purpose and record.get("purpose") != purpose:
        return None
    return record


def check_otp(db, email: str, otp: str, purpose: Optional[str] = None):
    """Compare ``otp`` with the stored code without consuming it.

    Returns ``(record, None)`` when the code matches, otherwise ``(None,
    message)``. Repeated mismatches discard the record.
    """
    record = find_active_otp(db, email, purpose)
    if not record:
        return None, "Verification code expired or invalid. Please request a new code."

    candidate = str(otp or "").strip()
    stored_hash = record.get("otpHash")
    if candidate and stored_hash and bcrypt.checkpw(candidate.encode("utf-8"), stored_hash):
        return record, None

    failed_attempts = int(record.get("failedAttempts", 0) or 0) + 1
    if failed_attempts >= MAX_FAILED_OTP_ATTEMPTS:
        db.otps.delete_one({"_id": record["_id"]})
        return None, "Too many incorrect attempts. Please request a new verification code."

    db.otps.update_one(
        {"_id": record["_id"]}, {"$set": {"failedAttempts": failed_attempts}}
    )
    return None, "Invalid verification code"


def mark_otp_verified(db, record) -> None:
    db.otps.update_one(
        {"_id": record["_id"]},
        {"$set": {"verified": True, "verifiedAt": utcnow()}},
    )


def consume_otp(db, email: str) -> None:
    db.otps.delete_one({"email": email})
