import os
import re
from datetime import timedelta
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_MONGO_URI = "mongodb://127.0.0.1:27017/aura_db"
DEFAULT_TOKEN_LIFETIME = timedelta(days=7)

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "": "seconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}


def parse_duration(value: Optional[str], default: timedelta) -> timedelta:
    """Parse lifetimes written as ``7d``, ``24h``, ``30m`` or plain seconds."""
    match = _DURATION_PATTERN.match(str(value or ""))
    if not match:
        return default
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit.lower()]: int(amount)})


def env_flag(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def cors_origins() -> List[str]:
    origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:4173",
    ]
    configured = os.getenv("CORS_ORIGIN", "")
    for origin in configured.split(","):
        trimmed = origin.strip()
        if trimmed and trimmed not in origins:
            origins.append(trimmed)
    return origins


def load_settings(root_path: str) -> Dict[str, object]:
    """Collect the environment-driven settings applied to ``app.config``."""
    max_upload_mb = env_int("MAX_UPLOAD_SIZE_MB", 10)
    upload_folder = (os.getenv("UPLOAD_FOLDER") or "").strip() or os.path.join(
        root_path, "uploads"
    )

    return {
        "APP_ENV": (os.getenv("APP_ENV") or "development").strip().lower(),
        "MONGO_URI": os.getenv("MONGO_URI") or DEFAULT_MONGO_URI,
        "JWT_SECRET_KEY": os.getenv("JWT_SECRET_KEY", "change-me-in-production"),
        "JWT_ACCESS_TOKEN_EXPIRES": parse_duration(
            os.getenv("JWT_EXPIRES_IN"), DEFAULT_TOKEN_LIFETIME
        ),
        "JWT_ERROR_MESSAGE_KEY": "message",
        "PORT": env_int("PORT", 5000),
        "CORS_ORIGINS": cors_origins(),
        "RAZORPAY_KEY_ID": (os.getenv("RAZORPAY_KEY_ID") or "").strip(),
        "RAZORPAY_KEY_SECRET": (os.getenv("RAZORPAY_KEY_SECRET") or "").strip(),
        "RAZORPAY_API_URL": (
            os.getenv("RAZORPAY_API_URL") or "https://api.razorpay.com/v1"
        ).rstrip("/"),
        "RESEND_API_KEY": (os.getenv("RESEND_API_KEY") or "").strip(),
        "MAIL_SENDER": (
            os.getenv("MAIL_SENDER") or "AURA 3D Store <no-reply@aura3dstore.com>"
        ).strip(),
        "EMAIL_VERIFICATION_REQUIRED": env_flag("EMAIL_VERIFICATION_REQUIRED"),
        "OTP_EXPIRATION_MINUTES": env_int("OTP_EXPIRATION_MINUTES", 10),
        "UPLOAD_FOLDER": upload_folder,
        "MAX_CONTENT_LENGTH": max_upload_mb * 1024 * 1024,
        "LOG_LEVEL": (os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
    }
