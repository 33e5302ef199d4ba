"""Document shapes, validation and serialization for the AURA collections.

Documents are stored as plain dictionaries. The builders here apply the
defaults and constraints each collection expects so the route handlers only
deal with request parsing and responses.
"""
import json
import math
import random
import re
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId

from .errors import ValidationError

PRODUCT_CATEGORIES = ("Beard Care", "Skincare", "Hair Care", "Body Care", "Accessories")
ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")
PAYMENT_METHODS = ("Razorpay", "Credit Card", "UPI", "COD")
GATEWAY_PAYMENT_METHOD = "Razorpay"
CANCELLABLE_STATUSES = ("pending", "processing")

MAX_SESSION_HISTORY = 10
MAX_PASSWORD_ATTEMPTS = 5
MIN_PASSWORD_LENGTH = 6
REVIEW_TITLE_MAX_LENGTH = 100
REVIEW_BODY_MAX_LENGTH = 1000

DEFAULT_AVATARS = (
    "https://i.imgur.com/3tVgsra.png",
    "https://i.imgur.com/8igHtj1.png",
    "https://i.imgur.com/JYMqnOb.png",
    "https://i.imgur.com/Q9qFt3P.png",
    "https://i.imgur.com/vPMWRzm.png",
    "https://i.imgur.com/7rLOZfa.png",
)
DEFAULT_PROFILE_IMAGE = "/default-avatar.jpg"

ADDRESS_FIELDS = ("street", "city", "state", "country", "pincode")
ADDRESS_FIELD_ALIASES = {
    "street": ("street", "line1", "address1", "addressLine1"),
    "city": ("city", "town"),
    "state": ("state", "region", "province"),
    "country": ("country", "countryName"),
    "pincode": ("pincode", "zipCode", "zip", "postcode", "postalCode"),
}

email_regex = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
phone_regex = re.compile(r"^\d{10,15}$")
card_number_regex = re.compile(r"^\d{16}$")
expiry_regex = re.compile(r"^(0[1-9]|1[0-2])/\d{2}$")
cvv_regex = re.compile(r"^\d{3,4}$")


# --- Generic helpers ---


def utcnow() -> datetime:
    return datetime.utcnow()


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    return bool(email_regex.match(str(value or "").strip()))


def digits_only(value: Optional[str]) -> str:
    return re.sub(r"[^0-9]", "", str(value or ""))


def is_valid_phone(value: Optional[str]) -> bool:
    return bool(phone_regex.match(digits_only(value)))


def safe_float(value, default=0.0):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def safe_positive_int(value, default=0):
    try:
        numeric = int(float(value))
    except (TypeError, ValueError):
        return default
    return max(default, numeric)


def parse_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def parse_json_list(value) -> List:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        try:
            parsed = json.loads(stripped)
        except ValueError:
            return [item.strip() for item in stripped.split(",") if item.strip()]
        if isinstance(parsed, list):
            return parsed
        return [parsed]
    return [value]


def serialize(value):
    """Convert a stored document into JSON-safe data."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return f"{value.isoformat()}Z"
    if isinstance(value, dict):
        return {key: serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(item) for item in value]
    return value


def random_avatar() -> str:
    return random.choice(DEFAULT_AVATARS)


# --- Users ---


def build_session(ip_address: Optional[str], user_agent: Optional[str]) -> Dict:
    return {
        "ipAddress": ip_address or "",
        "userAgent": user_agent or "",
        "loginTime": utcnow(),
        "isActive": True,
    }


def rotate_session(security: Optional[Dict], ip_address, user_agent) -> Dict:
    """Archive the active session and start a new one.

    The archived session is pushed to the front of ``sessionHistory`` which is
    capped at ``MAX_SESSION_HISTORY`` entries.
    """
    updated = dict(security or {})
    history = list(updated.get("sessionHistory") or [])
    current_session = updated.get("currentSession")
    if isinstance(current_session, dict) and current_session.get("isActive"):
        archived = dict(current_session)
        archived["logoutTime"] = utcnow()
        archived["isActive"] = False
        history.insert(0, archived)

    updated["sessionHistory"] = history[:MAX_SESSION_HISTORY]
    updated["currentSession"] = build_session(ip_address, user_agent)
    updated["lastLogin"] = updated["currentSession"]["loginTime"]
    return updated


def close_session(security: Optional[Dict]) -> Dict:
    updated = dict(security or {})
    current_session = updated.get("currentSession")
    if not isinstance(current_session, dict) or not current_session.get("isActive"):
        return updated
    archived = dict(current_session)
    archived["logoutTime"] = utcnow()
    archived["isActive"] = False
    history = [archived] + list(updated.get("sessionHistory") or [])
    updated["sessionHistory"] = history[:MAX_SESSION_HISTORY]
    updated["currentSession"] = archived
    return updated


def build_user_document(
    name: str,
    email: str,
    password_hash: bytes,
    phone_number: str = "",
    is_verified: bool = False,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict:
    now = utcnow()
    return {
        "name": name.strip(),
        "email": normalize_email(email),
        "password": password_hash,
        "phoneNumber": digits_only(phone_number),
        "profileImage": random_avatar(),
        "addresses": [],
        "paymentMethods": [],
        "security": {
            "accountCreated": now,
            "lastLogin": now,
            "currentSession": build_session(ip_address, user_agent),
            "sessionHistory": [],
            "passwordAttempts": 0,
            "accountLocked": False,
        },
        "wishlist": [],
        "isAdmin": False,
        "isVerified": is_verified,
        "createdAt": now,
        "updatedAt": now,
    }


def validate_registration(payload: Dict) -> Tuple[str, str, str, str]:
    name = str(payload.get("name") or "").strip()
    email = normalize_email(payload.get("email"))
    password = str(payload.get("password") or "")
    phone_number = str(payload.get("phoneNumber") or "").strip()

    if not name or not email or not password:
        raise ValidationError("Please provide all required fields")
    if not is_valid_email(email):
        raise ValidationError("Please provide a valid email address")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if phone_number and not is_valid_phone(phone_number):
        raise ValidationError("Please provide a valid phone number (10-15 digits)")

    return name, email, password, digits_only(phone_number)


def mask_card_number(card_number: Optional[str]) -> str:
    digits = digits_only(card_number)
    if len(digits) <= 4:
        return digits
    return f"************{digits[-4:]}"


def mask_payment_method(method: Dict) -> Dict:
    """Return a copy of a card entry safe to persist: last four digits, no CVV."""
    masked = dict(method)
    if masked.get("cardNumber"):
        masked["cardNumber"] = mask_card_number(masked["cardNumber"])
    if masked.get("cvv"):
        masked["cvv"] = "***"
    return masked


def mask_payment_details(details: Optional[Dict]) -> Dict:
    masked = dict(details or {})
    card_number = masked.get("cardNumber")
    if card_number and len(digits_only(card_number)) > 4:
        masked["cardNumber"] = mask_card_number(card_number)
    masked.pop("cvv", None)
    return masked


def display_payment_method(method: Dict) -> Dict:
    card_number = str(method.get("cardNumber") or "")
    return {
        "_id": serialize(method.get("_id")),
        "cardName": method.get("cardName", ""),
        "cardNumber": f"**** **** **** {card_number[-4:]}",
        "expiryDate": method.get("expiryDate", ""),
        "isDefault": bool(method.get("isDefault")),
        "createdAt": serialize(method.get("createdAt")),
    }


def validate_payment_method(payload: Dict) -> Dict:
    card_name = str(payload.get("cardName") or "").strip()
    card_number = re.sub(r"\s", "", str(payload.get("cardNumber") or ""))
    expiry_date = str(payload.get("expiryDate") or "").strip()
    cvv = str(payload.get("cvv") or "").strip()

    if not card_name or not card_number or not expiry_date or not cvv:
        raise ValidationError("Please provide all payment details")
    if not card_number_regex.match(card_number):
        raise ValidationError("Please enter a valid 16-digit card number")
    if not expiry_regex.match(expiry_date):
        raise ValidationError("Please enter a valid expiry date (MM/YY)")
    if not cvv_regex.match(cvv):
        raise ValidationError("Please enter a valid CVV (3-4 digits)")

    return {
        "_id": ObjectId(),
        "cardName": card_name,
        "cardNumber": card_number,
        "expiryDate": expiry_date,
        "cvv": cvv,
        "isDefault": bool(payload.get("isDefault")),
        "createdAt": utcnow(),
    }


def normalize_address(payload: Optional[Dict]) -> Dict[str, str]:
    if not isinstance(payload, dict):
        return {}

    normalized: Dict[str, str] = {}
    for field in ADDRESS_FIELDS:
        for alias in ADDRESS_FIELD_ALIASES.get(field, (field,)):
            value = payload.get(alias)
            if value is None:
                continue
            trimmed = str(value).strip()
            if trimmed:
                normalized[field] = trimmed
                break
    return normalized


def missing_address_fields(address: Dict[str, str]) -> List[str]:
    return [field for field in ADDRESS_FIELDS if not address.get(field)]


def add_default_entry(entries: List[Dict], entry: Dict) -> List[Dict]:
    """Append ``entry`` keeping a single ``isDefault`` flag across the list.

    The first entry of an empty list always becomes the default.
    """
    updated = [dict(item) for item in entries or []]
    if not updated:
        entry["isDefault"] = True
    elif entry.get("isDefault"):
        for item in updated:
            item["isDefault"] = False
    updated.append(entry)
    return updated


def promote_default_entry(entries: List[Dict], index: int) -> List[Dict]:
    updated = [dict(item) for item in entries or []]
    for position, item in enumerate(updated):
        item["isDefault"] = position == index
    return updated


def remove_default_entry(entries: List[Dict], entry_id) -> Tuple[List[Dict], bool]:
    """Drop the entry with ``entry_id``; the first remaining becomes default if needed."""
    target = str(entry_id)
    remaining = [dict(item) for item in entries or [] if str(item.get("_id")) != target]
    if len(remaining) == len(entries or []):
        return remaining, False
    if remaining and not any(item.get("isDefault") for item in remaining):
        remaining[0]["isDefault"] = True
    return remaining, True


def serialize_user(user_document, include_security: bool = False) -> Dict:
    if not user_document:
        return {}

    security = user_document.get("security") or {}
    current_session = security.get("currentSession") or {}
    payload = {
        "_id": str(user_document.get("_id")),
        "name": user_document.get("name", ""),
        "email": user_document.get("email", ""),
        "phoneNumber": user_document.get("phoneNumber") or "",
        "addresses": serialize(user_document.get("addresses") or []),
        "paymentMethods": [
            display_payment_method(method)
            for method in user_document.get("paymentMethods") or []
        ],
        "profileImage": user_document.get("profileImage") or "",
        "isAdmin": bool(user_document.get("isAdmin")),
        "isVerified": bool(user_document.get("isVerified")),
        "wishlist": serialize(user_document.get("wishlist") or []),
        "createdAt": serialize(user_document.get("createdAt")),
        "security": {
            "accountCreated": serialize(
                security.get("accountCreated") or user_document.get("createdAt")
            ),
            "lastLogin": serialize(security.get("lastLogin")),
            "currentSession": {
                "ipAddress": current_session.get("ipAddress"),
                "loginTime": serialize(current_session.get("loginTime")),
            },
        },
    }
    if include_security:
        payload["security"] = {
            **payload["security"],
            "currentSession": serialize(current_session),
            "sessionHistory": serialize(security.get("sessionHistory") or []),
            "passwordResetAt": serialize(security.get("passwordResetAt")),
            "accountLocked": bool(security.get("accountLocked")),
        }
    return payload


# --- Products ---


def _parse_sizes(raw_sizes) -> List[Dict]:
    sizes = []
    for entry in parse_json_list(raw_sizes):
        if not isinstance(entry, dict):
            raise ValidationError("Each size must be an object.")
        name = str(entry.get("name") or "").strip()
        sku = str(entry.get("sku") or "").strip()
        price = safe_float(entry.get("price"), -1)
        quantity = safe_positive_int(entry.get("quantity"), 0)
        if not name or not sku or price < 0:
            raise ValidationError("Each size needs a name, sku and non-negative price.")
        sizes.append(
            {
                "name": name,
                "price": round(price, 2),
                "quantity": quantity,
                "sku": sku,
                "inStock": quantity > 0,
            }
        )
    return sizes


def _string_list(value) -> List[str]:
    return [str(item).strip() for item in parse_json_list(value) if str(item).strip()]


def build_product_fields(payload: Dict, partial: bool = False) -> Dict:
    """Validate product fields from a JSON or multipart payload.

    With ``partial`` only the supplied fields are validated and returned.
    ``inStock`` is derived from ``stockQuantity`` whenever that is written.
    """
    fields: Dict[str, object] = {}
    errors: List[str] = []

    def supplied(key: str) -> bool:
        return key in payload and payload.get(key) is not None

    for key in ("name", "description"):
        if supplied(key) or not partial:
            value = str(payload.get(key) or "").strip()
            if not value:
                errors.append(f"Product {key} is required.")
            fields[key] = value

    if supplied("price") or not partial:
        price = safe_float(payload.get("price"), None)
        if price is None or price < 0:
            errors.append("Price must be a non-negative number.")
        else:
            fields["price"] = round(price, 2)

    if supplied("category") or not partial:
        category = str(payload.get("category") or "").strip()
        if category not in PRODUCT_CATEGORIES:
            errors.append(
                f"Category must be one of: {', '.join(PRODUCT_CATEGORIES)}."
            )
        fields["category"] = category

    if supplied("stockQuantity") or not partial:
        stock = safe_float(payload.get("stockQuantity", 0), None)
        if stock is None or stock < 0:
            errors.append("Stock quantity must be zero or more.")
        else:
            fields["stockQuantity"] = int(stock)
            fields["inStock"] = int(stock) > 0

    if supplied("discount"):
        discount = safe_float(payload.get("discount"), None)
        if discount is None or not 0 <= discount <= 100:
            errors.append("Discount must be between 0 and 100.")
        else:
            fields["discount"] = discount
    elif not partial:
        fields["discount"] = 0

    if supplied("brand") or not partial:
        fields["brand"] = str(payload.get("brand") or "").strip() or "AURA"

    if supplied("subCategory"):
        fields["subCategory"] = str(payload.get("subCategory") or "").strip()

    for key in ("ingredients", "features", "tags", "images"):
        if supplied(key) or not partial:
            fields[key] = _string_list(payload.get(key))

    if supplied("sizes") or not partial:
        try:
            fields["sizes"] = _parse_sizes(payload.get("sizes"))
        except ValidationError as exc:
            errors.append(exc.message)

    for key in ("modelUrl", "thumbnailUrl"):
        if supplied(key):
            fields[key] = str(payload.get(key) or "").strip()

    if errors:
        raise ValidationError("Validation Error", errors)
    return fields


def build_product_document(payload: Dict) -> Dict:
    now = utcnow()
    document = build_product_fields(payload)
    document.setdefault("modelUrl", "")
    document.setdefault("thumbnailUrl", "")
    document["ratings"] = {"average": 0, "count": 0}
    document["createdAt"] = now
    document["updatedAt"] = now
    return document


def serialize_product(product_document) -> Dict:
    if not product_document:
        return {}
    return serialize(product_document)


# --- Orders ---


def normalize_order_item(payload) -> Dict:
    if not isinstance(payload, dict):
        raise ValidationError("Each order item must be an object.")

    product_id = parse_object_id(
        payload.get("productId") or payload.get("product") or payload.get("_id")
    )
    if product_id is None:
        raise ValidationError("Each order item needs a valid product id.")

    price = payload.get("price")
    quantity = payload.get("quantity")
    return {
        "product": product_id,
        "name": str(payload.get("name") or "").strip() or "Product",
        "price": round(price, 2) if isinstance(price, (int, float)) else 0,
        "quantity": quantity if isinstance(quantity, int) and quantity > 0 else 1,
        "size": payload.get("size") or None,
        "color": payload.get("color") or None,
    }


def build_order_document(user_id: ObjectId, payload: Dict) -> Dict:
    """Validate an order request and return the document to insert.

    Gateway orders carrying a gateway payment id are recorded as paid at once.
    """
    items = payload.get("items")
    shipping_address = payload.get("shippingAddress")
    total_amount = safe_float(payload.get("totalAmount"), 0)
    payment_method = str(payload.get("paymentMethod") or "").strip()
    payment_details = payload.get("paymentDetails") or {}

    if (
        not isinstance(items, list)
        or not items
        or not shipping_address
        or total_amount <= 0
        or not payment_method
    ):
        raise ValidationError("Missing required order information")

    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}."
        )

    if not isinstance(payment_details, dict):
        raise ValidationError("Payment details must be an object.")

    if payment_method == GATEWAY_PAYMENT_METHOD and not payment_details.get(
        "razorpayPaymentId"
    ):
        raise ValidationError("Missing payment details for Razorpay payment")

    address = normalize_address(shipping_address)
    missing_fields = missing_address_fields(address)
    if missing_fields:
        raise ValidationError(
            f"Shipping address fields required: {', '.join(missing_fields)}"
        )

    now = utcnow()
    is_paid = payment_method == GATEWAY_PAYMENT_METHOD
    return {
        "user": user_id,
        "items": [normalize_order_item(item) for item in items],
        "shippingAddress": address,
        "totalAmount": round(total_amount, 2),
        "paymentMethod": payment_method,
        "paymentDetails": {"method": payment_method, **mask_payment_details(payment_details)},
        "status": "processing" if is_paid else "pending",
        "paymentStatus": "paid" if is_paid else "pending",
        "isPaid": is_paid,
        "paidAt": now if is_paid else None,
        "isDelivered": False,
        "deliveredAt": None,
        "trackingNumber": None,
        "createdAt": now,
        "updatedAt": now,
    }


def serialize_order(order_document, user_document=None) -> Dict:
    if not order_document:
        return {}
    payload = serialize(order_document)
    if user_document:
        payload["user"] = {
            "_id": str(user_document.get("_id")),
            "name": user_document.get("name", ""),
            "email": user_document.get("email", ""),
        }
    return payload


# --- Reviews ---


def validate_review_fields(payload: Dict, partial: bool = False) -> Dict:
    fields: Dict[str, object] = {}
    errors: List[str] = []

    if "rating" in payload or not partial:
        rating = payload.get("rating")
        if isinstance(rating, bool) or not isinstance(rating, (int, float)):
            rating = safe_float(rating, None)
        if rating is None or int(rating) != rating or not 1 <= rating <= 5:
            errors.append("Rating must be a whole number between 1 and 5.")
        else:
            fields["rating"] = int(rating)

    limits = {"title": REVIEW_TITLE_MAX_LENGTH, "review": REVIEW_BODY_MAX_LENGTH}
    for key, max_length in limits.items():
        if key in payload or not partial:
            value = str(payload.get(key) or "").strip()
            if not value:
                errors.append(f"Review {key} is required.")
            elif len(value) > max_length:
                errors.append(f"Review {key} must be at most {max_length} characters.")
            fields[key] = value

    if "images" in payload:
        fields["images"] = _string_list(payload.get("images"))

    if errors:
        raise ValidationError("Validation Error", errors)
    return fields


def serialize_review(review_document, user_names: Optional[Dict[str, Dict]] = None) -> Dict:
    payload = serialize(review_document)
    author = (user_names or {}).get(str(review_document.get("user")))
    if author:
        payload["user"] = author
    payload["likesCount"] = len(review_document.get("likes") or [])
    return payload
