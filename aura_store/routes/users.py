from bson import ObjectId
from flask import Blueprint, current_app, g, jsonify, request

from ..errors import ValidationError
from ..extensions import get_db
from ..models import (
    DEFAULT_PROFILE_IMAGE,
    MIN_PASSWORD_LENGTH,
    add_default_entry,
    digits_only,
    display_payment_method,
    is_valid_email,
    is_valid_phone,
    mask_payment_method,
    missing_address_fields,
    normalize_address,
    normalize_email,
    parse_object_id,
    promote_default_entry,
    remove_default_entry,
    serialize_user,
    utcnow,
    validate_payment_method,
)
from ..security import admin_required, check_password, hash_password, login_required
from ..uploads import PUBLIC_UPLOAD_PREFIX, remove_upload, save_upload

users_bp = Blueprint("users", __name__)

ADMIN_EDITABLE_FIELDS = ("name", "email", "isAdmin", "phoneNumber")


def reload_user(user_id):
    return get_db().users.find_one({"_id": user_id}, {"password": 0})


def save_user_fields(user_id, updates):
    updates["updatedAt"] = utcnow()
    get_db().users.update_one({"_id": user_id}, {"$set": updates})
    return reload_user(user_id)


def build_address_entry(payload):
    address = normalize_address(payload)
    missing_fields = missing_address_fields(address)
    if missing_fields:
        raise ValidationError(f"Address fields required: {', '.join(missing_fields)}")
    return {"_id": ObjectId(), **address, "isDefault": bool(payload.get("isDefault"))}


def fetch_user(user_id: str):
    object_id = parse_object_id(user_id)
    if object_id is None:
        return None, (jsonify({"success": False, "message": "Invalid user ID"}), 400)

    user_document = reload_user(object_id)
    if not user_document:
        return None, (jsonify({"success": False, "message": "User not found"}), 404)

    return user_document, None


TRUE_FLAGS = {"1", "true", "yes", "on"}
FALSE_FLAGS = {"0", "false", "no", "off"}


def parse_flag(value):
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_FLAGS:
        return True
    if text in FALSE_FLAGS:
        return False
    return None


def admin_user_updates(payload):
    """Return the ``$set`` fields an admin may change on a user."""
    updates = {}
    for key in ADMIN_EDITABLE_FIELDS:
        if key not in payload:
            continue
        value = payload[key]
        if key == "email":
            value = normalize_email(value)
            if not is_valid_email(value):
                raise ValidationError("Please provide a valid email address")
        elif key == "phoneNumber":
            if value and not is_valid_phone(value):
                raise ValidationError("Please provide a valid phone number (10-15 digits)")
            value = digits_only(value)
        elif key == "isAdmin":
            value = parse_flag(value)
            if value is None:
                raise ValidationError("isAdmin must be true or false")
        else:
            value = str(value or "").strip()
            if not value:
                raise ValidationError("Name cannot be empty")
        updates[key] = value
    return updates


def delete_user_account(user_document):
    db = get_db()
    db.users.delete_one({"_id": user_document["_id"]})
    db.favorites.delete_one({"user": user_document["_id"]})
    db.carts.delete_one({"user": user_document["_id"]})
    current_app.logger.info("Deleted user %s", user_document["_id"])


@users_bp.route("/profile", methods=["GET"])
@login_required
def get_profile():
    return jsonify({"success": True, "user": serialize_user(g.current_user)})


@users_bp.route("/profile", methods=["PATCH"])
@login_required
def update_profile():
    user = g.current_user
    payload = request.get_json(silent=True) or {}
    updates = {}

    if payload.get("name"):
        updates["name"] = str(payload["name"]).strip()

    if "phoneNumber" in payload:
        phone_number = payload.get("phoneNumber") or ""
        if phone_number and not is_valid_phone(phone_number):
            raise ValidationError("Please provide a valid phone number (10-15 digits)")
        updates["phoneNumber"] = digits_only(phone_number)

    if payload.get("address"):
        entry = build_address_entry(payload["address"])
        updates["addresses"] = add_default_entry(user.get("addresses"), entry)

    updated_user = save_user_fields(user["_id"], updates)
    return jsonify(
        {
            "success": True,
            "message": "Profile updated successfully",
            "user": serialize_user(updated_user),
        }
    )


@users_bp.route("/change-password", methods=["PATCH"])
@login_required
def change_password():
    db = get_db()
    payload = request.get_json(silent=True) or {}
    current_password = str(payload.get("currentPassword") or "")
    new_password = str(payload.get("newPassword") or "")

    if not current_password or not new_password:
        return (
            jsonify({"success": False, "message": "Current and new password are required"}),
            400,
        )
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )

    stored = db.users.find_one({"_id": g.current_user["_id"]}, {"password": 1})
    if not check_password(current_password, stored.get("password")):
        return jsonify({"success": False, "message": "Current password is incorrect"}), 400

    save_user_fields(g.current_user["_id"], {"password": hash_password(new_password)})
    return jsonify({"success": True, "message": "Password updated successfully"})


@users_bp.route("/address", methods=["POST"])
@login_required
def add_address():
    user = g.current_user
    entry = build_address_entry(request.get_json(silent=True) or {})
    addresses = add_default_entry(user.get("addresses"), entry)
    updated_user = save_user_fields(user["_id"], {"addresses": addresses})
    return (
        jsonify(
            {
                "success": True,
                "message": "Address added successfully",
                "user": serialize_user(updated_user),
            }
        ),
        201,
    )


@users_bp.route("/address/<address_id>", methods=["PATCH"])
@login_required
def update_address(address_id: str):
    user = g.current_user
    payload = request.get_json(silent=True) or {}
    addresses = [dict(entry) for entry in user.get("addresses") or []]

    index = next(
        (
            position
            for position, entry in enumerate(addresses)
            if str(entry.get("_id")) == address_id
        ),
        None,
    )
    if index is None:
        return jsonify({"success": False, "message": "Address not found"}), 404

    addresses[index].update(normalize_address(payload))
    if payload.get("isDefault"):
        addresses = promote_default_entry(addresses, index)

    updated_user = save_user_fields(user["_id"], {"addresses": addresses})
    return jsonify(
        {
            "success": True,
            "message": "Address updated successfully",
            "user": serialize_user(updated_user),
        }
    )


@users_bp.route("/address/<address_id>", methods=["DELETE"])
@login_required
def delete_address(address_id: str):
    user = g.current_user
    addresses, removed = remove_default_entry(user.get("addresses"), address_id)
    if not removed:
        return jsonify({"success": False, "message": "Address not found"}), 404

    updated_user = save_user_fields(user["_id"], {"addresses": addresses})
    return jsonify(
        {
            "success": True,
            "message": "Address deleted successfully",
            "user": serialize_user(updated_user),
        }
    )


@users_bp.route("/payment-methods", methods=["GET"])
@login_required
def list_payment_methods():
    methods = g.current_user.get("paymentMethods") or []
    return jsonify(
        {
            "success": True,
            "paymentMethods": [display_payment_method(method) for method in methods],
        }
    )


@users_bp.route("/payment-methods", methods=["POST"])
@login_required
def add_payment_method():
    user = g.current_user
    entry = mask_payment_method(validate_payment_method(request.get_json(silent=True) or {}))
    methods = add_default_entry(user.get("paymentMethods"), entry)
    save_user_fields(user["_id"], {"paymentMethods": methods})
    return (
        jsonify(
            {
                "success": True,
                "message": "Payment method added successfully",
                "paymentMethods": [display_payment_method(method) for method in methods],
            }
        ),
        201,
    )


@users_bp.route("/payment-methods/<method_id>", methods=["DELETE"])
@login_required
def delete_payment_method(method_id: str):
    user = g.current_user
    methods, removed = remove_default_entry(user.get("paymentMethods"), method_id)
    if not removed:
        return jsonify({"success": False, "message": "Payment method not found"}), 404

    save_user_fields(user["_id"], {"paymentMethods": methods})
    return jsonify(
        {
            "success": True,
            "message": "Payment method deleted successfully",
            "paymentMethods": [display_payment_method(method) for method in methods],
        }
    )


@users_bp.route("/profile/image", methods=["POST"])
@login_required
def upload_profile_image():
    user = g.current_user
    image_file = request.files.get("profileImage")
    if not image_file:
        return jsonify({"success": False, "message": "No image file provided"}), 400

    public_path, upload_error = save_upload(image_file, "profileImage")
    if upload_error:
        return jsonify({"success": False, "message": upload_error}), 400

    previous_image = user.get("profileImage") or ""
    if previous_image.startswith(PUBLIC_UPLOAD_PREFIX):
        remove_upload(previous_image)

    updated_user = save_user_fields(user["_id"], {"profileImage": public_path})
    current_app.logger.info("Profile image updated for user %s", user["_id"])
    return jsonify(
        {
            "success": True,
            "message": "Profile image updated successfully",
            "user": serialize_user(updated_user),
        }
    )


@users_bp.route("/profile/image", methods=["DELETE"])
@login_required
def delete_profile_image():
    user = g.current_user
    profile_image = user.get("profileImage") or ""
    if not profile_image or DEFAULT_PROFILE_IMAGE in profile_image:
        return (
            jsonify({"success": False, "message": "No custom profile image to delete"}),
            400,
        )

    remove_upload(profile_image)
    updated_user = save_user_fields(user["_id"], {"profileImage": DEFAULT_PROFILE_IMAGE})
    return jsonify(
        {
            "success": True,
            "message": "Profile image deleted successfully",
            "user": serialize_user(updated_user),
        }
    )


@users_bp.route("/security", methods=["GET"])
@login_required
def security_overview():
    user = serialize_user(g.current_user, include_security=True)
    return jsonify({"success": True, "security": user["security"]})


@users_bp.route("/", methods=["GET"])
@admin_required
def list_users():
    user_docs = get_db().users.find({}, {"password": 0}).sort("createdAt", -1)
    return jsonify({"success": True, "users": [serialize_user(user) for user in user_docs]})


@users_bp.route("/<user_id>", methods=["GET"])
@admin_required
def get_user(user_id: str):
    user_document, load_error = fetch_user(user_id)
    if load_error:
        return load_error
    return jsonify({"success": True, "user": serialize_user(user_document, include_security=True)})


@users_bp.route("/<user_id>", methods=["PATCH"])
@admin_required
def update_user(user_id: str):
    user_document, load_error = fetch_user(user_id)
    if load_error:
        return load_error

    updates = admin_user_updates(request.get_json(silent=True) or {})
    updated_user = save_user_fields(user_document["_id"], updates)
    return jsonify({"success": True, "user": serialize_user(updated_user)})


@users_bp.route("/<user_id>", methods=["DELETE"])
@admin_required
def delete_user(user_id: str):
    user_document, load_error = fetch_user(user_id)
    if load_error:
        return load_error

    delete_user_account(user_document)
    return jsonify({"success": True, "message": "User deleted successfully"})
