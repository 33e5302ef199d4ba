"""Password hashing, token issuing and the auth decorators used by the routes."""
from functools import wraps

import bcrypt
from bson import ObjectId
from bson.errors import InvalidId
from flask import current_app, g, jsonify
from flask_jwt_extended import create_access_token, get_current_user, verify_jwt_in_request

from .extensions import get_db, jwt


def hash_password(password: str) -> bytes:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())


def check_password(password: str, hashed) -> bool:
    if not hashed:
        return False
    if isinstance(hashed, str):
        hashed = hashed.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed)
    except ValueError:
        return False


def issue_token(user_document) -> str:
    return create_access_token(
        identity=str(user_document["_id"]),
        additional_claims={"isAdmin": bool(user_document.get("isAdmin"))},
    )


def _unauthorized(message: str):
    return jsonify({"success": False, "message": message}), 401


@jwt.unauthorized_loader
def missing_token(reason):
    return _unauthorized("No auth token, access denied")


@jwt.invalid_token_loader
def invalid_token(reason):
    return _unauthorized("Token is invalid")


@jwt.expired_token_loader
def expired_token(jwt_header, jwt_payload):
    return _unauthorized("Token expired")


@jwt.user_lookup_error_loader
def unknown_token_user(jwt_header, jwt_payload):
    return _unauthorized("User not found for this token")


@jwt.user_lookup_loader
def load_token_user(jwt_header, jwt_payload):
    try:
        user_id = ObjectId(jwt_payload.get("sub"))
    except (InvalidId, TypeError):
        return None
    return get_db().users.find_one({"_id": user_id}, {"password": 0})


def load_current_user():
    """Verify the bearer token and return the user document it names.

    Returns ``(user, None)`` on success or ``(None, error_response)`` when the
    request must be rejected.
    """
    verify_jwt_in_request()
    user = get_current_user()

    if current_app.config.get("EMAIL_VERIFICATION_REQUIRED") and not user.get(
        "isVerified"
    ):
        return None, _unauthorized("Please verify your email first")

    return user, None


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        user, auth_error = load_current_user()
        if auth_error:
            return auth_error
        g.current_user = user
        return view(*args, **kwargs)

    return wrapper


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        user, auth_error = load_current_user()
        if auth_error:
            return auth_error
        if not user.get("isAdmin"):
            return (
                jsonify({"success": False, "message": "Access denied. Admin only."}),
                403,
            )
        g.current_user = user
        return view(*args, **kwargs)

    return wrapper


def is_owner_or_admin(owner_id, user_document) -> bool:
    if user_document.get("isAdmin"):
        return True
    return str(owner_id) == str(user_document.get("_id"))
