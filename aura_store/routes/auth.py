from flask import Blueprint, current_app, g, jsonify, request

from ..errors import ValidationError
from ..extensions import get_db
from ..mailer import send_otp_email
from ..models import (
    MAX_PASSWORD_ATTEMPTS,
    MIN_PASSWORD_LENGTH,
    build_user_document,
    close_session,
    normalize_email,
    random_avatar,
    rotate_session,
    serialize_user,
    utcnow,
    validate_registration,
)
from ..otp import (
    PURPOSE_PASSWORD_RESET,
    PURPOSE_REGISTER,
    PURPOSE_VERIFY_EMAIL,
    check_otp,
    consume_otp,
    find_active_otp,
    issue_otp,
    mark_otp_verified,
)
from ..security import check_password, hash_password, issue_token, login_required

auth_bp = Blueprint("auth", __name__)


def request_client():
    return request.remote_addr, request.headers.get("User-Agent", "")


def dispatch_otp(email: str, purpose: str):
    """Issue a code and mail it. Returns an error response when delivery fails."""
    db = get_db()
    otp, _ = issue_otp(db, email, purpose, current_app.config["OTP_EXPIRATION_MINUTES"])
    sent, _ = send_otp_email(email, otp, purpose)
    if not sent:
        consume_otp(db, email)
        return (
            jsonify(
                {
                    "success": False,
                    "message": "Failed to send verification email. Please try again.",
                }
            ),
            500,
        )
    return None


def load_user_response(user_id, status: int = 200):
    user = get_db().users.find_one({"_id": user_id}, {"password": 0})
    return (
        jsonify({"success": True, "token": issue_token(user), "user": serialize_user(user)}),
        status,
    )


@auth_bp.route("/login", methods=["POST"])
def login():
    db = get_db()
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    password = str(payload.get("password") or "")

    if not email or not password:
        return jsonify({"success": False, "message": "Please provide email and password"}), 400

    user = db.users.find_one({"email": email})
    if not user:
        return jsonify({"success": False, "message": "Invalid credentials"}), 401

    security = user.get("security") or {}
    if security.get("accountLocked"):
        current_app.logger.warning("Login attempt on locked account %s", email)
        return (
            jsonify(
                {
                    "success": False,
                    "message": "Account is locked due to too many failed attempts. "
                    "Please reset your password.",
                }
            ),
            401,
        )

    if not check_password(password, user.get("password")):
        attempts = int(security.get("passwordAttempts", 0) or 0) + 1
        locked = attempts >= MAX_PASSWORD_ATTEMPTS
        db.users.update_one(
            {"_id": user["_id"]},
            {
                "$set": {
                    "security.passwordAttempts": attempts,
                    "security.accountLocked": locked,
                }
            },
        )
        if locked:
            current_app.logger.warning("Account %s locked after %s failed logins", email, attempts)
        return jsonify({"success": False, "message": "Invalid credentials"}), 401

    ip_address, user_agent = request_client()
    security = rotate_session(security, ip_address, user_agent)
    security["passwordAttempts"] = 0
    security["accountLocked"] = False
    updates = {"security": security, "updatedAt": utcnow()}
    if not user.get("profileImage"):
        updates["profileImage"] = random_avatar()
    db.users.update_one({"_id": user["_id"]}, {"$set": updates})

    current_app.logger.info("User %s signed in", email)
    return load_user_response(user["_id"])


@auth_bp.route("/register-request", methods=["POST"])
def register_request():
    payload = request.get_json(silent=True) or {}
    _, email, _, _ = validate_registration(payload)

    if get_db().users.find_one({"email": email}):
        return jsonify({"success": False, "message": "User already exists"}), 400

    delivery_error = dispatch_otp(email, PURPOSE_REGISTER)
    if delivery_error:
        return delivery_error

    return jsonify({"success": True, "message": "Verification code sent to your email"}), 200


@auth_bp.route("/register-verify", methods=["POST"])
def register_verify():
    db = get_db()
    payload = request.get_json(silent=True) or {}
    otp = str(payload.get("otp") or "").strip()
    if not otp:
        raise ValidationError("Please provide all required fields")
    name, email, password, phone_number = validate_registration(payload)

    record, otp_error = check_otp(db, email, otp, PURPOSE_REGISTER)
    if not record:
        return jsonify({"success": False, "message": otp_error}), 400

    if db.users.find_one({"email": email}):
        consume_otp(db, email)
        return jsonify({"success": False, "message": "User already exists"}), 400

    ip_address, user_agent = request_client()
    document = build_user_document(
        name,
        email,
        hash_password(password),
        phone_number=phone_number,
        is_verified=True,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    result = db.users.insert_one(document)
    consume_otp(db, email)

    current_app.logger.info("Registered verified user %s", email)
    return load_user_response(result.inserted_id, 201)


@auth_bp.route("/register", methods=["POST"])
def register():
    """Single step registration without an emailed code."""
    current_app.logger.warning(
        "Deprecated /api/auth/register called; clients should use register-request"
    )
    db = get_db()
    payload = request.get_json(silent=True) or {}
    name, email, password, phone_number = validate_registration(payload)

    if db.users.find_one({"email": email}):
        return jsonify({"success": False, "message": "User already exists"}), 400

    ip_address, user_agent = request_client()
    document = build_user_document(
        name,
        email,
        hash_password(password),
        phone_number=phone_number,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    result = db.users.insert_one(document)

    if current_app.config.get("EMAIL_VERIFICATION_REQUIRED"):
        otp, _ = issue_otp(
            db, email, PURPOSE_VERIFY_EMAIL, current_app.config["OTP_EXPIRATION_MINUTES"]
        )
        send_otp_email(email, otp, PURPOSE_VERIFY_EMAIL)

    return load_user_response(result.inserted_id, 201)


@auth_bp.route("/request-otp", methods=["POST"])
@auth_bp.route("/forgot-password", methods=["POST"])
def request_otp():
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    if not email:
        return jsonify({"success": False, "message": "Email is required"}), 400

    if not get_db().users.find_one({"email": email}):
        return jsonify({"success": False, "message": "User not found"}), 404

    delivery_error = dispatch_otp(email, PURPOSE_PASSWORD_RESET)
    if delivery_error:
        return delivery_error

    return jsonify({"success": True, "message": "OTP sent to your email"}), 200


@auth_bp.route("/verify-otp", methods=["POST"])
def verify_otp():
    db = get_db()
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    otp = str(payload.get("otp") or "").strip()
    if not email or not otp:
        return jsonify({"success": False, "message": "Email and OTP are required"}), 400

    record, otp_error = check_otp(db, email, otp, payload.get("purpose"))
    if not record:
        return jsonify({"success": False, "message": otp_error}), 400

    mark_otp_verified(db, record)
    return jsonify({"success": True, "message": "OTP verified successfully"}), 200


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    db = get_db()
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    password = str(payload.get("password") or payload.get("newPassword") or "")

    if not email or not password:
        return jsonify({"success": False, "message": "Email and password are required"}), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )

    otp = str(payload.get("otp") or "").strip()
    if otp:
        record, otp_error = check_otp(db, email, otp, PURPOSE_PASSWORD_RESET)
        if not record:
            return jsonify({"success": False, "message": otp_error}), 400
    else:
        record = find_active_otp(db, email, PURPOSE_PASSWORD_RESET)
        if not record or not record.get("verified"):
            return (
                jsonify({"success": False, "message": "Please verify your OTP first"}),
                400,
            )

    user = db.users.find_one({"email": email}, {"_id": 1})
    if not user:
        return jsonify({"success": False, "message": "User not found"}), 404

    now = utcnow()
    db.users.update_one(
        {"_id": user["_id"]},
        {
            "$set": {
                "password": hash_password(password),
                "security.passwordAttempts": 0,
                "security.accountLocked": False,
                "security.passwordResetAt": now,
                "updatedAt": now,
            }
        },
    )
    consume_otp(db, email)

    current_app.logger.info("Password reset for %s", email)
    return jsonify({"success": True, "message": "Password reset successfully"}), 200


@auth_bp.route("/resend-verification", methods=["POST"])
def resend_verification():
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    if not email:
        return jsonify({"success": False, "message": "Email is required"}), 400

    user = get_db().users.find_one({"email": email}, {"isVerified": 1})
    if not user:
        return jsonify({"success": False, "message": "User not found"}), 404
    if user.get("isVerified"):
        return jsonify({"success": False, "message": "Email is already verified"}), 400

    delivery_error = dispatch_otp(email, PURPOSE_VERIFY_EMAIL)
    if delivery_error:
        return delivery_error

    return jsonify({"success": True, "message": "Verification code sent to your email"}), 200


@auth_bp.route("/verify-email", methods=["POST"])
def verify_email():
    db = get_db()
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    otp = str(payload.get("otp") or "").strip()
    if not email or not otp:
        return jsonify({"success": False, "message": "Email and OTP are required"}), 400

    record, otp_error = check_otp(db, email, otp, PURPOSE_VERIFY_EMAIL)
    if not record:
        return jsonify({"success": False, "message": otp_error}), 400

    result = db.users.update_one(
        {"email": email}, {"$set": {"isVerified": True, "updatedAt": utcnow()}}
    )
    consume_otp(db, email)
    if not result.matched_count:
        return jsonify({"success": False, "message": "User not found"}), 404

    return jsonify({"success": True, "message": "Email verified successfully"}), 200


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"success": True, "user": serialize_user(g.current_user)})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    user = g.current_user
    get_db().users.update_one(
        {"_id": user["_id"]},
        {"$set": {"security": close_session(user.get("security"))}},
    )
    return jsonify({"success": True, "message": "Logged out successfully"})
