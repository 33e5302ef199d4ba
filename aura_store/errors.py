import re
from typing import Dict, List, Optional

from bson.errors import InvalidId
from flask import current_app, jsonify
from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge


class ValidationError(Exception):
    """Raised when a payload fails schema validation."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or [message]


_INDEX_FIELD_PATTERN = re.compile(r"index:\s+(\w+?)(?:_-?1|_unique_index|\s)")


def duplicate_key_field(exc: DuplicateKeyError) -> str:
    details = getattr(exc, "details", None) or {}
    key_pattern = details.get("keyPattern") if isinstance(details, dict) else None
    if isinstance(key_pattern, dict) and key_pattern:
        return next(iter(key_pattern))
    match = _INDEX_FIELD_PATTERN.search(str(exc))
    return match.group(1) if match else "unknown"


def error_body(message: str, **extra) -> Dict[str, object]:
    return {"success": False, "message": message, **extra}


def register_error_handlers(app):
    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        return jsonify(error_body(exc.message, errors=exc.errors)), 400

    @app.errorhandler(DuplicateKeyError)
    def handle_duplicate_key(exc: DuplicateKeyError):
        field = duplicate_key_field(exc)
        app.logger.warning("Duplicate key on %s: %s", field, exc)
        return jsonify(error_body("Duplicate key error", field=field)), 400

    @app.errorhandler(InvalidId)
    def handle_invalid_id(exc: InvalidId):
        return jsonify(error_body("Invalid ID format")), 400

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(exc: RequestEntityTooLarge):
        return jsonify(error_body("Uploaded file is too large.")), 413

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        return jsonify(error_body(exc.description or exc.name)), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        current_app.logger.exception("Unhandled error: %s", exc)
        body = error_body("Internal Server Error")
        if current_app.config.get("APP_ENV") != "production":
            body["error"] = str(exc)
        return jsonify(body), 500
