import os
import secrets
import time
from typing import Optional, Tuple

from flask import current_app
from werkzeug.security import safe_join
from werkzeug.utils import secure_filename

PUBLIC_UPLOAD_PREFIX = "/uploads/"
UPLOAD_SUBDIRECTORIES = {
    "model": "models",
    "thumbnail": "thumbnails",
    "profileImage": "profiles",
}
MODEL_EXTENSIONS = {".glb"}
GENERIC_FILE_TYPES = ("jpeg", "jpg", "png", "gif", "glb", "gltf")
MODEL_MIMETYPE = "model/gltf-binary"


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower()


def validate_upload(field_name: str, file_storage) -> Optional[str]:
    """Return a message naming the violated constraint, or ``None``."""
    if not file_storage or not getattr(file_storage, "filename", ""):
        return "No file uploaded"

    extension = file_extension(file_storage.filename)
    mimetype = (file_storage.mimetype or "").lower()

    if field_name == "model":
        if extension not in MODEL_EXTENSIONS:
            return "Only .glb files are allowed for 3D models"
        return None

    if field_name in ("thumbnail", "profileImage"):
        if not mimetype.startswith("image/"):
            return "Only image files are allowed for thumbnails"
        return None

    extension_ok = extension.lstrip(".") in GENERIC_FILE_TYPES
    mimetype_ok = any(file_type in mimetype for file_type in GENERIC_FILE_TYPES)
    if not (extension_ok and mimetype_ok):
        return "Invalid file type. Allowed types: " + ", ".join(GENERIC_FILE_TYPES)
    return None


def build_upload_filename(field_name: str, original_filename: str) -> str:
    extension = file_extension(secure_filename(original_filename) or original_filename)
    unique_suffix = f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}"
    return f"{field_name}-{unique_suffix}{extension}"


def save_upload(file_storage, field_name: str) -> Tuple[Optional[str], Optional[str]]:
    """Validate and store an uploaded file.

    Returns ``(public_path, None)`` or ``(None, error_message)``.
    """
    validation_error = validate_upload(field_name, file_storage)
    if validation_error:
        return None, validation_error

    subdirectory = UPLOAD_SUBDIRECTORIES.get(field_name, "")
    directory = os.path.join(current_app.config["UPLOAD_FOLDER"], subdirectory)
    os.makedirs(directory, exist_ok=True)

    filename = build_upload_filename(field_name, file_storage.filename)
    try:
        file_storage.save(os.path.join(directory, filename))
    except OSError as exc:
        current_app.logger.error("Unable to store upload %s: %s", filename, exc)
        return None, "We could not store the uploaded file. Please try again."

    relative_path = f"{subdirectory}/{filename}" if subdirectory else filename
    return f"{PUBLIC_UPLOAD_PREFIX}{relative_path}", None


def resolve_upload_path(public_path: Optional[str]) -> Optional[str]:
    if not public_path or not str(public_path).startswith(PUBLIC_UPLOAD_PREFIX):
        return None
    relative_path = str(public_path)[len(PUBLIC_UPLOAD_PREFIX):]
    return safe_join(current_app.config["UPLOAD_FOLDER"], relative_path)


def remove_upload(public_path: Optional[str]) -> bool:
    target = resolve_upload_path(public_path)
    if not target:
        return False
    try:
        os.remove(target)
    except FileNotFoundError:
        return False
    except OSError as exc:
        current_app.logger.warning("Unable to delete upload %s: %s", target, exc)
        return False
    return True
