from flask import Blueprint, jsonify, request
from werkzeug.utils import secure_filename

from ..security import login_required
from ..uploads import PUBLIC_UPLOAD_PREFIX, remove_upload, save_upload, validate_upload

upload_bp = Blueprint("upload", __name__)

MAX_FILES_PER_REQUEST = 5
TEMP_SUBDIRECTORY = "temp"


def describe_upload(public_path: str):
    return {"filename": public_path.rsplit("/", 1)[-1], "path": public_path}


@upload_bp.route("/single", methods=["POST"])
@login_required
def upload_single():
    file_storage = request.files.get("file")
    public_path, upload_error = save_upload(file_storage, "file")
    if upload_error:
        return jsonify({"success": False, "message": upload_error}), 400

    return jsonify(
        {
            "success": True,
            "message": "File uploaded successfully",
            "file": describe_upload(public_path),
        }
    )


@upload_bp.route("/multiple", methods=["POST"])
@login_required
def upload_multiple():
    files = [item for item in request.files.getlist("files") if item and item.filename]
    if not files:
        return jsonify({"success": False, "message": "No files uploaded"}), 400
    if len(files) > MAX_FILES_PER_REQUEST:
        return (
            jsonify(
                {
                    "success": False,
                    "message": f"You can upload at most {MAX_FILES_PER_REQUEST} files at once",
                }
            ),
            400,
        )

    for file_storage in files:
        validation_error = validate_upload("files", file_storage)
        if validation_error:
            return jsonify({"success": False, "message": validation_error}), 400

    saved = []
    for file_storage in files:
        public_path, upload_error = save_upload(file_storage, "files")
        if upload_error:
            for previous in saved:
                remove_upload(previous)
            return jsonify({"success": False, "message": upload_error}), 400
        saved.append(public_path)

    return jsonify(
        {
            "success": True,
            "message": "Files uploaded successfully",
            "files": [describe_upload(public_path) for public_path in saved],
        }
    )


@upload_bp.route("/temp/<filename>", methods=["DELETE"])
@login_required
def delete_temp_file(filename: str):
    safe_name = secure_filename(filename)
    public_path = f"{PUBLIC_UPLOAD_PREFIX}{TEMP_SUBDIRECTORY}/{safe_name}"
    if not safe_name or not remove_upload(public_path):
        return jsonify({"success": False, "message": "File not found"}), 404
    return jsonify({"success": True, "message": "File deleted successfully"})
