import math
import re

from flask import Blueprint, current_app, jsonify, request

from ..extensions import get_db
from ..models import (
    build_product_document,
    build_product_fields,
    parse_object_id,
    safe_positive_int,
    serialize_product,
    utcnow,
)
from ..security import admin_required
from ..uploads import remove_upload, save_upload, validate_upload

products_bp = Blueprint("products", __name__)

DEFAULT_PAGE_SIZE = 12
FEATURED_LIMIT = 6
SORT_OPTIONS = {
    "newest": [("createdAt", -1)],
    "price_low": [("price", 1)],
    "price_high": [("price", -1)],
    "popular": [("ratings.average", -1), ("ratings.count", -1)],
}
ASSET_FIELDS = (("model", "modelUrl"), ("thumbnail", "thumbnailUrl"))


def build_catalog_query(args):
    query = {}
    category = str(args.get("category") or "").strip()
    if category and category.lower() != "all":
        query["category"] = category

    search = str(args.get("search") or "").strip()
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"description": pattern}]
    return query


def fetch_product(product_id: str):
    object_id = parse_object_id(product_id)
    if object_id is None:
        return None, (jsonify({"success": False, "message": "Invalid product ID"}), 400)

    product_document = get_db().products.find_one({"_id": object_id})
    if not product_document:
        return None, (jsonify({"success": False, "message": "Product not found"}), 404)

    return product_document, None


def form_payload():
    payload = request.form.to_dict() if request.form else {}
    if not payload:
        payload = request.get_json(silent=True) or {}
    return payload


def single_upload(field_name: str):
    files = request.files.getlist(field_name)
    if len(files) > 1:
        return None, f"Only one {field_name} file is allowed"
    return (files[0] if files else None), None


@products_bp.route("/", methods=["GET"])
def list_products():
    db = get_db()
    query = build_catalog_query(request.args)
    page = safe_positive_int(request.args.get("page"), 0) or 1
    limit = safe_positive_int(request.args.get("limit"), 0) or DEFAULT_PAGE_SIZE
    sort = SORT_OPTIONS.get(str(request.args.get("sort") or "newest"), SORT_OPTIONS["newest"])

    total_products = db.products.count_documents(query)
    product_docs = list(
        db.products.find(query).sort(sort).skip((page - 1) * limit).limit(limit)
    )
    total_pages = math.ceil(total_products / limit) if total_products else 0

    return jsonify(
        {
            "success": True,
            "products": [serialize_product(document) for document in product_docs],
            "currentPage": page,
            "totalPages": total_pages,
            "totalProducts": total_products,
            "hasMore": page < total_pages,
        }
    )


@products_bp.route("/featured", methods=["GET"])
def featured_products():
    product_docs = list(
        get_db()
        .products.find()
        .sort([("ratings.average", -1), ("ratings.count", -1)])
        .limit(FEATURED_LIMIT)
    )
    return jsonify(
        {"success": True, "products": [serialize_product(document) for document in product_docs]}
    )


@products_bp.route("/<product_id>", methods=["GET"])
def get_product(product_id: str):
    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error
    return jsonify({"success": True, "product": serialize_product(product_document)})


@products_bp.route("/", methods=["POST"])
@admin_required
def create_product():
    db = get_db()
    payload = form_payload()

    uploads = {}
    for field_name, _ in ASSET_FIELDS:
        file_storage, count_error = single_upload(field_name)
        if count_error:
            return jsonify({"success": False, "message": count_error}), 400
        if not file_storage:
            return (
                jsonify(
                    {
                        "success": False,
                        "message": "Please upload both 3D model and thumbnail",
                    }
                ),
                400,
            )
        uploads[field_name] = file_storage

    document = build_product_document(payload)

    saved_paths = []
    for field_name, url_key in ASSET_FIELDS:
        public_path, upload_error = save_upload(uploads[field_name], field_name)
        if upload_error:
            for path in saved_paths:
                remove_upload(path)
            return jsonify({"success": False, "message": upload_error}), 400
        saved_paths.append(public_path)
        document[url_key] = public_path

    result = db.products.insert_one(document)
    created_product = db.products.find_one({"_id": result.inserted_id})
    current_app.logger.info("Created product %s (%s)", result.inserted_id, document["name"])

    return (
        jsonify(
            {
                "success": True,
                "message": "Product created successfully",
                "product": serialize_product(created_product),
            }
        ),
        201,
    )


@products_bp.route("/<product_id>", methods=["PUT"])
@admin_required
def update_product(product_id: str):
    db = get_db()
    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error

    updates = build_product_fields(form_payload(), partial=True)

    replacements = []
    for field_name, url_key in ASSET_FIELDS:
        file_storage, count_error = single_upload(field_name)
        if count_error:
            return jsonify({"success": False, "message": count_error}), 400
        if not file_storage:
            continue
        validation_error = validate_upload(field_name, file_storage)
        if validation_error:
            return jsonify({"success": False, "message": validation_error}), 400
        replacements.append((field_name, url_key, file_storage))

    saved_paths = []
    for field_name, url_key, file_storage in replacements:
        public_path, upload_error = save_upload(file_storage, field_name)
        if upload_error:
            for path in saved_paths:
                remove_upload(path)
            return jsonify({"success": False, "message": upload_error}), 400
        saved_paths.append(public_path)
        updates[url_key] = public_path

    updates["updatedAt"] = utcnow()
    db.products.update_one({"_id": product_document["_id"]}, {"$set": updates})
    for _, url_key, _ in replacements:
        remove_upload(product_document.get(url_key))
    updated_product = db.products.find_one({"_id": product_document["_id"]})

    return jsonify(
        {
            "success": True,
            "message": "Product updated successfully",
            "product": serialize_product(updated_product),
        }
    )


@products_bp.route("/<product_id>", methods=["DELETE"])
@admin_required
def delete_product(product_id: str):
    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error

    for _, url_key in ASSET_FIELDS:
        remove_upload(product_document.get(url_key))

    get_db().products.delete_one({"_id": product_document["_id"]})
    current_app.logger.info("Deleted product %s", product_document["_id"])
    return jsonify({"success": True, "message": "Product deleted successfully"})
