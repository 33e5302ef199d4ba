from bson import ObjectId
from flask import Blueprint, current_app, g, jsonify, request

from ..extensions import get_db
from ..models import parse_object_id, serialize_review, utcnow, validate_review_fields
from ..ratings import refresh_product_rating
from ..security import admin_required, is_owner_or_admin, login_required

reviews_bp = Blueprint("reviews", __name__)


def fetch_review(review_id: str):
    object_id = parse_object_id(review_id)
    if object_id is None:
        return None, (jsonify({"success": False, "message": "Invalid review ID"}), 400)

    review_document = get_db().reviews.find_one({"_id": object_id})
    if not review_document:
        return None, (jsonify({"success": False, "message": "Review not found"}), 404)

    return review_document, None


def build_author_map(review_docs):
    user_ids = list({document.get("user") for document in review_docs})
    authors = get_db().users.find(
        {"_id": {"$in": user_ids}}, {"name": 1, "profileImage": 1}
    )
    return {
        str(author["_id"]): {
            "_id": str(author["_id"]),
            "name": author.get("name", ""),
            "profileImage": author.get("profileImage", ""),
        }
        for author in authors
    }


def serialize_reviews(review_docs):
    review_docs = list(review_docs)
    authors = build_author_map(review_docs)
    return [serialize_review(document, authors) for document in review_docs]


def has_purchased(user_id, product_id) -> bool:
    purchase = get_db().orders.find_one(
        {"user": user_id, "items.product": product_id, "status": {"$ne": "cancelled"}},
        {"_id": 1},
    )
    return purchase is not None


def like_response(review_id):
    review_document = get_db().reviews.find_one({"_id": review_id}, {"likes": 1})
    likes = review_document.get("likes") or []
    return jsonify(
        {
            "success": True,
            "likes": len(likes),
            "liked": g.current_user["_id"] in likes,
        }
    )


@reviews_bp.route("/product/<product_id>", methods=["GET"])
def product_reviews(product_id: str):
    object_id = parse_object_id(product_id)
    if object_id is None:
        return jsonify({"success": False, "message": "Invalid product ID"}), 400

    review_docs = get_db().reviews.find({"product": object_id}).sort("createdAt", -1)
    return jsonify({"success": True, "reviews": serialize_reviews(review_docs)})


@reviews_bp.route("/my-reviews", methods=["GET"])
@login_required
def my_reviews():
    review_docs = get_db().reviews.find({"user": g.current_user["_id"]}).sort("createdAt", -1)
    return jsonify({"success": True, "reviews": serialize_reviews(review_docs)})


@reviews_bp.route("/", methods=["POST"])
@login_required
def create_review():
    db = get_db()
    user = g.current_user
    payload = request.get_json(silent=True) or {}

    product_id = parse_object_id(payload.get("productId") or payload.get("product"))
    if product_id is None:
        return jsonify({"success": False, "message": "Invalid product ID"}), 400
    if not db.products.find_one({"_id": product_id}, {"_id": 1}):
        return jsonify({"success": False, "message": "Product not found"}), 404

    if db.reviews.find_one({"user": user["_id"], "product": product_id}, {"_id": 1}):
        return (
            jsonify({"success": False, "message": "You have already reviewed this product"}),
            400,
        )

    fields = validate_review_fields(payload)
    now = utcnow()
    review_document = {
        "user": user["_id"],
        "product": product_id,
        "images": [],
        **fields,
        "verified": has_purchased(user["_id"], product_id),
        "likes": [],
        "replies": [],
        "createdAt": now,
        "updatedAt": now,
    }
    result = db.reviews.insert_one(review_document)
    review_document["_id"] = result.inserted_id
    refresh_product_rating(db, product_id)

    return (
        jsonify({"success": True, "review": serialize_reviews([review_document])[0]}),
        201,
    )


@reviews_bp.route("/<review_id>", methods=["PATCH"])
@login_required
def update_review(review_id: str):
    db = get_db()
    review_document, load_error = fetch_review(review_id)
    if load_error:
        return load_error

    if str(review_document.get("user")) != str(g.current_user["_id"]):
        return jsonify({"success": False, "message": "Not authorized"}), 403

    updates = validate_review_fields(request.get_json(silent=True) or {}, partial=True)
    updates["updatedAt"] = utcnow()
    db.reviews.update_one({"_id": review_document["_id"]}, {"$set": updates})
    refresh_product_rating(db, review_document["product"])

    updated_review = db.reviews.find_one({"_id": review_document["_id"]})
    return jsonify({"success": True, "review": serialize_reviews([updated_review])[0]})


@reviews_bp.route("/<review_id>", methods=["DELETE"])
@login_required
def delete_review(review_id: str):
    db = get_db()
    review_document, load_error = fetch_review(review_id)
    if load_error:
        return load_error

    if not is_owner_or_admin(review_document.get("user"), g.current_user):
        return jsonify({"success": False, "message": "Not authorized"}), 403

    db.reviews.delete_one({"_id": review_document["_id"]})
    refresh_product_rating(db, review_document["product"])
    current_app.logger.info(
        "Review %s deleted by %s", review_document["_id"], g.current_user["_id"]
    )
    return jsonify({"success": True, "message": "Review deleted successfully"})


@reviews_bp.route("/<review_id>/like", methods=["POST"])
@login_required
def toggle_like(review_id: str):
    review_document, load_error = fetch_review(review_id)
    if load_error:
        return load_error

    user_id = g.current_user["_id"]
    if user_id in (review_document.get("likes") or []):
        update = {"$pull": {"likes": user_id}}
    else:
        update = {"$addToSet": {"likes": user_id}}
    get_db().reviews.update_one({"_id": review_document["_id"]}, update)
    return like_response(review_document["_id"])


@reviews_bp.route("/<review_id>/like", methods=["DELETE"])
@login_required
def remove_like(review_id: str):
    review_document, load_error = fetch_review(review_id)
    if load_error:
        return load_error

    get_db().reviews.update_one(
        {"_id": review_document["_id"]}, {"$pull": {"likes": g.current_user["_id"]}}
    )
    return like_response(review_document["_id"])


@reviews_bp.route("/<review_id>/reply", methods=["POST"])
@admin_required
def add_reply(review_id: str):
    db = get_db()
    review_document, load_error = fetch_review(review_id)
    if load_error:
        return load_error

    payload = request.get_json(silent=True) or {}
    comment = str(payload.get("comment") or "").strip()
    if not comment:
        return jsonify({"success": False, "message": "Reply comment is required"}), 400

    reply = {
        "_id": ObjectId(),
        "user": g.current_user["_id"],
        "comment": comment,
        "createdAt": utcnow(),
    }
    db.reviews.update_one(
        {"_id": review_document["_id"]},
        {"$push": {"replies": reply}, "$set": {"updatedAt": utcnow()}},
    )
    updated_review = db.reviews.find_one({"_id": review_document["_id"]})
    return jsonify({"success": True, "review": serialize_reviews([updated_review])[0]}), 201


@reviews_bp.route("/<review_id>/reply/<reply_id>", methods=["DELETE"])
@admin_required
def delete_reply(review_id: str, reply_id: str):
    db = get_db()
    review_document, load_error = fetch_review(review_id)
    if load_error:
        return load_error

    reply_object_id = parse_object_id(reply_id)
    replies = review_document.get("replies") or []
    if reply_object_id is None or not any(
        reply.get("_id") == reply_object_id for reply in replies
    ):
        return jsonify({"success": False, "message": "Reply not found"}), 404

    db.reviews.update_one(
        {"_id": review_document["_id"]},
        {"$pull": {"replies": {"_id": reply_object_id}}},
    )
    updated_review = db.reviews.find_one({"_id": review_document["_id"]})
    return jsonify({"success": True, "review": serialize_reviews([updated_review])[0]})
