from flask import Blueprint, g, jsonify

from ..extensions import get_db
from ..models import parse_object_id, serialize, serialize_product, utcnow
from ..security import login_required

favorites_bp = Blueprint("favorites", __name__)


def ensure_favorites(user_id):
    """Return the user's favorites document, creating an empty one on first use."""
    db = get_db()
    now = utcnow()
    db.favorites.update_one(
        {"user": user_id},
        {"$setOnInsert": {"user": user_id, "products": [], "createdAt": now, "updatedAt": now}},
        upsert=True,
    )
    return db.favorites.find_one({"user": user_id})


def resolve_favorite_product(product_id: str):
    object_id = parse_object_id(product_id)
    if object_id is None:
        return None, (jsonify({"success": False, "message": "Invalid product ID"}), 400)
    if not get_db().products.find_one({"_id": object_id}, {"_id": 1}):
        return None, (jsonify({"success": False, "message": "Product not found"}), 404)
    return object_id, None


@favorites_bp.route("/", methods=["GET"])
@login_required
def list_favorites():
    favorites = ensure_favorites(g.current_user["_id"])
    product_ids = favorites.get("products") or []
    products = {
        product["_id"]: product
        for product in get_db().products.find({"_id": {"$in": product_ids}})
    }
    return jsonify(
        {
            "success": True,
            "products": [
                serialize_product(products[product_id])
                for product_id in product_ids
                if product_id in products
            ],
        }
    )


@favorites_bp.route("/<product_id>", methods=["POST"])
@login_required
def add_favorite(product_id: str):
    object_id, load_error = resolve_favorite_product(product_id)
    if load_error:
        return load_error

    user_id = g.current_user["_id"]
    ensure_favorites(user_id)
    get_db().favorites.update_one(
        {"user": user_id},
        {"$addToSet": {"products": object_id}, "$set": {"updatedAt": utcnow()}},
    )
    favorites = get_db().favorites.find_one({"user": user_id})
    return jsonify(
        {
            "success": True,
            "message": "Product added to favorites",
            "favorites": serialize(favorites.get("products") or []),
        }
    )


@favorites_bp.route("/<product_id>", methods=["DELETE"])
@login_required
def remove_favorite(product_id: str):
    object_id = parse_object_id(product_id)
    if object_id is None:
        return jsonify({"success": False, "message": "Invalid product ID"}), 400

    user_id = g.current_user["_id"]
    ensure_favorites(user_id)
    get_db().favorites.update_one(
        {"user": user_id},
        {"$pull": {"products": object_id}, "$set": {"updatedAt": utcnow()}},
    )
    favorites = get_db().favorites.find_one({"user": user_id})
    return jsonify(
        {
            "success": True,
            "message": "Product removed from favorites",
            "favorites": serialize(favorites.get("products") or []),
        }
    )


@favorites_bp.route("/<product_id>", methods=["GET"])
@login_required
def check_favorite(product_id: str):
    object_id = parse_object_id(product_id)
    if object_id is None:
        return jsonify({"success": False, "message": "Invalid product ID"}), 400

    favorite = get_db().favorites.find_one(
        {"user": g.current_user["_id"], "products": object_id}, {"_id": 1}
    )
    return jsonify({"success": True, "isFavorite": favorite is not None})
