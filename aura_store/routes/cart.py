from bson import ObjectId
from flask import Blueprint, g, jsonify, request

from ..errors import ValidationError
from ..extensions import get_db
from ..models import parse_object_id, safe_float, safe_positive_int, serialize, utcnow
from ..security import login_required

cart_bp = Blueprint("cart", __name__)


def ensure_cart(user_id):
    db = get_db()
    now = utcnow()
    db.carts.update_one(
        {"user": user_id},
        {"$setOnInsert": {"user": user_id, "items": [], "createdAt": now, "updatedAt": now}},
        upsert=True,
    )
    return db.carts.find_one({"user": user_id})


def save_cart_items(user_id, items):
    get_db().carts.update_one(
        {"user": user_id}, {"$set": {"items": items, "updatedAt": utcnow()}}
    )


def parse_quantity(value, default=1):
    if value is None:
        return default
    quantity = safe_positive_int(value, -1)
    if quantity < 0:
        raise ValidationError("Quantity must be a whole number")
    return quantity


def check_stock(product, quantity):
    available = int(product.get("stockQuantity", 0) or 0)
    if quantity > available:
        raise ValidationError(f"Only {available} items in stock")


def cart_response(user_id, status: int = 200):
    """Serialize the cart with current product details and a subtotal."""
    cart = ensure_cart(user_id)
    items = cart.get("items") or []
    product_ids = [item["product"] for item in items]
    products = {
        product["_id"]: product
        for product in get_db().products.find(
            {"_id": {"$in": product_ids}},
            {"name": 1, "price": 1, "thumbnailUrl": 1, "stockQuantity": 1, "discount": 1},
        )
    }

    lines = []
    subtotal = 0.0
    for item in items:
        product = products.get(item["product"])
        if not product:
            continue
        price = safe_float(product.get("price"), 0.0)
        subtotal += price * item["quantity"]
        lines.append({**serialize(item), "productDetails": serialize(product)})

    return (
        jsonify(
            {
                "success": True,
                "cart": {
                    "_id": str(cart["_id"]),
                    "items": lines,
                    "totalItems": sum(line["quantity"] for line in lines),
                    "subtotal": round(subtotal, 2),
                },
            }
        ),
        status,
    )


def find_item_index(items, item_id: str):
    return next(
        (position for position, item in enumerate(items) if str(item.get("_id")) == item_id),
        None,
    )


@cart_bp.route("/", methods=["GET"])
@login_required
def get_cart():
    return cart_response(g.current_user["_id"])


@cart_bp.route("/items", methods=["POST"])
@login_required
def add_item():
    db = get_db()
    user_id = g.current_user["_id"]
    payload = request.get_json(silent=True) or {}

    product_id = parse_object_id(payload.get("productId") or payload.get("product"))
    if product_id is None:
        return jsonify({"success": False, "message": "Invalid product ID"}), 400
    product = db.products.find_one({"_id": product_id}, {"stockQuantity": 1})
    if not product:
        return jsonify({"success": False, "message": "Product not found"}), 404

    quantity = parse_quantity(payload.get("quantity"))
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    size = payload.get("size") or None
    color = payload.get("color") or None
    items = [dict(item) for item in ensure_cart(user_id).get("items") or []]
    existing = next(
        (
            item
            for item in items
            if item["product"] == product_id
            and item.get("size") == size
            and item.get("color") == color
        ),
        None,
    )
    if existing:
        check_stock(product, existing["quantity"] + quantity)
        existing["quantity"] += quantity
    else:
        check_stock(product, quantity)
        items.append(
            {
                "_id": ObjectId(),
                "product": product_id,
                "quantity": quantity,
                "size": size,
                "color": color,
            }
        )

    save_cart_items(user_id, items)
    return cart_response(user_id, 201)


@cart_bp.route("/items/<item_id>", methods=["PATCH"])
@login_required
def update_item(item_id: str):
    user_id = g.current_user["_id"]
    payload = request.get_json(silent=True) or {}
    items = [dict(item) for item in ensure_cart(user_id).get("items") or []]

    index = find_item_index(items, item_id)
    if index is None:
        return jsonify({"success": False, "message": "Cart item not found"}), 404

    quantity = parse_quantity(payload.get("quantity"), None)
    if quantity is None:
        raise ValidationError("Quantity is required")

    if quantity == 0:
        items.pop(index)
    else:
        product = get_db().products.find_one({"_id": items[index]["product"]}, {"stockQuantity": 1})
        if not product:
            return jsonify({"success": False, "message": "Product not found"}), 404
        check_stock(product, quantity)
        items[index]["quantity"] = quantity

    save_cart_items(user_id, items)
    return cart_response(user_id)


@cart_bp.route("/items/<item_id>", methods=["DELETE"])
@login_required
def remove_item(item_id: str):
    user_id = g.current_user["_id"]
    items = [dict(item) for item in ensure_cart(user_id).get("items") or []]

    index = find_item_index(items, item_id)
    if index is None:
        return jsonify({"success": False, "message": "Cart item not found"}), 404

    items.pop(index)
    save_cart_items(user_id, items)
    return cart_response(user_id)


@cart_bp.route("/", methods=["DELETE"])
@login_required
def clear_cart():
    user_id = g.current_user["_id"]
    ensure_cart(user_id)
    save_cart_items(user_id, [])
    return cart_response(user_id)
