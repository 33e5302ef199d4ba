import math
import re

from flask import Blueprint, current_app, jsonify, request

from .. import analytics
from ..extensions import get_db
from ..models import (
    ORDER_STATUSES,
    build_product_document,
    build_product_fields,
    parse_object_id,
    safe_positive_int,
    serialize_order,
    serialize_product,
    serialize_user,
    utcnow,
)
from ..security import admin_required
from ..uploads import remove_upload
from .orders import apply_status_update, fetch_order, load_order_customers
from .products import fetch_product
from .users import admin_user_updates, delete_user_account, fetch_user, save_user_fields

admin_bp = Blueprint("admin", __name__)

DEFAULT_ORDER_PAGE_SIZE = 10
ORDER_SORT_FIELDS = ("createdAt", "updatedAt", "totalAmount", "status", "paymentStatus")


def build_order_filter(args):
    query = {}
    status = str(args.get("status") or "").strip().lower()
    if status and status != "all":
        if status not in ORDER_STATUSES:
            return None
        query["status"] = status

    search = str(args.get("search") or "").strip()
    if search:
        matches = []
        order_id = parse_object_id(search)
        if order_id is not None:
            matches.append({"_id": order_id})
        customers = get_db().users.find(
            {"name": {"$regex": re.escape(search), "$options": "i"}}, {"_id": 1}
        )
        customer_ids = [customer["_id"] for customer in customers]
        if customer_ids:
            matches.append({"user": {"$in": customer_ids}})
        query["$or"] = matches or [{"_id": None}]
    return query


# --- Orders ---


@admin_bp.route("/orders", methods=["GET"])
@admin_required
def list_orders():
    db = get_db()
    query = build_order_filter(request.args)
    if query is None:
        return (
            jsonify(
                {
                    "success": False,
                    "message": f"Status must be one of: {', '.join(ORDER_STATUSES)}",
                }
            ),
            400,
        )

    page = safe_positive_int(request.args.get("page"), 0) or 1
    limit = safe_positive_int(request.args.get("limit"), 0) or DEFAULT_ORDER_PAGE_SIZE
    sort_by = request.args.get("sortBy", "createdAt")
    if sort_by not in ORDER_SORT_FIELDS:
        sort_by = "createdAt"
    sort_direction = 1 if request.args.get("sortOrder") == "asc" else -1

    total_orders = db.orders.count_documents(query)
    order_docs = list(
        db.orders.find(query)
        .sort(sort_by, sort_direction)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    customers = load_order_customers(order_docs)

    return jsonify(
        {
            "success": True,
            "orders": [
                serialize_order(document, customers.get(document.get("user")))
                for document in order_docs
            ],
            "totalPages": math.ceil(total_orders / limit) if total_orders else 0,
            "currentPage": page,
            "totalOrders": total_orders,
        }
    )


@admin_bp.route("/orders/stats", methods=["GET"])
@admin_required
def order_stats():
    return jsonify({"success": True, **analytics.order_stats(get_db())})


@admin_bp.route("/orders/<order_id>", methods=["GET"])
@admin_required
def get_order(order_id: str):
    order_document, load_error = fetch_order(order_id)
    if load_error:
        return load_error

    customers = load_order_customers([order_document])
    return jsonify(
        {
            "success": True,
            "order": serialize_order(
                order_document, customers.get(order_document.get("user"))
            ),
        }
    )


@admin_bp.route("/orders/<order_id>/status", methods=["PATCH", "PUT"])
@admin_required
def update_order_status(order_id: str):
    db = get_db()
    order_document, load_error = fetch_order(order_id)
    if load_error:
        return load_error

    updates = apply_status_update(order_document, request.get_json(silent=True) or {})
    db.orders.update_one({"_id": order_document["_id"]}, {"$set": updates})
    current_app.logger.info("Admin updated order %s: %s", order_document["_id"], updates)

    updated_order = db.orders.find_one({"_id": order_document["_id"]})
    return jsonify({"success": True, "order": serialize_order(updated_order)})


# --- Products ---


@admin_bp.route("/products", methods=["GET"])
@admin_required
def list_products():
    product_docs = get_db().products.find().sort("createdAt", -1)
    return jsonify(
        {"success": True, "products": [serialize_product(document) for document in product_docs]}
    )


@admin_bp.route("/products", methods=["POST"])
@admin_required
def create_product():
    db = get_db()
    document = build_product_document(request.get_json(silent=True) or {})
    result = db.products.insert_one(document)
    created_product = db.products.find_one({"_id": result.inserted_id})
    current_app.logger.info("Admin created product %s", result.inserted_id)
    return jsonify({"success": True, "product": serialize_product(created_product)}), 201


@admin_bp.route("/products/stats", methods=["GET"])
@admin_required
def product_stats():
    return jsonify({"success": True, **analytics.product_stats(get_db())})


@admin_bp.route("/products/top-selling", methods=["GET"])
@admin_bp.route("/top-selling", methods=["GET"])
@admin_required
def top_selling_products():
    return jsonify({"success": True, "products": analytics.top_selling_products(get_db())})


@admin_bp.route("/products/low-stock", methods=["GET"])
@admin_bp.route("/low-stock", methods=["GET"])
@admin_required
def low_stock_products():
    return jsonify({"success": True, "products": analytics.low_stock_products(get_db())})


@admin_bp.route("/products/<product_id>", methods=["PUT"])
@admin_required
def update_product(product_id: str):
    db = get_db()
    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error

    updates = build_product_fields(request.get_json(silent=True) or {}, partial=True)
    updates["updatedAt"] = utcnow()
    db.products.update_one({"_id": product_document["_id"]}, {"$set": updates})
    updated_product = db.products.find_one({"_id": product_document["_id"]})
    return jsonify({"success": True, "product": serialize_product(updated_product)})


@admin_bp.route("/products/<product_id>", methods=["DELETE"])
@admin_required
def delete_product(product_id: str):
    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error

    remove_upload(product_document.get("modelUrl"))
    remove_upload(product_document.get("thumbnailUrl"))
    get_db().products.delete_one({"_id": product_document["_id"]})
    current_app.logger.info("Admin deleted product %s", product_document["_id"])
    return jsonify({"success": True, "message": "Product deleted successfully"})


# --- Users ---


@admin_bp.route("/users", methods=["GET"])
@admin_required
def list_users():
    user_docs = get_db().users.find({}, {"password": 0}).sort("createdAt", -1)
    return jsonify({"success": True, "users": [serialize_user(user) for user in user_docs]})


@admin_bp.route("/users/stats", methods=["GET"])
@admin_required
def user_stats():
    return jsonify({"success": True, **analytics.user_stats(get_db())})


@admin_bp.route("/users/<user_id>", methods=["PUT"])
@admin_required
def update_user(user_id: str):
    user_document, load_error = fetch_user(user_id)
    if load_error:
        return load_error

    updates = admin_user_updates(request.get_json(silent=True) or {})
    updated_user = save_user_fields(user_document["_id"], updates)
    return jsonify({"success": True, "user": serialize_user(updated_user)})


@admin_bp.route("/users/<user_id>", methods=["DELETE"])
@admin_required
def delete_user(user_id: str):
    user_document, load_error = fetch_user(user_id)
    if load_error:
        return load_error

    delete_user_account(user_document)
    return jsonify({"success": True, "message": "User deleted successfully"})


# --- Dashboard and reports ---


@admin_bp.route("/stats", methods=["GET"])
@admin_required
def dashboard_stats():
    return jsonify({"success": True, "stats": analytics.dashboard_stats(get_db())})


@admin_bp.route("/reports/revenue", methods=["GET"])
@admin_required
def revenue_report():
    period = str(request.args.get("period") or "monthly").strip().lower()
    if period not in analytics.REVENUE_PERIODS:
        return (
            jsonify(
                {
                    "success": False,
                    "message": "Period must be one of: "
                    + ", ".join(analytics.REVENUE_PERIODS),
                }
            ),
            400,
        )

    db = get_db()
    return jsonify(
        {
            "success": True,
            "period": period,
            "revenueData": analytics.revenue_series(db, period),
            "salesData": analytics.category_sales(db),
        }
    )


@admin_bp.route("/reports/sales", methods=["GET"])
@admin_required
def sales_report():
    return jsonify({"success": True, "salesByProduct": analytics.sales_by_product(get_db())})
