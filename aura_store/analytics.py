"""Aggregation pipelines behind the admin dashboard charts."""
from datetime import timedelta
from typing import Dict, List

from .models import ORDER_STATUSES, serialize, utcnow

# Estimated profit is a fixed share of revenue, not a cost model.
PROFIT_MARGIN = 0.3
LOW_STOCK_THRESHOLD = 10
TOP_SELLING_LIMIT = 5
LOW_STOCK_LIMIT = 5
SALES_REPORT_LIMIT = 20

REVENUE_PERIODS = {
    "daily": ("%Y-%m-%d", 30),
    "weekly": ("%Y-W%V", 12),
    "monthly": ("%Y-%m", 12),
    "yearly": ("%Y", 5),
}

REVENUE_ORDER_MATCH = {"status": {"$ne": "cancelled"}, "paymentStatus": "paid"}
ACTIVE_ORDER_MATCH = {"status": {"$ne": "cancelled"}}


def _line_revenue():
    return {"$multiply": ["$items.price", "$items.quantity"]}


def revenue_series(db, period: str = "monthly") -> List[Dict]:
    date_format, bucket_limit = REVENUE_PERIODS.get(period, REVENUE_PERIODS["monthly"])
    pipeline = [
        {"$match": REVENUE_ORDER_MATCH},
        {
            "$group": {
                "_id": {"$dateToString": {"format": date_format, "date": "$createdAt"}},
                "revenue": {"$sum": "$totalAmount"},
                "orders": {"$sum": 1},
            }
        },
        {"$sort": {"_id": -1}},
        {"$limit": bucket_limit},
        {"$sort": {"_id": 1}},
        {
            "$project": {
                "_id": 0,
                "name": "$_id",
                "orders": 1,
                "revenue": 1,
                "profit": {"$multiply": ["$revenue", PROFIT_MARGIN]},
            }
        },
    ]
    return [
        {
            "name": row.get("name"),
            "orders": row.get("orders", 0),
            "revenue": round(row.get("revenue", 0), 2),
            "profit": round(row.get("profit", 0), 2),
        }
        for row in db.orders.aggregate(pipeline)
    ]


def _product_sales_stages(match: Dict) -> List[Dict]:
    return [
        {"$match": match},
        {"$unwind": "$items"},
        {
            "$group": {
                "_id": "$items.product",
                "salesCount": {"$sum": "$items.quantity"},
                "revenue": {"$sum": _line_revenue()},
            }
        },
    ]


def _join_products() -> List[Dict]:
    return [
        {
            "$lookup": {
                "from": "products",
                "localField": "_id",
                "foreignField": "_id",
                "as": "productInfo",
            }
        },
        {"$unwind": "$productInfo"},
    ]


def category_sales(db) -> List[Dict]:
    pipeline = (
        _product_sales_stages(REVENUE_ORDER_MATCH)
        + _join_products()
        + [
            {
                "$group": {
                    "_id": "$productInfo.category",
                    "revenue": {"$sum": "$revenue"},
                    "sales": {"$sum": "$salesCount"},
                }
            },
            {"$sort": {"revenue": -1}},
        ]
    )
    return [
        {
            "category": row["_id"],
            "revenue": round(row.get("revenue", 0), 2),
            "sales": row.get("sales", 0),
        }
        for row in db.orders.aggregate(pipeline)
    ]


def top_selling_products(db, limit: int = TOP_SELLING_LIMIT) -> List[Dict]:
    pipeline = (
        _product_sales_stages(ACTIVE_ORDER_MATCH)
        + [{"$sort": {"salesCount": -1}}, {"$limit": limit}]
        + _join_products()
        + [
            {
                "$project": {
                    "_id": 1,
                    "name": "$productInfo.name",
                    "price": "$productInfo.price",
                    "thumbnailUrl": "$productInfo.thumbnailUrl",
                    "salesCount": 1,
                    "revenue": 1,
                }
            }
        ]
    )
    return serialize(list(db.orders.aggregate(pipeline)))


def sales_by_product(db, limit: int = SALES_REPORT_LIMIT) -> List[Dict]:
    pipeline = (
        _product_sales_stages(ACTIVE_ORDER_MATCH)
        + _join_products()
        + [{"$sort": {"salesCount": -1}}, {"$limit": limit}]
    )
    return [
        {
            "id": str(row["_id"]),
            "name": row["productInfo"].get("name", ""),
            "category": row["productInfo"].get("category", ""),
            "sales": row.get("salesCount", 0),
            "revenue": round(row.get("revenue", 0), 2),
        }
        for row in db.orders.aggregate(pipeline)
    ]


def low_stock_products(
    db, threshold: int = LOW_STOCK_THRESHOLD, limit: int = LOW_STOCK_LIMIT
) -> List[Dict]:
    cursor = (
        db.products.find(
            {"stockQuantity": {"$lt": threshold}},
            {"name": 1, "stockQuantity": 1, "thumbnailUrl": 1, "price": 1},
        )
        .sort("stockQuantity", 1)
        .limit(limit)
    )
    return serialize(list(cursor))


def total_revenue(db) -> float:
    result = list(
        db.orders.aggregate(
            [
                {"$match": REVENUE_ORDER_MATCH},
                {"$group": {"_id": None, "total": {"$sum": "$totalAmount"}}},
            ]
        )
    )
    return round(result[0]["total"], 2) if result else 0


def orders_by_status(db) -> Dict[str, int]:
    counts = {status: 0 for status in ORDER_STATUSES}
    for row in db.orders.aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}]):
        counts[str(row["_id"])] = row["count"]
    return counts


def order_stats(db) -> Dict:
    since = utcnow() - timedelta(days=30)
    orders_by_date = db.orders.aggregate(
        [
            {"$match": {**REVENUE_ORDER_MATCH, "createdAt": {"$gte": since}}},
            {
                "$group": {
                    "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$createdAt"}},
                    "count": {"$sum": 1},
                    "revenue": {"$sum": "$totalAmount"},
                }
            },
            {"$sort": {"_id": 1}},
        ]
    )
    recent_orders = db.orders.find().sort("createdAt", -1).limit(5)
    return {
        "totalOrders": db.orders.count_documents({}),
        "ordersByStatus": orders_by_status(db),
        "totalRevenue": total_revenue(db),
        "recentOrders": serialize(list(recent_orders)),
        "ordersByDate": serialize(list(orders_by_date)),
    }


def product_stats(db) -> Dict:
    by_category = db.products.aggregate(
        [
            {"$group": {"_id": "$category", "count": {"$sum": 1}}},
            {"$sort": {"count": -1}},
        ]
    )
    return {
        "totalProducts": db.products.count_documents({}),
        "productsByCategory": [
            {"category": row["_id"], "count": row["count"]} for row in by_category
        ],
    }


def user_stats(db) -> Dict:
    since = utcnow() - timedelta(days=30)
    return {
        "totalUsers": db.users.count_documents({}),
        "newUsers": db.users.count_documents({"createdAt": {"$gte": since}}),
        "verifiedUsers": db.users.count_documents({"isVerified": True}),
    }


def dashboard_stats(db) -> Dict:
    return {
        "totalOrders": db.orders.count_documents({}),
        "totalRevenue": total_revenue(db),
        "totalProfit": round(total_revenue(db) * PROFIT_MARGIN, 2),
        "totalProducts": db.products.count_documents({}),
        "totalUsers": db.users.count_documents({}),
        "ordersByStatus": orders_by_status(db),
        "lowStockCount": db.products.count_documents(
            {"stockQuantity": {"$lt": LOW_STOCK_THRESHOLD}}
        ),
    }
