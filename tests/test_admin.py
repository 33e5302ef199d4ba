from datetime import datetime, timedelta

import pytest
from bson import ObjectId

from aura_store import analytics


@pytest.fixture
def make_order(db, user):
    def factory(lines, status="delivered", payment_status="paid", owner=None, age_days=0):
        items = [
            {
                "product": product["_id"],
                "name": product["name"],
                "price": price,
                "quantity": quantity,
            }
            for product, price, quantity in lines
        ]
        document = {
            "user": (owner or user)["_id"],
            "items": items,
            "totalAmount": sum(price * quantity for _, price, quantity in lines),
            "status": status,
            "paymentStatus": payment_status,
            "createdAt": datetime.utcnow() - timedelta(days=age_days),
        }
        document["_id"] = db.orders.insert_one(document).inserted_id
        return document

    return factory


@pytest.fixture
def catalog(make_product):
    return {
        "oil": make_product(name="Beard Oil", category="Beard Care", price=100, stockQuantity=3),
        "serum": make_product(name="Face Serum", category="Skincare", price=200, stockQuantity=50),
        "comb": make_product(name="Comb", category="Accessories", price=50, stockQuantity=8),
    }


def test_admin_routes_require_admin(client, user_headers):
    for path in ("/api/admin/stats", "/api/admin/orders", "/api/admin/top-selling"):
        assert client.get(path, headers=user_headers).status_code == 403
    assert client.get("/api/admin/stats").status_code == 401


def test_top_selling_excludes_cancelled_orders(client, catalog, make_order, admin_headers):
    make_order([(catalog["oil"], 100, 3)])
    make_order([(catalog["serum"], 200, 2)])
    make_order([(catalog["comb"], 50, 9)], status="cancelled")

    for path in ("/api/admin/top-selling", "/api/admin/products/top-selling"):
        products = client.get(path, headers=admin_headers).get_json()["products"]
        assert [product["name"] for product in products] == ["Beard Oil", "Face Serum"]
        assert products[0]["salesCount"] == 3
        assert products[0]["revenue"] == 300
        assert products[0]["_id"] == str(catalog["oil"]["_id"])


def test_low_stock_lists_products_under_threshold(client, catalog, admin_headers):
    for path in ("/api/admin/low-stock", "/api/admin/products/low-stock"):
        products = client.get(path, headers=admin_headers).get_json()["products"]
        assert [product["name"] for product in products] == ["Beard Oil", "Comb"]
        assert products[0]["stockQuantity"] == 3


def test_dashboard_stats(client, catalog, make_order, admin_headers):
    make_order([(catalog["oil"], 100, 2)])
    make_order([(catalog["serum"], 200, 1)], status="pending", payment_status="pending")
    make_order([(catalog["comb"], 50, 4)], status="cancelled")

    stats = client.get("/api/admin/stats", headers=admin_headers).get_json()["stats"]

    assert stats["totalOrders"] == 3
    assert stats["totalRevenue"] == 200
    assert stats["totalProfit"] == 60
    assert stats["totalProducts"] == 3
    assert stats["totalUsers"] == 2
    assert stats["lowStockCount"] == 2
    assert stats["ordersByStatus"]["delivered"] == 1
    assert stats["ordersByStatus"]["shipped"] == 0


def test_category_sales_counts_paid_orders_only(db, catalog, make_order):
    make_order([(catalog["oil"], 100, 2), (catalog["serum"], 200, 1)])
    make_order([(catalog["serum"], 200, 3)])
    make_order([(catalog["comb"], 50, 1)], payment_status="pending", status="pending")

    sales = analytics.category_sales(db)

    assert sales == [
        {"category": "Skincare", "revenue": 800, "sales": 4},
        {"category": "Beard Care", "revenue": 200, "sales": 2},
    ]


def test_sales_report(client, catalog, make_order, admin_headers):
    make_order([(catalog["comb"], 50, 5), (catalog["oil"], 100, 1)])

    response = client.get("/api/admin/reports/sales", headers=admin_headers)
    rows = response.get_json()["salesByProduct"]

    assert rows[0] == {
        "id": str(catalog["comb"]["_id"]),
        "name": "Comb",
        "category": "Accessories",
        "sales": 5,
        "revenue": 250,
    }
    assert rows[1]["name"] == "Beard Oil"


def test_revenue_report_rejects_unknown_period(client, admin_headers):
    response = client.get("/api/admin/reports/revenue?period=hourly", headers=admin_headers)
    assert response.status_code == 400


def test_admin_orders_paginate_filter_and_search(
    client, catalog, make_order, make_user, admin_headers
):
    priya = make_user(name="Priya Nair")
    for age in range(3):
        make_order([(catalog["oil"], 100, 1)], status="pending", age_days=age)
    priya_order = make_order([(catalog["serum"], 200, 1)], status="shipped", owner=priya)

    page = client.get("/api/admin/orders?page=1&limit=2", headers=admin_headers).get_json()
    assert page["totalOrders"] == 4
    assert page["totalPages"] == 2
    assert len(page["orders"]) == 2

    shipped = client.get("/api/admin/orders?status=shipped", headers=admin_headers).get_json()
    assert [order["_id"] for order in shipped["orders"]] == [str(priya_order["_id"])]
    assert shipped["orders"][0]["user"]["name"] == "Priya Nair"

    by_name = client.get("/api/admin/orders?search=priya", headers=admin_headers).get_json()
    assert by_name["totalOrders"] == 1

    by_id = client.get(
        f"/api/admin/orders?search={priya_order['_id']}", headers=admin_headers
    ).get_json()
    assert by_id["totalOrders"] == 1

    nothing = client.get("/api/admin/orders?search=zzz", headers=admin_headers).get_json()
    assert nothing["orders"] == []

    oldest_first = client.get(
        "/api/admin/orders?status=pending&sortOrder=asc", headers=admin_headers
    ).get_json()["orders"]
    assert oldest_first[0]["createdAt"] < oldest_first[-1]["createdAt"]

    invalid = client.get("/api/admin/orders?status=lost", headers=admin_headers)
    assert invalid.status_code == 400


def test_admin_order_detail_and_status(client, db, catalog, make_order, admin_headers):
    order = make_order([(catalog["oil"], 100, 1)], status="pending", payment_status="pending")

    detail = client.get(f"/api/admin/orders/{order['_id']}", headers=admin_headers).get_json()
    assert detail["order"]["user"]["email"] == "shopper@example.com"

    response = client.put(
        f"/api/admin/orders/{order['_id']}/status",
        json={"status": "shipped", "trackingNumber": "AWB1"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    stored = db.orders.find_one({"_id": order["_id"]})
    assert stored["status"] == "shipped"
    assert stored["trackingNumber"] == "AWB1"

    missing = client.get(f"/api/admin/orders/{ObjectId()}", headers=admin_headers)
    assert missing.status_code == 404


def test_admin_product_crud(client, db, admin_headers):
    created = client.post(
        "/api/admin/products",
        json={
            "name": "Hair Wax",
            "description": "Matte hold",
            "price": 350,
            "category": "Hair Care",
            "stockQuantity": 7,
        },
        headers=admin_headers,
    )
    assert created.status_code == 201
    product_id = created.get_json()["product"]["_id"]

    updated = client.put(
        f"/api/admin/products/{product_id}", json={"price": 299}, headers=admin_headers
    ).get_json()["product"]
    assert updated["price"] == 299
    assert updated["name"] == "Hair Wax"

    listed = client.get("/api/admin/products", headers=admin_headers).get_json()["products"]
    assert len(listed) == 1

    stats = client.get("/api/admin/products/stats", headers=admin_headers).get_json()
    assert stats["totalProducts"] == 1
    assert stats["productsByCategory"] == [{"category": "Hair Care", "count": 1}]

    deleted = client.delete(f"/api/admin/products/{product_id}", headers=admin_headers)
    assert deleted.status_code == 200
    assert db.products.count_documents({}) == 0


def test_admin_user_endpoints(client, db, user, admin_headers):
    stats = client.get("/api/admin/users/stats", headers=admin_headers).get_json()
    assert stats["totalUsers"] == 2
    assert stats["verifiedUsers"] == 2

    users = client.get("/api/admin/users", headers=admin_headers).get_json()["users"]
    assert len(users) == 2

    renamed = client.put(
        f"/api/admin/users/{user['_id']}", json={"name": "Renamed"}, headers=admin_headers
    ).get_json()["user"]
    assert renamed["name"] == "Renamed"

    response = client.delete(f"/api/admin/users/{user['_id']}", headers=admin_headers)
    assert response.status_code == 200
    assert db.users.count_documents({}) == 1


def test_admin_status_update_refuses_to_cancel_delivered_order(
    client, db, catalog, make_order, admin_headers
):
    order = make_order([(catalog["oil"], 100, 1)], status="delivered")

    for method in (client.patch, client.put):
        response = method(
            f"/api/admin/orders/{order['_id']}/status",
            json={"status": "cancelled"},
            headers=admin_headers,
        )
        assert response.status_code == 400

    assert db.orders.find_one({"_id": order["_id"]})["status"] == "delivered"
