from flask import current_app
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from pymongo import ASCENDING, DESCENDING

mongo = PyMongo()
jwt = JWTManager()


def get_db():
    """Return the database bound to the running application."""
    return current_app.extensions["aura_store"]["db"]


def ensure_indexes(app, db):
    index_specs = [
        (db.users, [("email", ASCENDING)], {"unique": True, "name": "email_unique_index"}),
        (db.users, [("phoneNumber", ASCENDING)], {"sparse": True, "name": "phone_number_index"}),
        (db.products, [("category", ASCENDING)], {}),
        (db.products, [("price", ASCENDING)], {}),
        (db.products, [("ratings.average", DESCENDING)], {}),
        (db.orders, [("user", ASCENDING), ("createdAt", DESCENDING)], {}),
        (db.orders, [("status", ASCENDING)], {}),
        (db.orders, [("paymentStatus", ASCENDING)], {}),
        (
            db.reviews,
            [("user", ASCENDING), ("product", ASCENDING)],
            {"unique": True, "name": "user_product_unique_index"},
        ),
        (db.reviews, [("product", ASCENDING), ("createdAt", DESCENDING)], {}),
        (db.favorites, [("user", ASCENDING)], {"unique": True}),
        (db.carts, [("user", ASCENDING)], {"unique": True}),
        (db.otps, [("email", ASCENDING)], {"unique": True}),
        (db.otps, [("expiresAt", ASCENDING)], {"expireAfterSeconds": 0}),
    ]

    for collection, keys, options in index_specs:
        try:
            collection.create_index(keys, **options)
        except Exception as exc:
            app.logger.warning(
                "Unable to ensure index %s on %s: %s", keys, collection.name, exc
            )
