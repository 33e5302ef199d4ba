import logging
import os
import time
from typing import Dict, Optional

import click
from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import env_int, load_settings
from .errors import register_error_handlers
from .extensions import ensure_indexes, jwt, mongo
from .models import build_product_document, build_user_document, normalize_email, utcnow
from .routes import register_blueprints
from .security import hash_password
from .uploads import MODEL_EXTENSIONS, MODEL_MIMETYPE, file_extension

PROCESS_STARTED_AT = time.monotonic()

SEED_PRODUCTS = [
    {
        "name": "Cedarwood Beard Oil",
        "description": "Lightweight blend of argan and jojoba oils with a warm cedar finish.",
        "price": 599,
        "category": "Beard Care",
        "stockQuantity": 40,
        "ingredients": ["Argan oil", "Jojoba oil", "Cedarwood essential oil"],
        "features": ["Softens coarse hair", "Non-greasy"],
        "tags": ["beard", "oil"],
    },
    {
        "name": "Charcoal Face Wash",
        "description": "Activated charcoal cleanser that lifts oil without drying the skin.",
        "price": 349,
        "category": "Skincare",
        "stockQuantity": 60,
        "ingredients": ["Activated charcoal", "Aloe vera"],
        "features": ["Deep cleansing", "Daily use"],
        "tags": ["face", "cleanser"],
    },
    {
        "name": "Matte Clay Pomade",
        "description": "Strong hold styling clay with a natural matte look.",
        "price": 449,
        "category": "Hair Care",
        "stockQuantity": 25,
        "ingredients": ["Kaolin clay", "Beeswax"],
        "features": ["Strong hold", "Washes out easily"],
        "tags": ["hair", "styling"],
    },
    {
        "name": "Sandalwood Body Lotion",
        "description": "Fast absorbing body lotion with shea butter and sandalwood.",
        "price": 399,
        "category": "Body Care",
        "stockQuantity": 8,
        "ingredients": ["Shea butter", "Sandalwood oil"],
        "features": ["48h hydration"],
        "tags": ["body", "lotion"],
    },
    {
        "name": "Boar Bristle Beard Brush",
        "description": "Pear wood handle brush that spreads oils and tames flyaways.",
        "price": 299,
        "category": "Accessories",
        "stockQuantity": 15,
        "features": ["Natural bristles"],
        "tags": ["beard", "brush"],
    },
]


def configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")), logging.INFO)
    app.logger.setLevel(level)


def create_app(config: Optional[Dict[str, object]] = None, db=None) -> Flask:
    """Create and configure the Flask application.

    ``db`` lets callers supply an already connected database (tests pass an
    in-memory one); otherwise ``MONGO_URI`` is used.
    """
    app = Flask(__name__)

    trusted_proxy_hops = max(0, env_int("TRUSTED_PROXY_HOPS", 1))
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config.update(load_settings(app.root_path))
    if config:
        app.config.update(config)
    configure_logging(app)

    # --- Initialize extensions ---
    CORS(app, supports_credentials=True, origins=app.config["CORS_ORIGINS"] or "*")
    jwt.init_app(app)

    if db is None:
        mongo.init_app(app, serverSelectionTimeoutMS=5000)
        db = mongo.db
    app.extensions["aura_store"] = {"db": db}
    ensure_indexes(app, db)

    register_error_handlers(app)
    app.url_map.strict_slashes = False
    register_blueprints(app)

    # --- ROUTES ---

    @app.route("/uploads/<path:filename>")
    def serve_uploaded_file(filename: str):
        mimetype = None
        if file_extension(filename) in MODEL_EXTENSIONS:
            mimetype = MODEL_MIMETYPE
        return send_from_directory(app.config["UPLOAD_FOLDER"], filename, mimetype=mimetype)

    @app.route("/health")
    @app.route("/api/health")
    def health():
        return jsonify(
            {
                "status": "ok",
                "timestamp": f"{utcnow().isoformat()}Z",
                "uptime": round(time.monotonic() - PROCESS_STARTED_AT, 3),
            }
        )

    # --- CLI ---

    @app.cli.command("create-admin")
    @click.option("--email", default=lambda: os.getenv("ADMIN_EMAIL", ""))
    @click.option("--password", default=lambda: os.getenv("ADMIN_PASSWORD", ""))
    @click.option("--name", default=lambda: os.getenv("ADMIN_NAME", "AURA Admin"))
    def create_admin(email: str, password: str, name: str):
        """Create the admin account, or promote an existing user."""
        email = normalize_email(email)
        if not email:
            raise click.UsageError("An admin email is required (ADMIN_EMAIL or --email).")

        existing = db.users.find_one({"email": email})
        if existing:
            db.users.update_one(
                {"_id": existing["_id"]},
                {"$set": {"isAdmin": True, "isVerified": True, "updatedAt": utcnow()}},
            )
            click.echo(f"Promoted {email} to admin.")
            return

        if not password:
            raise click.UsageError(
                "A password is required to create a new admin (ADMIN_PASSWORD or --password)."
            )
        document = build_user_document(name, email, hash_password(password), is_verified=True)
        document["isAdmin"] = True
        db.users.insert_one(document)
        click.echo(f"Created admin {email}.")

    @app.cli.command("seed-products")
    def seed_products():
        """Insert demo products when the catalog is empty."""
        if db.products.count_documents({}) > 0:
            click.echo("Catalog already has products; nothing to seed.")
            return
        db.products.insert_many(
            [build_product_document(product) for product in SEED_PRODUCTS]
        )
        app.logger.info("Seeded %s demo products", len(SEED_PRODUCTS))
        click.echo(f"Seeded {len(SEED_PRODUCTS)} products.")

    return app


def main():
    app = create_app()
    app.run(host="0.0.0.0", port=app.config["PORT"])


if __name__ == "__main__":
    main()
