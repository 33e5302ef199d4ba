from .admin import admin_bp
from .auth import auth_bp
from .cart import cart_bp
from .favorites import favorites_bp
from .orders import orders_bp
from .products import products_bp
from .reviews import reviews_bp
from .upload import upload_bp
from .users import users_bp

BLUEPRINTS = (
    (auth_bp, "/api/auth"),
    (products_bp, "/api/products"),
    (orders_bp, "/api/orders"),
    (users_bp, "/api/users"),
    (reviews_bp, "/api/reviews"),
    (favorites_bp, "/api/favorites"),
    (cart_bp, "/api/cart"),
    (upload_bp, "/api/upload"),
    (admin_bp, "/api/admin"),
)


def register_blueprints(app):
    for blueprint, url_prefix in BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)
