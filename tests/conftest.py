import mongomock
import pytest

from aura_store import create_app
from aura_store.models import build_product_document, build_user_document
from aura_store.security import hash_password, issue_token

TEST_SETTINGS = {
    "TESTING": True,
    "APP_ENV": "testing",
    "JWT_SECRET_KEY": "aura-test-secret-key-with-enough-length",
    "RESEND_API_KEY": "",
    "RAZORPAY_KEY_ID": "rzp_test_key",
    "RAZORPAY_KEY_SECRET": "rzp_test_secret",
    "RAZORPAY_API_URL": "https://razorpay.invalid/v1",
    "EMAIL_VERIFICATION_REQUIRED": False,
}


@pytest.fixture
def db():
    return mongomock.MongoClient()["aura_test"]


@pytest.fixture
def app(db, tmp_path):
    settings = dict(TEST_SETTINGS, UPLOAD_FOLDER=str(tmp_path / "uploads"))
    return create_app(settings, db=db)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Capture outgoing mail instead of calling Resend."""
    sent = {"otps": [], "orders": []}

    def fake_send_otp_email(recipient_email, otp, purpose):
        sent["otps"].append({"email": recipient_email, "otp": otp, "purpose": purpose})
        return True, None

    def fake_send_order_confirmation(order_document, user_document):
        sent["orders"].append(order_document["_id"])
        return True

    monkeypatch.setattr("aura_store.routes.auth.send_otp_email", fake_send_otp_email)
    monkeypatch.setattr(
        "aura_store.routes.orders.send_order_confirmation", fake_send_order_confirmation
    )
    return sent


@pytest.fixture
def make_user(db):
    counter = {"value": 0}

    def factory(email=None, password="secret123", name="Test User", is_admin=False, **extra):
        counter["value"] += 1
        email = email or f"user{counter['value']}@example.com"
        document = build_user_document(name, email, hash_password(password), is_verified=True)
        document["isAdmin"] = is_admin
        document.update(extra)
        document["_id"] = db.users.insert_one(document).inserted_id
        return document

    return factory


@pytest.fixture
def auth_headers(app):
    def factory(user_document):
        with app.app_context():
            token = issue_token(user_document)
        return {"Authorization": f"Bearer {token}"}

    return factory


@pytest.fixture
def user(make_user):
    return make_user(email="shopper@example.com", name="Shopper")


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", name="Admin", is_admin=True)


@pytest.fixture
def user_headers(auth_headers, user):
    return auth_headers(user)


@pytest.fixture
def admin_headers(auth_headers, admin):
    return auth_headers(admin)


@pytest.fixture
def make_product(db):
    def factory(**fields):
        payload = {
            "name": "Beard Oil",
            "description": "Nourishing oil",
            "price": 499,
            "category": "Beard Care",
            "stockQuantity": 20,
        }
        payload.update(fields)
        document = build_product_document(payload)
        document["_id"] = db.products.insert_one(document).inserted_id
        return document

    return factory


@pytest.fixture
def shipping_address():
    return {
        "street": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "country": "India",
        "zipCode": "560001",
    }
