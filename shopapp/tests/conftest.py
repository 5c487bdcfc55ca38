import datetime
import os
import tempfile

import pytest

# Keep the import-time store away from Firebase and the working tree.
os.environ.setdefault("USE_FIRESTORE", "off")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="shop-test-"))

from shopapp import app as flask_app  # noqa: E402
from shopapp.services import ShopServices  # noqa: E402
from shopcore.config import load_shop_config  # noqa: E402
from shopcore.storage import LocalDocumentStore  # noqa: E402

BASE_URL = "https://localhost"


class FakeClock:
    def __init__(self, start: datetime.datetime):
        self.now = start

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + datetime.timedelta(**delta)


@pytest.fixture
def clock():
    return FakeClock(datetime.datetime(2025, 9, 8, 10, 0, tzinfo=datetime.timezone.utc))


@pytest.fixture
def config(tmp_path):
    return load_shop_config(
        tmp_path,
        {
            "SECRET_KEY": "test-secret",
            "FIELD_SECRET_KEY": "field-secret",
            "ADMIN_EMAIL": "admin@example.com",
            "DATA_DIR": str(tmp_path / "data"),
            "USE_FIRESTORE": "off",
        },
    )


@pytest.fixture
def store(config):
    return LocalDocumentStore(config.data_dir, backups=1)


@pytest.fixture
def services(store, config, clock):
    return ShopServices.build(store, config, clock)


@pytest.fixture(autouse=True)
def configure_test_env(monkeypatch, services, config):
    flask_app.app.config.update(TESTING=True)
    talisman = flask_app.app.extensions.get("talisman")
    if talisman:
        talisman.force_https = False
    monkeypatch.setattr(flask_app, "CONFIG", config)
    monkeypatch.setattr(flask_app, "SERVICES", services)
    yield services


@pytest.fixture
def client():
    return flask_app.app.test_client()


def make_product(services, name="Jasmine Rice 5kg", price=189.0, stock=20, category="Groceries", **extra):
    return services.catalog.create(
        {"name": name, "price": price, "stock": stock, "category": category, **extra}
    )


def make_user(services, email="shopper@example.com", name="Shopper", password="Secret123"):
    return services.users.register(email, password, name)


def place_order(services, user, *lines):
    return services.orders.create(
        {
            "user_id": user["uid"],
            "user_name": user["name"],
            "user_email": user["email"],
            "items": [{"product_id": product["id"], "quantity": qty} for product, qty in lines],
            "shipping_address": {
                "name": user["name"],
                "address": "12 Moo 3",
                "city": "Chiang Mai",
                "postal_code": "50200",
                "phone": "0812345678",
            },
        }
    )


def login(client, email, password="Secret123"):
    response = client.post(
        "/auth/login",
        json={"email": email, "password": password},
        base_url=BASE_URL,
    )
    assert response.status_code == 200
    return response
