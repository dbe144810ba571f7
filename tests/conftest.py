"""Pytest fixtures for the Alien Black Market API tests."""

import random

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
from config import Settings
from database import create_document
from main import create_app
from payment import PaymentProcessor

ADMIN_EMAIL = "admin@blackmarket.com"
ADMIN_PASSWORD = "Admin123456"
USER_PASSWORD = "Secret123"

SHIPPING_ADDRESS = {
    "street": "12 Crater Row",
    "city": "New Tycho",
    "state": "Mare Serenitatis",
    "zipCode": "90210",
    "country": "Moon",
}
TEST_CARD = {
    "cardNumber": "4111 1111 1111 1111",
    "expiryDate": "12/30",
    "cvv": "123",
    "cardholderName": "Zara Quill",
}


class FixedRandom:
    """Stands in for random.Random with a fixed random() value."""

    def __init__(self, value: float):
        self.value = value

    def random(self):
        return self.value

    def choice(self, seq):
        return seq[0]


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr(auth, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environment="test",
        jwt_secret="test-secret",
        upload_dir=str(tmp_path / "uploads"),
        admin_email=ADMIN_EMAIL,
        admin_password=ADMIN_PASSWORD,
        maintenance_interval=3600,
        log_level="DEBUG",
    )


@pytest.fixture
def db():
    return mongomock.MongoClient(tz_aware=True)["alien_market_test"]


@pytest.fixture
def processor():
    return PaymentProcessor(random.Random(7))


@pytest.fixture
def app(settings, db, processor):
    return create_app(settings=settings, db=db, payment_processor=processor)


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


def register(client, email="trader@example.com", password=USER_PASSWORD, **extra):
    response = client.post("/api/auth/register", json={"email": email, "password": password, **extra})
    assert response.status_code == 201, response.text
    return response.json()["data"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user(client):
    """A registered customer: {"user": ..., "token": ...}."""
    return register(client, firstName="Zara", lastName="Quill")


@pytest.fixture
def auth_headers(user):
    return bearer(user["token"])


@pytest.fixture
def admin_headers(client):
    response = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200, response.text
    return bearer(response.json()["data"]["token"])


@pytest.fixture
def make_alien(db):
    """Insert an alien straight into the catalog and return its id."""
    counter = {"n": 0}

    def factory(**overrides):
        counter["n"] += 1
        doc = {
            "name": f"Specimen {counter['n']}",
            "faction": "Acid",
            "planet": "Glorax Marsh",
            "rarity": "Common",
            "price": 150.0,
            "image": "https://cdn.example.com/specimen.png",
            "backstory": None,
            "abilities": ["Spore Pulse"],
            "clothing_style": None,
            "featured": False,
            "in_stock": True,
        }
        doc.update(overrides)
        return create_document(db, "alien", doc)

    return factory
