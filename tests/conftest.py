import json
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECURE_COOKIES"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["XENDIT_SECRET_KEY"] = "xnd_development_test"
os.environ["XENDIT_APP_KEY"] = "test-app-key-0123456789abcdefghijklmn"
os.environ["XENDIT_WEBHOOK_TOKEN"] = ""
os.environ["LOG_FILE"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete
from sqlmodel import Session

from app.core.csrf import CSRF_COOKIE_NAME, CSRF_FORM_FIELD
from app.core.decryption import encrypt_aes_gcm
from app.core.rate_limit import RateLimiter
from app.core.startup import seed_payment_channels
from app.db.session import engine, ensure_ready
from app.main import app
from app.models import AppUser, CheckoutSession, PasswordResetToken, PaymentChannel

TEST_APP_KEY = os.environ["XENDIT_APP_KEY"]


@pytest.fixture(autouse=True)
def clean_database():
    ensure_ready()
    with engine.begin() as conn:
        conn.execute(delete(PasswordResetToken))
        conn.execute(delete(AppUser))
        conn.execute(delete(CheckoutSession))
        conn.execute(delete(PaymentChannel))
    with Session(engine) as session:
        seed_payment_channels(session)
    RateLimiter.clear()
    yield


@pytest.fixture
def db_session():
    with Session(engine) as session:
        yield session


@pytest.fixture
def client():
    return TestClient(app)


def make_callback_payload(
    amount="1500.50",
    reference="INV-2024-0001",
    name="Siam Trading Co.",
    space_name="Bangkok Office",
) -> dict:
    return {
        "Invoice": {
            "Uuid": "7b1a3c4e-0000-4000-8000-000000000001",
            "Reference": reference,
            "Billed_Entity_Name": name,
            "Price_With_Discount_With_Taxes": amount,
        },
        "Space": {"Uuid": "space-001", "Name": space_name},
    }


def encrypt_for_callback(payload) -> str:
    plaintext = payload if isinstance(payload, str) else json.dumps(payload)
    return encrypt_aes_gcm(TEST_APP_KEY[:32].encode("utf-8"), plaintext)


def csrf_token_for(client: TestClient, path: str = "/account/login") -> str:
    client.get(path)
    return client.cookies.get(CSRF_COOKIE_NAME)


def login(client: TestClient, email="admin@example.com", password="s3cret-password", **extra):
    token = csrf_token_for(client)
    data = {"email": email, "password": password, CSRF_FORM_FIELD: token, **extra}
    return client.post("/account/login", data=data, follow_redirects=False)


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(body or {})


class FakePost:
    """Stands in for ``requests.post`` and records every call."""

    def __init__(self, response=None, exc=None):
        self.response = response or FakeResponse(
            200, {"id": "inv_123", "invoice_url": "https://checkout.xendit.co/web/inv_123"}
        )
        self.exc = exc
        self.calls = []

    def __call__(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        if self.exc:
            raise self.exc
        return self.response


@pytest.fixture
def fake_post(monkeypatch):
    fake = FakePost()
    monkeypatch.setattr("app.external_services.xendit_service.requests.post", fake)
    return fake

