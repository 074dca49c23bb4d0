# tests/conftest.py
import hashlib
import hmac
import json
import os
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Settings are read once at import time; configure before importing healthnet.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_secret")
os.environ.setdefault("FRONTEND_URL", "http://frontend.test")

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlmodel import Session, SQLModel, create_engine

from healthnet.core.paystack import PaystackClient, get_payment_gateway
from healthnet.database import get_session
from healthnet.main import app
from healthnet.models.delivery import DeliveryArea
from healthnet.models.drug import Drug
from healthnet.models.user import User
from healthnet.routers.dependencies import (
    cart_service,
    delivery_service,
    inventory_service,
    order_service,
    payment_service,
)
from healthnet.schemas.order import DeliveryDetails, OrderItemInput

JWT_SECRET = os.environ["JWT_SECRET"]
PAYSTACK_SECRET = os.environ["PAYSTACK_SECRET_KEY"]


# ---------- database ----------


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'healthnet.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


# ---------- seed data ----------


def _user(session: Session, email: str, role: str = "user") -> User:
    user = User(id=uuid.uuid4(), email=email, name=email.split("@")[0], role=role)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def customer(session):
    return _user(session, "ama@example.com")


@pytest.fixture
def other_customer(session):
    return _user(session, "kofi@example.com")


@pytest.fixture
def admin(session):
    return _user(session, "admin@example.com", role="admin")


@pytest.fixture
def make_drug(session):
    def _make(
        name: str = "Paracetamol 500mg",
        price: str = "20.00",
        stock: int = 10,
        status: str = "active",
    ) -> Drug:
        drug = Drug(
            name=name,
            slug=f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:6]}",
            description=f"{name} tablets",
            price=Decimal(price),
            stock=stock,
            status=status,
        )
        session.add(drug)
        session.commit()
        session.refresh(drug)
        return drug

    return _make


@pytest.fixture
def area(session):
    area = DeliveryArea(
        code="east-legon",
        name="East Legon",
        base_fee=Decimal("15.00"),
        sort_order=1,
        landmarks=["A&C Mall"],
    )
    session.add(area)
    session.commit()
    session.refresh(area)
    return area


@pytest.fixture
def details():
    return DeliveryDetails(
        phone_number="0241234567",
        delivery_address="12 Lagos Avenue",
        delivery_area="east-legon",
        landmark="Near the mall",
    )


@pytest.fixture
def place_order(session, details):
    """Place an order through the service for `user` with (drug, qty) lines."""

    def _place(user: User, *lines):
        items = [OrderItemInput(drug_id=drug.id, quantity=qty) for drug, qty in lines]
        return order_service.create_order_from_items(session, items, details, user)

    return _place


# ---------- services ----------


@pytest.fixture
def inventory():
    return inventory_service


@pytest.fixture
def carts():
    return cart_service


@pytest.fixture
def orders():
    return order_service


@pytest.fixture
def payments():
    return payment_service


@pytest.fixture
def delivery():
    return delivery_service


# ---------- payment gateway ----------


class FakePaystack:
    """
    In-memory gateway behind httpx.MockTransport.

    transactions maps reference -> gateway status reported by verify.
    """

    def __init__(self):
        self.transactions: dict[str, str] = {}
        self.requests: list[httpx.Request] = []
        self.initialize_mode = "ok"  # ok | declined | timeout | down
        self.verify_mode = "ok"
        self.client = PaystackClient(
            secret_key=PAYSTACK_SECRET,
            base_url="https://api.paystack.test",
            timeout=2.0,
            transport=httpx.MockTransport(self.handler),
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/transaction/initialize":
            if self.initialize_mode == "timeout":
                raise httpx.ConnectTimeout("timed out", request=request)
            if self.initialize_mode == "down":
                return httpx.Response(503, json={"status": False, "message": "Service unavailable"})
            if self.initialize_mode == "declined":
                return httpx.Response(400, json={"status": False, "message": "Invalid currency"})
            body = json.loads(request.content)
            reference = body["reference"]
            self.transactions.setdefault(reference, "ongoing")
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": f"https://checkout.paystack.test/{reference}",
                        "access_code": f"ac_{reference[-8:]}",
                        "reference": reference,
                    },
                },
            )

        if path.startswith("/transaction/verify/"):
            if self.verify_mode == "timeout":
                raise httpx.ReadTimeout("timed out", request=request)
            reference = path.rsplit("/", 1)[-1]
            if reference not in self.transactions:
                return httpx.Response(404, json={"status": False, "message": "Transaction reference not found"})
            return httpx.Response(
                200,
                json={"status": True, "message": "Verification successful", "data": self.transaction(reference)},
            )

        return httpx.Response(404, json={"status": False, "message": "Not found"})

    def transaction(self, reference: str, status: str | None = None) -> dict:
        status = status or self.transactions.get(reference, "success")
        data = {
            "reference": reference,
            "status": status,
            "amount": 2150,
            "currency": "GHS",
            "channel": "card",
            "gateway_response": "Approved" if status == "success" else "Declined",
            "fees": 84,
            "paid_at": datetime.now(timezone.utc).isoformat(),
            "metadata": {"source": "test"},
        }
        if status == "success":
            data["authorization"] = {
                "authorization_code": "AUTH_abc123",
                "last4": "4081",
                "exp_month": "12",
                "exp_year": "2030",
                "card_type": "visa",
                "bank": "Test Bank",
            }
        return data

    def sign(self, body: bytes) -> str:
        return hmac.new(PAYSTACK_SECRET.encode(), body, hashlib.sha512).hexdigest()

    def webhook(self, event: str, reference: str, status: str) -> bytes:
        return json.dumps({"event": event, "data": self.transaction(reference, status)}).encode()


@pytest.fixture
def paystack():
    return FakePaystack()


# ---------- HTTP ----------


def make_token(user: User, expires_in: timedelta = timedelta(hours=1)) -> str:
    return jwt.encode(
        {
            "sub": str(user.id),
            "email": user.email,
            "exp": datetime.now(timezone.utc) + expires_in,
        },
        JWT_SECRET,
        algorithm="HS256",
    )


@pytest.fixture
def auth_headers():
    def _headers(user: User, expires_in: timedelta = timedelta(hours=1)) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user, expires_in)}"}

    return _headers


@pytest.fixture
def client(engine, paystack):
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_payment_gateway] = lambda: paystack.client
    yield TestClient(app)
    app.dependency_overrides.clear()
