import os
from typing import AsyncGenerator

import orjson
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-memory Mongo, fixed gateway secrets
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "tokenpay_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "test_key_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "test_webhook_secret")


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[None, None]:
    from mongomock_motor import AsyncMongoMockClient

    from app.db.init import init_db
    await init_db(AsyncMongoMockClient())
    yield


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    app.state.skip_db_init = True
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def fake_gateway(monkeypatch):
    """Replace the Razorpay order call; returns the list of orders it handed out."""
    from app.services import gateway
    created = []

    def create_gateway_order(amount_paise, currency, receipt, notes):
        order = {
            "id": f"order_test{len(created) + 1:04d}",
            "entity": "order",
            "amount": amount_paise,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
            "status": "created",
        }
        created.append(order)
        return order

    monkeypatch.setattr(gateway, "create_gateway_order", create_gateway_order)
    return created


@pytest.fixture
def make_user(db):
    from app.models.user import User

    async def _make(email: str = "buyer@example.com", **kwargs) -> User:
        user = User(email=email, name=email.split("@")[0], **kwargs)
        await user.insert()
        return user

    return _make


@pytest.fixture
def make_plan(db):
    from app.models.plan import Plan

    async def _make(name: str = "starter", price_inr: int = 499, tokens: int = 20_000, **kwargs) -> Plan:
        plan = Plan(name=name, display_name=name.title(), price_inr=price_inr, tokens=tokens, **kwargs)
        await plan.insert()
        return plan

    return _make


@pytest.fixture
def auth_headers():
    from app.core.security import create_session_cookie

    def _headers(user) -> dict[str, str]:
        token = create_session_cookie({"user_id": str(user.id), "session_version": user.session_version})
        return {"Authorization": f"Bearer {token}"}

    return _headers


def payment_event(
    order_id: str,
    payment_id: str,
    amount: int,
    event: str = "payment.captured",
    currency: str = "INR",
    **entity,
) -> bytes:
    """Razorpay-shaped webhook body."""
    payment = {
        "id": payment_id,
        "entity": "payment",
        "order_id": order_id,
        "amount": amount,
        "currency": currency,
        "status": "captured" if event == "payment.captured" else "failed",
    }
    payment.update(entity)
    return orjson.dumps(
        {
            "entity": "event",
            "event": event,
            "contains": ["payment"],
            "payload": {"payment": {"entity": payment}},
        }
    )


@pytest.fixture
def webhook_body():
    return payment_event


@pytest.fixture
def sign_webhook():
    from app.core.config import get_settings
    from app.core.security import hmac_sha256_hex

    def _sign(body: bytes) -> str:
        return hmac_sha256_hex(get_settings().razorpay_webhook_secret, body)

    return _sign


@pytest.fixture
def sign_checkout():
    from app.core.config import get_settings
    from app.core.security import hmac_sha256_hex

    def _sign(order_id: str, payment_id: str) -> str:
        return hmac_sha256_hex(get_settings().razorpay_key_secret, f"{order_id}|{payment_id}".encode())

    return _sign
