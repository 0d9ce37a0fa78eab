"""Razorpay client calls. Kept separate so tests can replace the network edge."""

from typing import Any

from app.core.config import get_settings
from app.core.exceptions import MisconfiguredSecretError

RECEIPT_MAX_LEN = 40


def _client():
    import razorpay
    settings = get_settings()
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise MisconfiguredSecretError("Payments not configured")
    return razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))


def build_receipt(plan_id: str, now_ms: int) -> str:
    """Razorpay caps receipt at 40 chars: plan id suffix + timestamp suffix."""
    return f"o_{plan_id[-8:]}_{str(now_ms)[-6:]}"[:RECEIPT_MAX_LEN]


def create_gateway_order(amount_paise: int, currency: str, receipt: str, notes: dict[str, str]) -> dict[str, Any]:
    """Create a Razorpay order; returns the gateway entity (id, amount, currency, ...)."""
    client = _client()
    return client.order.create(
        {
            "amount": amount_paise,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
        }
    )


def public_key_id() -> str:
    return get_settings().razorpay_key_id
