"""
Authentication of the two inbound confirmation channels.

client  - checkout handler fields (order id, payment id, signature), HMAC keyed with the API key secret.
webhook - raw request body + X-Razorpay-Signature, HMAC keyed with the webhook secret.

Both come out as an AuthenticatedEvent so reconciliation does not care which channel produced it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import orjson

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, InvalidSignatureError, MisconfiguredSecretError
from app.core.security import verify_razorpay_payment, verify_razorpay_webhook


class Channel(str, Enum):
    CLIENT = "client"
    WEBHOOK = "webhook"


CLIENT_EVENT_TYPE = "payment.verify"


@dataclass(frozen=True)
class ClientVerificationPayload:
    order_id: str
    payment_id: str
    signature: str


@dataclass(frozen=True)
class WebhookPayload:
    raw_body: bytes
    signature: str | None
    event_id: str | None = None


@dataclass(frozen=True)
class AuthenticatedEvent:
    channel: Channel
    event_type: str
    order_id: str | None
    payment_id: str | None
    amount: int | None = None
    currency: str | None = None
    payment_status: str | None = None
    error_description: str | None = None
    event_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class SignatureVerifier:
    def __init__(self, key_secret: str | None = None, webhook_secret: str | None = None):
        settings = get_settings()
        self.key_secret = settings.razorpay_key_secret if key_secret is None else key_secret
        self.webhook_secret = settings.razorpay_webhook_secret if webhook_secret is None else webhook_secret

    def verify(self, channel: Channel, payload) -> AuthenticatedEvent:
        if channel == Channel.CLIENT:
            return self._verify_client(payload)
        if channel == Channel.WEBHOOK:
            return self._verify_webhook(payload)
        raise BadRequestError(f"Unknown channel: {channel}")

    def _verify_client(self, payload: ClientVerificationPayload) -> AuthenticatedEvent:
        if not self.key_secret:
            raise MisconfiguredSecretError("Razorpay key secret not configured")
        if not payload.order_id or not payload.payment_id or not payload.signature:
            raise BadRequestError("Missing payment verification parameters")
        if not verify_razorpay_payment(payload.order_id, payload.payment_id, payload.signature, self.key_secret):
            raise InvalidSignatureError("Invalid payment signature")
        return AuthenticatedEvent(
            channel=Channel.CLIENT,
            event_type=CLIENT_EVENT_TYPE,
            order_id=payload.order_id,
            payment_id=payload.payment_id,
        )

    def _verify_webhook(self, payload: WebhookPayload) -> AuthenticatedEvent:
        if not self.webhook_secret:
            raise MisconfiguredSecretError("Webhook secret not configured")
        if not payload.signature:
            raise InvalidSignatureError("Missing webhook signature")
        if not verify_razorpay_webhook(payload.raw_body, payload.signature, self.webhook_secret):
            raise InvalidSignatureError("Invalid webhook signature")
        try:
            data = orjson.loads(payload.raw_body)
        except orjson.JSONDecodeError as e:
            raise BadRequestError("Invalid JSON payload") from e
        if not isinstance(data, dict):
            raise BadRequestError("Invalid JSON payload")
        payment = ((data.get("payload") or {}).get("payment") or {}).get("entity") or {}
        return AuthenticatedEvent(
            channel=Channel.WEBHOOK,
            event_type=data.get("event") or "",
            order_id=payment.get("order_id"),
            payment_id=payment.get("id"),
            amount=payment.get("amount"),
            currency=payment.get("currency"),
            payment_status=payment.get("status"),
            error_description=payment.get("error_description"),
            event_id=payload.event_id,
            payload=data,
        )


def get_verifier() -> SignatureVerifier:
    return SignatureVerifier()
