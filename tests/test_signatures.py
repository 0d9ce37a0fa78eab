"""Signature verification for both confirmation channels. No database."""

import orjson
import pytest

from app.core.exceptions import BadRequestError, InvalidSignatureError, MisconfiguredSecretError
from app.core.security import hmac_sha256_hex
from app.services.signatures import (
    Channel,
    ClientVerificationPayload,
    SignatureVerifier,
    WebhookPayload,
)

KEY_SECRET = "key_secret"
WEBHOOK_SECRET = "webhook_secret"


@pytest.fixture
def verifier():
    return SignatureVerifier(key_secret=KEY_SECRET, webhook_secret=WEBHOOK_SECRET)


def test_client_signature_accepted(verifier):
    sig = hmac_sha256_hex(KEY_SECRET, b"order_1|pay_1")
    event = verifier.verify(Channel.CLIENT, ClientVerificationPayload("order_1", "pay_1", sig))
    assert event.channel == Channel.CLIENT
    assert event.order_id == "order_1"
    assert event.payment_id == "pay_1"


def test_client_signature_for_other_payment_rejected(verifier):
    sig = hmac_sha256_hex(KEY_SECRET, b"order_1|pay_1")
    with pytest.raises(InvalidSignatureError):
        verifier.verify(Channel.CLIENT, ClientVerificationPayload("order_1", "pay_2", sig))


def test_client_non_ascii_signature_is_a_mismatch(verifier):
    with pytest.raises(InvalidSignatureError):
        verifier.verify(Channel.CLIENT, ClientVerificationPayload("order_1", "pay_1", "\u00e9" * 64))


def test_client_non_ascii_ids_are_hashed_not_rejected(verifier):
    sig = hmac_sha256_hex(KEY_SECRET, "order_\u00e9|pay_1".encode("utf-8"))
    event = verifier.verify(Channel.CLIENT, ClientVerificationPayload("order_\u00e9", "pay_1", sig))
    assert event.order_id == "order_\u00e9"
    with pytest.raises(InvalidSignatureError):
        verifier.verify(Channel.CLIENT, ClientVerificationPayload("order_\udce9", "pay_1", sig))


def test_client_missing_fields(verifier):
    with pytest.raises(BadRequestError):
        verifier.verify(Channel.CLIENT, ClientVerificationPayload("order_1", "", "sig"))


def test_client_secret_not_configured():
    v = SignatureVerifier(key_secret="", webhook_secret=WEBHOOK_SECRET)
    with pytest.raises(MisconfiguredSecretError):
        v.verify(Channel.CLIENT, ClientVerificationPayload("order_1", "pay_1", "sig"))


def test_webhook_parsed_after_verification(verifier, webhook_body):
    body = webhook_body("order_1", "pay_1", 49900)
    event = verifier.verify(
        Channel.WEBHOOK,
        WebhookPayload(body, hmac_sha256_hex(WEBHOOK_SECRET, body), event_id="evt_1"),
    )
    assert event.event_type == "payment.captured"
    assert event.order_id == "order_1"
    assert event.payment_id == "pay_1"
    assert event.amount == 49900
    assert event.currency == "INR"
    assert event.event_id == "evt_1"


def test_webhook_signature_is_over_raw_bytes(verifier, webhook_body):
    body = webhook_body("order_1", "pay_1", 49900)
    sig = hmac_sha256_hex(WEBHOOK_SECRET, body)
    # Same JSON, different bytes
    reformatted = orjson.dumps(orjson.loads(body), option=orjson.OPT_INDENT_2)
    with pytest.raises(InvalidSignatureError):
        verifier.verify(Channel.WEBHOOK, WebhookPayload(reformatted, sig))


def test_webhook_tampered_body(verifier, webhook_body):
    body = webhook_body("order_1", "pay_1", 49900)
    sig = hmac_sha256_hex(WEBHOOK_SECRET, body)
    tampered = body.replace(b"49900", b"99900")
    with pytest.raises(InvalidSignatureError):
        verifier.verify(Channel.WEBHOOK, WebhookPayload(tampered, sig))


def test_webhook_non_ascii_signature_is_a_mismatch(verifier, webhook_body):
    body = webhook_body("order_1", "pay_1", 49900)
    with pytest.raises(InvalidSignatureError):
        verifier.verify(Channel.WEBHOOK, WebhookPayload(body, "\u00e9" * 64))


def test_webhook_missing_signature(verifier):
    with pytest.raises(InvalidSignatureError):
        verifier.verify(Channel.WEBHOOK, WebhookPayload(b"{}", None))


def test_webhook_secret_not_configured(webhook_body):
    v = SignatureVerifier(key_secret=KEY_SECRET, webhook_secret="")
    with pytest.raises(MisconfiguredSecretError):
        v.verify(Channel.WEBHOOK, WebhookPayload(webhook_body("o", "p", 1), "sig"))


def test_webhook_signed_garbage_is_bad_request(verifier):
    body = b"not json"
    with pytest.raises(BadRequestError):
        verifier.verify(Channel.WEBHOOK, WebhookPayload(body, hmac_sha256_hex(WEBHOOK_SECRET, body)))


def test_webhook_without_payment_entity(verifier):
    body = orjson.dumps({"event": "order.paid", "payload": {}})
    event = verifier.verify(Channel.WEBHOOK, WebhookPayload(body, hmac_sha256_hex(WEBHOOK_SECRET, body)))
    assert event.event_type == "order.paid"
    assert event.order_id is None
    assert event.payment_id is None
