import hashlib
import hmac
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import get_settings

SESSION_MAX_AGE = 7 * 24 * 3600  # 7 days


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="tokenpay-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    serializer = get_session_serializer()
    return serializer.dumps(payload)


def load_session_cookie(cookie_value: str, max_age_seconds: int = SESSION_MAX_AGE) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, signature: str) -> bool:
    """Constant-time compare over bytes; a non-ASCII header or field is just a mismatch."""
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8", "surrogatepass"))


def verify_razorpay_webhook(payload: bytes, signature: str, secret: str) -> bool:
    """HMAC over the exact request bytes; never over a re-serialized body."""
    return signatures_match(hmac_sha256_hex(secret, payload), signature)


def verify_razorpay_payment(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """Checkout handler signature: HMAC(key_secret, "<order_id>|<payment_id>")."""
    return signatures_match(hmac_sha256_hex(secret, f"{order_id}|{payment_id}".encode("utf-8", "surrogatepass")), signature)
