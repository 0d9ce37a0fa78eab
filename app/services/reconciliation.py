"""
Payment reconciliation: turns authenticated confirmations into order transitions and, exactly once
per order, a purchase credit.

Only a payment.captured webhook credits tokens. The client verify-payment call is reachable by anyone
holding a valid checkout signature, so it moves the order to verified and nothing more.

Every decision is re-checked at write time by a compare-and-swap on the order status; a lost swap
re-reads the order and decides again. The unique purchase key in the ledger is the second guard.
"""

from datetime import datetime, timedelta
from enum import Enum

from beanie import PydanticObjectId
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import (
    AppError,
    BadRequestError,
    ConflictError,
    DuplicateCreditError,
    OrderClosedError,
    OrderMismatchError,
    PaymentIdMismatchError,
    UnknownOrderError,
)
from app.core.logging import bind_order, get_logger
from app.db.init import transaction
from app.models.payment_order import CAPTURED, EXPIRED, FAILED, PENDING, VERIFIED, PaymentOrder
from app.models.token_ledger import TokenLedgerEntry
from app.models.webhook_event import WebhookEvent
from app.services import ledger
from app.services import orders as orders_service
from app.services import plans as plans_service
from app.services.signatures import (
    AuthenticatedEvent,
    Channel,
    ClientVerificationPayload,
    SignatureVerifier,
    WebhookPayload,
    get_verifier,
)

log = get_logger(__name__)

MAX_CAS_ATTEMPTS = 3
CAPTURED_EVENT = "payment.captured"
FAILED_EVENT = "payment.failed"


class WebhookOutcome(str, Enum):
    CAPTURED = "captured"
    ALREADY_CAPTURED = "already_captured"
    FAILED = "failed"
    ACKNOWLEDGED = "acknowledged"
    IGNORED = "ignored"


class VerificationResult(BaseModel):
    status: str = "accepted"
    order_id: str
    order_status: str
    provisional: bool


class WebhookResult(BaseModel):
    outcome: WebhookOutcome
    event_type: str
    order_id: str | None = None
    payment_id: str | None = None
    ledger_entry_id: str | None = None
    tokens_credited: int = 0


# Client channel


def _check_client_claims(
    order: PaymentOrder,
    user_id: PydanticObjectId,
    plan_id: PydanticObjectId,
    amount: int | None,
) -> None:
    if order.user_id != user_id:
        raise OrderMismatchError("Order does not belong to this user", details={"order_id": order.order_id})
    if order.plan_id != plan_id:
        raise OrderMismatchError("Order was created for a different plan", details={"order_id": order.order_id})
    if amount is not None and amount != order.amount:
        raise OrderMismatchError(
            "Amount does not match the order",
            details={"order_id": order.order_id, "expected": order.amount, "got": amount},
        )


async def handle_client_verification(
    user_id: PydanticObjectId,
    plan_id: PydanticObjectId,
    order_id: str,
    payment_id: str,
    signature: str,
    amount: int | None = None,
    verifier: SignatureVerifier | None = None,
) -> VerificationResult:
    """Checkout handler callback: pending -> verified, storing the payment id. Never credits."""
    verifier = verifier or get_verifier()
    verifier.verify(Channel.CLIENT, ClientVerificationPayload(order_id, payment_id, signature))
    bind_order(order_id, payment_id)

    for attempt in range(MAX_CAS_ATTEMPTS):
        order = await orders_service.find_by_order_id(order_id)
        _check_client_claims(order, user_id, plan_id, amount)

        if order.status == PENDING:
            try:
                await orders_service.transition(
                    order_id,
                    PENDING,
                    VERIFIED,
                    {"payment_id": payment_id},
                    expected_payment_id=None,
                )
            except ConflictError:
                log.info("verify_cas_lost", attempt=attempt)
                continue
            log.info("payment_verified_provisional", user_id=str(user_id))
            await log_event(str(user_id), "payment_verified", "order", order_id, {"payment_id": payment_id})
            return VerificationResult(order_id=order_id, order_status=VERIFIED, provisional=True)

        if order.status in (VERIFIED, CAPTURED):
            if order.payment_id != payment_id:
                log.warning("payment_id_mismatch", channel="client", stored=order.payment_id)
                raise PaymentIdMismatchError(order_id, order.payment_id, payment_id)
            return VerificationResult(
                order_id=order_id,
                order_status=order.status,
                provisional=order.status == VERIFIED,
            )

        raise OrderClosedError(order_id, order.status)

    raise ConflictError("Order kept changing during verification", details={"order_id": order_id})


# Webhook channel


def _event_key(event: AuthenticatedEvent) -> str:
    return event.event_id or f"{event.event_type}:{event.payment_id or event.order_id or 'none'}"


async def _record_event(event: AuthenticatedEvent) -> str:
    """Upsert the delivery; redeliveries of the same event only bump attempts."""
    key = _event_key(event)
    update = {
        "$inc": {"attempts": 1},
        "$setOnInsert": {
            "provider": "razorpay",
            "event_type": event.event_type,
            "order_id": event.order_id,
            "payment_id": event.payment_id,
            "payload": event.payload,
            "created_at": datetime.utcnow(),
        },
    }
    try:
        await WebhookEvent.find_one(WebhookEvent.event_id == key).update(update, upsert=True)
    except DuplicateKeyError:
        # Concurrent first delivery inserted it between our match and insert
        await WebhookEvent.find_one(WebhookEvent.event_id == key).update({"$inc": {"attempts": 1}})
    return key


async def _finish_event(key: str, outcome: str, error: str | None = None) -> None:
    await WebhookEvent.find_one(WebhookEvent.event_id == key).update(
        {"$set": {"outcome": outcome, "error": error, "processed_at": datetime.utcnow()}}
    )


def _check_amount(order: PaymentOrder, event: AuthenticatedEvent) -> None:
    if event.amount is not None and event.amount != order.amount:
        log.warning("webhook_amount_mismatch", expected=order.amount, got=event.amount)
        raise OrderMismatchError(
            "Captured amount does not match the order",
            details={"order_id": order.order_id, "expected": order.amount, "got": event.amount},
        )
    if event.currency and event.currency != order.currency:
        raise OrderMismatchError(
            "Captured currency does not match the order",
            details={"order_id": order.order_id, "expected": order.currency, "got": event.currency},
        )


async def _revert_capture(order: PaymentOrder, payment_id: str) -> None:
    """Undo our own captured write after the ledger refused it, so a gateway retry can capture again."""
    if await ledger.has_purchase(order.order_id):
        # A concurrent delivery completed the credit; captured is now correct
        return
    try:
        await orders_service.transition(
            order.order_id,
            CAPTURED,
            order.status,
            {"payment_id": order.payment_id},
            expected_payment_id=payment_id,
            allow_backward=True,
        )
        log.warning("capture_reverted", restored_status=order.status)
    except ConflictError:
        log.error("capture_revert_failed", restored_status=order.status)


async def _capture_and_credit(order: PaymentOrder, payment_id: str) -> TokenLedgerEntry | None:
    """
    Status -> captured and one purchase entry, as a unit: inside a Mongo transaction when enabled,
    otherwise the capture is reverted if the credit fails or is cancelled. Returns None when the
    ledger already held the purchase.

    A duplicate-key error aborts a Mongo transaction server side, so with a session the purchase
    key is looked up first, and DuplicateCreditError is only translated once the transaction
    block has exited (aborted).
    """
    try:
        async with transaction() as session:
            await orders_service.transition(
                order.order_id,
                order.status,
                CAPTURED,
                {"payment_id": payment_id, "failure_reason": None},
                expected_payment_id=order.payment_id,
                session=session,
            )
            if session is not None and await ledger.has_purchase(order.order_id, session=session):
                log.warning("purchase_already_in_ledger")
                return None
            try:
                return await ledger.credit(
                    order.user_id,
                    order.tokens,
                    "purchase",
                    order_id=order.order_id,
                    note=f"Purchased tokens (payment {payment_id})",
                    bucket="paid",
                    session=session,
                )
            except DuplicateCreditError:
                raise
            except BaseException:
                if session is None:
                    await _revert_capture(order, payment_id)
                raise
    except DuplicateCreditError:
        log.warning("purchase_already_in_ledger")
        return None


async def _heal_capture(order: PaymentOrder, payment_id: str) -> TokenLedgerEntry | None:
    """
    Credit a captured order whose purchase entry is missing (the process died between the
    status swap and the ledger write). The purchase key keeps this at most once.
    """
    if order.payment_id != payment_id or await ledger.has_purchase(order.order_id):
        return None
    try:
        entry = await ledger.credit(
            order.user_id,
            order.tokens,
            "purchase",
            order_id=order.order_id,
            note=f"Purchased tokens (payment {payment_id})",
            bucket="paid",
        )
    except DuplicateCreditError:
        return None
    log.warning("capture_healed", user_id=str(order.user_id), tokens=order.tokens)
    return entry


async def _after_capture(order: PaymentOrder, payment_id: str) -> None:
    log.info("payment_captured", user_id=str(order.user_id), tokens=order.tokens, amount=order.amount)
    await log_event(
        str(order.user_id),
        "payment_captured",
        "order",
        order.order_id,
        {"payment_id": payment_id, "amount": order.amount, "tokens": order.tokens},
    )
    await plans_service.record_purchase(order.plan_id, order.user_id)


async def _handle_captured(event: AuthenticatedEvent) -> WebhookResult:
    if not event.order_id or not event.payment_id:
        raise BadRequestError("Payment entity missing order_id or id")

    def result(outcome: WebhookOutcome, entry: TokenLedgerEntry | None = None, tokens: int = 0) -> WebhookResult:
        return WebhookResult(
            outcome=outcome,
            event_type=event.event_type,
            order_id=event.order_id,
            payment_id=event.payment_id,
            ledger_entry_id=str(entry.id) if entry else None,
            tokens_credited=tokens,
        )

    for attempt in range(MAX_CAS_ATTEMPTS):
        order = await orders_service.find_by_order_id(event.order_id)
        if order.status == CAPTURED:
            entry = await _heal_capture(order, event.payment_id)
            if entry is None:
                log.info("webhook_duplicate")
                return result(WebhookOutcome.ALREADY_CAPTURED)
            await _after_capture(order, event.payment_id)
            return result(WebhookOutcome.CAPTURED, entry, order.tokens)
        if order.status in (FAILED, EXPIRED):
            log.warning("webhook_order_closed", status=order.status)
            raise OrderClosedError(order.order_id, order.status)
        if order.payment_id and order.payment_id != event.payment_id:
            log.warning("payment_id_mismatch", channel="webhook", stored=order.payment_id)
            raise PaymentIdMismatchError(order.order_id, order.payment_id, event.payment_id)
        _check_amount(order, event)

        try:
            entry = await _capture_and_credit(order, event.payment_id)
        except ConflictError:
            log.info("capture_cas_lost", attempt=attempt)
            continue
        if entry is None:
            return result(WebhookOutcome.ALREADY_CAPTURED)

        await _after_capture(order, event.payment_id)
        return result(WebhookOutcome.CAPTURED, entry, order.tokens)

    raise ConflictError("Order kept changing during capture", details={"order_id": event.order_id})


async def _handle_failed(event: AuthenticatedEvent) -> WebhookResult:
    """
    A failed payment closes the order only when it is the payment the client already verified.
    A pending order stays open: Razorpay lets the customer retry with another payment.
    """
    if not event.order_id:
        raise BadRequestError("Payment entity missing order_id")
    reason = event.error_description or "payment failed"
    outcome = WebhookOutcome.IGNORED
    for attempt in range(MAX_CAS_ATTEMPTS):
        order = await orders_service.find_by_order_id(event.order_id)
        if order.status == VERIFIED and order.payment_id == event.payment_id:
            try:
                await orders_service.transition(
                    order.order_id,
                    VERIFIED,
                    FAILED,
                    {"failure_reason": reason},
                    expected_payment_id=event.payment_id,
                )
            except ConflictError:
                continue
            log.info("order_failed", reason=reason)
            await log_event(str(order.user_id), "order_failed", "order", order.order_id, {"reason": reason})
            outcome = WebhookOutcome.FAILED
        elif order.status == PENDING:
            await orders_service.note_failure(order.order_id, reason)
            outcome = WebhookOutcome.ACKNOWLEDGED
        break
    return WebhookResult(
        outcome=outcome,
        event_type=event.event_type,
        order_id=event.order_id,
        payment_id=event.payment_id,
    )


async def handle_webhook(
    raw_body: bytes,
    signature: str | None,
    event_id: str | None = None,
    verifier: SignatureVerifier | None = None,
) -> WebhookResult:
    """Authoritative channel. Verifies over the raw bytes, records the delivery, then dispatches."""
    verifier = verifier or get_verifier()
    event = verifier.verify(Channel.WEBHOOK, WebhookPayload(raw_body, signature, event_id))
    bind_order(event.order_id, event.payment_id)
    log.info("webhook_received", event_type=event.event_type, event_id=event.event_id)
    key = await _record_event(event)

    try:
        if event.event_type == CAPTURED_EVENT:
            result = await _handle_captured(event)
        elif event.event_type == FAILED_EVENT:
            result = await _handle_failed(event)
        else:
            result = WebhookResult(
                outcome=WebhookOutcome.IGNORED,
                event_type=event.event_type,
                order_id=event.order_id,
                payment_id=event.payment_id,
            )
    except UnknownOrderError:
        log.warning("webhook_unknown_order")
        await _finish_event(key, "unknown_order")
        raise
    except AppError as e:
        await _finish_event(key, "rejected", error=e.code)
        raise

    await _finish_event(key, result.outcome.value)
    return result


# Expiry sweep


async def expire_stale_pending_orders(now: datetime | None = None) -> int:
    """Expire pending/verified orders older than ORDER_TTL_MINUTES. Returns how many were expired."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(minutes=get_settings().order_ttl_minutes)
    expired = 0
    for order in await orders_service.list_stale(cutoff):
        try:
            await orders_service.transition(
                order.order_id,
                order.status,
                EXPIRED,
                {"failure_reason": "expired"},
                expected_payment_id=order.payment_id,
            )
        except ConflictError:
            # A webhook or verification moved it since we listed it
            log.info("order_expiry_skipped", order_id=order.order_id)
            continue
        expired += 1
        log.info("order_expired", order_id=order.order_id, previous_status=order.status)
        await log_event(str(order.user_id), "order_expired", "order", order.order_id, {"previous_status": order.status})
    if expired:
        log.info("orders_expired", count=expired, cutoff=cutoff.isoformat())
    return expired
