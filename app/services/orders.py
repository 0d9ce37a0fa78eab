"""Order store: Razorpay order creation and compare-and-swap status transitions."""

import time
from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from beanie.odm.operators.find.comparison import In
from beanie.odm.operators.update.general import Set
from beanie.odm.queries.update import UpdateResponse

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import ConflictError, NotFoundError, UnknownOrderError
from app.core.logging import get_logger
from app.models.payment_order import ALLOWED_TRANSITIONS, OPEN_STATUSES, PENDING, PaymentOrder
from app.models.user import User
from app.services import gateway
from app.services import plans as plans_service

log = get_logger(__name__)

_UNSET: Any = object()


async def create_order(user_id: PydanticObjectId, plan_id: PydanticObjectId) -> PaymentOrder:
    """Create the Razorpay order for a plan and persist it as pending."""
    plan = await plans_service.get_purchasable_plan(plan_id)
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    currency = get_settings().default_currency
    gateway_order = gateway.create_gateway_order(
        amount_paise=plan.amount_paise,
        currency=currency,
        receipt=gateway.build_receipt(str(plan.id), int(time.time() * 1000)),
        notes={"plan_id": str(plan.id), "user_id": str(user_id)},
    )
    order = PaymentOrder(
        order_id=gateway_order["id"],
        user_id=user_id,
        plan_id=plan.id,
        amount=gateway_order.get("amount", plan.amount_paise),
        currency=gateway_order.get("currency", currency),
        tokens=plan.tokens,
    )
    await order.insert()
    log.info("order_created", order_id=order.order_id, user_id=str(user_id), plan_id=str(plan.id), amount=order.amount)
    await log_event(
        str(user_id),
        "order_created",
        "order",
        order.order_id,
        {"plan_id": str(plan.id), "amount": order.amount, "tokens": order.tokens},
    )
    return order


async def find_by_order_id(order_id: str, session=None) -> PaymentOrder:
    order = await PaymentOrder.find_one(PaymentOrder.order_id == order_id, session=session)
    if not order:
        raise UnknownOrderError(order_id)
    return order


async def transition(
    order_id: str,
    expected_status: str,
    new_status: str,
    fields: dict[str, Any] | None = None,
    expected_payment_id: str | None = _UNSET,
    session=None,
    allow_backward: bool = False,
) -> PaymentOrder:
    """
    Move an order from expected_status to new_status in one find_one_and_update.

    The filter carries the expected status (and payment id when given), so the write only lands
    if nobody changed the order since the caller read it. Raises ConflictError otherwise.
    allow_backward is reserved for undoing a capture whose ledger write failed.
    """
    if not allow_backward and new_status not in ALLOWED_TRANSITIONS.get(expected_status, set()):
        raise ConflictError(
            f"Illegal transition {expected_status} -> {new_status}",
            details={"order_id": order_id},
        )
    filters = [PaymentOrder.order_id == order_id, PaymentOrder.status == expected_status]
    if expected_payment_id is not _UNSET:
        filters.append(PaymentOrder.payment_id == expected_payment_id)
    updates = dict(fields or {})
    updates["status"] = new_status
    updates["updated_at"] = datetime.utcnow()
    updated = await PaymentOrder.find_one(*filters, session=session).update(
        Set(updates),
        session=session,
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        raise ConflictError(
            "Order changed concurrently",
            details={"order_id": order_id, "expected_status": expected_status},
        )
    return updated


async def note_failure(order_id: str, reason: str) -> None:
    """Record a failed payment attempt on a still-pending order without closing it."""
    await PaymentOrder.find_one(PaymentOrder.order_id == order_id, PaymentOrder.status == PENDING).update(
        Set({PaymentOrder.failure_reason: reason, PaymentOrder.updated_at: datetime.utcnow()})
    )


async def list_stale(cutoff: datetime, limit: int = 500) -> list[PaymentOrder]:
    """Open orders created before cutoff, oldest first."""
    return (
        await PaymentOrder.find(
            In(PaymentOrder.status, list(OPEN_STATUSES)),
            PaymentOrder.created_at < cutoff,
        )
        .sort(+PaymentOrder.created_at)
        .limit(limit)
        .to_list()
    )


async def list_for_user(user_id: PydanticObjectId, limit: int = 20, offset: int = 0) -> list[PaymentOrder]:
    return (
        await PaymentOrder.find(PaymentOrder.user_id == user_id)
        .sort(-PaymentOrder.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
