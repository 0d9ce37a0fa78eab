from fastapi import APIRouter, Header, Request

from app.core.exceptions import (
    OrderClosedError,
    OrderMismatchError,
    PaymentIdMismatchError,
    UnknownOrderError,
)
from app.core.logging import get_logger
from app.services import reconciliation

router = APIRouter()
log = get_logger(__name__)

# Authenticated deliveries we refuse to act on. Redelivery cannot change the answer,
# so they are acknowledged; the WebhookEvent row keeps outcome "rejected" and the code.
REJECTED_DELIVERIES = (OrderClosedError, PaymentIdMismatchError, OrderMismatchError)


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(None, alias="X-Razorpay-Signature"),
    x_razorpay_event_id: str | None = Header(None, alias="X-Razorpay-Event-Id"),
):
    """
    Razorpay webhook: payment.captured -> credit tokens once.

    Any 2xx stops redelivery, so duplicates, unknown orders and rejected deliveries
    are acknowledged; a bad signature is a 400.
    """
    body = await request.body()
    try:
        result = await reconciliation.handle_webhook(body, x_razorpay_signature, event_id=x_razorpay_event_id)
    except UnknownOrderError as e:
        log.warning("webhook_ignored_unknown_order", details=e.details)
        return {"status": "unknown_order"}
    except REJECTED_DELIVERIES as e:
        log.warning("webhook_rejected", code=e.code, details=e.details)
        return {"status": "rejected", "code": e.code, "order_id": e.details.get("order_id")}
    return {"status": result.outcome.value, "order_id": result.order_id}
