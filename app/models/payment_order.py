from datetime import datetime

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field

PENDING = "pending"
VERIFIED = "verified"
CAPTURED = "captured"
FAILED = "failed"
EXPIRED = "expired"

ORDER_STATUSES = (PENDING, VERIFIED, CAPTURED, FAILED, EXPIRED)
OPEN_STATUSES = (PENDING, VERIFIED)
TERMINAL_STATUSES = (CAPTURED, FAILED, EXPIRED)

# Forward-only lifecycle
ALLOWED_TRANSITIONS = {
    PENDING: {VERIFIED, CAPTURED, FAILED, EXPIRED},
    VERIFIED: {CAPTURED, FAILED, EXPIRED},
    CAPTURED: set(),
    FAILED: set(),
    EXPIRED: set(),
}


class PaymentOrder(Document):
    """One purchase attempt, keyed by the Razorpay order id. Never deleted."""
    order_id: Indexed(str, unique=True)
    user_id: PydanticObjectId
    plan_id: PydanticObjectId
    amount: int  # paise
    currency: str = "INR"
    tokens: int  # grant snapshotted from the plan at creation
    status: str = PENDING
    payment_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    class Settings:
        name = "payment_orders"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("status", 1), ("created_at", 1)],
        ]
