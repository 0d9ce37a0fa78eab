from datetime import datetime
from typing import Any

from beanie import Document, Indexed
from pydantic import Field


class WebhookEvent(Document):
    """Authenticated gateway delivery, kept for audit and redelivery counting."""
    provider: str = "razorpay"
    event_id: Indexed(str, unique=True)
    event_type: str
    order_id: str | None = None
    payment_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    outcome: str | None = None  # captured, already_captured, failed, ignored, unknown_order, rejected
    error: str | None = None
    attempts: int = 1
    processed_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "webhook_events"
        indexes = [
            [("payment_id", 1)],
            [("order_id", 1)],
            [("created_at", -1)],
        ]
