from datetime import datetime

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field

ENTRY_TYPES = ("purchase", "migration", "usage", "adjustment")


class TokenLedgerEntry(Document):
    """Immutable record of one balance change. The ledger is the source of truth for TokenAccount."""
    user_id: PydanticObjectId
    type: str  # purchase, migration, usage, adjustment
    amount: int  # signed, == free_amount + paid_amount
    free_amount: int = 0
    paid_amount: int = 0
    order_id: str | None = None  # set for purchase
    note: str = ""
    # purchase:<order_id> or migration:<user_id>; unique so a purchase is written at most once
    idempotency_key: Indexed(str, unique=True)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "token_ledger"
        indexes = [
            [("user_id", 1), ("timestamp", -1)],
            [("order_id", 1)],
        ]
