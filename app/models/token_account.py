from datetime import datetime

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class TokenAccount(Document):
    """Running totals per user; updated with $inc alongside every ledger write."""
    user_id: Indexed(PydanticObjectId, unique=True)
    free_tokens: int = 0
    paid_tokens: int = 0
    balance: int = 0  # free_tokens + paid_tokens
    total_used: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "token_accounts"
