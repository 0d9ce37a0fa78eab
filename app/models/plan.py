from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field

MODEL_TYPES = ("free", "paid", "premium", "enterprise", "hybrid")
# Higher rank wins when deciding whether a purchase upgrades the user's current plan
MODEL_TYPE_RANK = {"free": 0, "hybrid": 1, "paid": 1, "premium": 2, "enterprise": 3}


class Plan(Document):
    """Token pack sold through Razorpay."""
    name: Indexed(str, unique=True)
    display_name: str
    description: str = ""
    price_inr: int = Field(ge=0)
    tokens: int = Field(ge=0)
    model_type: str = "paid"
    features: list[str] = Field(default_factory=list)
    is_active: bool = True
    sort_order: int = 0
    total_purchases: int = 0
    total_revenue: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def amount_paise(self) -> int:
        return self.price_inr * 100

    class Settings:
        name = "plans"
        indexes = [
            [("model_type", 1), ("is_active", 1)],
            [("sort_order", 1)],
        ]
