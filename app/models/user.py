from datetime import datetime

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class User(Document):
    """Chat account. Owned by the chat application; tokens live in TokenAccount."""
    email: Indexed(str, unique=True)
    name: str = ""
    role: str = "user"  # "user" | "admin"
    is_active: bool = True
    session_version: int = 0
    current_plan_id: PydanticObjectId | None = None
    # Deprecated flat counter, folded into free tokens by app.db.migrate_credits
    credits: int = 0
    migrated_credits_to_tokens: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
