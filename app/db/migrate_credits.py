"""
Fold the deprecated flat `credits` counter on users into free tokens.

Usage: python -m app.db.migrate_credits

Safe to re-run: flagged users are skipped, and a user whose migration entry was written by a run
that died before setting the flag is recognised by the entry's idempotency key.
"""

import asyncio
from datetime import datetime

from beanie.odm.operators.update.general import Set
from pydantic import BaseModel

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import DuplicateCreditError
from app.core.logging import configure_logging, get_logger
from app.models.user import User
from app.services import ledger

log = get_logger(__name__)


class MigrationReport(BaseModel):
    migrated: int = 0
    skipped: int = 0
    credited_tokens: int = 0


async def migrate_user(user: User) -> int:
    """Migrate one unflagged user; returns tokens credited (0 when nothing to move)."""
    legacy_credits = max(user.credits or 0, 0)
    credited = 0
    if legacy_credits > 0:
        try:
            await ledger.credit(
                user.id,
                legacy_credits,
                "migration",
                note="Migrated legacy credits into free tokens",
                bucket="free",
            )
            credited = legacy_credits
        except DuplicateCreditError:
            log.info("legacy_credits_already_in_ledger", user_id=str(user.id))
    await User.find_one(User.id == user.id, User.migrated_credits_to_tokens != True).update(  # noqa: E712
        Set(
            {
                User.migrated_credits_to_tokens: True,
                User.credits: 0,
                User.updated_at: datetime.utcnow(),
            }
        )
    )
    return credited


async def migrate_legacy_credits() -> MigrationReport:
    report = MigrationReport()
    async for user in User.find_all():
        if user.migrated_credits_to_tokens:
            report.skipped += 1
            continue
        credited = await migrate_user(user)
        report.migrated += 1
        report.credited_tokens += credited
        if credited:
            await log_event(str(user.id), "legacy_credits_migrated", "token_account", str(user.id), {"tokens": credited})
    log.info(
        "legacy_credits_migrated",
        migrated=report.migrated,
        skipped=report.skipped,
        credited_tokens=report.credited_tokens,
    )
    return report


async def main() -> None:
    from app.db.init import init_db
    configure_logging(debug=get_settings().debug)
    await init_db()
    await migrate_legacy_credits()


if __name__ == "__main__":
    asyncio.run(main())
