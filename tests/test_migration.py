"""Legacy credits -> free tokens."""

import pytest

from app.db.migrate_credits import migrate_legacy_credits
from app.models.token_ledger import TokenLedgerEntry
from app.models.user import User
from app.services import ledger

pytestmark = pytest.mark.asyncio


async def test_migrates_credits_once(make_user):
    user = await make_user(credits=500)
    report = await migrate_legacy_credits()
    assert report.migrated == 1
    assert report.credited_tokens == 500

    balance = await ledger.get_balance(user.id)
    assert balance.free_tokens == 500
    assert balance.paid_tokens == 0
    stored = await User.get(user.id)
    assert stored.migrated_credits_to_tokens is True
    assert stored.credits == 0

    again = await migrate_legacy_credits()
    assert again.migrated == 0
    assert again.skipped == 1
    assert (await ledger.get_balance(user.id)).free_tokens == 500
    assert await TokenLedgerEntry.find(TokenLedgerEntry.type == "migration").count() == 1


async def test_user_without_credits_is_flagged(make_user):
    user = await make_user()
    report = await migrate_legacy_credits()
    assert report.migrated == 1
    assert report.credited_tokens == 0
    assert (await User.get(user.id)).migrated_credits_to_tokens is True
    assert await TokenLedgerEntry.count() == 0


async def test_interrupted_run_is_not_credited_twice(make_user):
    # Previous run wrote the entry, then died before setting the flag
    user = await make_user(credits=500)
    await ledger.credit(user.id, 500, "migration", bucket="free")

    report = await migrate_legacy_credits()
    assert report.migrated == 1
    assert report.credited_tokens == 0
    assert (await ledger.get_balance(user.id)).free_tokens == 500
    assert (await User.get(user.id)).migrated_credits_to_tokens is True


async def test_migrated_tokens_are_spendable(make_user):
    user = await make_user(credits=500)
    await migrate_legacy_credits()
    await ledger.debit(user.id, 200, model_type="free")
    assert (await ledger.get_balance(user.id)).free_tokens == 300
