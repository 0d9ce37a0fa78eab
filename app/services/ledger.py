"""Token ledger: append-only entries plus the TokenAccount running totals derived from them."""

import uuid
from datetime import datetime

from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Set
from beanie.odm.queries.update import UpdateResponse
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import BadRequestError, DuplicateCreditError, InsufficientBalanceError
from app.core.logging import get_logger
from app.models.token_account import TokenAccount
from app.models.token_ledger import TokenLedgerEntry

log = get_logger(__name__)

CREDIT_TYPES = ("purchase", "migration", "adjustment")
BUCKETS = ("free", "paid")
# Free models burn free tokens first; paid/premium models burn paid tokens first
PAID_FIRST_MODEL_TYPES = ("paid", "premium", "enterprise")


class TokenBalance(BaseModel):
    free_tokens: int = 0
    paid_tokens: int = 0
    balance: int = 0
    total_used: int = 0


def purchase_key(order_id: str) -> str:
    return f"purchase:{order_id}"


def migration_key(user_id: PydanticObjectId) -> str:
    return f"migration:{user_id}"


def _to_balance(account: TokenAccount | None) -> TokenBalance:
    if account is None:
        return TokenBalance()
    return TokenBalance(
        free_tokens=account.free_tokens,
        paid_tokens=account.paid_tokens,
        balance=account.balance,
        total_used=account.total_used,
    )


async def _ensure_account(user_id: PydanticObjectId, session=None) -> None:
    """Create the account lazily; $setOnInsert keeps concurrent first writes from clobbering each other."""
    now = datetime.utcnow()
    await TokenAccount.find_one(TokenAccount.user_id == user_id, session=session).update(
        {
            "$setOnInsert": {
                "free_tokens": 0,
                "paid_tokens": 0,
                "balance": 0,
                "total_used": 0,
                "created_at": now,
                "updated_at": now,
            }
        },
        upsert=True,
        session=session,
    )


async def _inc_account(
    user_id: PydanticObjectId,
    free_delta: int,
    paid_delta: int,
    used_delta: int = 0,
    session=None,
) -> TokenAccount | None:
    """Apply deltas in one $inc. Debits are guarded so neither bucket can go negative."""
    filters = [TokenAccount.user_id == user_id]
    if free_delta < 0:
        filters.append(TokenAccount.free_tokens >= -free_delta)
    if paid_delta < 0:
        filters.append(TokenAccount.paid_tokens >= -paid_delta)
    return await TokenAccount.find_one(*filters, session=session).update(
        {
            "$inc": {
                "free_tokens": free_delta,
                "paid_tokens": paid_delta,
                "balance": free_delta + paid_delta,
                "total_used": used_delta,
            },
            "$set": {"updated_at": datetime.utcnow()},
        },
        session=session,
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def has_purchase(order_id: str, session=None) -> bool:
    """True once the purchase entry for order_id is in the ledger."""
    entry = await TokenLedgerEntry.find_one(TokenLedgerEntry.idempotency_key == purchase_key(order_id), session=session)
    return entry is not None


async def get_balance(user_id: PydanticObjectId, session=None) -> TokenBalance:
    """Return current token state for user (zeros if no account yet)."""
    account = await TokenAccount.find_one(TokenAccount.user_id == user_id, session=session)
    return _to_balance(account)


async def credit(
    user_id: PydanticObjectId,
    amount: int,
    kind: str,
    order_id: str | None = None,
    note: str = "",
    bucket: str = "paid",
    idempotency_key: str | None = None,
    session=None,
) -> TokenLedgerEntry:
    """
    Append a positive ledger entry and add it to the account.

    The entry is written first: its unique idempotency key is what rejects a second
    credit for the same order (DuplicateCreditError). Without a transaction a failed
    account update removes the entry again before propagating.
    """
    if amount <= 0:
        raise BadRequestError("Credit amount must be positive")
    if kind not in CREDIT_TYPES:
        raise BadRequestError(f"Invalid credit type: {kind}")
    if bucket not in BUCKETS:
        raise BadRequestError(f"Invalid bucket: {bucket}")
    if kind == "purchase":
        if not order_id:
            raise BadRequestError("Purchase credit requires an order id")
        idempotency_key = purchase_key(order_id)
    elif kind == "migration" and idempotency_key is None:
        idempotency_key = migration_key(user_id)
    key = idempotency_key or f"{kind}:{uuid.uuid4()}"

    free_amount = amount if bucket == "free" else 0
    paid_amount = amount - free_amount
    await _ensure_account(user_id, session=session)

    entry = TokenLedgerEntry(
        user_id=user_id,
        type=kind,
        amount=amount,
        free_amount=free_amount,
        paid_amount=paid_amount,
        order_id=order_id,
        note=note,
        idempotency_key=key,
    )
    try:
        await entry.insert(session=session)
    except DuplicateKeyError as e:
        raise DuplicateCreditError(key) from e

    try:
        await _inc_account(user_id, free_amount, paid_amount, session=session)
    except BaseException:
        # Cancellation included: an entry without its $inc would hide the credit from a retry
        if session is None:
            await entry.delete()
        log.exception("ledger_account_update_failed", user_id=str(user_id), idempotency_key=key)
        raise
    log.info("ledger_credit", user_id=str(user_id), type=kind, amount=amount, bucket=bucket, order_id=order_id)
    return entry


def _split_debit(amount: int, free_available: int, paid_available: int, model_type: str) -> tuple[int, int]:
    if model_type in PAID_FIRST_MODEL_TYPES:
        from_paid = min(paid_available, amount)
        return amount - from_paid, from_paid
    from_free = min(free_available, amount)
    return from_free, amount - from_free


async def debit(
    user_id: PydanticObjectId,
    amount: int,
    model_type: str = "free",
    note: str = "",
) -> TokenLedgerEntry:
    """
    Spend tokens for usage. The conditional $inc makes a negative bucket impossible;
    a lost race is retried once against fresh totals.
    """
    if amount <= 0:
        raise BadRequestError("Debit amount must be positive")
    available = 0
    for attempt in range(2):
        current = await get_balance(user_id)
        available = current.balance
        if available < amount:
            raise InsufficientBalanceError(required=amount, available=available)
        from_free, from_paid = _split_debit(amount, current.free_tokens, current.paid_tokens, model_type)
        account = await _inc_account(user_id, -from_free, -from_paid, used_delta=amount)
        if account is None:
            log.warning("ledger_debit_race", user_id=str(user_id), attempt=attempt)
            continue
        entry = TokenLedgerEntry(
            user_id=user_id,
            type="usage",
            amount=-amount,
            free_amount=-from_free,
            paid_amount=-from_paid,
            note=note or f"Usage - {model_type} model",
            idempotency_key=f"usage:{uuid.uuid4()}",
        )
        try:
            await entry.insert()
        except BaseException:
            await _inc_account(user_id, from_free, from_paid, used_delta=-amount)
            raise
        return entry
    raise InsufficientBalanceError(required=amount, available=available)


async def recompute_balance(user_id: PydanticObjectId, repair: bool = False) -> TokenBalance:
    """Fold every ledger entry for user. With repair=True the account is overwritten with the result."""
    folded = TokenBalance()
    async for entry in TokenLedgerEntry.find(TokenLedgerEntry.user_id == user_id):
        folded.free_tokens += entry.free_amount
        folded.paid_tokens += entry.paid_amount
        if entry.type == "usage":
            folded.total_used += -entry.amount
    folded.balance = folded.free_tokens + folded.paid_tokens
    if repair:
        await _ensure_account(user_id)
        await TokenAccount.find_one(TokenAccount.user_id == user_id).update(
            Set(
                {
                    TokenAccount.free_tokens: folded.free_tokens,
                    TokenAccount.paid_tokens: folded.paid_tokens,
                    TokenAccount.balance: folded.balance,
                    TokenAccount.total_used: folded.total_used,
                    TokenAccount.updated_at: datetime.utcnow(),
                }
            )
        )
        log.info("ledger_balance_repaired", user_id=str(user_id), balance=folded.balance)
    return folded


async def list_entries(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[TokenLedgerEntry]:
    """Ledger entries for user, newest first."""
    return (
        await TokenLedgerEntry.find(TokenLedgerEntry.user_id == user_id)
        .sort(-TokenLedgerEntry.timestamp)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
