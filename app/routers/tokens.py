from fastapi import APIRouter, Depends, Query

from app.core.pagination import DEFAULT_LIMIT, MAX_LIMIT, Page, paginate
from app.deps import get_current_user
from app.models.payment_order import PaymentOrder
from app.models.token_ledger import TokenLedgerEntry
from app.models.user import User
from app.services import ledger
from app.services import orders as orders_service

router = APIRouter()


def entry_out(e: TokenLedgerEntry) -> dict:
    return {
        "id": str(e.id),
        "type": e.type,
        "amount": e.amount,
        "free_amount": e.free_amount,
        "paid_amount": e.paid_amount,
        "order_id": e.order_id,
        "note": e.note,
        "timestamp": e.timestamp.isoformat(),
    }


def order_out(o: PaymentOrder) -> dict:
    return {
        "order_id": o.order_id,
        "plan_id": str(o.plan_id),
        "amount": o.amount,
        "currency": o.currency,
        "tokens": o.tokens,
        "status": o.status,
        "payment_id": o.payment_id,
        "created_at": o.created_at.isoformat(),
        "updated_at": o.updated_at.isoformat(),
    }


@router.get("/balance")
async def tokens_balance(user: User = Depends(get_current_user)):
    """Return free / paid / total token balance."""
    bal = await ledger.get_balance(user.id)
    return bal.model_dump()


@router.get("/ledger", response_model=Page[dict])
async def tokens_ledger(
    user: User = Depends(get_current_user),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    offset: int = Query(0, ge=0),
):
    """Return ledger entries for current user (newest first)."""
    limit, offset = paginate(limit, offset)
    entries = await ledger.list_entries(user.id, limit, offset)
    return Page[dict](items=[entry_out(e) for e in entries], limit=limit, offset=offset)


@router.get("/orders", response_model=Page[dict])
async def tokens_orders(
    user: User = Depends(get_current_user),
    limit: int = Query(20, ge=1, le=MAX_LIMIT),
    offset: int = Query(0, ge=0),
):
    """Purchase attempts for current user (newest first)."""
    limit, offset = paginate(limit, offset)
    orders = await orders_service.list_for_user(user.id, limit, offset)
    return Page[dict](items=[order_out(o) for o in orders], limit=limit, offset=offset)
