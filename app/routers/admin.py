from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.core.audit import log_event, trail
from app.core.pagination import Page, paginate
from app.db.migrate_credits import migrate_legacy_credits
from app.deps import require_admin
from app.models.user import User
from app.models.webhook_event import WebhookEvent
from app.routers.plans import plan_out
from app.routers.tokens import order_out
from app.services import ledger
from app.services import orders as orders_service
from app.services import plans as plans_service
from app.services import reconciliation

router = APIRouter()


class CreatePlanRequest(BaseModel):
    name: str = Field(min_length=1)
    display_name: str = Field(min_length=1)
    description: str = ""
    price_inr: int = Field(ge=0)
    tokens: int = Field(ge=0)
    model_type: str = "paid"
    features: list[str] = Field(default_factory=list)
    is_active: bool = True
    sort_order: int = 0


class UpdatePlanRequest(BaseModel):
    display_name: str | None = None
    description: str | None = None
    price_inr: int | None = Field(default=None, ge=0)
    tokens: int | None = Field(default=None, ge=0)
    model_type: str | None = None
    features: list[str] | None = None
    is_active: bool | None = None
    sort_order: int | None = None


@router.post("/plans", status_code=201)
async def admin_create_plan(body: CreatePlanRequest, user: User = Depends(require_admin)):
    """Admin: add a plan to the catalogue."""
    plan = await plans_service.create_plan(body.model_dump())
    await log_event(str(user.id), "plan_created", "plan", str(plan.id), {"name": plan.name})
    return {"plan": plan_out(plan)}


@router.patch("/plans/{plan_id}")
async def admin_update_plan(plan_id: PydanticObjectId, body: UpdatePlanRequest, user: User = Depends(require_admin)):
    """Admin: edit a plan. Orders already created keep their amount and grant."""
    plan = await plans_service.update_plan(plan_id, body.model_dump(exclude_unset=True))
    await log_event(str(user.id), "plan_updated", "plan", str(plan.id), body.model_dump(exclude_unset=True))
    return {"plan": plan_out(plan)}


@router.get("/webhook-events", response_model=Page[dict])
async def admin_webhook_events(
    user: User = Depends(require_admin),
    outcome: str | None = None,
    payment_id: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Admin: recent gateway deliveries for debugging."""
    limit, offset = paginate(limit, offset)
    filters = []
    if outcome:
        filters.append(WebhookEvent.outcome == outcome)
    if payment_id:
        filters.append(WebhookEvent.payment_id == payment_id)
    events = await WebhookEvent.find(*filters).sort(-WebhookEvent.created_at).skip(offset).limit(limit).to_list()
    items = [
        {
            "event_id": e.event_id,
            "event_type": e.event_type,
            "order_id": e.order_id,
            "payment_id": e.payment_id,
            "outcome": e.outcome,
            "error": e.error,
            "attempts": e.attempts,
            "created_at": e.created_at.isoformat(),
            "processed_at": e.processed_at.isoformat() if e.processed_at else None,
        }
        for e in events
    ]
    return Page[dict](items=items, limit=limit, offset=offset)


@router.post("/orders/expire")
async def admin_expire_orders(user: User = Depends(require_admin)):
    """Admin: run the stale order sweep now."""
    expired = await reconciliation.expire_stale_pending_orders()
    return {"expired": expired}


@router.post("/migrations/legacy-credits")
async def admin_migrate_legacy_credits(user: User = Depends(require_admin)):
    """Admin: fold legacy credits into free tokens. Re-runnable."""
    report = await migrate_legacy_credits()
    return report.model_dump()


@router.post("/users/{user_id}/balance/recompute")
async def admin_recompute_balance(
    user_id: PydanticObjectId,
    repair: bool = False,
    user: User = Depends(require_admin),
):
    """Admin: compare the cached account with a replay of the ledger; optionally overwrite it."""
    cached = await ledger.get_balance(user_id)
    folded = await ledger.recompute_balance(user_id, repair=repair)
    return {
        "cached": cached.model_dump(),
        "ledger": folded.model_dump(),
        "consistent": cached == folded,
        "repaired": repair and cached != folded,
    }


@router.get("/orders/{order_id}")
async def admin_order_detail(order_id: str, user: User = Depends(require_admin)):
    """Admin: one order with its audit trail, for support tickets about missing tokens."""
    order = await orders_service.find_by_order_id(order_id)
    events = await trail("order", order_id)
    return {
        "order": {**order_out(order), "user_id": str(order.user_id), "failure_reason": order.failure_reason},
        "audit": [
            {"event_type": e.event_type, "user_id": e.user_id, "metadata": e.metadata, "created_at": e.created_at.isoformat()}
            for e in events
        ],
    }
