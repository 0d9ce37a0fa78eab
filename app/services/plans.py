"""Plan catalogue: listing, admin edits and purchase statistics."""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Inc, Set
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import BadRequestError, InvalidPlanError, NotFoundError
from app.models.plan import MODEL_TYPE_RANK, MODEL_TYPES, Plan
from app.models.user import User

EDITABLE_FIELDS = (
    "display_name",
    "description",
    "price_inr",
    "tokens",
    "model_type",
    "features",
    "is_active",
    "sort_order",
)


async def list_active_plans(model_type: str | None = None) -> list[Plan]:
    filters = [Plan.is_active == True]  # noqa: E712
    if model_type:
        filters.append(Plan.model_type == model_type)
    return await Plan.find(*filters).sort(+Plan.sort_order).to_list()


async def get_plan(plan_id: PydanticObjectId) -> Plan:
    plan = await Plan.get(plan_id)
    if not plan:
        raise NotFoundError("Plan not found")
    return plan


async def get_purchasable_plan(plan_id: PydanticObjectId) -> Plan:
    """Plan that can back an order: known, active and not free."""
    plan = await Plan.get(plan_id)
    if not plan or not plan.is_active:
        raise InvalidPlanError()
    if plan.price_inr <= 0:
        raise InvalidPlanError("Free plan - no payment required")
    return plan


async def create_plan(data: dict[str, Any]) -> Plan:
    if data.get("model_type", "paid") not in MODEL_TYPES:
        raise BadRequestError(f"Invalid model_type: {data.get('model_type')}")
    plan = Plan(**data)
    try:
        await plan.insert()
    except DuplicateKeyError as e:
        raise BadRequestError("Plan with this name already exists") from e
    return plan


async def update_plan(plan_id: PydanticObjectId, changes: dict[str, Any]) -> Plan:
    """Edit catalogue fields. Existing orders keep the price and grant they were created with."""
    plan = await get_plan(plan_id)
    updates = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
    if "model_type" in updates and updates["model_type"] not in MODEL_TYPES:
        raise BadRequestError(f"Invalid model_type: {updates['model_type']}")
    if not updates:
        return plan
    updates["updated_at"] = datetime.utcnow()
    await plan.update(Set(updates))
    return await get_plan(plan_id)


async def record_purchase(plan_id: PydanticObjectId, user_id: PydanticObjectId, session=None) -> None:
    """Bump plan stats and move the user onto the plan if it ranks at least as high as the current one."""
    plan = await Plan.get(plan_id, session=session)
    if not plan:
        return
    await Plan.find_one(Plan.id == plan_id, session=session).update(
        Inc({Plan.total_purchases: 1, Plan.total_revenue: plan.price_inr}),
        session=session,
    )
    user = await User.get(user_id, session=session)
    if not user:
        return
    current = await Plan.get(user.current_plan_id, session=session) if user.current_plan_id else None
    if current is None or MODEL_TYPE_RANK.get(plan.model_type, 0) >= MODEL_TYPE_RANK.get(current.model_type, 0):
        await User.find_one(User.id == user_id, session=session).update(
            Set({User.current_plan_id: plan_id, User.updated_at: datetime.utcnow()}),
            session=session,
        )
