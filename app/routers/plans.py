from beanie import PydanticObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.deps import get_current_user
from app.models.plan import Plan
from app.models.user import User
from app.services import gateway
from app.services import orders as orders_service
from app.services import plans as plans_service
from app.services import reconciliation

router = APIRouter()


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(min_length=1)
    razorpay_payment_id: str = Field(min_length=1)
    razorpay_signature: str = Field(min_length=1)
    amount: int | None = None  # paise, as shown at checkout


def plan_out(plan: Plan) -> dict:
    return {
        "id": str(plan.id),
        "name": plan.name,
        "display_name": plan.display_name,
        "description": plan.description,
        "price_inr": plan.price_inr,
        "tokens": plan.tokens,
        "model_type": plan.model_type,
        "features": plan.features,
        "sort_order": plan.sort_order,
    }


@router.get("")
async def list_plans(model_type: str | None = None):
    """Active plans, catalogue order."""
    plans = await plans_service.list_active_plans(model_type)
    return {"plans": [plan_out(p) for p in plans], "results": len(plans)}


@router.get("/{plan_id}")
async def get_plan(plan_id: PydanticObjectId):
    plan = await plans_service.get_plan(plan_id)
    return {"plan": plan_out(plan)}


@router.post("/{plan_id}/orders")
async def create_order(plan_id: PydanticObjectId, user: User = Depends(get_current_user)):
    """Create Razorpay order for the plan; frontend opens checkout with order_id and key_id."""
    order = await orders_service.create_order(user.id, plan_id)
    return {
        "order_id": order.order_id,
        "amount": order.amount,
        "currency": order.currency,
        "key_id": gateway.public_key_id(),
    }


@router.post("/{plan_id}/verify-payment")
async def verify_payment(
    plan_id: PydanticObjectId,
    body: VerifyPaymentRequest,
    user: User = Depends(get_current_user),
):
    """Checkout handler callback. Provisional only: tokens arrive with the payment.captured webhook."""
    result = await reconciliation.handle_client_verification(
        user.id,
        plan_id,
        body.razorpay_order_id,
        body.razorpay_payment_id,
        body.razorpay_signature,
        amount=body.amount,
    )
    return result.model_dump()
