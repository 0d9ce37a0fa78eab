from fastapi import APIRouter, Depends, Response

from app.deps import SESSION_COOKIE_NAME, get_current_user
from app.models.plan import Plan
from app.models.user import User
from app.services import ledger

router = APIRouter()


@router.get("/me")
async def auth_me(user: User = Depends(get_current_user)):
    """Current user with token state and active plan. Requires session."""
    tokens = await ledger.get_balance(user.id)
    plan = await Plan.get(user.current_plan_id) if user.current_plan_id else None
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "tokens": tokens.model_dump(),
        "current_plan": {"id": str(plan.id), "name": plan.display_name, "model_type": plan.model_type} if plan else None,
    }


@router.post("/logout")
async def auth_logout(response: Response):
    """Clear the session cookie."""
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"status": "ok"}
