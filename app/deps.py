"""FastAPI dependencies: the session issued by the chat app, and the admin gate."""

from beanie import PydanticObjectId
from fastapi import Request
from pydantic import BaseModel, ValidationError

from app.core.exceptions import ForbiddenError, UnauthorizedError
from app.core.security import load_session_cookie
from app.models.user import User

SESSION_COOKIE_NAME = "tokenpay_session"


class SessionClaims(BaseModel):
    user_id: PydanticObjectId
    session_version: int = 0


def _session_token(request: Request) -> str | None:
    # Browser: cookie. Server-to-server and mobile: Bearer
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        return token
    scheme, _, value = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


async def get_current_user(request: Request) -> User:
    token = _session_token(request)
    if not token:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(token)
    if payload is None:
        raise UnauthorizedError("Invalid or expired session")
    try:
        claims = SessionClaims.model_validate(payload)
    except ValidationError as e:
        raise UnauthorizedError("Invalid session") from e
    user = await User.get(claims.user_id)
    if user is None or not user.is_active:
        raise UnauthorizedError("User not found")
    # Bumped on logout-everywhere / role change in the chat app
    if claims.session_version != user.session_version:
        raise UnauthorizedError("Session invalidated")
    return user


async def require_admin(request: Request) -> User:
    user = await get_current_user(request)
    if user.role != "admin":
        raise ForbiddenError("Admin only")
    return user
