from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    """Compare-and-swap lost: the stored state no longer matches what the caller expected."""

    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


# Payments / tokens


class InvalidSignatureError(AppError):
    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message, code="INVALID_SIGNATURE", status_code=status.HTTP_400_BAD_REQUEST)


class MisconfiguredSecretError(AppError):
    def __init__(self, message: str = "Payment secret not configured"):
        super().__init__(
            message,
            code="MISCONFIGURED_SECRET",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


class UnknownOrderError(AppError):
    def __init__(self, order_id: str | None = None):
        super().__init__(
            "Order not found",
            code="UNKNOWN_ORDER",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"order_id": order_id} if order_id else None,
        )


class OrderClosedError(AppError):
    def __init__(self, order_id: str, order_status: str):
        super().__init__(
            f"Order is {order_status}",
            code="ORDER_CLOSED",
            status_code=status.HTTP_409_CONFLICT,
            details={"order_id": order_id, "status": order_status},
        )


class PaymentIdMismatchError(AppError):
    def __init__(self, order_id: str, expected: str | None, got: str | None):
        super().__init__(
            "Payment id does not match the order",
            code="PAYMENT_ID_MISMATCH",
            status_code=status.HTTP_409_CONFLICT,
            details={"order_id": order_id, "expected": expected, "got": got},
        )


class OrderMismatchError(AppError):
    def __init__(self, message: str = "Order metadata mismatch", details: dict[str, Any] | None = None):
        super().__init__(message, code="ORDER_MISMATCH", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class DuplicateCreditError(AppError):
    def __init__(self, idempotency_key: str):
        super().__init__(
            "Ledger entry already exists",
            code="DUPLICATE_CREDIT",
            status_code=status.HTTP_409_CONFLICT,
            details={"idempotency_key": idempotency_key},
        )


class InsufficientBalanceError(AppError):
    def __init__(self, required: int, available: int):
        super().__init__(
            "Insufficient tokens",
            code="INSUFFICIENT_BALANCE",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"required": required, "available": available},
        )


class InvalidPlanError(AppError):
    def __init__(self, message: str = "Plan not found or inactive"):
        super().__init__(message, code="INVALID_PLAN", status_code=status.HTTP_404_NOT_FOUND)


def _envelope(request: Request, status_code: int, message: str, code: str, details: dict[str, Any]) -> ORJSONResponse:
    body: dict[str, Any] = {"error": {"message": message, "code": code, "details": details}}
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        body["request_id"] = request_id
    return ORJSONResponse(status_code=status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return _envelope(request, exc.status_code, exc.message, exc.code, exc.details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    return _envelope(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        "VALIDATION_ERROR",
        {"errors": jsonable_encoder(exc.errors())},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from app.core.logging import get_logger
    get_logger(__name__).error("unhandled_exception", path=request.url.path, exc_info=exc)
    return _envelope(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "INTERNAL_ERROR", {})
