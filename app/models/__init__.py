from app.models.user import User
from app.models.plan import Plan
from app.models.payment_order import PaymentOrder
from app.models.token_account import TokenAccount
from app.models.token_ledger import TokenLedgerEntry
from app.models.webhook_event import WebhookEvent
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob

__all__ = [
    "User",
    "Plan",
    "PaymentOrder",
    "TokenAccount",
    "TokenLedgerEntry",
    "WebhookEvent",
    "AuditLog",
    "FailedJob",
]
