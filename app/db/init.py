from contextlib import asynccontextmanager
from typing import AsyncIterator

import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession

from app.core.config import get_settings
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob
from app.models.payment_order import PaymentOrder
from app.models.plan import Plan
from app.models.token_account import TokenAccount
from app.models.token_ledger import TokenLedgerEntry
from app.models.user import User
from app.models.webhook_event import WebhookEvent

DOCUMENT_MODELS = [
    User,
    Plan,
    PaymentOrder,
    TokenAccount,
    TokenLedgerEntry,
    WebhookEvent,
    AuditLog,
    FailedJob,
]

_client: AsyncIOMotorClient | None = None


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(client: AsyncIOMotorClient | None = None) -> None:
    """Connect and register documents. Tests pass an in-memory client."""
    global _client
    settings = get_settings()
    if client is None:
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    _client = client
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)


@asynccontextmanager
async def transaction() -> AsyncIterator[AsyncIOMotorClientSession | None]:
    """
    Yield a session with an open multi-document transaction when MONGODB_TRANSACTIONS is on,
    else None. Callers without a session fall back to compensating writes.
    """
    if not get_settings().mongodb_transactions or _client is None:
        yield None
        return
    async with await _client.start_session() as session:
        async with session.start_transaction():
            yield session
