"""ARQ jobs: the stale order sweep and the one-off legacy credit migration."""

from typing import Any, Awaitable

from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.logging import get_logger

log = get_logger(__name__)


def _job_id(ctx: dict[str, Any]) -> str:
    job_id = ctx.get("job_id")
    return job_id if isinstance(job_id, str) else "adhoc"


async def _run_with_dlq(job_name: str, job_id: str, args: list[Any], kwargs: dict[str, Any], work: Awaitable[Any]) -> Any:
    """Await work; a failure is written to failed_jobs and re-raised so ARQ records it too."""
    from app.models.failed_job import FailedJob
    try:
        return await work
    except Exception as exc:
        await FailedJob(job_name=job_name, job_id=job_id, args=args, kwargs=kwargs, reason=str(exc)[:2000]).insert()
        log.exception("job_failed", job=job_name, job_id=job_id)
        raise


async def expire_stale_orders(ctx: dict[str, Any]) -> int:
    from app.services.reconciliation import expire_stale_pending_orders
    expired = await _run_with_dlq("expire_stale_orders", _job_id(ctx), [], {}, expire_stale_pending_orders())
    log.info("job_done", job="expire_stale_orders", expired=expired)
    return expired


async def migrate_legacy_credits(ctx: dict[str, Any]) -> dict[str, int]:
    from app.db import migrate_credits
    report = await _run_with_dlq("migrate_legacy_credits", _job_id(ctx), [], {}, migrate_credits.migrate_legacy_credits())
    return report.model_dump()


async def startup(ctx: dict[str, Any]) -> None:
    from app.core.logging import configure_logging
    from app.db.init import init_db
    configure_logging(debug=get_settings().debug, service="tokenpay-worker")
    await init_db()
    log.info("worker_started")


async def shutdown(ctx: dict[str, Any]) -> None:
    log.info("worker_stopped")


def redis_settings() -> RedisSettings:
    return RedisSettings.from_dsn(get_settings().redis_url)


def sweep_minutes() -> set[int]:
    """Minutes past the hour at which the sweep fires, every EXPIRY_SWEEP_MINUTES."""
    step = min(get_settings().expiry_sweep_minutes, 60)
    return set(range(0, 60, step))
