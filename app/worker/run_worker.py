"""Worker entrypoint: python -m app.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from app.worker import tasks


class WorkerSettings:
    redis_settings = tasks.redis_settings()
    functions = [tasks.migrate_legacy_credits]
    # unique: one sweep at a time even with several workers
    cron_jobs = [cron(tasks.expire_stale_orders, minute=tasks.sweep_minutes(), second=0, unique=True)]
    on_startup = tasks.startup
    on_shutdown = tasks.shutdown


if __name__ == "__main__":
    run_worker(WorkerSettings)
