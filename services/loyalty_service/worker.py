"""ARQ worker for loyalty service background tasks.

Delivers wallet pass outbox jobs to the provisioner: immediately when a
request enqueues them, and via a once-a-minute sweep for retries.
Run with: arq services.loyalty_service.worker.WorkerSettings
"""

from dotenv import load_dotenv

load_dotenv()

from arq import cron
from libs.common.arq_config import get_redis_settings
from libs.common.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)


# ── Wrapper functions (ARQ requires top-level async callables) ──


async def task_process_wallet_pass_job(ctx: dict, job_id: str):
    """Deliver one wallet pass job enqueued by a request handler."""
    from services.loyalty_service.tasks import process_wallet_pass_job

    status = await process_wallet_pass_job(job_id)
    logger.info("Wallet pass job %s -> %s", job_id, status)


async def task_process_due_wallet_pass_jobs(ctx: dict):
    """Retry pending wallet pass jobs whose backoff has elapsed."""
    from services.loyalty_service.tasks import process_due_wallet_pass_jobs

    processed = await process_due_wallet_pass_jobs()
    if processed:
        logger.info("Wallet pass sweep processed %d jobs", processed)


# ── Worker configuration ──


class WorkerSettings:
    """ARQ worker settings with cron job schedules."""

    redis_settings = get_redis_settings()

    functions = [
        task_process_wallet_pass_job,
        task_process_due_wallet_pass_jobs,
    ]

    cron_jobs = [
        # Every minute, on the minute
        cron(task_process_due_wallet_pass_jobs, second=0, run_at_startup=True),
    ]
