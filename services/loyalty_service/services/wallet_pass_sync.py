"""Wallet pass synchronization through a transactional outbox.

Join/earn/redeem add a ``WalletPassJob`` row inside their own transaction
and return its id. After commit, routers hand the ids to the ARQ queue
for immediate processing; the worker's cron sweep picks up anything the
queue missed. Provisioner failures are retried with exponential backoff
and never affect the transaction that produced the job.
"""

import uuid
from datetime import datetime, timedelta
from typing import Iterable, Optional

from libs.common.arq_config import get_arq_pool
from libs.common.config import get_settings
from libs.common.datetime_utils import as_utc, utc_now
from libs.common.logging import get_logger
from services.loyalty_service.models import (
    LoyaltyMembership,
    LoyaltyProgram,
    WalletPassJob,
    WalletPassJobStatus,
    WalletPassJobType,
    WalletPassStatus,
)
from services.loyalty_service.services.errors import (
    ProvisionerError,
    WalletPassNotConfigured,
)
from services.loyalty_service.services.program_cache import ProgramSnapshot
from services.loyalty_service.services.wallet_pass_client import WalletPassProvisioner
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

STATUS_REWARD_AVAILABLE = "Reward Available!"
STATUS_REWARD_REDEEMED = "Reward Redeemed!"


def pass_field_values(
    program: LoyaltyProgram | ProgramSnapshot,
    balance: int,
    *,
    status: Optional[str] = None,
    last_message: Optional[str] = None,
) -> dict[str, str]:
    """Build the field name -> value map shown on the member's pass."""
    fields = {
        "Points": str(balance),
        "Threshold": str(program.reward_threshold),
        "Status": status or f"{balance}/{program.reward_threshold} {program.stamp_label}",
        "Reward": program.reward_description or "",
    }
    if last_message:
        fields["Last_Message"] = last_message
    return fields


# ---------------------------------------------------------------------------
# Outbox writes (caller commits)
# ---------------------------------------------------------------------------


def enqueue_pass_issue(
    db: AsyncSession, membership: LoyaltyMembership
) -> WalletPassJob:
    job = WalletPassJob(
        id=uuid.uuid4(),
        membership_id=membership.id,
        job_type=WalletPassJobType.ISSUE,
        status=WalletPassJobStatus.PENDING,
        payload={},
        attempts=0,
        next_attempt_at=utc_now(),
    )
    db.add(job)
    return job


def enqueue_pass_update(
    db: AsyncSession,
    membership: LoyaltyMembership,
    program: ProgramSnapshot,
    *,
    status: Optional[str] = None,
    last_message: Optional[str] = None,
) -> Optional[WalletPassJob]:
    """Queue a field refresh for an issued pass; no-op without one.

    A pass still being issued will pick up the current balance when
    its issue job runs.
    """
    if not program.wallet_pass_enabled or not membership.wallet_pass_serial:
        return None
    job = WalletPassJob(
        id=uuid.uuid4(),
        membership_id=membership.id,
        job_type=WalletPassJobType.UPDATE,
        status=WalletPassJobStatus.PENDING,
        payload={"status": status, "last_message": last_message},
        attempts=0,
        next_attempt_at=utc_now(),
    )
    db.add(job)
    return job


async def request_wallet_pass_retry(
    db: AsyncSession, membership: LoyaltyMembership, program: LoyaltyProgram
) -> WalletPassJob:
    """Retry hook: re-issue (or refresh) the member's pass and commit."""
    if not program.wallet_pass_template_id:
        raise WalletPassNotConfigured(
            f"Program {program.public_id} has no wallet pass template"
        )

    if membership.wallet_pass_serial:
        job = enqueue_pass_update(db, membership, ProgramSnapshot.from_model(program))
    else:
        job = enqueue_pass_issue(db, membership)
        membership.wallet_pass_status = WalletPassStatus.PENDING

    await db.commit()
    logger.info(
        "Queued wallet pass %s retry for membership %s (job=%s)",
        job.job_type.value,
        membership.id,
        job.id,
    )
    return job


# ---------------------------------------------------------------------------
# Dispatch + processing
# ---------------------------------------------------------------------------


async def kick_wallet_pass_jobs(job_ids: Iterable[uuid.UUID]) -> None:
    """Hand committed job ids to the worker queue. Best effort: the cron
    sweep processes anything that fails to enqueue here."""
    job_ids = list(job_ids)
    if not job_ids:
        return
    try:
        pool = await get_arq_pool()
        for job_id in job_ids:
            await pool.enqueue_job("task_process_wallet_pass_job", str(job_id))
    except Exception as e:
        logger.warning("Could not enqueue wallet pass jobs %s: %s", job_ids, e)


def _backoff(attempts: int) -> timedelta:
    base = get_settings().WALLET_PASS_RETRY_BASE_SECONDS
    return timedelta(seconds=base * (2 ** max(attempts - 1, 0)))


def _record_failure(
    job: WalletPassJob,
    membership: LoyaltyMembership,
    error: str,
    now: datetime,
) -> None:
    settings = get_settings()
    job.attempts += 1
    job.last_error = error[:1000]
    if job.attempts >= settings.WALLET_PASS_MAX_ATTEMPTS:
        job.status = WalletPassJobStatus.FAILED
        if job.job_type == WalletPassJobType.ISSUE:
            membership.wallet_pass_status = WalletPassStatus.FAILED
        logger.warning(
            "Wallet pass job %s failed permanently after %d attempts: %s",
            job.id,
            job.attempts,
            error,
        )
    else:
        job.next_attempt_at = now + _backoff(job.attempts)
        logger.warning(
            "Wallet pass job %s attempt %d failed, retrying at %s: %s",
            job.id,
            job.attempts,
            job.next_attempt_at.isoformat(),
            error,
        )


async def _run_job(
    job: WalletPassJob,
    membership: LoyaltyMembership,
    program: LoyaltyProgram,
    provisioner: WalletPassProvisioner,
) -> None:
    payload = job.payload or {}

    if job.job_type == WalletPassJobType.ISSUE:
        if membership.wallet_pass_serial:
            membership.wallet_pass_status = WalletPassStatus.ISSUED
            return
        issued = await provisioner.issue_pass(
            template_id=program.wallet_pass_template_id,
            member={
                "first_name": membership.first_name or "",
                "last_name": membership.last_name or "",
                "email": membership.email or "",
            },
            fields=pass_field_values(program, membership.stamps_balance),
        )
        membership.wallet_pass_serial = issued.serial
        membership.apple_wallet_url = issued.apple_url
        membership.google_wallet_url = issued.google_url
        membership.wallet_pass_status = WalletPassStatus.ISSUED
        logger.info(
            "Issued wallet pass %s for membership %s", issued.serial, membership.id
        )
        return

    if not membership.wallet_pass_serial:
        job.last_error = "skipped: no pass issued"
        return
    await provisioner.update_pass(
        template_id=program.wallet_pass_template_id,
        serial=membership.wallet_pass_serial,
        fields=pass_field_values(
            program,
            membership.stamps_balance,
            status=payload.get("status"),
            last_message=payload.get("last_message"),
        ),
        push=True,
    )


async def process_wallet_pass_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    provisioner: WalletPassProvisioner,
    *,
    now: Optional[datetime] = None,
) -> Optional[WalletPassJobStatus]:
    """Run one due job. Returns the job's resulting status, or None when
    the job does not exist or is not pending."""
    now = now or utc_now()
    result = await db.execute(
        select(WalletPassJob)
        .where(WalletPassJob.id == job_id)
        .with_for_update(skip_locked=True)
    )
    job = result.scalar_one_or_none()
    if job is None or job.status != WalletPassJobStatus.PENDING:
        await db.rollback()
        return None
    if as_utc(job.next_attempt_at) > now:
        status = job.status
        await db.rollback()
        return status

    membership = await db.get(LoyaltyMembership, job.membership_id)
    program = await db.get(LoyaltyProgram, membership.program_id)

    if not program.wallet_pass_template_id:
        job.status = WalletPassJobStatus.FAILED
        job.last_error = "wallet pass not configured for program"
        if job.job_type == WalletPassJobType.ISSUE:
            membership.wallet_pass_status = WalletPassStatus.FAILED
    else:
        try:
            await _run_job(job, membership, program, provisioner)
        except ProvisionerError as exc:
            _record_failure(job, membership, str(exc), now)
        else:
            job.attempts += 1
            job.status = WalletPassJobStatus.SUCCEEDED

    await db.commit()
    return job.status


async def process_due_wallet_pass_jobs(
    session_factory: async_sessionmaker[AsyncSession],
    provisioner: WalletPassProvisioner,
    *,
    limit: int = 50,
    now: Optional[datetime] = None,
) -> int:
    """Sweep pending jobs whose next attempt is due. Returns jobs processed."""
    now = now or utc_now()
    async with session_factory() as db:
        result = await db.execute(
            select(WalletPassJob.id)
            .where(
                WalletPassJob.status == WalletPassJobStatus.PENDING,
                WalletPassJob.next_attempt_at <= now,
            )
            .order_by(WalletPassJob.created_at.asc())
            .limit(limit)
        )
        job_ids = list(result.scalars().all())

    processed = 0
    for job_id in job_ids:
        async with session_factory() as db:
            status = await process_wallet_pass_job(db, job_id, provisioner, now=now)
        if status is not None:
            processed += 1

    if processed:
        logger.info("Processed %d wallet pass jobs", processed)
    return processed
