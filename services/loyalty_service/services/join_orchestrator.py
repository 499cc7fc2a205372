"""Join Orchestrator: creates a membership exactly once.

Joining twice (a common double-scan of the join QR) returns the existing
membership instead of an error. The unique constraint on
(program_id, wallet_pass_id) settles concurrent joins: the loser rolls
back, re-reads, and reports ``already_member``.

When the program has a wallet pass template, an ``issue`` job is written
to the outbox in the same transaction; the join never waits on it.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.guard import run_guarded
from services.loyalty_service.models import LoyaltyMembership, WalletPassStatus
from services.loyalty_service.services.errors import TRANSIENT_ERRORS
from services.loyalty_service.services.program_cache import get_program_snapshot
from services.loyalty_service.services.results import JoinFailureReason, JoinResult
from services.loyalty_service.services.wallet_pass_sync import enqueue_pass_issue
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class MemberProfile:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    date_of_birth: Optional[date] = None


def _existing(membership: LoyaltyMembership) -> JoinResult:
    return JoinResult(
        success=True,
        already_member=True,
        membership_id=membership.id,
        stamps_balance=membership.stamps_balance,
        has_wallet_pass=membership.has_wallet_pass,
        apple_wallet_url=membership.apple_wallet_url,
        google_wallet_url=membership.google_wallet_url,
    )


async def _find(
    db: AsyncSession, program_id: uuid.UUID, wallet_pass_id: str
) -> Optional[LoyaltyMembership]:
    result = await db.execute(
        select(LoyaltyMembership).where(
            LoyaltyMembership.program_id == program_id,
            LoyaltyMembership.wallet_pass_id == wallet_pass_id,
        )
    )
    return result.scalar_one_or_none()


async def find_membership(
    db: AsyncSession, program_public_id: str, wallet_pass_id: str
) -> Optional[LoyaltyMembership]:
    """Look up a membership by program public id and wallet identity.

    Raises:
        StoreUnavailable: the store timed out or dropped the connection.
    """

    async def work() -> Optional[LoyaltyMembership]:
        program = await get_program_snapshot(db, program_public_id)
        if program is None:
            return None
        return await _find(db, program.id, wallet_pass_id)

    return await run_guarded(
        db, work, timeout=get_settings().STORE_TIMEOUT_SECONDS
    )


async def join(
    db: AsyncSession,
    *,
    program_public_id: str,
    wallet_pass_id: str,
    profile: Optional[MemberProfile] = None,
    now: Optional[datetime] = None,
) -> JoinResult:
    """Enroll ``wallet_pass_id`` in the program, idempotently."""
    now = now or utc_now()
    profile = profile or MemberProfile()
    settings = get_settings()

    async def work() -> JoinResult:
        program = await get_program_snapshot(db, program_public_id)
        if program is None or not program.is_active:
            logger.info("Join refused: program %s unavailable", program_public_id)
            return JoinResult(
                success=False, reason=JoinFailureReason.PROGRAM_UNAVAILABLE
            )

        existing = await _find(db, program.id, wallet_pass_id)
        if existing is not None:
            return _existing(existing)

        membership = LoyaltyMembership(
            id=uuid.uuid4(),
            program_id=program.id,
            wallet_pass_id=wallet_pass_id,
            stamps_balance=0,
            lifetime_stamps_earned=0,
            total_redeemed=0,
            version=0,
            first_name=profile.first_name,
            last_name=profile.last_name,
            email=profile.email,
            date_of_birth=profile.date_of_birth,
            wallet_pass_status=WalletPassStatus.NOT_REQUESTED,
            joined_at=now,
        )
        db.add(membership)

        job_ids: tuple[uuid.UUID, ...] = ()
        try:
            if program.wallet_pass_enabled:
                membership.wallet_pass_status = WalletPassStatus.PENDING
                # Membership row must exist before the job that references it
                await db.flush()
                job_ids = (enqueue_pass_issue(db, membership).id,)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            winner = await _find(db, program.id, wallet_pass_id)
            if winner is None:
                raise
            logger.info(
                "Concurrent join for program %s resolved to membership %s",
                program_public_id,
                winner.id,
            )
            return _existing(winner)

        logger.info(
            "New member %s joined program %s", membership.id, program_public_id
        )
        return JoinResult(
            success=True,
            already_member=False,
            membership_id=membership.id,
            stamps_balance=0,
            has_wallet_pass=False,
            wallet_pass_job_ids=job_ids,
        )

    try:
        return await run_guarded(db, work, timeout=settings.STORE_TIMEOUT_SECONDS)
    except TRANSIENT_ERRORS as exc:
        logger.warning(
            "Join for program %s failed with unknown outcome: %s",
            program_public_id,
            exc,
        )
        return JoinResult(success=False, reason=JoinFailureReason.TRANSIENT_ERROR)
