"""Stamp Ledger: the only code that mutates a membership's stamp balance.

Earn flow (one transaction per attempt):
1. Validate the earn token (QR scans) or the program status (manual credit).
2. Lock the membership row (``SELECT ... FOR UPDATE``).
3. Check cooldown/daily cap under that lock.
4. Conditionally update the row, guarded by ``version``; a lost race
   rolls back and retries the whole read-check-write sequence.
5. Append an EarnEvent; on threshold crossing open a RewardRedemption and
   reset the running balance to 0.
6. Queue a wallet pass refresh in the outbox and commit.

All failures come back as ``EarnResult`` values.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.guard import run_guarded
from services.loyalty_service.models import (
    EarnEvent,
    EarnSource,
    LoyaltyMembership,
    RedemptionStatus,
    RewardRedemption,
)
from services.loyalty_service.services.errors import (
    TRANSIENT_ERRORS,
    ConcurrentUpdateConflict,
)
from services.loyalty_service.services.program_cache import (
    ProgramSnapshot,
    get_program_snapshot,
)
from services.loyalty_service.services.rate_limiter import check_eligibility
from services.loyalty_service.services.results import (
    EarnFailureReason,
    EarnResult,
    MembershipStatus,
)
from services.loyalty_service.services.token_authority import validate_earn_token
from services.loyalty_service.services.wallet_pass_sync import (
    STATUS_REWARD_AVAILABLE,
    enqueue_pass_update,
)
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

logger = get_logger(__name__)

PROXIMITY_MESSAGE = "Just 1 more stamp until your reward!"


class _StaleVersion(Exception):
    """The conditional update matched no row; re-read and try again."""


def proximity_message(balance: int, threshold: int) -> Optional[str]:
    """Encouragement shown only when exactly one stamp remains."""
    if threshold - balance == 1:
        return PROXIMITY_MESSAGE
    return None


def _earn_message(balance: int, program: ProgramSnapshot, unlocked: bool) -> str:
    if unlocked:
        return f"Reward unlocked: {program.reward_description}".strip()
    return (
        proximity_message(balance, program.reward_threshold)
        or f"Stamp added! {balance}/{program.reward_threshold}"
    )


async def lock_membership(
    db: AsyncSession, program_id: uuid.UUID, wallet_pass_id: str
) -> Optional[LoyaltyMembership]:
    """Load and row-lock the membership for (program, wallet identity)."""
    result = await db.execute(
        select(LoyaltyMembership)
        .where(
            LoyaltyMembership.program_id == program_id,
            LoyaltyMembership.wallet_pass_id == wallet_pass_id,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _earn_once(
    db: AsyncSession,
    program: ProgramSnapshot,
    wallet_pass_id: str,
    *,
    source: EarnSource,
    ip_hash: Optional[str],
    now: Optional[datetime],
) -> EarnResult:
    membership = await lock_membership(db, program.id, wallet_pass_id)
    # Read the clock only once the lock is held so last_earn_at never moves back
    now = now or utc_now()
    if membership is None:
        await db.rollback()
        return EarnResult.failure(
            EarnFailureReason.NOT_MEMBER, threshold=program.reward_threshold
        )

    eligibility = await check_eligibility(
        db, membership, program, now=now, ip_hash=ip_hash
    )
    if not eligibility.eligible:
        membership_id = membership.id
        balance = membership.stamps_balance
        await db.rollback()
        logger.info(
            "Earn rejected for membership %s: cooldown (%s) until %s",
            membership_id,
            eligibility.kind.value,
            eligibility.next_eligible_at.isoformat(),
        )
        return EarnResult.failure(
            EarnFailureReason.COOLDOWN,
            new_balance=balance,
            threshold=program.reward_threshold,
            next_eligible_at=eligibility.next_eligible_at,
            cooldown_kind=eligibility.kind,
            membership_id=membership_id,
        )

    read_version = membership.version
    new_balance = membership.stamps_balance + 1
    unlocked = new_balance >= program.reward_threshold
    stored_balance = 0 if unlocked else new_balance

    # Compare-and-set on version: holds even where FOR UPDATE is a no-op
    result = await db.execute(
        update(LoyaltyMembership)
        .where(
            LoyaltyMembership.id == membership.id,
            LoyaltyMembership.version == read_version,
        )
        .values(
            stamps_balance=stored_balance,
            lifetime_stamps_earned=LoyaltyMembership.lifetime_stamps_earned + 1,
            last_earn_at=now,
            version=read_version + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise _StaleVersion()

    # The bulk update bypasses the identity map; mirror the committed row
    set_committed_value(membership, "stamps_balance", stored_balance)
    set_committed_value(
        membership, "lifetime_stamps_earned", membership.lifetime_stamps_earned + 1
    )
    set_committed_value(membership, "last_earn_at", now)
    set_committed_value(membership, "version", read_version + 1)
    set_committed_value(membership, "updated_at", now)

    event = EarnEvent(
        id=uuid.uuid4(),
        membership_id=membership.id,
        program_id=program.id,
        occurred_at=now,
        balance_after=stored_balance,
        reward_unlocked=unlocked,
        source=source,
        ip_hash=ip_hash,
    )
    db.add(event)
    await db.flush()

    redemption_id = None
    if unlocked:
        redemption = RewardRedemption(
            id=uuid.uuid4(),
            membership_id=membership.id,
            program_id=program.id,
            earn_event_id=event.id,
            status=RedemptionStatus.OPEN,
            reward_description_snapshot=program.reward_description,
            unlocked_at=now,
        )
        db.add(redemption)
        redemption_id = redemption.id

    job = enqueue_pass_update(
        db,
        membership,
        program,
        status=STATUS_REWARD_AVAILABLE if unlocked else None,
        last_message=_earn_message(stored_balance, program, unlocked),
    )
    job_ids = (job.id,) if job is not None else ()
    membership_id = membership.id

    await db.commit()

    if unlocked:
        logger.info(
            "Reward unlocked for membership %s (redemption=%s)",
            membership_id,
            redemption_id,
        )
    else:
        logger.info(
            "Stamp earned for membership %s: %d/%d",
            membership_id,
            stored_balance,
            program.reward_threshold,
        )

    next_eligible_at = None
    if program.min_gap_minutes > 0:
        next_eligible_at = now + timedelta(minutes=program.min_gap_minutes)

    return EarnResult(
        success=True,
        new_balance=stored_balance,
        threshold=program.reward_threshold,
        reward_unlocked=unlocked,
        proximity_message=(
            None if unlocked else proximity_message(stored_balance, program.reward_threshold)
        ),
        next_eligible_at=next_eligible_at,
        membership_id=membership_id,
        redemption_id=redemption_id,
        wallet_pass_job_ids=job_ids,
    )


async def _earn_with_retries(
    db: AsyncSession,
    program: ProgramSnapshot,
    wallet_pass_id: str,
    *,
    source: EarnSource,
    ip_hash: Optional[str],
    now: Optional[datetime],
) -> EarnResult:
    max_retries = get_settings().LEDGER_CAS_MAX_RETRIES
    for attempt in range(max_retries + 1):
        try:
            return await _earn_once(
                db, program, wallet_pass_id, source=source, ip_hash=ip_hash, now=now
            )
        except _StaleVersion:
            logger.info(
                "Membership for %s changed during earn, retry %d/%d",
                program.public_id,
                attempt + 1,
                max_retries,
            )
    raise ConcurrentUpdateConflict(
        f"Earn for program {program.public_id} lost {max_retries + 1} update races"
    )


async def earn(
    db: AsyncSession,
    *,
    program_public_id: str,
    token: Optional[str],
    wallet_pass_id: str,
    source: EarnSource = EarnSource.QR_SCAN,
    ip_hash: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EarnResult:
    """Credit one stamp to the member's card, or explain why not.

    ``source=MANUAL`` is a back-office credit: the token is not checked,
    but program status, membership and rate limits still are.
    """
    settings = get_settings()

    async def work() -> EarnResult:
        if source == EarnSource.MANUAL:
            program = await get_program_snapshot(db, program_public_id)
            if program is None or not program.is_active:
                return EarnResult.failure(EarnFailureReason.PROGRAM_UNAVAILABLE)
        else:
            program = await validate_earn_token(db, program_public_id, token, now=now)
            if program is None:
                return EarnResult.failure(EarnFailureReason.INVALID_TOKEN)

        return await _earn_with_retries(
            db, program, wallet_pass_id, source=source, ip_hash=ip_hash, now=now
        )

    try:
        return await run_guarded(db, work, timeout=settings.STORE_TIMEOUT_SECONDS)
    except TRANSIENT_ERRORS as exc:
        logger.warning(
            "Earn for program %s failed with unknown outcome: %s",
            program_public_id,
            exc,
        )
        return EarnResult.failure(EarnFailureReason.TRANSIENT_ERROR)


async def get_membership_status(
    db: AsyncSession, program_public_id: str, wallet_pass_id: str
) -> MembershipStatus:
    """Read-only view of a member's card for display."""
    settings = get_settings()

    async def work() -> MembershipStatus:
        program = await get_program_snapshot(db, program_public_id)
        if program is None:
            return MembershipStatus(is_member=False, program_found=False)

        result = await db.execute(
            select(LoyaltyMembership)
            .where(
                LoyaltyMembership.program_id == program.id,
                LoyaltyMembership.wallet_pass_id == wallet_pass_id,
            )
            .execution_options(populate_existing=True)
        )
        membership = result.scalar_one_or_none()
        if membership is None:
            return MembershipStatus(
                is_member=False, threshold=program.reward_threshold
            )

        open_ids = await db.execute(
            select(RewardRedemption.id)
            .where(
                RewardRedemption.membership_id == membership.id,
                RewardRedemption.status == RedemptionStatus.OPEN,
            )
            .order_by(RewardRedemption.unlocked_at.asc())
        )
        pending = list(open_ids.scalars().all())

        return MembershipStatus(
            is_member=True,
            stamps_balance=membership.stamps_balance,
            threshold=program.reward_threshold,
            reward_available=bool(pending),
            proximity_message=proximity_message(
                membership.stamps_balance, program.reward_threshold
            ),
            pending_redemption_id=pending[0] if pending else None,
            pending_rewards=len(pending),
        )

    try:
        return await run_guarded(db, work, timeout=settings.STORE_TIMEOUT_SECONDS)
    except TRANSIENT_ERRORS as exc:
        logger.warning(
            "Membership status for program %s unavailable: %s", program_public_id, exc
        )
        return MembershipStatus(is_member=False, transient_error=True)
