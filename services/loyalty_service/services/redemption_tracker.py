"""Reward Redemption Tracker: closes rewards unlocked by the ledger.

Unlocked rewards queue oldest-first: ``get_available_reward`` and
``redeem`` without an explicit id always act on the oldest open one.
Redeeming is idempotent: repeating a redeem of a reward that was just
closed (double-tap, client retry) reports ``already_redeemed`` instead of
``no_reward_available``.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import as_utc, utc_now
from libs.common.logging import get_logger
from libs.db.guard import run_guarded
from services.loyalty_service.models import (
    LoyaltyMembership,
    LoyaltyProgram,
    RedemptionStatus,
    RewardRedemption,
)
from services.loyalty_service.services.errors import TRANSIENT_ERRORS
from services.loyalty_service.services.program_cache import ProgramSnapshot
from services.loyalty_service.services.results import RedeemOutcome, RedeemResult
from services.loyalty_service.services.wallet_pass_sync import (
    STATUS_REWARD_AVAILABLE,
    STATUS_REWARD_REDEEMED,
    enqueue_pass_update,
)
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def _oldest_open(
    db: AsyncSession, membership_id: uuid.UUID
) -> Optional[RewardRedemption]:
    result = await db.execute(
        select(RewardRedemption)
        .where(
            RewardRedemption.membership_id == membership_id,
            RewardRedemption.status == RedemptionStatus.OPEN,
        )
        .order_by(RewardRedemption.unlocked_at.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_available_reward(
    db: AsyncSession, membership_id: uuid.UUID
) -> Optional[RewardRedemption]:
    """Return the oldest open redemption for the membership, if any.

    Raises:
        StoreUnavailable: the store timed out or dropped the connection.
    """
    return await run_guarded(
        db,
        lambda: _oldest_open(db, membership_id),
        timeout=get_settings().STORE_TIMEOUT_SECONDS,
    )


async def _latest_redeemed(
    db: AsyncSession, membership_id: uuid.UUID
) -> Optional[RewardRedemption]:
    result = await db.execute(
        select(RewardRedemption)
        .where(
            RewardRedemption.membership_id == membership_id,
            RewardRedemption.status == RedemptionStatus.REDEEMED,
        )
        .order_by(RewardRedemption.redeemed_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def _display_until(redeemed_at: datetime) -> datetime:
    return redeemed_at + timedelta(minutes=get_settings().REDEMPTION_DISPLAY_MINUTES)


def _already(redemption: RewardRedemption) -> RedeemResult:
    redeemed_at = as_utc(redemption.redeemed_at)
    return RedeemResult(
        outcome=RedeemOutcome.ALREADY_REDEEMED,
        redemption_id=redemption.id,
        reward_description=redemption.reward_description_snapshot,
        redeemed_at=redeemed_at,
        display_until=_display_until(redeemed_at),
    )


async def _redeem(
    db: AsyncSession,
    membership_id: uuid.UUID,
    redemption_id: Optional[uuid.UUID],
    now: datetime,
) -> RedeemResult:
    # Serializes with earn/redeem on the same membership
    locked = await db.execute(
        select(LoyaltyMembership)
        .where(LoyaltyMembership.id == membership_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    membership = locked.scalar_one_or_none()
    if membership is None:
        await db.rollback()
        return RedeemResult(outcome=RedeemOutcome.NO_REWARD_AVAILABLE)

    if redemption_id is not None:
        target = await db.get(
            RewardRedemption, redemption_id, populate_existing=True
        )
        if target is None or target.membership_id != membership_id:
            await db.rollback()
            return RedeemResult(outcome=RedeemOutcome.NO_REWARD_AVAILABLE)
        if not target.is_open:
            result = _already(target)
            await db.rollback()
            return result
    else:
        target = await _oldest_open(db, membership_id)
        if target is None:
            latest = await _latest_redeemed(db, membership_id)
            window = timedelta(
                minutes=get_settings().REDEMPTION_REPLAY_WINDOW_MINUTES
            )
            if latest is not None and now - as_utc(latest.redeemed_at) <= window:
                result = _already(latest)
                await db.rollback()
                return result
            await db.rollback()
            return RedeemResult(outcome=RedeemOutcome.NO_REWARD_AVAILABLE)

    closed = await db.execute(
        update(RewardRedemption)
        .where(
            RewardRedemption.id == target.id,
            RewardRedemption.status == RedemptionStatus.OPEN,
        )
        .values(status=RedemptionStatus.REDEEMED, redeemed_at=now)
    )
    if closed.rowcount != 1:
        # Closed by someone else between the read and the update
        await db.rollback()
        fresh = await db.get(RewardRedemption, target.id, populate_existing=True)
        result = _already(fresh)
        await db.rollback()
        return result

    membership.total_redeemed += 1
    membership.version += 1

    still_open = await _oldest_open(db, membership_id)
    program = await db.get(LoyaltyProgram, target.program_id)

    job_ids: tuple[uuid.UUID, ...] = ()
    if program is not None:
        job = enqueue_pass_update(
            db,
            membership,
            ProgramSnapshot.from_model(program),
            status=STATUS_REWARD_AVAILABLE if still_open else STATUS_REWARD_REDEEMED,
            last_message=f"Enjoy your reward: {target.reward_description_snapshot}",
        )
        if job is not None:
            job_ids = (job.id,)

    target_id = target.id
    description = target.reward_description_snapshot
    await db.commit()

    logger.info("Redeemed reward %s for membership %s", target_id, membership_id)
    return RedeemResult(
        outcome=RedeemOutcome.REDEEMED,
        redemption_id=target_id,
        reward_description=description,
        redeemed_at=now,
        display_until=_display_until(now),
        wallet_pass_job_ids=job_ids,
    )


async def redeem(
    db: AsyncSession,
    membership_id: uuid.UUID,
    *,
    redemption_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> RedeemResult:
    """Mark the member's reward redeemed. Safe to call repeatedly."""
    now = now or utc_now()
    settings = get_settings()
    try:
        return await run_guarded(
            db,
            lambda: _redeem(db, membership_id, redemption_id, now),
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
    except TRANSIENT_ERRORS as exc:
        logger.warning(
            "Redeem for membership %s failed with unknown outcome: %s",
            membership_id,
            exc,
        )
        return RedeemResult(outcome=RedeemOutcome.TRANSIENT_ERROR)
