"""Rate Limiter: per-member cooldown, earn caps and IP velocity.

Rules:
  * ``min_gap_minutes > 0``: a member must wait that long after their
    last successful earn.
  * ``max_earns_per_day > 0``: at most that many earns in any rolling
    24-hour window.
  * ``EARN_MEMBER_HOURLY_CAP > 0``: at most that many earns per member in
    any rolling hour.
  * ``IP_VELOCITY_THRESHOLD > 0``: one client IP hash may stamp at most
    that many distinct members of a business inside
    ``IP_VELOCITY_WINDOW_MINUTES``. Only applies when the earn carries an
    IP hash (QR scans; manual credits have none).

Every rule is evaluated. When more than one rejects, the kind is
``both`` and the latest ``next_eligible_at`` is reported, since that is
the earliest a retry can succeed.

The caller must hold the membership row lock while calling
``check_eligibility`` and until its increment commits; the per-member
reads here are only race-free under that lock. The velocity check reads
other members' events and is a best-effort abuse heuristic.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import as_utc
from services.loyalty_service.models import EarnEvent, LoyaltyMembership, LoyaltyProgram
from services.loyalty_service.services.program_cache import ProgramSnapshot
from services.loyalty_service.services.results import CooldownKind, Eligibility
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

DAILY_WINDOW = timedelta(hours=24)
HOURLY_WINDOW = timedelta(hours=1)


def min_gap_next_eligible_at(
    last_earn_at: Optional[datetime], min_gap_minutes: int, now: datetime
) -> Optional[datetime]:
    """Return when the min-gap rule next allows an earn, or None if it does now."""
    if min_gap_minutes <= 0 or last_earn_at is None:
        return None
    next_eligible = as_utc(last_earn_at) + timedelta(minutes=min_gap_minutes)
    if now < next_eligible:
        return next_eligible
    return None


def window_cap_next_eligible_at(
    window_events: list[datetime], cap: int, window: timedelta = DAILY_WINDOW
) -> Optional[datetime]:
    """Given the ascending earn times inside the trailing window, return when
    the cap next allows an earn, or None if it does now."""
    if cap <= 0 or len(window_events) < cap:
        return None
    # Enough events must age out to leave room for one more
    boundary = window_events[len(window_events) - cap]
    return as_utc(boundary) + window


def velocity_next_eligible_at(
    other_members_last_seen: list[datetime], threshold: int, window: timedelta
) -> Optional[datetime]:
    """Given, for each *other* member the IP hash stamped inside the window,
    the time of its latest such earn, return when the current member can
    be stamped from that IP, or None if it can now."""
    if threshold <= 0 or len(other_members_last_seen) < threshold:
        return None
    last_seen = sorted(other_members_last_seen)
    # Counting the current member, at most ``threshold`` may remain
    boundary = last_seen[len(last_seen) - threshold]
    return as_utc(boundary) + window


async def _member_event_times(
    db: AsyncSession, membership_id: uuid.UUID, since: datetime
) -> list[datetime]:
    result = await db.execute(
        select(EarnEvent.occurred_at)
        .where(
            EarnEvent.membership_id == membership_id,
            EarnEvent.occurred_at > since,
        )
        .order_by(EarnEvent.occurred_at.asc())
    )
    return [as_utc(ts) for ts in result.scalars().all()]


async def _ip_other_members(
    db: AsyncSession,
    *,
    ip_hash: str,
    business_id: str,
    membership_id: uuid.UUID,
    since: datetime,
) -> list[datetime]:
    result = await db.execute(
        select(func.max(EarnEvent.occurred_at))
        .join(LoyaltyProgram, LoyaltyProgram.id == EarnEvent.program_id)
        .where(
            EarnEvent.ip_hash == ip_hash,
            EarnEvent.occurred_at > since,
            EarnEvent.membership_id != membership_id,
            LoyaltyProgram.business_id == business_id,
        )
        .group_by(EarnEvent.membership_id)
    )
    return [as_utc(ts) for ts in result.scalars().all()]


async def check_eligibility(
    db: AsyncSession,
    membership: LoyaltyMembership,
    program: ProgramSnapshot,
    *,
    now: datetime,
    ip_hash: Optional[str] = None,
) -> Eligibility:
    """Return ``Eligibility(eligible=True)`` or a cooldown with ``next_eligible_at``."""
    settings = get_settings()
    rejections: list[tuple[CooldownKind, datetime]] = []

    gap_until = min_gap_next_eligible_at(
        membership.last_earn_at, program.min_gap_minutes, now
    )
    if gap_until is not None:
        rejections.append((CooldownKind.MIN_GAP, gap_until))

    hourly_cap = settings.EARN_MEMBER_HOURLY_CAP
    if program.max_earns_per_day > 0 or hourly_cap > 0:
        window = DAILY_WINDOW if program.max_earns_per_day > 0 else HOURLY_WINDOW
        times = await _member_event_times(db, membership.id, now - window)

        cap_until = window_cap_next_eligible_at(times, program.max_earns_per_day)
        if cap_until is not None:
            rejections.append((CooldownKind.DAILY_CAP, cap_until))

        last_hour = [ts for ts in times if ts > now - HOURLY_WINDOW]
        hour_until = window_cap_next_eligible_at(last_hour, hourly_cap, HOURLY_WINDOW)
        if hour_until is not None:
            rejections.append((CooldownKind.HOURLY_CAP, hour_until))

    if ip_hash and settings.IP_VELOCITY_THRESHOLD > 0:
        velocity_window = timedelta(minutes=settings.IP_VELOCITY_WINDOW_MINUTES)
        others = await _ip_other_members(
            db,
            ip_hash=ip_hash,
            business_id=program.business_id,
            membership_id=membership.id,
            since=now - velocity_window,
        )
        velocity_until = velocity_next_eligible_at(
            others, settings.IP_VELOCITY_THRESHOLD, velocity_window
        )
        if velocity_until is not None:
            rejections.append((CooldownKind.IP_VELOCITY, velocity_until))

    if not rejections:
        return Eligibility(eligible=True)
    kind = rejections[0][0] if len(rejections) == 1 else CooldownKind.BOTH
    return Eligibility(
        eligible=False,
        next_eligible_at=max(until for _, until in rejections),
        kind=kind,
    )
