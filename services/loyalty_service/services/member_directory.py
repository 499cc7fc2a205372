"""Member listing and CSV export for a program's owner."""

import csv
import io
import uuid
from typing import Sequence

from services.loyalty_service.models import LoyaltyMembership
from services.loyalty_service.services.errors import MembershipNotFound
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

CSV_COLUMNS = [
    "First Name",
    "Last Name",
    "Email",
    "Date of Birth",
    "Joined",
    "Last Earn",
    "Lifetime Stamps",
    "Current Stamps",
    "Rewards Redeemed",
    "Wallet Pass",
]


async def get_membership(
    db: AsyncSession, membership_id: uuid.UUID
) -> LoyaltyMembership:
    membership = await db.get(LoyaltyMembership, membership_id)
    if membership is None:
        raise MembershipNotFound(str(membership_id))
    return membership


async def list_members(
    db: AsyncSession,
    program_id: uuid.UUID,
    *,
    skip: int = 0,
    limit: int = 50,
) -> tuple[Sequence[LoyaltyMembership], int]:
    """Return one page of members (newest first) and the total count."""
    total = await db.scalar(
        select(func.count())
        .select_from(LoyaltyMembership)
        .where(LoyaltyMembership.program_id == program_id)
    )
    result = await db.execute(
        select(LoyaltyMembership)
        .where(LoyaltyMembership.program_id == program_id)
        .order_by(LoyaltyMembership.joined_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total or 0


async def members_csv(db: AsyncSession, program_id: uuid.UUID) -> str:
    result = await db.execute(
        select(LoyaltyMembership)
        .where(LoyaltyMembership.program_id == program_id)
        .order_by(LoyaltyMembership.joined_at.asc())
    )

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for m in result.scalars():
        writer.writerow(
            [
                m.first_name or "",
                m.last_name or "",
                m.email or "",
                m.date_of_birth.isoformat() if m.date_of_birth else "",
                m.joined_at.isoformat() if m.joined_at else "",
                m.last_earn_at.isoformat() if m.last_earn_at else "",
                m.lifetime_stamps_earned,
                m.stamps_balance,
                m.total_redeemed,
                m.wallet_pass_status.value,
            ]
        )
    return buffer.getvalue()
