"""Back-office operations on loyalty programs.

Programs are never deleted; ``archived`` is terminal. Every mutation
drops the program's cached snapshot so scans see it within one request.
"""

import uuid
from typing import Optional

from libs.common.logging import get_logger
from services.loyalty_service.models import EarnMode, LoyaltyProgram, ProgramStatus
from services.loyalty_service.services.errors import (
    ProgramNotFound,
    ProgramTransitionError,
)
from services.loyalty_service.services.program_cache import invalidate_program
from services.loyalty_service.services.token_authority import (
    generate_earn_token,
    generate_public_id,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[ProgramStatus, set[ProgramStatus]] = {
    ProgramStatus.DRAFT: {ProgramStatus.ACTIVE, ProgramStatus.ARCHIVED},
    ProgramStatus.ACTIVE: {ProgramStatus.PAUSED, ProgramStatus.ARCHIVED},
    ProgramStatus.PAUSED: {ProgramStatus.ACTIVE, ProgramStatus.ARCHIVED},
    ProgramStatus.ARCHIVED: set(),
}


async def get_program(db: AsyncSession, public_id: str) -> LoyaltyProgram:
    result = await db.execute(
        select(LoyaltyProgram).where(LoyaltyProgram.public_id == public_id)
    )
    program = result.scalar_one_or_none()
    if program is None:
        raise ProgramNotFound(public_id)
    return program


async def create_program(
    db: AsyncSession,
    *,
    business_id: str,
    reward_threshold: int,
    reward_description: str = "",
    program_name: Optional[str] = None,
    stamp_label: str = "Stamps",
    earn_mode: EarnMode = EarnMode.PER_VISIT,
    max_earns_per_day: int = 0,
    min_gap_minutes: int = 0,
    wallet_pass_template_id: Optional[str] = None,
    status: ProgramStatus = ProgramStatus.DRAFT,
) -> LoyaltyProgram:
    if reward_threshold < 1:
        raise ValueError("reward_threshold must be at least 1")
    if max_earns_per_day < 0 or min_gap_minutes < 0:
        raise ValueError("rate limits cannot be negative")

    program = LoyaltyProgram(
        id=uuid.uuid4(),
        public_id=generate_public_id(),
        business_id=business_id,
        program_name=program_name,
        reward_threshold=reward_threshold,
        reward_description=reward_description,
        stamp_label=stamp_label,
        earn_mode=earn_mode,
        max_earns_per_day=max_earns_per_day,
        min_gap_minutes=min_gap_minutes,
        earn_token=generate_earn_token(),
        wallet_pass_template_id=wallet_pass_template_id,
        status=status,
    )
    db.add(program)
    await db.commit()
    await db.refresh(program)

    logger.info(
        "Created loyalty program %s for business %s", program.public_id, business_id
    )
    return program


async def set_program_status(
    db: AsyncSession, program: LoyaltyProgram, new_status: ProgramStatus
) -> LoyaltyProgram:
    current = ProgramStatus(program.status)
    if new_status == current:
        return program
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise ProgramTransitionError(
            f"Cannot move program from {current.value} to {new_status.value}"
        )

    program.status = new_status
    await db.commit()
    await db.refresh(program)
    await invalidate_program(program.public_id)

    logger.info(
        "Program %s status %s -> %s",
        program.public_id,
        current.value,
        new_status.value,
    )
    return program
