"""Unit tests for program creation and status transitions."""

import pytest
from services.loyalty_service.models import EarnMode, ProgramStatus
from services.loyalty_service.services.errors import (
    ProgramNotFound,
    ProgramTransitionError,
)
from services.loyalty_service.services.program_admin import (
    create_program,
    get_program,
    set_program_status,
)
from services.loyalty_service.services.program_cache import get_program_snapshot
from services.loyalty_service.services.token_authority import (
    EARN_TOKEN_LENGTH,
    PUBLIC_ID_LENGTH,
)
from tests.factories import LoyaltyProgramFactory, persist


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_program_mints_identifiers(db_session):
    program = await create_program(
        db_session,
        business_id="biz-1",
        reward_threshold=9,
        reward_description="Free croissant",
        earn_mode=EarnMode.PER_PURCHASE,
        min_gap_minutes=15,
    )

    assert program.status == ProgramStatus.DRAFT
    assert len(program.public_id) == PUBLIC_ID_LENGTH
    assert len(program.earn_token) == EARN_TOKEN_LENGTH
    assert program.earn_mode == EarnMode.PER_PURCHASE
    assert (await get_program(db_session, program.public_id)).id == program.id
    await db_session.rollback()


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "kwargs",
    [
        {"reward_threshold": 0},
        {"reward_threshold": 5, "max_earns_per_day": -1},
        {"reward_threshold": 5, "min_gap_minutes": -5},
    ],
)
async def test_create_program_rejects_bad_values(db_session, kwargs):
    with pytest.raises(ValueError):
        await create_program(db_session, business_id="biz-1", **kwargs)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_get_program_unknown(db_session):
    with pytest.raises(ProgramNotFound):
        await get_program(db_session, "missing")


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "start,target",
    [
        (ProgramStatus.DRAFT, ProgramStatus.ACTIVE),
        (ProgramStatus.ACTIVE, ProgramStatus.PAUSED),
        (ProgramStatus.PAUSED, ProgramStatus.ACTIVE),
        (ProgramStatus.PAUSED, ProgramStatus.ARCHIVED),
        (ProgramStatus.DRAFT, ProgramStatus.ARCHIVED),
    ],
)
async def test_allowed_transitions(db_session, start, target):
    program = await persist(db_session, LoyaltyProgramFactory.create(status=start))
    updated = await set_program_status(db_session, program, target)
    assert updated.status == target


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "start,target",
    [
        (ProgramStatus.ARCHIVED, ProgramStatus.ACTIVE),
        (ProgramStatus.ARCHIVED, ProgramStatus.DRAFT),
        (ProgramStatus.ACTIVE, ProgramStatus.DRAFT),
        (ProgramStatus.DRAFT, ProgramStatus.PAUSED),
    ],
)
async def test_disallowed_transitions(db_session, start, target):
    program = await persist(db_session, LoyaltyProgramFactory.create(status=start))
    with pytest.raises(ProgramTransitionError):
        await set_program_status(db_session, program, target)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_same_status_is_noop(db_session):
    program = await persist(db_session, LoyaltyProgramFactory.create())
    assert (
        await set_program_status(db_session, program, ProgramStatus.ACTIVE)
    ).status == ProgramStatus.ACTIVE


@pytest.mark.asyncio
@pytest.mark.unit
async def test_status_change_invalidates_cached_program(db_session):
    program = await persist(db_session, LoyaltyProgramFactory.create())
    public_id = program.public_id
    cached = await get_program_snapshot(db_session, public_id)
    assert cached.is_active
    await db_session.rollback()

    # The rollback expired ``program``; load it again before changing it
    program = await get_program(db_session, public_id)
    await set_program_status(db_session, program, ProgramStatus.PAUSED)

    fresh = await get_program_snapshot(db_session, public_id)
    assert fresh.status == ProgramStatus.PAUSED
    await db_session.rollback()
