"""Unit tests for idempotent membership creation."""

import asyncio
from datetime import date

import pytest
from services.loyalty_service.models import (
    LoyaltyMembership,
    ProgramStatus,
    WalletPassJob,
    WalletPassJobType,
    WalletPassStatus,
)
from services.loyalty_service.services.join_orchestrator import (
    MemberProfile,
    find_membership,
    join,
)
from services.loyalty_service.services.results import JoinFailureReason
from sqlalchemy import func, select
from tests.factories import LoyaltyProgramFactory, MembershipFactory, persist


async def _members(db, program_id):
    return await db.scalar(
        select(func.count())
        .select_from(LoyaltyMembership)
        .where(LoyaltyMembership.program_id == program_id)
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_join_creates_membership_with_profile(db_session):
    program = await persist(db_session, LoyaltyProgramFactory.create())
    profile = MemberProfile(
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
        date_of_birth=date(1990, 12, 10),
    )

    result = await join(
        db_session,
        program_public_id=program.public_id,
        wallet_pass_id="wallet-ada",
        profile=profile,
    )

    assert result.success is True
    assert result.already_member is False
    assert result.stamps_balance == 0
    assert result.wallet_pass_job_ids == ()

    membership = await db_session.get(LoyaltyMembership, result.membership_id)
    assert membership.first_name == "Ada"
    assert membership.date_of_birth == date(1990, 12, 10)
    assert membership.wallet_pass_status == WalletPassStatus.NOT_REQUESTED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_second_join_returns_existing_membership(db_session):
    program = await persist(db_session, LoyaltyProgramFactory.create())
    existing = await persist(
        db_session,
        MembershipFactory.create(
            program_id=program.id, wallet_pass_id="wallet-1", stamps_balance=4
        ),
    )

    result = await join(
        db_session, program_public_id=program.public_id, wallet_pass_id="wallet-1"
    )

    assert result.success is True
    assert result.already_member is True
    assert result.membership_id == existing.id
    assert result.stamps_balance == 4
    assert await _members(db_session, program.id) == 1
    await db_session.rollback()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_same_wallet_may_join_different_programs(db_session):
    first = await persist(db_session, LoyaltyProgramFactory.create())
    second = await persist(db_session, LoyaltyProgramFactory.create())

    a = await join(db_session, program_public_id=first.public_id, wallet_pass_id="w")
    b = await join(db_session, program_public_id=second.public_id, wallet_pass_id="w")

    assert not a.already_member and not b.already_member
    assert a.membership_id != b.membership_id


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "status", [ProgramStatus.DRAFT, ProgramStatus.PAUSED, ProgramStatus.ARCHIVED]
)
async def test_join_refused_unless_program_active(db_session, status):
    program = await persist(db_session, LoyaltyProgramFactory.create(status=status))

    result = await join(
        db_session, program_public_id=program.public_id, wallet_pass_id="w"
    )

    assert result.success is False
    assert result.reason == JoinFailureReason.PROGRAM_UNAVAILABLE
    assert await _members(db_session, program.id) == 0
    await db_session.rollback()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_join_unknown_program(db_session):
    result = await join(db_session, program_public_id="missing", wallet_pass_id="w")
    assert result.reason == JoinFailureReason.PROGRAM_UNAVAILABLE


@pytest.mark.asyncio
@pytest.mark.unit
async def test_join_queues_pass_issue_when_template_configured(db_session):
    program = await persist(
        db_session, LoyaltyProgramFactory.create(wallet_pass_template_id="tmpl-1")
    )

    result = await join(
        db_session, program_public_id=program.public_id, wallet_pass_id="w"
    )

    assert len(result.wallet_pass_job_ids) == 1
    job = await db_session.get(WalletPassJob, result.wallet_pass_job_ids[0])
    assert job.job_type == WalletPassJobType.ISSUE
    assert job.membership_id == result.membership_id
    membership = await db_session.get(LoyaltyMembership, result.membership_id)
    assert membership.wallet_pass_status == WalletPassStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_joins_create_one_membership(session_factory, db_session):
    program = await persist(db_session, LoyaltyProgramFactory.create())

    async def attempt():
        async with session_factory() as session:
            return await join(
                session, program_public_id=program.public_id, wallet_pass_id="w"
            )

    results = await asyncio.gather(*(attempt() for _ in range(4)))

    assert all(r.success for r in results)
    assert len({r.membership_id for r in results}) == 1
    assert sum(not r.already_member for r in results) == 1
    assert await _members(db_session, program.id) == 1
    await db_session.rollback()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_find_membership(db_session):
    program = await persist(db_session, LoyaltyProgramFactory.create())
    membership = await persist(
        db_session, MembershipFactory.create(program_id=program.id)
    )

    found = await find_membership(
        db_session, program.public_id, membership.wallet_pass_id
    )
    assert found.id == membership.id
    assert await find_membership(db_session, "missing", "w") is None
    await db_session.rollback()
