"""Unit tests for the program cache and its cross-process invalidation."""

import pytest
from libs.common.config import get_settings
from services.loyalty_service.models import ProgramStatus
from services.loyalty_service.services import program_cache
from services.loyalty_service.services.program_cache import (
    get_program_snapshot,
    invalidate_program,
)
from tests.factories import LoyaltyProgramFactory, persist


class FakeRedis:
    def __init__(self):
        self.store = {}

    async def get(self, key):
        value = self.store.get(key)
        return None if value is None else str(value).encode()

    async def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]


class DownRedis:
    async def get(self, key):
        raise ConnectionError("redis unreachable")

    async def incr(self, key):
        raise ConnectionError("redis unreachable")


@pytest.fixture
def shared_redis(monkeypatch):
    redis = FakeRedis()

    async def pool():
        return redis

    monkeypatch.setattr(get_settings(), "PROGRAM_CACHE_SHARED_INVALIDATION", True)
    monkeypatch.setattr(program_cache, "get_arq_pool", pool)
    return redis


async def _pause_behind_cache(db, program):
    """Change the row without telling the cache, as another process would."""
    program.status = ProgramStatus.PAUSED
    await db.commit()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cached_program_served_until_version_moves(db_session, shared_redis):
    program = await persist(db_session, LoyaltyProgramFactory.create())
    public_id = program.public_id

    assert (await get_program_snapshot(db_session, public_id)).is_active
    await _pause_behind_cache(db_session, program)
    assert (await get_program_snapshot(db_session, public_id)).is_active

    # Another worker invalidated: only the shared counter moved
    await shared_redis.incr(f"loyalty:program-version:{public_id}")

    fresh = await get_program_snapshot(db_session, public_id)
    assert fresh.status == ProgramStatus.PAUSED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_invalidate_program_bumps_shared_version(db_session, shared_redis):
    program = await persist(db_session, LoyaltyProgramFactory.create())
    public_id = program.public_id
    key = f"loyalty:program-version:{public_id}"

    await invalidate_program(public_id)
    await invalidate_program(public_id)

    assert shared_redis.store[key] == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unreachable_redis_falls_back_to_ttl(db_session, monkeypatch):
    async def pool():
        return DownRedis()

    monkeypatch.setattr(get_settings(), "PROGRAM_CACHE_SHARED_INVALIDATION", True)
    monkeypatch.setattr(program_cache, "get_arq_pool", pool)
    program = await persist(db_session, LoyaltyProgramFactory.create())
    public_id = program.public_id

    assert (await get_program_snapshot(db_session, public_id)).is_active
    await _pause_behind_cache(db_session, program)

    # Still served from the local entry until it expires
    assert (await get_program_snapshot(db_session, public_id)).is_active

    await invalidate_program(public_id)
    fresh = await get_program_snapshot(db_session, public_id)
    assert fresh.status == ProgramStatus.PAUSED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_zero_ttl_always_reads_the_store(db_session, monkeypatch):
    monkeypatch.setattr(get_settings(), "PROGRAM_CACHE_TTL_SECONDS", 0)
    program = await persist(db_session, LoyaltyProgramFactory.create())
    public_id = program.public_id

    assert (await get_program_snapshot(db_session, public_id)).is_active
    await _pause_behind_cache(db_session, program)

    fresh = await get_program_snapshot(db_session, public_id)
    assert fresh.status == ProgramStatus.PAUSED
