"""Short-TTL, per-process cache of loyalty program configuration.

Programs are read on every scan but change rarely (owner edits, admin
status changes, token rotation). Entries age out after
``PROGRAM_CACHE_TTL_SECONDS``.

Admin mutations bump a per-program version counter in Redis, and every
cache hit is checked against it, so a rotated token stops validating in
every worker process at once. When Redis is disabled or unreachable the
cache falls back to TTL expiry alone.
"""

import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from libs.common.arq_config import get_arq_pool
from libs.common.config import get_settings
from libs.common.datetime_utils import as_utc
from libs.common.logging import get_logger
from services.loyalty_service.models import LoyaltyProgram, ProgramStatus
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProgramSnapshot:
    id: uuid.UUID
    public_id: str
    business_id: str
    status: ProgramStatus
    reward_threshold: int
    reward_description: str
    stamp_label: str
    max_earns_per_day: int
    min_gap_minutes: int
    earn_token: str
    previous_earn_token: Optional[str]
    earn_token_rotated_at: Optional[datetime]
    wallet_pass_template_id: Optional[str]

    @property
    def is_active(self) -> bool:
        return self.status == ProgramStatus.ACTIVE

    @property
    def wallet_pass_enabled(self) -> bool:
        return bool(self.wallet_pass_template_id)

    @classmethod
    def from_model(cls, program: LoyaltyProgram) -> "ProgramSnapshot":
        return cls(
            id=program.id,
            public_id=program.public_id,
            business_id=program.business_id,
            status=ProgramStatus(program.status),
            reward_threshold=program.reward_threshold,
            reward_description=program.reward_description or "",
            stamp_label=program.stamp_label or "Stamps",
            max_earns_per_day=program.max_earns_per_day,
            min_gap_minutes=program.min_gap_minutes,
            earn_token=program.earn_token,
            previous_earn_token=program.previous_earn_token,
            earn_token_rotated_at=as_utc(program.earn_token_rotated_at),
            wallet_pass_template_id=program.wallet_pass_template_id,
        )


class _TTLCache:
    def __init__(self):
        self._data: dict[str, tuple[float, str, ProgramSnapshot]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[tuple[str, ProgramSnapshot]]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, version, value = entry
            if expires_at <= time.monotonic():
                del self._data[key]
                return None
            return version, value

    def put(self, key: str, version: str, value: ProgramSnapshot, ttl: float) -> None:
        with self._lock:
            self._data[key] = (time.monotonic() + ttl, version, value)

    def pop(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


_cache = _TTLCache()


def _version_key(public_id: str) -> str:
    return f"loyalty:program-version:{public_id}"


async def _shared_version(public_id: str) -> Optional[str]:
    """The program's invalidation counter, or None when it cannot be read."""
    if not get_settings().PROGRAM_CACHE_SHARED_INVALIDATION:
        return None
    try:
        redis = await get_arq_pool()
        value = await redis.get(_version_key(public_id))
    except Exception as e:
        logger.warning("Program version lookup failed for %s: %s", public_id, e)
        return None
    if isinstance(value, bytes):
        value = value.decode()
    return value or "0"


async def get_program_snapshot(
    db: AsyncSession, public_id: str
) -> Optional[ProgramSnapshot]:
    """Return the program for ``public_id`` (cached), or None if unknown."""
    ttl = get_settings().PROGRAM_CACHE_TTL_SECONDS
    version = None
    if ttl > 0:
        version = await _shared_version(public_id)
        cached = _cache.get(public_id)
        if cached is not None:
            cached_version, snapshot = cached
            if version is None or version == cached_version:
                return snapshot
            _cache.pop(public_id)

    result = await db.execute(
        select(LoyaltyProgram).where(LoyaltyProgram.public_id == public_id)
    )
    program = result.scalar_one_or_none()
    if program is None:
        return None

    snapshot = ProgramSnapshot.from_model(program)
    if ttl > 0:
        # Stored under the version read before the load: a bump in between
        # makes the next hit reload
        _cache.put(public_id, version or "0", snapshot, ttl)
    return snapshot


async def invalidate_program(public_id: str) -> None:
    """Drop the cached program here and in every other process."""
    _cache.pop(public_id)
    if get_settings().PROGRAM_CACHE_SHARED_INVALIDATION:
        try:
            redis = await get_arq_pool()
            await redis.incr(_version_key(public_id))
        except Exception as e:
            logger.warning(
                "Could not publish invalidation for program %s; other processes "
                "keep it until the TTL expires: %s",
                public_id,
                e,
            )
    logger.debug("Invalidated cached program %s", public_id)


def clear_program_cache() -> None:
    _cache.clear()
