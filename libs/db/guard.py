"""Bounded-time execution of a database unit of work.

A store call that hangs or loses its connection must never be mistaken
for success. ``run_guarded`` bounds the unit of work, rolls the session
back on failure, and raises ``StoreUnavailable`` so callers can report an
unknown outcome that is safe to retry.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from libs.common.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class StoreUnavailable(Exception):
    """The persistent store timed out or dropped the connection."""


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (asyncio.TimeoutError, OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


async def _rollback_quietly(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except SQLAlchemyError as exc:
        logger.warning("Rollback after store failure also failed: %s", exc)


async def run_guarded(
    db: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    timeout: float,
) -> T:
    """Run ``work()`` within ``timeout`` seconds.

    Raises:
        StoreUnavailable: on timeout or a connection-level database error.
    """
    try:
        return await asyncio.wait_for(work(), timeout=timeout)
    except Exception as exc:
        if not _is_transient(exc):
            raise
        await _rollback_quietly(db)
        logger.warning("Store unit of work failed (%s): %s", type(exc).__name__, exc)
        raise StoreUnavailable(str(exc) or type(exc).__name__) from exc
