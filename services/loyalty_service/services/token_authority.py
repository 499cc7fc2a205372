"""Token Authority: proves a scan came from the program's printed QR.

The earn token is a static per-program secret embedded in the till QR.
It is minted once, compared in constant time, and rotatable by the
owner; rotation invalidates previously printed codes (optionally after
a configurable grace period for the previous token).
"""

import hmac
import secrets
import string
from datetime import datetime, timedelta
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.loyalty_service.models import LoyaltyProgram
from services.loyalty_service.services.program_cache import (
    ProgramSnapshot,
    get_program_snapshot,
    invalidate_program,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

PUBLIC_ID_LENGTH = 10
EARN_TOKEN_LENGTH = 32

# No 0/O/1/l/I so printed codes survive being read aloud
_PUBLIC_ID_ALPHABET = "".join(
    c for c in string.ascii_lowercase + string.digits if c not in "0o1li"
)
_TOKEN_ALPHABET = string.ascii_letters + string.digits


def generate_public_id() -> str:
    return "".join(secrets.choice(_PUBLIC_ID_ALPHABET) for _ in range(PUBLIC_ID_LENGTH))


def generate_earn_token() -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(EARN_TOKEN_LENGTH))


def tokens_match(presented: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison; empty values never match."""
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def check_token(
    program: ProgramSnapshot,
    presented: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> bool:
    """True when ``presented`` matches the current token, or the previous
    token while the rotation grace window is still open."""
    if tokens_match(presented, program.earn_token):
        return True

    grace_minutes = get_settings().EARN_TOKEN_GRACE_MINUTES
    if grace_minutes <= 0 or program.earn_token_rotated_at is None:
        return False
    if not tokens_match(presented, program.previous_earn_token):
        return False
    now = now or utc_now()
    return now <= program.earn_token_rotated_at + timedelta(minutes=grace_minutes)


async def validate_earn_token(
    db: AsyncSession,
    program_public_id: str,
    presented_token: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> Optional[ProgramSnapshot]:
    """Return the program when the token is valid for an active program.

    Returns None (invalid) when the program is unknown, not active, or the
    token does not match. Invalid results are reported, never retried.
    """
    program = await get_program_snapshot(db, program_public_id)
    if program is None:
        logger.warning("Earn token presented for unknown program %s", program_public_id)
        return None
    if not program.is_active:
        logger.info(
            "Earn token presented for %s program %s",
            program.status.value,
            program_public_id,
        )
        return None
    if not check_token(program, presented_token, now=now):
        logger.warning("Invalid earn token presented for program %s", program_public_id)
        return None
    return program


async def rotate_earn_token(
    db: AsyncSession,
    program: LoyaltyProgram,
    *,
    now: Optional[datetime] = None,
) -> str:
    """Mint a new earn token for ``program`` and commit it."""
    now = now or utc_now()
    program.previous_earn_token = program.earn_token
    program.earn_token = generate_earn_token()
    program.earn_token_rotated_at = now
    await db.commit()
    await db.refresh(program)
    await invalidate_program(program.public_id)

    logger.info("Rotated earn token for program %s", program.public_id)
    return program.earn_token
