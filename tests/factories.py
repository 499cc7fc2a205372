"""
Model factories for creating valid test data.

Every factory produces a valid, insertable SQLAlchemy model instance.
Override any field via kwargs.

Usage:
    program = LoyaltyProgramFactory.create(reward_threshold=5)
    db_session.add(program)
    await db_session.commit()
"""

import secrets
import uuid
from datetime import datetime, timezone

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex[:8]}@test.com"


async def persist(db, *objects):
    """Add, commit, and return the first object."""
    db.add_all(objects)
    await db.commit()
    return objects[0]


# ---------------------------------------------------------------------------
# Loyalty Service
# ---------------------------------------------------------------------------


class LoyaltyProgramFactory:
    @staticmethod
    def create(**overrides):
        from services.loyalty_service.models import (
            EarnMode,
            LoyaltyProgram,
            ProgramStatus,
        )

        defaults = {
            "id": _uuid(),
            "public_id": f"p{secrets.token_hex(4)}",
            "business_id": f"biz-{uuid.uuid4().hex[:6]}",
            "program_name": "Coffee Card",
            "reward_threshold": 10,
            "reward_description": "Free coffee",
            "stamp_label": "Stamps",
            "earn_mode": EarnMode.PER_VISIT,
            "max_earns_per_day": 0,
            "min_gap_minutes": 0,
            "earn_token": secrets.token_urlsafe(24),
            "status": ProgramStatus.ACTIVE,
            "wallet_pass_template_id": None,
            "created_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        return LoyaltyProgram(**defaults)


class MembershipFactory:
    @staticmethod
    def create(**overrides):
        from services.loyalty_service.models import (
            LoyaltyMembership,
            WalletPassStatus,
        )

        defaults = {
            "id": _uuid(),
            "wallet_pass_id": f"wallet-{uuid.uuid4().hex[:10]}",
            "stamps_balance": 0,
            "lifetime_stamps_earned": 0,
            "total_redeemed": 0,
            "version": 0,
            "first_name": "Test",
            "last_name": "Member",
            "email": _unique_email(),
            "wallet_pass_status": WalletPassStatus.NOT_REQUESTED,
            "joined_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        if "program_id" not in defaults:
            raise ValueError("MembershipFactory requires program_id")
        return LoyaltyMembership(**defaults)


class EarnEventFactory:
    @staticmethod
    def create(**overrides):
        from services.loyalty_service.models import EarnEvent, EarnSource

        defaults = {
            "id": _uuid(),
            "occurred_at": _now(),
            "balance_after": 1,
            "reward_unlocked": False,
            "source": EarnSource.QR_SCAN,
        }
        defaults.update(overrides)
        return EarnEvent(**defaults)


class RewardRedemptionFactory:
    @staticmethod
    def create(**overrides):
        from services.loyalty_service.models import (
            RedemptionStatus,
            RewardRedemption,
        )

        defaults = {
            "id": _uuid(),
            "status": RedemptionStatus.OPEN,
            "reward_description_snapshot": "Free coffee",
            "unlocked_at": _now(),
            "redeemed_at": None,
        }
        defaults.update(overrides)
        return RewardRedemption(**defaults)
