"""Loyalty Service models package.

Re-exports all models and enums so that SQLAlchemy's mapper registry sees
every model class on import and Alembic's env.py can import from one place.

When adding a new model, add both its import and its __all__ entry.
"""

from services.loyalty_service.models.enums import (  # noqa: F401
    EarnMode,
    EarnSource,
    ProgramStatus,
    RedemptionStatus,
    WalletPassJobStatus,
    WalletPassJobType,
    WalletPassStatus,
)
from services.loyalty_service.models.ledger import (  # noqa: F401
    EarnEvent,
    RewardRedemption,
)
from services.loyalty_service.models.membership import LoyaltyMembership  # noqa: F401
from services.loyalty_service.models.program import LoyaltyProgram  # noqa: F401
from services.loyalty_service.models.wallet_pass import WalletPassJob  # noqa: F401

__all__ = [
    # Enums
    "EarnMode",
    "EarnSource",
    "ProgramStatus",
    "RedemptionStatus",
    "WalletPassJobStatus",
    "WalletPassJobType",
    "WalletPassStatus",
    # Models
    "LoyaltyProgram",
    "LoyaltyMembership",
    "EarnEvent",
    "RewardRedemption",
    "WalletPassJob",
]
