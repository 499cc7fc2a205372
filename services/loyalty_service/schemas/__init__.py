"""Loyalty Service schemas package.

Re-exports all schemas so routers import from one place.

When adding a new schema, add its import and __all__ entry.
"""

from services.loyalty_service.schemas.admin import (  # noqa: F401
    AdminRedeemRequest,
    ManualEarnRequest,
    MemberListResponse,
    MemberResponse,
    ProgramCreateRequest,
    ProgramResponse,
    ProgramStatusUpdate,
    QrPayloadResponse,
    TokenRotationResponse,
    WalletPassJobResponse,
)
from services.loyalty_service.schemas.public import (  # noqa: F401
    EarnRequest,
    EarnResponse,
    JoinRequest,
    JoinResponse,
    MembershipStatusResponse,
    QrResolveRequest,
    QrResolveResponse,
    RedeemRequest,
    RedeemResponse,
    RewardResponse,
)

__all__ = [
    # Public
    "EarnRequest",
    "EarnResponse",
    "JoinRequest",
    "JoinResponse",
    "MembershipStatusResponse",
    "QrResolveRequest",
    "QrResolveResponse",
    "RedeemRequest",
    "RedeemResponse",
    "RewardResponse",
    # Admin
    "AdminRedeemRequest",
    "ManualEarnRequest",
    "MemberListResponse",
    "MemberResponse",
    "ProgramCreateRequest",
    "ProgramResponse",
    "ProgramStatusUpdate",
    "QrPayloadResponse",
    "TokenRotationResponse",
    "WalletPassJobResponse",
]
