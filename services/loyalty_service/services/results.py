"""Typed outcomes returned by the loyalty engine."""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class EarnFailureReason(str, enum.Enum):
    COOLDOWN = "cooldown"
    NOT_MEMBER = "not_member"
    INVALID_TOKEN = "invalid_token"
    PROGRAM_UNAVAILABLE = "program_unavailable"
    TRANSIENT_ERROR = "transient_error"


class JoinFailureReason(str, enum.Enum):
    PROGRAM_UNAVAILABLE = "program_unavailable"
    TRANSIENT_ERROR = "transient_error"


class RedeemOutcome(str, enum.Enum):
    REDEEMED = "redeemed"
    ALREADY_REDEEMED = "already_redeemed"
    NO_REWARD_AVAILABLE = "no_reward_available"
    TRANSIENT_ERROR = "transient_error"


class CooldownKind(str, enum.Enum):
    MIN_GAP = "min_gap"
    DAILY_CAP = "daily_cap"
    HOURLY_CAP = "hourly_cap"
    IP_VELOCITY = "ip_velocity"
    # More than one rule rejected
    BOTH = "both"


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    next_eligible_at: Optional[datetime] = None
    kind: Optional[CooldownKind] = None


@dataclass(frozen=True)
class EarnResult:
    success: bool
    new_balance: int = 0
    threshold: int = 0
    reward_unlocked: bool = False
    proximity_message: Optional[str] = None
    next_eligible_at: Optional[datetime] = None
    reason: Optional[EarnFailureReason] = None
    cooldown_kind: Optional[CooldownKind] = None
    membership_id: Optional[uuid.UUID] = None
    redemption_id: Optional[uuid.UUID] = None
    wallet_pass_job_ids: tuple[uuid.UUID, ...] = field(default_factory=tuple)

    @classmethod
    def failure(cls, reason: EarnFailureReason, **kwargs) -> "EarnResult":
        return cls(success=False, reason=reason, **kwargs)


@dataclass(frozen=True)
class JoinResult:
    success: bool
    already_member: bool = False
    membership_id: Optional[uuid.UUID] = None
    stamps_balance: int = 0
    has_wallet_pass: bool = False
    apple_wallet_url: Optional[str] = None
    google_wallet_url: Optional[str] = None
    reason: Optional[JoinFailureReason] = None
    wallet_pass_job_ids: tuple[uuid.UUID, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MembershipStatus:
    is_member: bool
    stamps_balance: int = 0
    threshold: int = 0
    reward_available: bool = False
    proximity_message: Optional[str] = None
    pending_redemption_id: Optional[uuid.UUID] = None
    pending_rewards: int = 0
    program_found: bool = True
    transient_error: bool = False


@dataclass(frozen=True)
class RedeemResult:
    outcome: RedeemOutcome
    redemption_id: Optional[uuid.UUID] = None
    reward_description: Optional[str] = None
    redeemed_at: Optional[datetime] = None
    # Staff screens keep showing the redeemed reward until this instant
    display_until: Optional[datetime] = None
    wallet_pass_job_ids: tuple[uuid.UUID, ...] = field(default_factory=tuple)

    @property
    def success(self) -> bool:
        return self.outcome in (RedeemOutcome.REDEEMED, RedeemOutcome.ALREADY_REDEEMED)
