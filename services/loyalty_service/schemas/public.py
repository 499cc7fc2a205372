"""Request/response schemas for the member-facing loyalty endpoints."""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import Field
from services.loyalty_service.models import RewardRedemption
from services.loyalty_service.schemas.base import CamelModel
from services.loyalty_service.services.qr_payload import QrMode
from services.loyalty_service.services.results import (
    CooldownKind,
    EarnFailureReason,
    EarnResult,
    JoinFailureReason,
    JoinResult,
    MembershipStatus,
    RedeemOutcome,
    RedeemResult,
)


class EarnRequest(CamelModel):
    program_public_id: str = Field(..., min_length=1, max_length=32)
    token: str = Field(..., max_length=128)
    wallet_pass_id: str = Field(..., min_length=1, max_length=255)


class EarnResponse(CamelModel):
    success: bool
    new_balance: int
    threshold: int
    reward_unlocked: bool = False
    proximity_message: Optional[str] = None
    next_eligible_at: Optional[datetime] = None
    reason: Optional[EarnFailureReason] = None
    cooldown_kind: Optional[CooldownKind] = None
    redemption_id: Optional[uuid.UUID] = None

    @classmethod
    def from_result(cls, result: EarnResult) -> "EarnResponse":
        return cls(
            success=result.success,
            new_balance=result.new_balance,
            threshold=result.threshold,
            reward_unlocked=result.reward_unlocked,
            proximity_message=result.proximity_message,
            next_eligible_at=result.next_eligible_at,
            reason=result.reason,
            cooldown_kind=result.cooldown_kind,
            redemption_id=result.redemption_id,
        )


class JoinRequest(CamelModel):
    program_public_id: str = Field(..., min_length=1, max_length=32)
    wallet_pass_id: str = Field(..., min_length=1, max_length=255)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=255)
    date_of_birth: Optional[date] = None


class JoinResponse(CamelModel):
    success: bool
    already_member: bool = False
    stamps_balance: int = 0
    has_wallet_pass: bool = False
    apple_wallet_url: Optional[str] = None
    google_wallet_url: Optional[str] = None
    reason: Optional[JoinFailureReason] = None

    @classmethod
    def from_result(cls, result: JoinResult) -> "JoinResponse":
        return cls(
            success=result.success,
            already_member=result.already_member,
            stamps_balance=result.stamps_balance,
            has_wallet_pass=result.has_wallet_pass,
            apple_wallet_url=result.apple_wallet_url,
            google_wallet_url=result.google_wallet_url,
            reason=result.reason,
        )


class MembershipStatusResponse(CamelModel):
    is_member: bool
    stamps_balance: int = 0
    threshold: int = 0
    reward_available: bool = False
    proximity_message: Optional[str] = None
    pending_redemption_id: Optional[uuid.UUID] = None
    pending_rewards: int = 0

    @classmethod
    def from_status(cls, status: MembershipStatus) -> "MembershipStatusResponse":
        return cls(
            is_member=status.is_member,
            stamps_balance=status.stamps_balance,
            threshold=status.threshold,
            reward_available=status.reward_available,
            proximity_message=status.proximity_message,
            pending_redemption_id=status.pending_redemption_id,
            pending_rewards=status.pending_rewards,
        )


class RewardResponse(CamelModel):
    id: uuid.UUID
    reward_description: str
    unlocked_at: datetime

    @classmethod
    def from_model(cls, redemption: RewardRedemption) -> "RewardResponse":
        return cls(
            id=redemption.id,
            reward_description=redemption.reward_description_snapshot,
            unlocked_at=redemption.unlocked_at,
        )


class RedeemRequest(CamelModel):
    program_public_id: str = Field(..., min_length=1, max_length=32)
    wallet_pass_id: str = Field(..., min_length=1, max_length=255)
    redemption_id: Optional[uuid.UUID] = None


class RedeemResponse(CamelModel):
    success: bool
    outcome: RedeemOutcome
    redemption_id: Optional[uuid.UUID] = None
    reward_description: Optional[str] = None
    redeemed_at: Optional[datetime] = None
    display_until: Optional[datetime] = None

    @classmethod
    def from_result(cls, result: RedeemResult) -> "RedeemResponse":
        return cls(
            success=result.success,
            outcome=result.outcome,
            redemption_id=result.redemption_id,
            reward_description=result.reward_description,
            redeemed_at=result.redeemed_at,
            display_until=result.display_until,
        )


class QrResolveRequest(CamelModel):
    url: str = Field(..., min_length=1, max_length=2048)


class QrResolveResponse(CamelModel):
    program_public_id: str
    mode: QrMode
    token: Optional[str] = None
