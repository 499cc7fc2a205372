"""Back-office schemas for program and member management."""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import Field
from services.loyalty_service.models.enums import (
    EarnMode,
    ProgramStatus,
    WalletPassJobStatus,
    WalletPassJobType,
    WalletPassStatus,
)
from services.loyalty_service.schemas.base import CamelModel


class ProgramCreateRequest(CamelModel):
    business_id: str = Field(..., min_length=1)
    program_name: Optional[str] = None
    reward_threshold: int = Field(..., ge=1, le=100)
    reward_description: str = ""
    stamp_label: str = "Stamps"
    earn_mode: EarnMode = EarnMode.PER_VISIT
    max_earns_per_day: int = Field(0, ge=0)
    min_gap_minutes: int = Field(0, ge=0)
    wallet_pass_template_id: Optional[str] = None
    status: ProgramStatus = ProgramStatus.DRAFT


class ProgramResponse(CamelModel):
    """Program as seen by the back office. Never includes the earn token."""

    id: uuid.UUID
    public_id: str
    business_id: str
    program_name: Optional[str] = None
    reward_threshold: int
    reward_description: str
    stamp_label: str
    earn_mode: EarnMode
    max_earns_per_day: int
    min_gap_minutes: int
    status: ProgramStatus
    wallet_pass_enabled: bool
    earn_token_rotated_at: Optional[datetime] = None
    created_at: datetime


class ProgramStatusUpdate(CamelModel):
    status: ProgramStatus


class QrPayloadResponse(CamelModel):
    program_public_id: str
    earn_url: str
    join_url: str


class TokenRotationResponse(CamelModel):
    program_public_id: str
    earn_url: str
    rotated_at: Optional[datetime] = None


class ManualEarnRequest(CamelModel):
    wallet_pass_id: str = Field(..., min_length=1, max_length=255)


class MemberResponse(CamelModel):
    id: uuid.UUID
    wallet_pass_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    date_of_birth: Optional[date] = None
    stamps_balance: int
    lifetime_stamps_earned: int
    total_redeemed: int
    last_earn_at: Optional[datetime] = None
    joined_at: datetime
    wallet_pass_status: WalletPassStatus
    has_wallet_pass: bool


class MemberListResponse(CamelModel):
    members: list[MemberResponse]
    total: int
    skip: int
    limit: int


class AdminRedeemRequest(CamelModel):
    redemption_id: Optional[uuid.UUID] = None


class WalletPassJobResponse(CamelModel):
    id: uuid.UUID
    membership_id: uuid.UUID
    job_type: WalletPassJobType
    status: WalletPassJobStatus
    attempts: int
    last_error: Optional[str] = None
    next_attempt_at: datetime
