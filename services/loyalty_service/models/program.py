"""LoyaltyProgram model: one stamp card configuration per business."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.loyalty_service.models.enums import EarnMode, ProgramStatus, enum_values
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


class LoyaltyProgram(Base):
    """Owner-configured stamp program. Archived, never hard-deleted."""

    __tablename__ = "loyalty_programs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    public_id: Mapped[str] = mapped_column(
        String(32), unique=True, index=True, nullable=False
    )
    business_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    program_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    reward_threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    stamp_label: Mapped[str] = mapped_column(String, default="Stamps", nullable=False)
    earn_mode: Mapped[EarnMode] = mapped_column(
        SAEnum(
            EarnMode,
            name="earn_mode_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=EarnMode.PER_VISIT,
        nullable=False,
    )
    max_earns_per_day: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    min_gap_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    earn_token: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_earn_token: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    earn_token_rotated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    status: Mapped[ProgramStatus] = mapped_column(
        SAEnum(
            ProgramStatus,
            name="program_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=ProgramStatus.DRAFT,
        nullable=False,
    )

    # Set when the business has a wallet pass template; enables provisioning
    wallet_pass_template_id: Mapped[Optional[str]] = mapped_column(
        String, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    memberships: Mapped[list["LoyaltyMembership"]] = relationship(  # noqa: F821
        back_populates="program", lazy="raise"
    )

    __table_args__ = (
        CheckConstraint("reward_threshold >= 1", name="reward_threshold_positive"),
        CheckConstraint("max_earns_per_day >= 0", name="max_earns_non_negative"),
        CheckConstraint("min_gap_minutes >= 0", name="min_gap_non_negative"),
    )

    @property
    def wallet_pass_enabled(self) -> bool:
        return bool(self.wallet_pass_template_id)

    def __repr__(self) -> str:
        return f"<LoyaltyProgram {self.public_id} status={self.status.value}>"
