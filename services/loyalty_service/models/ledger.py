"""EarnEvent and RewardRedemption: the append-only stamp ledger."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.loyalty_service.models.enums import (
    EarnSource,
    RedemptionStatus,
    enum_values,
)
from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class EarnEvent(Base):
    """One row per successful earn. Immutable audit trail."""

    __tablename__ = "loyalty_earn_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    membership_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("loyalty_memberships.id"), nullable=False
    )
    program_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("loyalty_programs.id"), nullable=False, index=True
    )
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_unlocked: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    source: Mapped[EarnSource] = mapped_column(
        SAEnum(
            EarnSource,
            name="earn_source_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    ip_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        CheckConstraint("balance_after >= 0", name="balance_after_non_negative"),
        Index(
            "ix_loyalty_earn_events_membership_occurred",
            "membership_id",
            "occurred_at",
        ),
        Index("ix_loyalty_earn_events_ip_hash_occurred", "ip_hash", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<EarnEvent {self.id} membership={self.membership_id} after={self.balance_after}>"


class RewardRedemption(Base):
    """A reward unlocked by crossing the threshold, closed on redemption."""

    __tablename__ = "loyalty_reward_redemptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    membership_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("loyalty_memberships.id"), nullable=False
    )
    program_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("loyalty_programs.id"), nullable=False, index=True
    )
    earn_event_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("loyalty_earn_events.id"), nullable=True
    )
    status: Mapped[RedemptionStatus] = mapped_column(
        SAEnum(
            RedemptionStatus,
            name="redemption_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=RedemptionStatus.OPEN,
        nullable=False,
    )
    reward_description_snapshot: Mapped[str] = mapped_column(
        Text, default="", nullable=False
    )
    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    redeemed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index(
            "ix_loyalty_reward_redemptions_membership_unlocked",
            "membership_id",
            "unlocked_at",
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.status == RedemptionStatus.OPEN

    def __repr__(self) -> str:
        return f"<RewardRedemption {self.id} {self.status.value}>"
