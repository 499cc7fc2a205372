"""LoyaltyMembership model: a wallet identity enrolled in one program."""

import uuid
from datetime import date, datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.loyalty_service.models.enums import WalletPassStatus, enum_values
from sqlalchemy import CheckConstraint, Date, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


class LoyaltyMembership(Base):
    """Stamp balance holder. Balance is mutated only by the stamp ledger."""

    __tablename__ = "loyalty_memberships"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    program_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("loyalty_programs.id"), nullable=False, index=True
    )
    wallet_pass_id: Mapped[str] = mapped_column(String, index=True, nullable=False)

    stamps_balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lifetime_stamps_earned: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    total_redeemed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_earn_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Bumped on every ledger write; guards the conditional update
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Profile captured at join time
    first_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Wallet pass provisioning state
    wallet_pass_status: Mapped[WalletPassStatus] = mapped_column(
        SAEnum(
            WalletPassStatus,
            name="wallet_pass_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=WalletPassStatus.NOT_REQUESTED,
        nullable=False,
    )
    wallet_pass_serial: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    apple_wallet_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    google_wallet_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    program: Mapped["LoyaltyProgram"] = relationship(  # noqa: F821
        back_populates="memberships", lazy="raise"
    )

    __table_args__ = (
        UniqueConstraint(
            "program_id", "wallet_pass_id", name="uq_loyalty_memberships_program_wallet"
        ),
        CheckConstraint("stamps_balance >= 0", name="stamps_balance_non_negative"),
    )

    @property
    def has_wallet_pass(self) -> bool:
        return self.wallet_pass_status == WalletPassStatus.ISSUED

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "Anonymous"

    def __repr__(self) -> str:
        return (
            f"<LoyaltyMembership {self.id} program={self.program_id} "
            f"balance={self.stamps_balance}>"
        )
