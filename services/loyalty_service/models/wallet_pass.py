"""WalletPassJob: outbox of wallet pass provisioning work."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.loyalty_service.models.enums import (
    WalletPassJobStatus,
    WalletPassJobType,
    enum_values,
)
from sqlalchemy import JSON, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column


class WalletPassJob(Base):
    """Written in the same transaction as the change it reflects.

    Processed out-of-band by the worker so provisioner failures never
    affect join/earn/redeem.
    """

    __tablename__ = "loyalty_wallet_pass_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    membership_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("loyalty_memberships.id"), nullable=False, index=True
    )
    job_type: Mapped[WalletPassJobType] = mapped_column(
        SAEnum(
            WalletPassJobType,
            name="wallet_pass_job_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    status: Mapped[WalletPassJobStatus] = mapped_column(
        SAEnum(
            WalletPassJobStatus,
            name="wallet_pass_job_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=WalletPassJobStatus.PENDING,
        nullable=False,
    )
    payload: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    next_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        Index(
            "ix_loyalty_wallet_pass_jobs_status_next",
            "status",
            "next_attempt_at",
        ),
    )

    def __repr__(self) -> str:
        return f"<WalletPassJob {self.id} {self.job_type.value} {self.status.value}>"
