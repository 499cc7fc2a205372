"""Enums for the Loyalty Service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class ProgramStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class EarnMode(str, enum.Enum):
    PER_VISIT = "per_visit"
    PER_PURCHASE = "per_purchase"


class EarnSource(str, enum.Enum):
    QR_SCAN = "qr_scan"
    MANUAL = "manual"


class RedemptionStatus(str, enum.Enum):
    OPEN = "open"
    REDEEMED = "redeemed"


class WalletPassStatus(str, enum.Enum):
    NOT_REQUESTED = "not_requested"
    PENDING = "pending"
    ISSUED = "issued"
    FAILED = "failed"


class WalletPassJobType(str, enum.Enum):
    ISSUE = "issue"
    UPDATE = "update"


class WalletPassJobStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
