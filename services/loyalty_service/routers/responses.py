"""HTTP status mapping for typed engine results."""

from typing import Optional

from fastapi import Response, status
from services.loyalty_service.services.results import (
    EarnFailureReason,
    JoinFailureReason,
    RedeemOutcome,
)

RETRY_AFTER_SECONDS = "1"

_FAILURE_STATUS = {
    EarnFailureReason.INVALID_TOKEN: status.HTTP_403_FORBIDDEN,
    EarnFailureReason.PROGRAM_UNAVAILABLE: status.HTTP_409_CONFLICT,
    EarnFailureReason.TRANSIENT_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    JoinFailureReason.PROGRAM_UNAVAILABLE: status.HTTP_409_CONFLICT,
    JoinFailureReason.TRANSIENT_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    RedeemOutcome.TRANSIENT_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def apply_status(response: Response, reason: Optional[object]) -> None:
    """Set the status for a failed result; informative failures stay 200."""
    code = _FAILURE_STATUS.get(reason, status.HTTP_200_OK)
    response.status_code = code
    if code == status.HTTP_503_SERVICE_UNAVAILABLE:
        response.headers["Retry-After"] = RETRY_AFTER_SECONDS
