"""Internal loyalty errors.

``earn``/``join``/``redeem`` catch the transient ones and return typed
results instead. Admin routes map lookup and transition errors to HTTP.
"""

from libs.db.guard import StoreUnavailable


class LoyaltyError(Exception):
    pass


class ProgramNotFound(LoyaltyError):
    pass


class MembershipNotFound(LoyaltyError):
    pass


class ConcurrentUpdateConflict(LoyaltyError):
    """The membership row kept changing under the conditional update."""


class ProgramTransitionError(LoyaltyError):
    pass


class WalletPassNotConfigured(LoyaltyError):
    pass


class ProvisionerError(LoyaltyError):
    """The wallet pass provisioner rejected or failed a request."""


TRANSIENT_ERRORS = (StoreUnavailable, ConcurrentUpdateConflict)
