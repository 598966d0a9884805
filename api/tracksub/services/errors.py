"""Typed failures raised by the scheduling and reconciliation services.

Routers translate these into HTTP responses; nothing else should cross a
service boundary.
"""


class ReconciliationError(Exception):
    """Base class for service-level failures reported to the caller."""

    pass


class InvalidCycle(ReconciliationError, ValueError):
    """Billing cycle is not one of the supported values."""

    def __init__(self, cycle: object):
        super().__init__(f"Unsupported billing cycle: {cycle!r}")
        self.cycle = cycle


class PlanRequired(ReconciliationError):
    """A Pro-only action was attempted on a free plan."""

    pass


class AccountNotLinked(ReconciliationError):
    """No bank account has been linked for this user."""

    pass


class SyncLimitExceeded(ReconciliationError):
    """The monthly bank sync quota is used up."""

    def __init__(self, limit: int):
        super().__init__(f"Sync limit reached. You can sync up to {limit} times per month.")
        self.limit = limit


class ExternalFeedError(ReconciliationError):
    """The bank feed failed; `processed` transactions were already stored."""

    def __init__(self, message: str, processed: int = 0):
        super().__init__(message)
        self.processed = processed


class DeliveryFailure(ReconciliationError):
    """A single reminder email could not be delivered."""

    pass
