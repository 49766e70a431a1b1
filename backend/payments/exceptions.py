class ReconciliationError(Exception):
    """Base class for failures raised by the payment reconciliation services."""


class GatewayUnavailable(ReconciliationError):
    """The payment gateway could not answer; the caller retries on its own cadence."""


class ConflictIgnored(ReconciliationError):
    """
    A conditional write matched no rows because another caller got there first.

    Raised inside ``transaction.atomic`` blocks to roll back the partial write;
    never surfaces as an error.
    """


class PersistenceFailure(ReconciliationError):
    """The database rejected a reconciliation write."""


class RepairNotFound(ReconciliationError):
    """A repair entry point found nothing to act on."""


class SettlementNotFound(RepairNotFound):
    """No approved payment exists for the requested package settlement."""


class PackageNotFound(RepairNotFound):
    """No sibling bookings share the payment's package token."""


class BookingNotFound(RepairNotFound):
    """No booking matches the repair request."""


class WatchLimitReached(ReconciliationError):
    """Too many bookings are already being watched by this process."""
