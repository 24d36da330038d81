"""Error taxonomy for the reminder dispatch engine."""


class ReminderError(Exception):
    """Base class for reminder engine errors."""

    pass


class StoreUnavailable(ReminderError):
    """Raised when the event store, identity directory or ledger store can't be reached."""

    pass


class ResolutionIncomplete(ReminderError):
    """Raised when an event's owner (or a single recipient) can't be resolved."""

    pass


class TransportFailure(ReminderError):
    """Raised by a channel transport when a send attempt fails.

    Keeps the provider's raw response (or error text) so it can be stored
    on the FAILED delivery record.
    """

    def __init__(
        self,
        message: str,
        provider_status: int | None = None,
        payload: object = None,
    ):
        super().__init__(message)
        self.provider_status = provider_status
        self.payload = payload


class LedgerWriteFailure(ReminderError):
    """Raised when a delivery record could not be written.

    An unrecorded SENT can cause an indistinguishable duplicate on the next
    discovery cycle, so this is the highest-severity failure.
    """

    def __init__(self, message: str, record=None):
        super().__init__(message)
        self.record = record


class DuplicateDelivery(ReminderError):
    """Raised by a ledger store that refuses a second SENT record for one key."""

    pass
