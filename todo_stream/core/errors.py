"""Error taxonomy shared by the store, the bus and the HTTP layer."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for datastore failures raised by the repositories."""

    code = "store_error"
    status_code = 500


class StoreUnavailable(StoreError):
    """The datastore connection cannot be used."""

    code = "store_unavailable"
    status_code = 503


class StoreRejected(StoreError):
    """A write violated a table constraint."""

    code = "store_rejected"
    status_code = 422


class BusPublishDegraded(Exception):
    """The mutation bus can no longer accept events (it was closed)."""


class SubscriptionClosed(Exception):
    """Raised by a subscription read once it, or its bus, has been closed."""


class SubscriberLagged(Exception):
    """A subscriber's ring buffer overflowed and ``missed`` events were dropped.

    Recoverable: the next read continues with the oldest retained event.
    """

    def __init__(self, missed: int):
        super().__init__(f"subscriber lagged behind by {missed} event(s)")
        self.missed = int(missed)
