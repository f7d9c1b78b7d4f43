"""Typed failures of the shared store boundary."""


class StoreError(Exception):
    """A read or write against the shared store failed.

    Always recoverable from the client's point of view: the caller rolls back
    optimistic state or falls back to a full reload.
    """


class RecordNotFoundError(StoreError):
    """The row addressed by an update or delete does not exist."""


class DuplicateRowError(StoreError):
    """A unique constraint rejected the write (e.g. two clients racing on a turn number)."""
