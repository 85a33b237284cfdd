"""Exceptions raised by pocketsync."""

from typing import Iterable


class PocketSyncError(Exception):
    """Base exception for pocketsync errors."""


class TimeoutWaitingForIds(PocketSyncError):
    """Raised when awaited identifiers are not confirmed before the deadline."""

    def __init__(self, missing_ids: Iterable[str]):
        self.missing_ids = list(missing_ids)
        super().__init__(f"Timeout waiting for IDs: {', '.join(self.missing_ids)}")


class UnexpectedMutationKind(PocketSyncError):
    """Raised when a batch holds a mutation of the wrong kind for its dispatcher."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} type, got {actual}")


class SubscriptionError(PocketSyncError):
    """Raised when the realtime channel fails to establish or drops."""

    def __init__(self, message: str):
        super().__init__(f"Subscription error: {message}")


class TransactionError(PocketSyncError):
    """Raised on misuse of a local collection's begin/commit protocol."""
