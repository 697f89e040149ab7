"""Exception types raised by the sync core."""

from typing import Optional


class NtfySyncError(Exception):
    """Base class for all sync core errors."""


class DuplicateSubscription(NtfySyncError):
    """A subscription for the same topic on the same server already exists."""

    def __init__(self, topic: str, base_url: str):
        self.topic = topic
        self.base_url = base_url
        super().__init__(f"Already subscribed to {base_url}/{topic}")


class NotFound(NtfySyncError):
    """The subscription or notification does not exist (anymore)."""


class TransportError(NtfySyncError):
    """A publish, fetch or deregister call against the server failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class StoreInvariantError(NtfySyncError, AssertionError):
    """The store was asked to do something that breaks its invariants.

    This is a programming error and is never swallowed.
    """
