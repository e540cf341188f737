"""Exceptions raised by feedsync.

Push traffic problems are never raised: malformed, stale and overflowing
events are logged and dropped where they arrive. These exceptions cover the
places where the caller asked for something that cannot be honored.
"""

from __future__ import annotations


class FeedSyncError(Exception):
    """Base class for feedsync errors."""


class FeedValidationError(FeedSyncError):
    """A feed page returned by the API does not match the expected shape."""

    def __init__(self, message: str, code: str = "INVALID_FEED_RESPONSE"):
        super().__init__(message)
        self.code = code


class FeedInactiveError(FeedSyncError):
    """An operation that needs an active feed session was called without one."""
