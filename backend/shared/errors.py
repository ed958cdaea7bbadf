"""
Error taxonomy for outbound calls and persistence.
ShapeError subclasses TransportError: an unexpected response body is handled
exactly like a network failure by every caller.
"""
from __future__ import annotations

from typing import Optional


class DubTrackError(Exception):
    """Base for all errors raised by the reconciliation core."""


class RateLimited(DubTrackError):
    """Upstream kept answering 429 after the single permitted retry."""

    def __init__(self, source: str, retry_after: float) -> None:
        super().__init__(f"{source} rate limited (retry after {retry_after:.0f}s)")
        self.source = source
        self.retry_after = retry_after


class TransportError(DubTrackError):
    """Network failure, timeout, or non-success HTTP status from a source."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


class ShapeError(TransportError):
    """Response parsed but did not have the expected structure."""


class PersistenceError(DubTrackError):
    """The backing store rejected or failed a read/write."""
