"""Error types shared by the ingestion clients and the sync/pricing services.

- UpstreamError: a collaborator stayed unreachable or kept answering 5xx after
  retries. The caller skips the unit of work (a set, a card group, a sync).
- RateLimitedError: a collaborator answered 429. Pricing phases stop on it
  immediately and hand the remaining slabs to the next source; catalog sync
  retries 429 with backoff and ends its card pass if it persists.
- InvariantViolation: a record would break a storage invariant and is rejected
  before it is written.
"""

from __future__ import annotations

from typing import Optional


class SlabTrackerError(Exception):
    """Base class for errors raised by this package."""


class UpstreamError(SlabTrackerError):
    """Raised when an external service fails after the configured retries."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


class RateLimitedError(UpstreamError):
    """Raised on HTTP 429, straight away or once an opted-in client runs out of retries."""

    def __init__(self, source: str, message: str = "rate limited"):
        super().__init__(source, message, status_code=429)


class InvariantViolation(SlabTrackerError):
    """Raised when a record is about to be persisted in an invalid state."""
