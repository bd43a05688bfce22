from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from .entries import RetryAttempt


class CorruptEntryError(Exception):
    """Stored payload could not be decoded back into a value."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Corrupt cache entry {key!r}: {reason}")


class BackingStoreError(Exception):
    """The backing store failed to read, write or delete a record."""


class QuotaExceededError(BackingStoreError):
    """The backing store (or the cache budget) cannot hold another write."""


class TransportError(Exception):
    """A request never produced an HTTP response (connect failure, timeout, reset)."""


class FetchError(Exception):
    """Base class for failures surfaced by the resilient fetcher."""

    def __init__(self, message: str, attempts: Sequence["RetryAttempt"] = ()):
        super().__init__(message)
        self.attempts = list(attempts)


class HttpStatusError(FetchError):
    def __init__(
        self,
        status: int,
        reason: str = "",
        body: bytes = b"",
        attempts: Sequence["RetryAttempt"] = (),
    ):
        self.status = status
        self.reason = reason
        self.body = body
        super().__init__(f"Request failed: {status} {reason}".rstrip(), attempts)


class TerminalRequestError(HttpStatusError):
    """The server rejected the request with a status retrying cannot fix."""


class RetryBudgetExhausted(FetchError):
    """Every attempt failed with a retryable outcome."""

    def __init__(self, last_error: Exception, attempts: Sequence["RetryAttempt"] = ()):
        self.last_error = last_error
        super().__init__(
            f"Gave up after {len(attempts)} attempts. Last error: {last_error}",
            attempts,
        )

    @property
    def last_status(self) -> Optional[int]:
        if isinstance(self.last_error, HttpStatusError):
            return self.last_error.status
        return None


class ResponseDecodeError(FetchError):
    """A successful response carried a body that could not be parsed."""
