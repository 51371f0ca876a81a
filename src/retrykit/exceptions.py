"""
retrykit exception hierarchy.

All library-raised exceptions inherit from RetryKitError, so callers can catch
any retrykit failure with a single base class and still handle transport
failures on their own.

Hierarchy::

    RetryKitError
    ├── ConfigurationError          - config loading, parsing, validation
    └── RequestError                - a request attempt failed
        ├── HTTPStatusError         - server answered with a non-2xx status
        ├── NetworkError            - transport-level failure, no status
        ├── RequestTimeoutError     - the attempt timed out
        └── ConnectionFailedError   - the connection could not be opened

The retry loop never wraps errors in these types. Whatever the request
function raised is re-raised, annotated with ``retry_attempts``,
``max_retries`` and ``request_id``.
"""

from __future__ import annotations


class RetryKitError(Exception):
    """Base exception for all retrykit errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(RetryKitError):
    """Raised when configuration loading, parsing, or validation fails."""


# --- Requests ----------------------------------------------------------------


class RequestError(RetryKitError):
    """A single request attempt failed.

    ``status`` is the HTTP status code when the server answered, ``name`` is
    the error category the classifier matches against a policy's
    ``retryable_errors``.
    """

    name: str | None = None

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        name: str | None = None,
        details: dict | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status = status
        if name is not None:
            self.name = name


class HTTPStatusError(RequestError):
    """Raised when the server responds with a non-2xx status."""

    name = "HTTPError"

    def __init__(self, status: int, message: str | None = None, *, url: str | None = None) -> None:
        full = message or f"HTTP {status}"
        if url:
            full = f"{full} ({url})"
        super().__init__(full, status=status, details={"status": status, "url": url})
        self.url = url


class NetworkError(RequestError):
    """Raised when the transport fails before a response arrives."""

    name = "NetworkError"


class RequestTimeoutError(RequestError):
    """Raised when an attempt exceeds its timeout."""

    name = "TimeoutError"


class ConnectionFailedError(RequestError):
    """Raised when a connection to the server cannot be established."""

    name = "ConnectionError"
