"""
Retryable-error classification.

An error is judged by the first of these that applies:

1. HTTP status present: retryable iff the status is in ``retryable_statuses``.
2. Error category present: retryable iff it is in ``retryable_errors``.
3. Message mentions a transient-failure keyword.
"""

from typing import Any

from retrykit.core.retry.policy import RetryPolicy

RETRYABLE_MESSAGE_PATTERNS = (
    "network",
    "timeout",
    "connection",
    "fetch",
    "aborted",
    "unavailable",
)


def error_status(error: BaseException) -> int | None:
    """HTTP status carried by the error, if any.

    A status of 0 counts as absent.
    """
    for attr in ("status", "status_code"):
        status: Any = getattr(error, attr, None)
        if status:
            try:
                return int(status)
            except (TypeError, ValueError):
                continue
    return None


def error_category(error: BaseException) -> str | None:
    """Named error category, e.g. ``"NetworkError"``.

    Uses the error's ``name`` attribute when it is a non-empty string.
    Builtin timeouts and connection errors map to ``"TimeoutError"`` and
    ``"ConnectionError"``.
    """
    name = getattr(error, "name", None)
    if isinstance(name, str) and name:
        return name
    if isinstance(error, TimeoutError):
        return "TimeoutError"
    if isinstance(error, ConnectionError):
        return "ConnectionError"
    return None


def is_retryable_error(error: BaseException, policy: RetryPolicy) -> bool:
    """
    Check whether an error is retryable under a policy.

    Args:
        error: The exception raised by the request attempt
        policy: Resolved retry policy

    Returns:
        True if the error is transient according to the policy
    """
    status = error_status(error)
    if status is not None:
        return status in policy.retryable_statuses

    category = error_category(error)
    if category is not None:
        return category in policy.retryable_errors

    message = str(error).lower()
    return any(pattern in message for pattern in RETRYABLE_MESSAGE_PATTERNS)
