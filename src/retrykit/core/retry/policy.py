"""
Retry policy configuration.

A RetryPolicy is the fully resolved set of retry parameters for one call.
PolicyOverride is the partial form registered per HTTP method or endpoint
and merged on top of the default policy.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields, replace
from typing import Any

# Original camelCase option names, accepted in config files
_CAMEL_CASE_KEYS = {
    "maxRetries": "max_retries",
    "baseDelay": "base_delay_ms",
    "maxDelay": "max_delay_ms",
    "backoffMultiplier": "backoff_multiplier",
    "jitterFactor": "jitter_factor",
    "retryableStatuses": "retryable_statuses",
    "retryableErrors": "retryable_errors",
}

# Short aliases without the unit suffix
_ALIAS_KEYS = {
    "base_delay": "base_delay_ms",
    "max_delay": "max_delay_ms",
}


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry parameters governing a single request.

    Delays are in milliseconds. The delay before retry ``n`` (0-indexed) is
    ``min(base_delay_ms * backoff_multiplier ** n, max_delay_ms)`` with
    ``±jitter_factor`` of that value randomized.

    Examples:
        >>> policy = RetryPolicy(max_retries=5, base_delay_ms=500)
        >>> policy.merged(PolicyOverride(max_retries=1)).max_retries
        1
    """

    # Additional attempts after the first one
    max_retries: int = 3

    # Delay before the first retry (milliseconds)
    base_delay_ms: float = 1000

    # Upper bound for the pre-jitter delay (milliseconds)
    max_delay_ms: float = 30000

    # Geometric growth factor between retries
    backoff_multiplier: float = 2.0

    # Fraction of the capped delay that is randomized, in [0, 1]
    jitter_factor: float = 0.1

    # HTTP status codes worth retrying
    retryable_statuses: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})

    # Error categories (no HTTP status) worth retrying
    retryable_errors: frozenset[str] = frozenset({"NetworkError", "TimeoutError", "ConnectionError"})

    def __post_init__(self):
        """Validate configuration and normalize collections."""
        object.__setattr__(self, "retryable_statuses", frozenset(int(s) for s in self.retryable_statuses))
        object.__setattr__(self, "retryable_errors", frozenset(str(e) for e in self.retryable_errors))

        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")
        if self.max_delay_ms < 0:
            raise ValueError("max_delay_ms must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("backoff_multiplier must be > 0")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError("jitter_factor must be between 0 and 1")

    def merged(self, override: "PolicyOverride | None") -> "RetryPolicy":
        """Return a new policy with the override's set fields applied."""
        if override is None:
            return self
        changes = override.to_dict()
        if not changes:
            return self
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Plain dict view, collections sorted for stable output."""
        return {
            "max_retries": self.max_retries,
            "base_delay_ms": self.base_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "backoff_multiplier": self.backoff_multiplier,
            "jitter_factor": self.jitter_factor,
            "retryable_statuses": sorted(self.retryable_statuses),
            "retryable_errors": sorted(self.retryable_errors),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RetryPolicy":
        """Build a full policy from a mapping, missing keys use class defaults."""
        return cls().merged(PolicyOverride.from_dict(data))


@dataclass(frozen=True)
class PolicyOverride:
    """
    Partial policy registered for an HTTP method or an endpoint.

    Fields left as None are inherited from whatever the override is merged
    onto.
    """

    max_retries: int | None = None
    base_delay_ms: float | None = None
    max_delay_ms: float | None = None
    backoff_multiplier: float | None = None
    jitter_factor: float | None = None
    retryable_statuses: frozenset[int] | None = None
    retryable_errors: frozenset[str] | None = None

    def __post_init__(self):
        if self.retryable_statuses is not None:
            object.__setattr__(self, "retryable_statuses", frozenset(int(s) for s in self.retryable_statuses))
        if self.retryable_errors is not None:
            object.__setattr__(self, "retryable_errors", frozenset(str(e) for e in self.retryable_errors))

    def to_dict(self) -> dict[str, Any]:
        """Only the fields this override sets."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    @classmethod
    def from_policy(cls, policy: RetryPolicy) -> "PolicyOverride":
        """Lift a full policy into an override that sets every field."""
        return cls(**{f.name: getattr(policy, f.name) for f in fields(policy)})

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PolicyOverride":
        """
        Build an override from a config mapping.

        Accepts snake_case keys, the ``base_delay``/``max_delay`` aliases and
        the original camelCase names. Numeric strings (for example values
        substituted from environment variables) are coerced.

        Raises:
            ValueError: If a key is unknown or a value cannot be coerced
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"Policy must be a mapping, got {type(data).__name__}")

        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for raw_key, value in data.items():
            key = _CAMEL_CASE_KEYS.get(raw_key, _ALIAS_KEYS.get(raw_key, raw_key))
            if key not in known:
                raise ValueError(f"Unknown retry policy option: '{raw_key}'")
            if value is None:
                continue
            values[key] = _coerce(key, value)
        return cls(**values)


def coerce_override(value: "PolicyOverride | RetryPolicy | Mapping[str, Any]") -> PolicyOverride:
    """Accept an override, a full policy or a plain mapping."""
    if isinstance(value, PolicyOverride):
        return value
    if isinstance(value, RetryPolicy):
        return PolicyOverride.from_policy(value)
    return PolicyOverride.from_dict(value)


def _coerce(key: str, value: Any) -> Any:
    try:
        if key == "max_retries":
            if isinstance(value, bool):
                raise ValueError("expected an integer")
            number = float(value)
            if not number.is_integer():
                raise ValueError("expected an integer")
            return int(number)
        if key in ("retryable_statuses", "retryable_errors"):
            if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
                raise ValueError(f"'{key}' must be a list")
            if key == "retryable_statuses":
                return frozenset(int(v) for v in value)
            return frozenset(str(v) for v in value)
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for '{key}': {value!r} ({e})") from e


# Reference policies

DEFAULT_RETRY_POLICY = RetryPolicy(
    max_retries=3,
    base_delay_ms=1000,
    max_delay_ms=30000,
    backoff_multiplier=2.0,
    jitter_factor=0.1,
    retryable_statuses=frozenset({408, 429, 500, 502, 503, 504}),
    retryable_errors=frozenset({"NetworkError", "TimeoutError", "ConnectionError"}),
)

_SERVER_ERRORS = frozenset({500, 502, 503, 504})

# Ordered: the first key contained in the URL wins
DEFAULT_ENDPOINT_POLICIES: dict[str, PolicyOverride] = {
    # Login failures are not retried aggressively, never on 401/429
    "/auth/login": PolicyOverride(max_retries=1, base_delay_ms=2000, retryable_statuses=_SERVER_ERRORS),
    "/auth/refresh-token": PolicyOverride(max_retries=2, base_delay_ms=1000, retryable_statuses=_SERVER_ERRORS),
    "/products/search": PolicyOverride(
        max_retries=5,
        base_delay_ms=500,
        backoff_multiplier=1.5,
        retryable_statuses=frozenset({408, 429, 500, 502, 503, 504}),
    ),
    # Order writes: server errors only
    "/orders": PolicyOverride(max_retries=2, base_delay_ms=2000, retryable_statuses=_SERVER_ERRORS),
    "/upload": PolicyOverride(
        max_retries=3,
        base_delay_ms=2000,
        backoff_multiplier=2.0,
        max_delay_ms=60000,
        retryable_statuses=frozenset({408, 500, 502, 503, 504}),
    ),
    "/admin": PolicyOverride(max_retries=2, base_delay_ms=1500, retryable_statuses=_SERVER_ERRORS),
}

DEFAULT_METHOD_POLICIES: dict[str, PolicyOverride] = {
    "GET": PolicyOverride(
        max_retries=5,
        base_delay_ms=500,
        retryable_statuses=frozenset({408, 429, 500, 502, 503, 504}),
    ),
    "POST": PolicyOverride(max_retries=2, base_delay_ms=1500, retryable_statuses=_SERVER_ERRORS),
    "PUT": PolicyOverride(max_retries=2, base_delay_ms=1500, retryable_statuses=_SERVER_ERRORS),
    "DELETE": PolicyOverride(max_retries=2, base_delay_ms=1500, retryable_statuses=_SERVER_ERRORS),
    # PATCH may not be idempotent
    "PATCH": PolicyOverride(max_retries=1, base_delay_ms=2000, retryable_statuses=_SERVER_ERRORS),
}

NO_RETRY_POLICY = RetryPolicy(max_retries=0)
