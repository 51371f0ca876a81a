"""
Layered retry policy registry.

Resolution order is default -> HTTP method override -> endpoint override, so
an endpoint override wins over a method override on any field both set.
"""

import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from retrykit.core.retry.policy import (
    DEFAULT_ENDPOINT_POLICIES,
    DEFAULT_METHOD_POLICIES,
    DEFAULT_RETRY_POLICY,
    PolicyOverride,
    RetryPolicy,
    coerce_override,
)


@dataclass(frozen=True)
class RequestContext:
    """Per-call input used to pick a policy."""

    # Absolute or relative URL, matched by substring against endpoint keys
    url: str = ""

    # HTTP verb, case-insensitive
    method: str = ""

    # Caller-supplied tracking id (generated when omitted)
    request_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "method": self.method, "request_id": self.request_id}


class PolicyRegistry:
    """
    Holds the default policy plus per-method and per-endpoint overrides.

    Read on every request, written only through the two update methods.
    Writes take a lock and swap in new mappings so concurrent readers always
    see a consistent snapshot.

    Examples:
        >>> registry = PolicyRegistry.with_defaults()
        >>> registry.resolve(RequestContext(url="/api/orders/42", method="post")).max_retries
        2
    """

    def __init__(
        self,
        default: RetryPolicy | None = None,
        endpoints: Mapping[str, Any] | None = None,
        methods: Mapping[str, Any] | None = None,
    ):
        """
        Initialize PolicyRegistry.

        Args:
            default: Base policy (defaults to DEFAULT_RETRY_POLICY)
            endpoints: URL substring -> override, scanned in insertion order
            methods: HTTP method -> override, keys are uppercased
        """
        self._default = default or DEFAULT_RETRY_POLICY
        self._endpoints: dict[str, PolicyOverride] = {
            key: coerce_override(value) for key, value in (endpoints or {}).items()
        }
        self._methods: dict[str, PolicyOverride] = {
            key.upper(): coerce_override(value) for key, value in (methods or {}).items()
        }
        self._lock = threading.Lock()

        # Out-of-range override values fail here, not in resolve()
        for override in (*self._endpoints.values(), *self._methods.values()):
            self._default.merged(override)

    @classmethod
    def with_defaults(cls) -> "PolicyRegistry":
        """Registry preloaded with the reference endpoint and method policies."""
        return cls(DEFAULT_RETRY_POLICY, DEFAULT_ENDPOINT_POLICIES, DEFAULT_METHOD_POLICIES)

    @property
    def default(self) -> RetryPolicy:
        return self._default

    @property
    def endpoints(self) -> dict[str, PolicyOverride]:
        """Copy of the endpoint overrides in scan order."""
        return dict(self._endpoints)

    @property
    def methods(self) -> dict[str, PolicyOverride]:
        """Copy of the method overrides."""
        return dict(self._methods)

    def resolve(self, context: RequestContext) -> RetryPolicy:
        """
        Resolve the effective policy for a request.

        Args:
            context: Request URL and method

        Returns:
            Fully populated policy; never cached
        """
        # Snapshot references so a concurrent update cannot tear the view
        endpoints = self._endpoints
        methods = self._methods

        policy = self._default

        if context.method:
            policy = policy.merged(methods.get(context.method.upper()))

        if context.url:
            for endpoint, override in endpoints.items():
                if endpoint in context.url:
                    policy = policy.merged(override)
                    break

        return policy

    def match_endpoint(self, url: str) -> str | None:
        """Return the endpoint key that applies to ``url``, if any."""
        if not url:
            return None
        for endpoint in self._endpoints:
            if endpoint in url:
                return endpoint
        return None

    def update_endpoint_policy(self, endpoint: str, policy: Any) -> PolicyOverride:
        """
        Replace the override for an endpoint.

        The new override is ``policy`` merged onto the default policy, not onto
        the previous override. A new key is scanned after existing ones.

        Returns:
            The stored override
        """
        stored = PolicyOverride.from_policy(self._default.merged(coerce_override(policy)))
        with self._lock:
            endpoints = dict(self._endpoints)
            endpoints[endpoint] = stored
            self._endpoints = endpoints
        return stored

    def update_method_policy(self, method: str, policy: Any) -> PolicyOverride:
        """
        Replace the override for an HTTP method.

        Same re-basing rule as update_endpoint_policy.

        Returns:
            The stored override
        """
        stored = PolicyOverride.from_policy(self._default.merged(coerce_override(policy)))
        with self._lock:
            methods = dict(self._methods)
            methods[method.upper()] = stored
            self._methods = methods
        return stored

    def summary(self) -> dict[str, Any]:
        """Default policy plus override counts."""
        return {
            "default": self._default.to_dict(),
            "endpoint_count": len(self._endpoints),
            "method_count": len(self._methods),
        }
