"""
retrykit - Policy-driven retries for HTTP and API calls.

Layered retry policies (default, HTTP method, endpoint), error
classification, exponential backoff with jitter and in-flight request
tracking.
"""

__version__ = "0.1.0"

from retrykit.config.loader import Config, build_registry, load_config
from retrykit.core.retry import (
    DEFAULT_ENDPOINT_POLICIES,
    DEFAULT_METHOD_POLICIES,
    DEFAULT_RETRY_POLICY,
    NO_RETRY_POLICY,
    AttemptTracker,
    CleanupScheduler,
    PolicyOverride,
    PolicyRegistry,
    RequestContext,
    RetryManager,
    RetryPolicy,
    RetryStats,
    calculate_delay,
    is_retryable_error,
    sweep_stale,
)
from retrykit.exceptions import (
    ConfigurationError,
    ConnectionFailedError,
    HTTPStatusError,
    NetworkError,
    RequestError,
    RequestTimeoutError,
    RetryKitError,
)
from retrykit.utils.api import API
from retrykit.utils.logging import get_logger, setup_logging, setup_logging_from_config

__all__ = [
    "__version__",
    # Policies
    "RetryPolicy",
    "PolicyOverride",
    "PolicyRegistry",
    "RequestContext",
    "DEFAULT_RETRY_POLICY",
    "DEFAULT_ENDPOINT_POLICIES",
    "DEFAULT_METHOD_POLICIES",
    "NO_RETRY_POLICY",
    # Engine
    "RetryManager",
    "RetryStats",
    "AttemptTracker",
    "CleanupScheduler",
    "calculate_delay",
    "is_retryable_error",
    "sweep_stale",
    # HTTP client
    "API",
    # Configuration
    "Config",
    "load_config",
    "build_registry",
    # Exceptions
    "RetryKitError",
    "ConfigurationError",
    "RequestError",
    "HTTPStatusError",
    "NetworkError",
    "RequestTimeoutError",
    "ConnectionFailedError",
    # Logging
    "get_logger",
    "setup_logging",
    "setup_logging_from_config",
]
