"""
Retry engine: layered policies, error classification, backoff and tracking.
"""

from retrykit.core.retry.backoff import calculate_delay, delay_schedule
from retrykit.core.retry.classifier import (
    RETRYABLE_MESSAGE_PATTERNS,
    error_category,
    error_status,
    is_retryable_error,
)
from retrykit.core.retry.manager import RetryManager
from retrykit.core.retry.policy import (
    DEFAULT_ENDPOINT_POLICIES,
    DEFAULT_METHOD_POLICIES,
    DEFAULT_RETRY_POLICY,
    NO_RETRY_POLICY,
    PolicyOverride,
    RetryPolicy,
)
from retrykit.core.retry.registry import PolicyRegistry, RequestContext
from retrykit.core.retry.scheduler import CleanupScheduler
from retrykit.core.retry.tracking import (
    DEFAULT_CLEANUP_INTERVAL_MS,
    DEFAULT_STALE_THRESHOLD_MS,
    AttemptTracker,
    RetryStats,
    TrackingEntry,
    sweep_stale,
)

__all__ = [
    # Policy
    "RetryPolicy",
    "PolicyOverride",
    "DEFAULT_RETRY_POLICY",
    "DEFAULT_ENDPOINT_POLICIES",
    "DEFAULT_METHOD_POLICIES",
    "NO_RETRY_POLICY",
    # Registry
    "PolicyRegistry",
    "RequestContext",
    # Classification
    "is_retryable_error",
    "error_status",
    "error_category",
    "RETRYABLE_MESSAGE_PATTERNS",
    # Backoff
    "calculate_delay",
    "delay_schedule",
    # Tracking
    "AttemptTracker",
    "TrackingEntry",
    "RetryStats",
    "sweep_stale",
    "DEFAULT_CLEANUP_INTERVAL_MS",
    "DEFAULT_STALE_THRESHOLD_MS",
    "CleanupScheduler",
    # Manager
    "RetryManager",
]
