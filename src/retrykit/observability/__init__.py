"""
Observability module for retrykit.

Prometheus metrics and structured logging.
"""

from retrykit.observability.metrics import MetricsRegistry, get_metrics_registry
from retrykit.observability.structured_logging import (
    HumanReadableFormatter,
    StructuredFormatter,
    add_correlation_id,
    get_correlation_id,
    log_retry_event,
    set_correlation_id,
    setup_structured_logging,
)

__all__ = [
    # Metrics
    "MetricsRegistry",
    "get_metrics_registry",
    # Structured Logging
    "StructuredFormatter",
    "HumanReadableFormatter",
    "setup_structured_logging",
    "add_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
    "log_retry_event",
]
