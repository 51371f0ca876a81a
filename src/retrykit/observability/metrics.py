"""
Prometheus metrics for retrykit.

Usage:
    from retrykit.observability import get_metrics_registry

    registry = get_metrics_registry()
    registry.enable()  # Enable metrics collection

    # Attempts and delays are recorded by the retry manager.
    # Start metrics server for Prometheus scraping:
    registry.start_http_server(port=9090)
"""

import threading
from collections import deque
from typing import Any

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from retrykit.utils.logging import get_logger

logger = get_logger("retrykit.observability.metrics")


class MetricsRegistry:
    """
    Central registry for retrykit metrics.

    Each registry owns its own CollectorRegistry so several can coexist in
    one process (tests, multiple managers). Values are mirrored internally
    and available from get_metrics(); only the most recent
    ``max_delay_samples`` delays are kept there, the histogram holds the
    full distribution.
    """

    def __init__(self, max_delay_samples: int = 1000):
        """
        Initialize metrics registry.

        Args:
            max_delay_samples: Recent delays retained for get_metrics()
        """
        if max_delay_samples <= 0:
            raise ValueError("max_delay_samples must be > 0")
        self._enabled = False
        self._internal_metrics: dict[str, Any] = {
            "attempts_total": {},  # method -> {outcome: N}
            "retry_delays_ms": deque(maxlen=max_delay_samples),  # most recent scheduled delays
            "tracked_requests": 0,
        }
        self._lock = threading.Lock()
        self._registry = CollectorRegistry()
        self._setup_prometheus_metrics()

    def _setup_prometheus_metrics(self):
        """Setup Prometheus metrics."""
        self._attempt_counter = Counter(
            "retrykit_attempts_total",
            "Request attempts by outcome",
            ["method", "outcome"],  # outcome: success, retry, rejected, exhausted
            registry=self._registry,
        )

        self._delay_histogram = Histogram(
            "retrykit_retry_delay_ms",
            "Backoff delay scheduled before a retry, in milliseconds",
            registry=self._registry,
            buckets=(50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000),
        )

        self._tracked_gauge = Gauge(
            "retrykit_tracked_requests",
            "Requests currently tracked by the retry manager",
            registry=self._registry,
        )

    def enable(self):
        """Enable metrics collection."""
        self._enabled = True
        logger.info("Metrics collection enabled")

    def disable(self):
        """Disable metrics collection."""
        self._enabled = False
        logger.info("Metrics collection disabled")

    @property
    def enabled(self) -> bool:
        return self._enabled

    def record_attempt(self, method: str, outcome: str):
        """
        Record the outcome of one attempt.

        Args:
            method: HTTP method (empty string if unknown)
            outcome: success, retry, rejected or exhausted
        """
        if not self._enabled:
            return

        method = (method or "UNKNOWN").upper()
        with self._lock:
            by_outcome = self._internal_metrics["attempts_total"].setdefault(method, {})
            by_outcome[outcome] = by_outcome.get(outcome, 0) + 1

        self._attempt_counter.labels(method=method, outcome=outcome).inc()

    def record_delay(self, delay_ms: float):
        """Record a scheduled backoff delay."""
        if not self._enabled:
            return

        with self._lock:
            self._internal_metrics["retry_delays_ms"].append(delay_ms)

        self._delay_histogram.observe(delay_ms)

    def record_tracked_requests(self, count: int):
        """Record the current size of the attempt tracker."""
        if not self._enabled:
            return

        with self._lock:
            self._internal_metrics["tracked_requests"] = count

        self._tracked_gauge.set(count)

    def get_metrics(self) -> dict[str, Any]:
        """
        Get all internal metrics.

        Returns:
            Dictionary with all tracked metrics
        """
        with self._lock:
            return {
                "attempts_total": {k: dict(v) for k, v in self._internal_metrics["attempts_total"].items()},
                "retry_delays_ms": list(self._internal_metrics["retry_delays_ms"]),
                "tracked_requests": self._internal_metrics["tracked_requests"],
            }

    def start_http_server(self, port: int = 9090, addr: str = ""):
        """
        Start HTTP server for Prometheus scraping.

        Args:
            port: Port to listen on
            addr: Address to bind to (empty string for all interfaces)
        """
        start_http_server(port=port, addr=addr, registry=self._registry)
        logger.info(f"Prometheus metrics server started on port {port}")

    def generate_prometheus_metrics(self) -> bytes:
        """Prometheus metrics in text exposition format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get Prometheus content type for HTTP response."""
        return CONTENT_TYPE_LATEST


_metrics_registry: MetricsRegistry | None = None


def get_metrics_registry() -> MetricsRegistry:
    """
    Get global metrics registry instance.

    Returns:
        MetricsRegistry instance
    """
    global _metrics_registry
    if _metrics_registry is None:
        _metrics_registry = MetricsRegistry()
    return _metrics_registry
