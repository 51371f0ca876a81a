"""
Retry manager for executing requests with layered policies and backoff.

Each call resolves its policy from the request context, runs the request,
classifies failures and sleeps between attempts until it succeeds, hits a
non-retryable error, or runs out of retries.
"""

import asyncio
import logging
import random as _random
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from retrykit.core.retry.backoff import calculate_delay
from retrykit.core.retry.classifier import error_status, is_retryable_error
from retrykit.core.retry.policy import PolicyOverride, RetryPolicy
from retrykit.core.retry.registry import PolicyRegistry, RequestContext
from retrykit.core.retry.scheduler import CleanupScheduler
from retrykit.core.retry.tracking import (
    DEFAULT_CLEANUP_INTERVAL_MS,
    DEFAULT_STALE_THRESHOLD_MS,
    AttemptTracker,
    RetryStats,
)
from retrykit.observability.metrics import MetricsRegistry, get_metrics_registry
from retrykit.observability.structured_logging import add_correlation_id, log_retry_event
from retrykit.utils.logging import get_logger

logger = get_logger("retrykit.retry.manager")

T = TypeVar("T")


def _wall_clock_ms() -> float:
    return time.time() * 1000


class RetryManager:
    """
    Executes requests with retry logic driven by a PolicyRegistry.

    Clock, sleep and random source are injectable so tests can run the loop
    deterministically.

    Examples:
        >>> manager = RetryManager()
        >>> async def fetch():
        ...     return await session.get("/products/search?q=lamp")
        >>> result = await manager.execute_with_retry(
        ...     fetch, RequestContext(url="/products/search?q=lamp", method="GET")
        ... )

        >>> # Own the sweep cadence through the context manager
        >>> async with RetryManager() as manager:
        ...     await manager.execute_with_retry(fetch, context)
    """

    def __init__(
        self,
        registry: PolicyRegistry | None = None,
        *,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        sleep_sync: Callable[[float], Any] | None = None,
        random: Callable[[], float] | None = None,
        cleanup_interval_ms: float = DEFAULT_CLEANUP_INTERVAL_MS,
        stale_threshold_ms: float = DEFAULT_STALE_THRESHOLD_MS,
        metrics: MetricsRegistry | None = None,
    ):
        """
        Initialize RetryManager.

        Args:
            registry: Policy registry (defaults to the reference policies)
            clock: Wall clock in milliseconds
            sleep: Async sleep taking seconds (default: asyncio.sleep)
            sleep_sync: Blocking sleep taking seconds (default: time.sleep)
            random: Source of floats in [0, 1) for jitter
            cleanup_interval_ms: Period of the stale-tracking sweep
            stale_threshold_ms: Age after which a tracked request is dropped
            metrics: Metrics registry (defaults to the global one)
        """
        self.registry = registry or PolicyRegistry.with_defaults()
        self._clock = clock or _wall_clock_ms
        self._sleep = sleep or asyncio.sleep
        self._sleep_sync = sleep_sync or time.sleep
        self._random = random or _random.random
        self.cleanup_interval_ms = cleanup_interval_ms
        self.tracker = AttemptTracker(stale_threshold_ms=stale_threshold_ms)
        self.metrics = metrics or get_metrics_registry()
        self._cleanup_scheduler: CleanupScheduler | None = None

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "RetryManager":
        """
        Build a manager from a loaded retrykit Config.

        Args:
            config: Config instance (see retrykit.config.load_config)
            **kwargs: Extra keyword arguments for the constructor

        Returns:
            Configured RetryManager
        """
        from retrykit.config.loader import build_manager_options, build_registry

        options = build_manager_options(config)
        options.update(kwargs)
        return cls(build_registry(config), **options)

    # --- Policy ---------------------------------------------------------------

    def resolve_policy(self, context: RequestContext) -> RetryPolicy:
        """Resolve the policy for a request context."""
        return self.registry.resolve(context)

    def calculate_delay(self, attempt: int, policy: RetryPolicy) -> int:
        """Backoff delay in milliseconds before retry ``attempt`` (0-indexed)."""
        return calculate_delay(attempt, policy, self._random)

    def update_endpoint_policy(self, endpoint: str, policy: Any) -> PolicyOverride:
        """Replace the override for an endpoint, re-based on the default policy."""
        stored = self.registry.update_endpoint_policy(endpoint, policy)
        log_retry_event(
            "retry.policy_updated",
            f"Updated retry policy for endpoint {endpoint}",
            scope="endpoint",
            key=endpoint,
            policy=stored.to_dict(),
        )
        return stored

    def update_method_policy(self, method: str, policy: Any) -> PolicyOverride:
        """Replace the override for an HTTP method, re-based on the default policy."""
        stored = self.registry.update_method_policy(method, policy)
        log_retry_event(
            "retry.policy_updated",
            f"Updated retry policy for method {method.upper()}",
            scope="method",
            key=method.upper(),
            policy=stored.to_dict(),
        )
        return stored

    def should_retry(
        self,
        error: BaseException,
        context: RequestContext,
        attempt_number: int,
        max_retries: int | None = None,
        *,
        policy: RetryPolicy | None = None,
    ) -> bool:
        """
        Decide whether to retry after a failed attempt.

        Args:
            error: Exception raised by the attempt
            context: Request context
            attempt_number: Failed attempts so far (1 after the first failure)
            max_retries: Retry budget (defaults to the policy's max_retries)
            policy: Already-resolved policy, resolved from context if omitted

        Returns:
            True if another attempt should be made
        """
        policy = policy or self.resolve_policy(context)
        budget = policy.max_retries if max_retries is None else max_retries

        if attempt_number > budget:
            log_retry_event(
                "retry.rejected",
                f"Max retries exceeded for {context.method} {context.url}",
                level=logging.DEBUG,
                reason="max_retries",
                attempts=attempt_number,
                max_retries=budget,
                url=context.url,
                method=context.method,
            )
            return False

        if not is_retryable_error(error, policy):
            log_retry_event(
                "retry.rejected",
                f"Error not retryable for {context.method} {context.url}: {error}",
                level=logging.DEBUG,
                reason="not_retryable",
                error=str(error),
                error_type=type(error).__name__,
                status=error_status(error),
                url=context.url,
                method=context.method,
            )
            return False

        return True

    # --- Execution ------------------------------------------------------------

    async def execute_with_retry(
        self,
        request_fn: Callable[[], Awaitable[T]],
        context: RequestContext | None = None,
        *,
        max_retries: int | None = None,
    ) -> T:
        """
        Execute an async request function with retry logic.

        Args:
            request_fn: Zero-argument coroutine function performing the request
            context: Request URL/method used to resolve the policy
            max_retries: Override the policy's retry budget

        Returns:
            Result of the first successful attempt

        Raises:
            Exception: The last attempt's exception, with ``retry_attempts``,
                ``max_retries`` and ``request_id`` attributes attached
        """
        context = context or RequestContext()
        request_id, policy, budget = self._begin(context, max_retries)

        attempt_number = 0
        last_error: Exception | None = None

        with add_correlation_id(request_id):
            while attempt_number <= budget:
                self._before_attempt(request_id, context, attempt_number, budget)

                try:
                    result = await request_fn()
                except Exception as e:
                    last_error = e
                    attempt_number += 1
                    delay_ms = self._after_failure(e, request_id, context, policy, attempt_number, budget)
                    if delay_ms is None:
                        break
                    await self._sleep(delay_ms / 1000)
                    continue

                self._on_success(request_id, context, attempt_number)
                return result

            raise self._give_up(last_error, request_id, context, attempt_number, budget)

    def execute_with_retry_sync(
        self,
        request_fn: Callable[[], T],
        context: RequestContext | None = None,
        *,
        max_retries: int | None = None,
    ) -> T:
        """
        Execute a blocking request function with retry logic.

        Same semantics as execute_with_retry, sleeping with the blocking sleep.
        """
        context = context or RequestContext()
        request_id, policy, budget = self._begin(context, max_retries)

        attempt_number = 0
        last_error: Exception | None = None

        with add_correlation_id(request_id):
            while attempt_number <= budget:
                self._before_attempt(request_id, context, attempt_number, budget)

                try:
                    result = request_fn()
                except Exception as e:
                    last_error = e
                    attempt_number += 1
                    delay_ms = self._after_failure(e, request_id, context, policy, attempt_number, budget)
                    if delay_ms is None:
                        break
                    self._sleep_sync(delay_ms / 1000)
                    continue

                self._on_success(request_id, context, attempt_number)
                return result

            raise self._give_up(last_error, request_id, context, attempt_number, budget)

    def _begin(self, context: RequestContext, max_retries: int | None) -> tuple[str, RetryPolicy, int]:
        if max_retries is not None and max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        request_id = context.request_id or self.generate_request_id()
        policy = self.resolve_policy(context)
        budget = policy.max_retries if max_retries is None else max_retries

        self.tracker.start(request_id, context, self._clock())
        self.metrics.record_tracked_requests(len(self.tracker))
        return request_id, policy, budget

    def _before_attempt(self, request_id: str, context: RequestContext, attempt_number: int, budget: int) -> None:
        self.tracker.update_attempts(request_id, attempt_number + 1)
        if attempt_number > 0:
            log_retry_event(
                "retry.attempt",
                f"Retrying {context.method} {context.url} (attempt {attempt_number + 1}/{budget + 1})",
                level=logging.DEBUG,
                request_id=request_id,
                attempt=attempt_number + 1,
                max_attempts=budget + 1,
                url=context.url,
                method=context.method,
            )

    def _after_failure(
        self,
        error: Exception,
        request_id: str,
        context: RequestContext,
        policy: RetryPolicy,
        attempt_number: int,
        budget: int,
    ) -> int | None:
        """Return the delay before the next attempt, or None to give up."""
        if not self.should_retry(error, context, attempt_number, budget, policy=policy):
            return None

        delay_ms = self.calculate_delay(attempt_number - 1, policy)
        self.metrics.record_attempt(context.method, "retry")
        self.metrics.record_delay(delay_ms)

        log_retry_event(
            "retry.scheduled",
            f"{context.method} {context.url} attempt {attempt_number} failed: {error}. Retrying in {delay_ms}ms...",
            level=logging.WARNING,
            request_id=request_id,
            attempt=attempt_number,
            delay_ms=delay_ms,
            error=str(error),
            status=error_status(error),
            url=context.url,
            method=context.method,
        )
        return delay_ms

    def _on_success(self, request_id: str, context: RequestContext, attempt_number: int) -> None:
        self.tracker.finish(request_id)
        self.metrics.record_attempt(context.method, "success")
        self.metrics.record_tracked_requests(len(self.tracker))

        if attempt_number > 0:
            log_retry_event(
                "retry.succeeded",
                f"{context.method} {context.url} succeeded after {attempt_number + 1} attempts",
                request_id=request_id,
                total_attempts=attempt_number + 1,
                url=context.url,
                method=context.method,
            )

    def _give_up(
        self,
        error: Exception | None,
        request_id: str,
        context: RequestContext,
        attempt_number: int,
        budget: int,
    ) -> Exception:
        """Clean up tracking and annotate the final error for re-raising."""
        self.tracker.finish(request_id)
        self.metrics.record_tracked_requests(len(self.tracker))

        if error is None:
            # Unreachable with a non-negative budget
            raise RuntimeError(f"Retry logic error for request {request_id}")

        outcome = "exhausted" if attempt_number > budget else "rejected"
        self.metrics.record_attempt(context.method, outcome)

        log_retry_event(
            "retry.failed",
            f"{context.method} {context.url} failed after {attempt_number} attempts: {error}",
            level=logging.ERROR,
            request_id=request_id,
            total_attempts=attempt_number,
            max_retries=budget,
            outcome=outcome,
            error=str(error),
            url=context.url,
            method=context.method,
        )

        error.retry_attempts = attempt_number  # type: ignore[attr-defined]
        error.max_retries = budget  # type: ignore[attr-defined]
        error.request_id = request_id  # type: ignore[attr-defined]
        return error

    def generate_request_id(self) -> str:
        """Request id of the form ``retry_<ms>_<9 hex chars>``.

        Not guaranteed unique, collisions are treated as negligible.
        """
        return f"retry_{int(self._clock())}_{uuid.uuid4().hex[:9]}"

    # --- Tracking -------------------------------------------------------------

    def get_retry_stats(self, request_id: str) -> RetryStats | None:
        """Stats for an in-flight request, None once it has finished."""
        return self.tracker.get_stats(request_id, self._clock())

    def get_all_retry_stats(self) -> list[RetryStats]:
        """Stats for every in-flight request."""
        return self.tracker.all_stats(self._clock())

    def cleanup_stale_tracking(self) -> int:
        """
        Drop tracking entries older than the staleness threshold.

        Returns:
            Number of entries removed
        """
        removed = self.tracker.cleanup_stale(self._clock())
        if removed:
            log_retry_event(
                "retry.tracking_cleaned",
                f"Cleaned up {removed} stale retry tracking entries",
                level=logging.DEBUG,
                entries_removed=removed,
                remaining_entries=len(self.tracker),
            )
            self.metrics.record_tracked_requests(len(self.tracker))
        return removed

    def clear_all_tracking(self) -> None:
        self.tracker.clear()
        self.metrics.record_tracked_requests(0)
        logger.debug("All retry tracking cleared")

    # --- Lifecycle ------------------------------------------------------------

    def start_cleanup_timer(self) -> CleanupScheduler:
        """
        Start the periodic stale sweep in the running event loop.

        Returns:
            The scheduler driving the sweep
        """
        self.stop_cleanup_timer()
        self._cleanup_scheduler = CleanupScheduler(self.cleanup_stale_tracking, self.cleanup_interval_ms / 1000)
        self._cleanup_scheduler.start()
        return self._cleanup_scheduler

    def stop_cleanup_timer(self) -> None:
        if self._cleanup_scheduler is not None:
            self._cleanup_scheduler.cancel()
            self._cleanup_scheduler = None

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup_scheduler is not None and self._cleanup_scheduler.running

    def get_config(self) -> dict[str, Any]:
        """Current configuration and tracking size."""
        return {
            "cleanup_interval_ms": self.cleanup_interval_ms,
            "stale_threshold_ms": self.tracker.stale_threshold_ms,
            "active_policies": self.registry.summary(),
            "active_tracking": len(self.tracker),
        }

    def destroy(self) -> None:
        """Stop the sweep and forget all tracked requests."""
        self.stop_cleanup_timer()
        self.clear_all_tracking()

    async def __aenter__(self) -> "RetryManager":
        self.start_cleanup_timer()
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        if self._cleanup_scheduler is not None:
            await self._cleanup_scheduler.stop()
            self._cleanup_scheduler = None
        self.destroy()
