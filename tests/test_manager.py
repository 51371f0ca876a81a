"""
Tests for RetryManager execution, tracking and lifecycle.
"""

import asyncio
import logging

import pytest

from retrykit.core.retry import (
    PolicyOverride,
    PolicyRegistry,
    RequestContext,
    RetryManager,
    RetryPolicy,
    TrackingEntry,
)
from retrykit.exceptions import HTTPStatusError, NetworkError
from retrykit.observability import MetricsRegistry, get_correlation_id

MINUTE_MS = 60 * 1000


class FakeClock:
    """Wall clock in milliseconds that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


def make_manager(registry=None, **kwargs):
    """Manager with recorded sleeps, no jitter and a private metrics registry."""
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    kwargs.setdefault("clock", FakeClock())
    kwargs.setdefault("metrics", MetricsRegistry())
    manager = RetryManager(
        registry or PolicyRegistry(RetryPolicy(max_retries=2, base_delay_ms=1000)),
        sleep=fake_sleep,
        random=lambda: 0.5,
        **kwargs,
    )
    return manager, sleeps


class TestExecuteWithRetry:
    """Tests for the async execution loop."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        manager, sleeps = make_manager()
        call_count = 0

        async def fetch():
            nonlocal call_count
            call_count += 1
            return {"ok": True}

        result = await manager.execute_with_retry(fetch, RequestContext(url="/products", method="GET"))
        assert result == {"ok": True}
        assert call_count == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_success_after_retry(self):
        manager, sleeps = make_manager()
        call_count = 0

        async def flaky():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise HTTPStatusError(503)
            return "ok"

        assert await manager.execute_with_retry(flaky, RequestContext(url="/x")) == "ok"
        assert call_count == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_budget_exhausted(self):
        manager, sleeps = make_manager()
        call_count = 0

        async def always_fails():
            nonlocal call_count
            call_count += 1
            raise HTTPStatusError(503)

        with pytest.raises(HTTPStatusError) as exc_info:
            await manager.execute_with_retry(always_fails, RequestContext(url="/x", request_id="req-1"))

        assert call_count == 3
        assert exc_info.value.retry_attempts == 3
        assert exc_info.value.max_retries == 2
        assert exc_info.value.request_id == "req-1"
        assert len(sleeps) == 2

    @pytest.mark.asyncio
    async def test_original_error_propagates(self):
        manager, _ = make_manager()
        error = NetworkError("socket closed")

        async def fails():
            raise error

        with pytest.raises(NetworkError) as exc_info:
            await manager.execute_with_retry(fails, RequestContext())
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_non_retryable_short_circuits(self):
        registry = PolicyRegistry(RetryPolicy(max_retries=5, retryable_statuses={500, 502, 503, 504}))
        manager, sleeps = make_manager(registry)
        call_count = 0

        async def bad_request():
            nonlocal call_count
            call_count += 1
            raise HTTPStatusError(400)

        with pytest.raises(HTTPStatusError) as exc_info:
            await manager.execute_with_retry(bad_request, RequestContext(url="/orders", method="POST"))

        assert call_count == 1
        assert exc_info.value.retry_attempts == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_max_retries_override(self):
        manager, _ = make_manager()
        call_count = 0

        async def always_fails():
            nonlocal call_count
            call_count += 1
            raise HTTPStatusError(500)

        with pytest.raises(HTTPStatusError) as exc_info:
            await manager.execute_with_retry(always_fails, RequestContext(), max_retries=0)
        assert call_count == 1
        assert exc_info.value.max_retries == 0

        call_count = 0
        with pytest.raises(HTTPStatusError):
            await manager.execute_with_retry(always_fails, RequestContext(), max_retries=4)
        assert call_count == 5

    @pytest.mark.asyncio
    async def test_negative_override_rejected(self):
        manager, _ = make_manager()

        async def fetch():
            return 1

        with pytest.raises(ValueError, match="max_retries must be >= 0"):
            await manager.execute_with_retry(fetch, RequestContext(), max_retries=-1)

    @pytest.mark.asyncio
    async def test_delays_follow_resolved_policy(self):
        registry = PolicyRegistry(
            RetryPolicy(max_retries=1),
            endpoints={"/search": PolicyOverride(max_retries=3, base_delay_ms=500, backoff_multiplier=1.5)},
        )
        manager, sleeps = make_manager(registry)

        async def fails():
            raise HTTPStatusError(502)

        with pytest.raises(HTTPStatusError):
            await manager.execute_with_retry(fails, RequestContext(url="/api/search?q=x", method="GET"))
        assert sleeps == [0.5, 0.75, 1.125]

    @pytest.mark.asyncio
    async def test_attempts_tracked_while_in_flight(self):
        manager, _ = make_manager()
        seen = []

        async def flaky():
            stats = manager.get_retry_stats("req-7")
            seen.append(stats.attempts)
            if len(seen) < 3:
                raise HTTPStatusError(503)
            return "ok"

        await manager.execute_with_retry(flaky, RequestContext(request_id="req-7"))
        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_tracking_cleared_on_success(self):
        manager, _ = make_manager()

        async def fetch():
            return "ok"

        await manager.execute_with_retry(fetch, RequestContext(request_id="req-1"))
        assert manager.get_retry_stats("req-1") is None
        assert manager.get_all_retry_stats() == []

    @pytest.mark.asyncio
    async def test_tracking_cleared_on_exhaustion(self):
        manager, _ = make_manager()

        async def fails():
            raise HTTPStatusError(503)

        with pytest.raises(HTTPStatusError):
            await manager.execute_with_retry(fails, RequestContext(request_id="req-1"))
        assert manager.get_retry_stats("req-1") is None

    @pytest.mark.asyncio
    async def test_generated_request_id(self):
        manager, _ = make_manager()
        captured = []

        async def fetch():
            captured.extend(s.request_id for s in manager.get_all_retry_stats())
            return "ok"

        await manager.execute_with_retry(fetch, RequestContext(url="/x"))
        assert len(captured) == 1
        assert captured[0].startswith("retry_1700000000000_")

    @pytest.mark.asyncio
    async def test_request_id_is_correlation_id(self):
        manager, _ = make_manager()

        async def fetch():
            return get_correlation_id()

        assert await manager.execute_with_retry(fetch, RequestContext(request_id="req-9")) == "req-9"
        assert get_correlation_id() is None

    @pytest.mark.asyncio
    async def test_concurrent_calls_tracked_independently(self):
        manager, _ = make_manager()
        release = asyncio.Event()

        async def wait_for_release():
            await release.wait()
            return "done"

        tasks = [
            asyncio.create_task(manager.execute_with_retry(wait_for_release, RequestContext(request_id=f"req-{i}")))
            for i in range(3)
        ]
        await asyncio.sleep(0)
        assert {s.request_id for s in manager.get_all_retry_stats()} == {"req-0", "req-1", "req-2"}

        release.set()
        assert await asyncio.gather(*tasks) == ["done", "done", "done"]
        assert manager.get_all_retry_stats() == []

    @pytest.mark.asyncio
    async def test_logs_retry_decisions(self, caplog):
        caplog.set_level(logging.DEBUG, logger="retrykit")
        manager, _ = make_manager()

        async def fails():
            raise HTTPStatusError(503)

        with pytest.raises(HTTPStatusError):
            await manager.execute_with_retry(fails, RequestContext(url="/x", method="GET"))

        events = [getattr(r, "event", None) for r in caplog.records]
        assert events.count("retry.scheduled") == 2
        assert "retry.failed" in events
        failed = next(r for r in caplog.records if getattr(r, "event", None) == "retry.failed")
        assert failed.outcome == "exhausted"
        assert failed.levelno == logging.ERROR

    @pytest.mark.asyncio
    async def test_metrics_recorded(self):
        metrics = MetricsRegistry()
        metrics.enable()
        manager, _ = make_manager(metrics=metrics)

        async def fails():
            raise HTTPStatusError(503)

        with pytest.raises(HTTPStatusError):
            await manager.execute_with_retry(fails, RequestContext(url="/x", method="get"))

        snapshot = metrics.get_metrics()
        assert snapshot["attempts_total"]["GET"] == {"retry": 2, "exhausted": 1}
        assert snapshot["retry_delays_ms"] == [1000, 2000]
        assert snapshot["tracked_requests"] == 0


class TestExecuteWithRetrySync:
    """Tests for the blocking execution loop."""

    def test_success_after_retry(self):
        sleeps = []
        manager = RetryManager(
            PolicyRegistry(RetryPolicy(max_retries=2, base_delay_ms=100)),
            sleep_sync=sleeps.append,
            random=lambda: 0.5,
            metrics=MetricsRegistry(),
        )
        call_count = 0

        def flaky():
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise ConnectionResetError("reset by peer")
            return "ok"

        assert manager.execute_with_retry_sync(flaky, RequestContext(url="/x")) == "ok"
        assert sleeps == [0.1]

    def test_exhaustion_annotates_error(self):
        manager = RetryManager(
            PolicyRegistry(RetryPolicy(max_retries=1)),
            sleep_sync=lambda s: None,
            metrics=MetricsRegistry(),
        )

        def fails():
            raise TimeoutError("read timed out")

        with pytest.raises(TimeoutError) as exc_info:
            manager.execute_with_retry_sync(fails, RequestContext(request_id="sync-1"))
        assert exc_info.value.retry_attempts == 2
        assert manager.get_retry_stats("sync-1") is None


class TestShouldRetry:
    """Tests for should_retry."""

    def test_budget(self):
        manager, _ = make_manager()
        context = RequestContext(url="/x")
        error = HTTPStatusError(503)
        assert manager.should_retry(error, context, 1) is True
        assert manager.should_retry(error, context, 2) is True
        assert manager.should_retry(error, context, 3) is False

    def test_explicit_budget(self):
        manager, _ = make_manager()
        assert manager.should_retry(HTTPStatusError(503), RequestContext(), 3, max_retries=5) is True

    def test_not_retryable(self):
        manager, _ = make_manager()
        assert manager.should_retry(ValueError("bad"), RequestContext(), 1) is False


class TestTrackingAndLifecycle:
    """Tests for stats, sweeping, config and teardown."""

    def test_stale_entry_swept(self):
        clock = FakeClock()
        manager, _ = make_manager(clock=clock)
        manager.tracker.insert("leaked", TrackingEntry(clock.now, 2, RequestContext(url="/x")))
        manager.tracker.insert("recent", TrackingEntry(clock.now + 9 * MINUTE_MS, 1, RequestContext()))

        clock.advance(11 * MINUTE_MS)
        assert manager.cleanup_stale_tracking() == 1
        assert manager.get_retry_stats("leaked") is None
        assert manager.get_retry_stats("recent") is not None

    def test_custom_stale_threshold(self):
        clock = FakeClock()
        manager, _ = make_manager(clock=clock, stale_threshold_ms=1000)
        manager.tracker.insert("a", TrackingEntry(clock.now, 1, RequestContext()))
        clock.advance(1001)
        assert manager.cleanup_stale_tracking() == 1

    def test_stats_duration(self):
        clock = FakeClock()
        manager, _ = make_manager(clock=clock)
        manager.tracker.insert("a", TrackingEntry(clock.now, 1, RequestContext()))
        clock.advance(1500)
        assert manager.get_retry_stats("a").duration_ms == 1500

    def test_update_policies_through_manager(self):
        manager, _ = make_manager(PolicyRegistry())
        manager.update_endpoint_policy("/payments", {"max_retries": 0})
        manager.update_method_policy("get", {"max_retries": 6})

        assert manager.resolve_policy(RequestContext(url="/payments/1", method="GET")).max_retries == 0
        assert manager.resolve_policy(RequestContext(url="/catalog", method="GET")).max_retries == 6

    def test_get_config(self):
        manager, _ = make_manager(PolicyRegistry.with_defaults())
        config = manager.get_config()
        assert config["cleanup_interval_ms"] == 5 * MINUTE_MS
        assert config["stale_threshold_ms"] == 10 * MINUTE_MS
        assert config["active_policies"]["endpoint_count"] == 6
        assert config["active_tracking"] == 0

    def test_clear_all_tracking(self):
        manager, _ = make_manager()
        manager.tracker.insert("a", TrackingEntry(0, 1, RequestContext()))
        manager.clear_all_tracking()
        assert manager.get_all_retry_stats() == []

    def test_default_registry(self):
        manager = RetryManager(metrics=MetricsRegistry())
        assert manager.resolve_policy(RequestContext(url="/auth/login", method="POST")).max_retries == 1

    @pytest.mark.asyncio
    async def test_context_manager_runs_sweep(self):
        clock = FakeClock()
        manager = RetryManager(clock=clock, cleanup_interval_ms=10, metrics=MetricsRegistry())

        async with manager:
            assert manager.cleanup_running
            manager.tracker.insert("leaked", TrackingEntry(clock.now - 20 * MINUTE_MS, 1, RequestContext()))
            for _ in range(50):
                await asyncio.sleep(0.01)
                if "leaked" not in manager.tracker:
                    break
            assert "leaked" not in manager.tracker

        assert not manager.cleanup_running

    @pytest.mark.asyncio
    async def test_destroy(self):
        manager = RetryManager(metrics=MetricsRegistry())
        manager.start_cleanup_timer()
        manager.tracker.insert("a", TrackingEntry(0, 1, RequestContext()))

        manager.destroy()
        await asyncio.sleep(0)

        assert not manager.cleanup_running
        assert len(manager.tracker) == 0
