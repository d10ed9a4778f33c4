"""
Tests for the circuit breaker state machine.

Tests cover:
1. State transitions (CLOSED -> OPEN -> HALF_OPEN -> CLOSED)
2. Fail-fast rejection while OPEN
3. Counters and stats snapshots
4. Reset semantics and state-change callbacks
"""

import asyncio
import dataclasses
from datetime import timedelta

import pytest

from aiserver.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from aiserver.services.errors import CircuitOpenError


def make_breaker(clock, **overrides) -> CircuitBreaker:
    config = CircuitBreakerConfig(
        failure_threshold=overrides.get("failure_threshold", 3),
        recovery_timeout=timedelta(milliseconds=overrides.get("recovery_ms", 1000)),
        success_threshold=overrides.get("success_threshold", 2),
        monitoring_period=timedelta(seconds=5),
    )
    return CircuitBreaker(
        "test-service",
        config,
        on_state_change=overrides.get("on_state_change"),
        clock=clock,
    )


class CountingOperation:
    """Async operation that records calls and fails or succeeds on demand."""

    def __init__(self, error: Exception | None = None, result: str = "success"):
        self.calls = 0
        self.error = error
        self.result = result

    async def __call__(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


async def fail_times(breaker: CircuitBreaker, op: CountingOperation, times: int) -> None:
    for _ in range(times):
        with pytest.raises(Exception):
            await breaker.execute(op)


class TestCircuitBreakerConfig:
    """Test CircuitBreakerConfig defaults."""

    def test_default_values(self):
        config = CircuitBreakerConfig()

        assert config.failure_threshold == 5
        assert config.recovery_timeout == timedelta(seconds=60)
        assert config.success_threshold == 3
        assert config.monitoring_period == timedelta(minutes=5)

    def test_config_is_immutable(self):
        config = CircuitBreakerConfig()

        with pytest.raises(dataclasses.FrozenInstanceError):
            config.failure_threshold = 10  # type: ignore[misc]


class TestClosedState:
    """Tests for normal operation."""

    def test_initial_state_is_closed(self, clock):
        cb = make_breaker(clock)
        stats = cb.get_stats()

        assert stats.state == CircuitState.CLOSED
        assert stats.failure_count == 0
        assert stats.success_count == 0
        assert stats.total_requests == 0
        assert stats.last_failure_time is None

    @pytest.mark.asyncio
    async def test_success_returns_result(self, clock):
        cb = make_breaker(clock)
        op = CountingOperation()

        result = await cb.execute(op)

        assert result == "success"
        assert op.calls == 1
        stats = cb.get_stats()
        assert stats.state == CircuitState.CLOSED
        assert stats.success_count == 1
        assert stats.total_requests == 1
        assert stats.total_successes == 1
        assert stats.last_success_time == clock.now

    @pytest.mark.asyncio
    async def test_failure_is_reraised_unchanged(self, clock):
        cb = make_breaker(clock)
        error = ValueError("boom")

        with pytest.raises(ValueError) as exc_info:
            await cb.execute(CountingOperation(error=error))

        assert exc_info.value is error
        assert cb.failure_count == 1
        assert cb.get_stats().last_failure_time == clock.now

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, clock):
        cb = make_breaker(clock)

        await fail_times(cb, CountingOperation(error=RuntimeError("fail")), 2)
        assert cb.failure_count == 2

        await cb.execute(CountingOperation())

        assert cb.failure_count == 0
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_stays_closed_below_threshold(self, clock):
        cb = make_breaker(clock)

        await fail_times(cb, CountingOperation(error=RuntimeError("fail")), 2)

        assert cb.state == CircuitState.CLOSED
        assert cb.get_stats().total_failures == 2


class TestOpening:
    """Tests for threshold-triggered opening and fail-fast."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self, clock):
        cb = make_breaker(clock)
        op = CountingOperation(error=Exception("boom"))

        await fail_times(cb, op, 3)

        assert cb.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_rejects_without_invoking_operation(self, clock):
        cb = make_breaker(clock)
        op = CountingOperation(error=Exception("boom"))
        await fail_times(cb, op, 3)

        clock.advance(0.010)
        with pytest.raises(CircuitOpenError) as exc_info:
            await cb.execute(op)

        assert "Circuit breaker is OPEN" in str(exc_info.value)
        assert exc_info.value.service_id == "test-service"
        assert op.calls == 3

    @pytest.mark.asyncio
    async def test_open_reports_time_until_reset(self, clock):
        cb = make_breaker(clock)
        await fail_times(cb, CountingOperation(error=Exception("boom")), 3)

        clock.advance(0.25)

        assert cb.get_time_until_reset() == pytest.approx(0.75)
        with pytest.raises(CircuitOpenError) as exc_info:
            await cb.execute(CountingOperation())
        assert exc_info.value.reset_after_seconds == pytest.approx(0.75)

    def test_time_until_reset_is_none_when_closed(self, clock):
        assert make_breaker(clock).get_time_until_reset() is None

    @pytest.mark.asyncio
    async def test_concurrent_calls_on_open_breaker_all_fail_fast(self, clock):
        cb = make_breaker(clock)
        await fail_times(cb, CountingOperation(error=Exception("boom")), 3)
        op = CountingOperation()

        results = await asyncio.gather(
            *(cb.execute(op) for _ in range(5)), return_exceptions=True
        )

        assert all(isinstance(r, CircuitOpenError) for r in results)
        assert op.calls == 0


class TestRecovery:
    """Tests for OPEN -> HALF_OPEN -> CLOSED/OPEN."""

    @pytest.mark.asyncio
    async def test_probe_after_recovery_timeout(self, clock):
        cb = make_breaker(clock)
        await fail_times(cb, CountingOperation(error=Exception("boom")), 3)

        clock.advance(1.1)
        op = CountingOperation()
        result = await cb.execute(op)

        assert result == "success"
        assert op.calls == 1
        # success_threshold=2, one probe is not enough
        assert cb.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_probe_allowed_exactly_at_recovery_timeout(self, clock):
        cb = make_breaker(clock)
        await fail_times(cb, CountingOperation(error=Exception("boom")), 3)

        clock.advance(1.0)
        await cb.execute(CountingOperation())

        assert cb.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_half_open_closes_after_success_streak(self, clock):
        cb = make_breaker(clock)
        await fail_times(cb, CountingOperation(error=Exception("boom")), 3)
        clock.advance(1.1)

        await cb.execute(CountingOperation())
        await cb.execute(CountingOperation())

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_reopens_on_any_failure(self, clock):
        cb = make_breaker(clock, success_threshold=3)
        await fail_times(cb, CountingOperation(error=Exception("boom")), 3)
        clock.advance(1.1)

        await cb.execute(CountingOperation())
        assert cb.state == CircuitState.HALF_OPEN

        with pytest.raises(RuntimeError):
            await cb.execute(CountingOperation(error=RuntimeError("still down")))

        assert cb.state == CircuitState.OPEN

        clock.advance(1.5)
        await fail_times(cb, CountingOperation(error=Exception("boom")), 1)

        assert cb.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_reopened_breaker_waits_full_recovery_timeout_again(self, clock):
        cb = make_breaker(clock)
        await fail_times(cb, CountingOperation(error=Exception("boom")), 3)
        clock.advance(1.1)
        await fail_times(cb, CountingOperation(error=Exception("boom")), 1)

        clock.advance(0.5)
        with pytest.raises(CircuitOpenError):
            await cb.execute(CountingOperation())


class TestStats:
    """Tests for counters and snapshots."""

    @pytest.mark.asyncio
    async def test_totals_add_up_including_rejections(self, clock):
        cb = make_breaker(clock)
        ok = CountingOperation()
        bad = CountingOperation(error=Exception("boom"))

        await cb.execute(ok)
        await fail_times(cb, bad, 3)
        with pytest.raises(CircuitOpenError):
            await cb.execute(ok)

        stats = cb.get_stats()
        assert stats.total_requests == 5
        assert stats.total_successes == 1
        assert stats.total_failures == 3
        assert stats.total_rejections == 1
        assert stats.total_requests == (
            stats.total_successes + stats.total_failures + stats.total_rejections
        )

    @pytest.mark.asyncio
    async def test_cancellation_is_not_a_failure(self, clock):
        cb = make_breaker(clock)

        async def cancelled() -> None:
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await cb.execute(cancelled)

        stats = cb.get_stats()
        assert stats.failure_count == 0
        assert stats.total_failures == 0

    def test_stats_snapshot_is_frozen(self, clock):
        stats = make_breaker(clock).get_stats()

        with pytest.raises(dataclasses.FrozenInstanceError):
            stats.total_requests = 99  # type: ignore[misc]

    @pytest.mark.asyncio
    async def test_stats_to_dict(self, clock):
        cb = make_breaker(clock)
        await fail_times(cb, CountingOperation(error=Exception("boom")), 3)

        data = cb.get_stats().to_dict()

        assert data["name"] == "test-service"
        assert data["state"] == "OPEN"
        assert data["failure_count"] == 3
        assert data["last_failure"] is not None
        assert data["last_success"] is None
        assert data["time_until_reset"] == pytest.approx(1.0)


class TestReset:
    """Tests for manual reset."""

    @pytest.mark.asyncio
    async def test_reset_closes_and_keeps_lifetime_totals(self, clock):
        cb = make_breaker(clock)
        await fail_times(cb, CountingOperation(error=Exception("boom")), 3)

        cb.reset()

        stats = cb.get_stats()
        assert stats.state == CircuitState.CLOSED
        assert stats.failure_count == 0
        assert stats.success_count == 0
        assert stats.last_failure_time is None
        assert stats.last_success_time is None
        assert stats.total_requests == 3
        assert stats.total_failures == 3

    @pytest.mark.asyncio
    async def test_reset_allows_requests_immediately(self, clock):
        cb = make_breaker(clock)
        await fail_times(cb, CountingOperation(error=Exception("boom")), 3)

        cb.reset()

        assert await cb.execute(CountingOperation(result="ok")) == "ok"


class TestStateChangeCallback:
    """Tests for transition notifications."""

    @pytest.mark.asyncio
    async def test_callback_sees_every_transition(self, clock):
        transitions = []
        cb = make_breaker(
            clock,
            on_state_change=lambda name, old, new: transitions.append((name, old, new)),
        )

        await fail_times(cb, CountingOperation(error=Exception("boom")), 3)
        clock.advance(1.1)
        await cb.execute(CountingOperation())
        await cb.execute(CountingOperation())

        assert transitions == [
            ("test-service", CircuitState.CLOSED, CircuitState.OPEN),
            ("test-service", CircuitState.OPEN, CircuitState.HALF_OPEN),
            ("test-service", CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_break_calls(self, clock):
        def explode(name, old, new):
            raise RuntimeError("callback broke")

        cb = make_breaker(clock, on_state_change=explode)
        op = CountingOperation(error=ValueError("boom"))

        for _ in range(3):
            with pytest.raises(ValueError):
                await cb.execute(op)

        assert cb.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_reset_of_open_breaker_notifies(self, clock):
        transitions = []
        cb = make_breaker(
            clock,
            on_state_change=lambda name, old, new: transitions.append((old, new)),
        )
        await fail_times(cb, CountingOperation(error=Exception("boom")), 3)

        cb.reset()

        assert transitions[-1] == (CircuitState.OPEN, CircuitState.CLOSED)
