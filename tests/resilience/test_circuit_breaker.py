"""Tests for hybridflow.resilience.circuit_breaker

Tests cover:
- CLOSED -> OPEN at the failure threshold
- OPEN rejection until the recovery timeout elapses
- HALF_OPEN single probe, success and failure
- Registry: lazy creation, tenant isolation, idle sweep, reset
"""

import pytest

from hybridflow.config import BreakerConfig
from hybridflow.errors import CircuitOpenError
from hybridflow.resilience.circuit_breaker import (
    BreakerState,
    CircuitBreaker,
    CircuitBreakerRegistry,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("acme", "book_appointment", failure_threshold=5, recovery_timeout=60.0, clock=clock)


@pytest.fixture
def registry(clock):
    return CircuitBreakerRegistry(BreakerConfig(failure_threshold=3, recovery_timeout=60.0, retention=3600.0), clock=clock)


def _fail(breaker, times):
    for _ in range(times):
        breaker.before_call()
        breaker.record_failure()


# =========================================================================
# CLOSED / OPEN
# =========================================================================


class TestClosedState:

    def test_starts_closed(self, breaker):
        assert breaker.state == BreakerState.CLOSED
        assert breaker.consecutive_failures == 0
        breaker.before_call()

    def test_stays_closed_below_threshold(self, breaker):
        _fail(breaker, 4)
        assert breaker.state == BreakerState.CLOSED
        assert breaker.consecutive_failures == 4

    def test_opens_at_threshold(self, breaker, clock):
        _fail(breaker, 5)
        assert breaker.state == BreakerState.OPEN
        assert breaker.last_failure_at == clock.now

    def test_success_resets_counter(self, breaker):
        _fail(breaker, 3)
        breaker.before_call()
        breaker.record_success()
        assert breaker.consecutive_failures == 0
        _fail(breaker, 4)
        assert breaker.state == BreakerState.CLOSED

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            CircuitBreaker("acme", "x", failure_threshold=0)


class TestOpenState:

    def test_rejects_immediately(self, breaker):
        _fail(breaker, 5)
        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.before_call()
        assert "temporarily unavailable" in str(exc_info.value)
        assert exc_info.value.tool_name == "book_appointment"
        assert exc_info.value.tenant_id == "acme"
        assert exc_info.value.error_type == "circuit_breaker_error"

    def test_rejects_before_recovery_timeout(self, breaker, clock):
        _fail(breaker, 5)
        clock.advance(59.9)
        with pytest.raises(CircuitOpenError):
            breaker.before_call()
        assert breaker.state == BreakerState.OPEN


# =========================================================================
# HALF_OPEN
# =========================================================================


class TestHalfOpenState:

    def test_admits_one_probe_after_recovery(self, breaker, clock):
        _fail(breaker, 5)
        clock.advance(60)
        breaker.before_call()
        assert breaker.state == BreakerState.HALF_OPEN
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_probe_success_closes(self, breaker, clock):
        _fail(breaker, 5)
        clock.advance(61)
        breaker.before_call()
        breaker.record_success()
        assert breaker.state == BreakerState.CLOSED
        assert breaker.consecutive_failures == 0
        assert breaker.last_failure_at is None

    def test_probe_failure_reopens(self, breaker, clock):
        _fail(breaker, 5)
        clock.advance(61)
        breaker.before_call()
        breaker.record_failure()
        assert breaker.state == BreakerState.OPEN
        assert breaker.consecutive_failures == 6
        assert breaker.last_failure_at == clock.now
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_release_probe_allows_next_probe(self, breaker, clock):
        _fail(breaker, 5)
        clock.advance(61)
        breaker.before_call()
        breaker.release_probe()
        breaker.before_call()
        assert breaker.state == BreakerState.HALF_OPEN


class TestBreakerCall:

    @pytest.mark.asyncio
    async def test_call_records_success(self, breaker):
        async def ok():
            return {"ok": True}

        assert await breaker.call(ok) == {"ok": True}
        assert breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_call_records_failure(self, breaker):
        async def boom():
            raise RuntimeError("db down")

        with pytest.raises(RuntimeError):
            await breaker.call(boom)
        assert breaker.consecutive_failures == 1

    def test_snapshot(self, breaker):
        _fail(breaker, 2)
        snap = breaker.snapshot().to_dict()
        assert snap["state"] == "closed"
        assert snap["consecutive_failures"] == 2
        assert snap["tenant_id"] == "acme"


# =========================================================================
# Registry
# =========================================================================


class TestCircuitBreakerRegistry:

    def test_lazy_creation_returns_same_instance(self, registry):
        assert registry.peek("acme", "book_appointment") is None
        first = registry.get("acme", "book_appointment")
        assert registry.get("acme", "book_appointment") is first
        assert len(registry) == 1

    def test_uses_config(self, registry):
        breaker = registry.get("acme", "book_appointment")
        assert breaker.failure_threshold == 3
        assert breaker.recovery_timeout == 60.0

    def test_requires_tenant(self, registry):
        with pytest.raises(ValueError):
            registry.get("", "book_appointment")

    def test_missing_breaker_is_closed(self, registry):
        assert registry.state_of("nobody", "anything") == BreakerState.CLOSED

    def test_tenant_isolation(self, registry):
        _fail(registry.get("acme", "book_appointment"), 3)
        assert registry.state_of("acme", "book_appointment") == BreakerState.OPEN
        assert registry.state_of("globex", "book_appointment") == BreakerState.CLOSED
        registry.get("globex", "book_appointment").before_call()

    def test_tool_isolation(self, registry):
        _fail(registry.get("acme", "book_appointment"), 3)
        registry.get("acme", "get_service_list").before_call()

    def test_reset_single_tool(self, registry):
        registry.get("acme", "a")
        registry.get("acme", "b")
        assert registry.reset("acme", "a") == 1
        assert registry.peek("acme", "a") is None
        assert registry.peek("acme", "b") is not None

    def test_reset_tenant(self, registry):
        registry.get("acme", "a")
        registry.get("acme", "b")
        registry.get("globex", "a")
        assert registry.reset("acme") == 2
        assert len(registry) == 1


class TestRegistrySweep:

    def test_removes_healthy_closed(self, registry):
        registry.get("acme", "get_service_list")
        assert registry.sweep() == 1
        assert len(registry) == 0

    def test_keeps_closed_with_failures(self, registry):
        _fail(registry.get("acme", "book_appointment"), 1)
        assert registry.sweep() == 0

    def test_keeps_recently_opened(self, registry, clock):
        _fail(registry.get("acme", "book_appointment"), 3)
        clock.advance(1800)
        assert registry.sweep() == 0

    def test_removes_open_past_retention(self, registry, clock):
        _fail(registry.get("acme", "book_appointment"), 3)
        clock.advance(3601)
        assert registry.sweep() == 1
        assert registry.state_of("acme", "book_appointment") == BreakerState.CLOSED

    def test_explicit_now(self, registry, clock):
        _fail(registry.get("acme", "book_appointment"), 3)
        assert registry.sweep(now=clock.now + 7200) == 1

    def test_keeps_breaker_with_call_in_flight(self, registry):
        breaker = registry.get("acme", "book_appointment")
        breaker.before_call()
        assert breaker.in_flight == 1

        assert registry.sweep() == 0
        breaker.record_failure()
        assert breaker.in_flight == 0
        assert registry.peek("acme", "book_appointment") is breaker

    def test_released_call_no_longer_in_flight(self, registry):
        breaker = registry.get("acme", "get_service_list")
        breaker.before_call()
        breaker.release_probe()

        assert breaker.in_flight == 0
        assert registry.sweep() == 1

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, registry):
        await registry.start()
        assert registry._sweeper.running
        registry.get("acme", "x")
        await registry.shutdown()
        assert not registry._sweeper.running
        assert len(registry) == 0
