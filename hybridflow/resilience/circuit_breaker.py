"""
HybridFlow Circuit Breaker - Per-(tenant, tool) fault isolation

State machine:
    CLOSED     calls pass; each failure increments the counter; reaching the
               threshold opens the breaker and stamps the failure time
    OPEN       calls are rejected with CircuitOpenError until
               ``recovery_timeout`` has elapsed since the last failure; the
               next call then moves to HALF_OPEN
    HALF_OPEN  exactly one probe is admitted; success closes the breaker and
               clears the counter and timestamp, failure reopens it

Breakers are created lazily by :class:`CircuitBreakerRegistry` and reclaimed
by its sweep. A missing breaker is equivalent to a healthy one.

Usage:
    breakers = CircuitBreakerRegistry(BreakerConfig(failure_threshold=3))
    await breakers.start()

    breaker = breakers.get("acme", "book_appointment")
    result = await breaker.call(lambda: handler(args, ctx))

    await breakers.shutdown()
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from ..config import BreakerConfig
from ..errors import CircuitOpenError
from .sweeper import PeriodicSweeper

logger = logging.getLogger(__name__)

BreakerKey = Tuple[str, str]


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class BreakerSnapshot:
    """Point-in-time view of a breaker, safe to hand out."""
    tenant_id: str
    tool_name: str
    state: BreakerState
    consecutive_failures: int
    last_failure_at: Optional[float]
    failure_threshold: int
    recovery_timeout: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "tool_name": self.tool_name,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "last_failure_at": self.last_failure_at,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }


class CircuitBreaker:
    """
    Circuit breaker for one (tenant, tool) pair

    Transitions are guarded by a ``threading.Lock`` and never await while
    holding it, so a breaker can be shared by tasks and threads alike.
    """

    def __init__(
        self,
        tenant_id: str,
        tool_name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.tenant_id = tenant_id
        self.tool_name = tool_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.Lock()

        self.state = BreakerState.CLOSED
        self.consecutive_failures = 0
        self.last_failure_at: Optional[float] = None
        self._probe_in_flight = False
        self._in_flight = 0

    def before_call(self) -> None:
        """Admit a call or raise CircuitOpenError."""
        with self._lock:
            if self.state == BreakerState.OPEN:
                elapsed = self._clock() - (self.last_failure_at or 0.0)
                if elapsed < self.recovery_timeout:
                    raise CircuitOpenError(self.tool_name, self.tenant_id)
                self.state = BreakerState.HALF_OPEN
                self._probe_in_flight = True
                logger.info(
                    f"[CircuitBreaker] {self.tenant_id}:{self.tool_name} HALF_OPEN, admitting probe"
                )
            elif self.state == BreakerState.HALF_OPEN:
                # Only one probe at a time
                if self._probe_in_flight:
                    raise CircuitOpenError(self.tool_name, self.tenant_id)
                self._probe_in_flight = True
            self._in_flight += 1

    @property
    def in_flight(self) -> int:
        """Admitted calls whose outcome has not been recorded yet."""
        return self._in_flight

    def _end_call(self) -> None:
        if self._in_flight > 0:
            self._in_flight -= 1

    def record_success(self) -> None:
        with self._lock:
            self._end_call()
            if self.state != BreakerState.CLOSED:
                logger.info(f"[CircuitBreaker] {self.tenant_id}:{self.tool_name} CLOSED after probe")
            self.state = BreakerState.CLOSED
            self.consecutive_failures = 0
            self.last_failure_at = None
            self._probe_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._end_call()
            self.consecutive_failures += 1
            self.last_failure_at = self._clock()
            was_probe = self.state == BreakerState.HALF_OPEN
            self._probe_in_flight = False
            if was_probe or self.consecutive_failures >= self.failure_threshold:
                if self.state != BreakerState.OPEN:
                    logger.warning(
                        f"[CircuitBreaker] {self.tenant_id}:{self.tool_name} OPEN "
                        f"after {self.consecutive_failures} failures"
                    )
                self.state = BreakerState.OPEN

    def release_probe(self) -> None:
        """Give back an admitted call whose outcome says nothing about tool health."""
        with self._lock:
            self._end_call()
            self._probe_in_flight = False

    async def call(self, func: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``func`` through the breaker, recording its outcome."""
        self.before_call()
        try:
            result = await func()
        except Exception:
            self.record_failure()
            raise
        except BaseException:
            self.release_probe()
            raise
        self.record_success()
        return result

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            return BreakerSnapshot(
                tenant_id=self.tenant_id,
                tool_name=self.tool_name,
                state=self.state,
                consecutive_failures=self.consecutive_failures,
                last_failure_at=self.last_failure_at,
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
            )


class CircuitBreakerRegistry:
    """
    Lazily created breakers keyed by (tenant_id, tool_name)

    Lookups read the dict without locking; creation and removal take the
    registry lock. Owned by the router's lifecycle: ``start()`` launches the
    periodic idle sweep and ``shutdown()`` stops it.
    """

    def __init__(
        self,
        config: Optional[BreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or BreakerConfig()
        self._clock = clock
        self._breakers: Dict[BreakerKey, CircuitBreaker] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicSweeper("CircuitBreakerRegistry", self.config.sweep_interval, self.sweep)

    def get(self, tenant_id: str, tool_name: str) -> CircuitBreaker:
        """Return the breaker for (tenant, tool), creating it on first use."""
        if not tenant_id:
            raise ValueError("tenant_id is required for circuit breaker isolation")
        key = (tenant_id, tool_name)
        breaker = self._breakers.get(key)
        if breaker is not None:
            return breaker
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    tenant_id,
                    tool_name,
                    failure_threshold=self.config.failure_threshold,
                    recovery_timeout=self.config.recovery_timeout,
                    clock=self._clock,
                )
                self._breakers[key] = breaker
            return breaker

    def peek(self, tenant_id: str, tool_name: str) -> Optional[CircuitBreaker]:
        """Return the breaker if one exists, without creating it."""
        return self._breakers.get((tenant_id, tool_name))

    def state_of(self, tenant_id: str, tool_name: str) -> BreakerState:
        breaker = self.peek(tenant_id, tool_name)
        return breaker.state if breaker else BreakerState.CLOSED

    def reset(self, tenant_id: str, tool_name: Optional[str] = None) -> int:
        """Drop one breaker, or every breaker of a tenant when ``tool_name`` is None."""
        with self._lock:
            keys = [
                k for k in self._breakers
                if k[0] == tenant_id and (tool_name is None or k[1] == tool_name)
            ]
            for key in keys:
                del self._breakers[key]
        return len(keys)

    def sweep(self, now: Optional[float] = None) -> int:
        """
        Remove idle breakers

        - CLOSED with zero failures (identical to a missing breaker)
        - never a breaker with a call in flight
        - OPEN whose last failure is older than the retention window

        Returns:
            Number of breakers removed
        """
        now = self._clock() if now is None else now
        retention = self.config.retention
        with self._lock:
            stale = []
            for key, breaker in self._breakers.items():
                if breaker.in_flight:
                    continue
                if breaker.state == BreakerState.CLOSED and breaker.consecutive_failures == 0:
                    stale.append(key)
                elif (
                    breaker.state == BreakerState.OPEN
                    and breaker.last_failure_at is not None
                    and now - breaker.last_failure_at > retention
                ):
                    stale.append(key)
            for key in stale:
                del self._breakers[key]
        if stale:
            logger.debug(f"[CircuitBreakerRegistry] Swept {len(stale)} breakers")
        return len(stale)

    def snapshots(self):
        return [b.snapshot() for b in list(self._breakers.values())]

    def __len__(self) -> int:
        return len(self._breakers)

    async def start(self) -> None:
        await self._sweeper.start()

    async def shutdown(self) -> None:
        await self._sweeper.stop()
        with self._lock:
            self._breakers.clear()
