"""
HybridFlow Metrics - Execution events and in-process sinks

Events:
- ToolExecutionEvent: one per tool call (including cache hits and rejections)
- ReasoningPassEvent: one per reasoning backend invocation

Sinks implement MetricsSinkProtocol. The engine treats them as write-only;
a failing sink is logged and ignored so it can never break a turn.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field, asdict
from typing import Any, Deque, Dict, Iterable, List, Optional

from .protocols import MetricsSinkProtocol

logger = logging.getLogger(__name__)


@dataclass
class ToolExecutionEvent:
    tool_name: str
    tenant_id: str
    conversation_id: str
    success: bool
    execution_time_ms: int
    error_type: Optional[str] = None
    from_cache: bool = False
    injected: bool = False
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReasoningPassEvent:
    tenant_id: str
    conversation_id: str
    message_count: int
    tool_call_count: int
    execution_time_ms: int
    success: bool
    provider: str
    error_message: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NullMetricsSink:
    """Discards everything."""

    def record_tool_execution(self, event: ToolExecutionEvent) -> None:
        pass

    def record_reasoning_pass(self, event: ReasoningPassEvent) -> None:
        pass


class InMemoryMetricsSink:
    """
    Bounded in-process buffer with a per-tool summary

    Example:
        sink = InMemoryMetricsSink(max_events=1000)
        router = TurnRouter(..., metrics=sink)
        sink.summary(tenant_id="acme")
    """

    def __init__(self, max_events: int = 10_000):
        self.tool_events: Deque[ToolExecutionEvent] = deque(maxlen=max_events)
        self.reasoning_events: Deque[ReasoningPassEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def record_tool_execution(self, event: ToolExecutionEvent) -> None:
        with self._lock:
            self.tool_events.append(event)

    def record_reasoning_pass(self, event: ReasoningPassEvent) -> None:
        with self._lock:
            self.reasoning_events.append(event)

    def summary(self, tenant_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Aggregate tool events by tool name, optionally for one tenant."""
        with self._lock:
            events = [e for e in self.tool_events if tenant_id is None or e.tenant_id == tenant_id]

        grouped: Dict[str, List[ToolExecutionEvent]] = {}
        for event in events:
            grouped.setdefault(event.tool_name, []).append(event)

        rows = []
        for tool_name, tool_events in grouped.items():
            times = [e.execution_time_ms for e in tool_events]
            successes = sum(1 for e in tool_events if e.success)
            total = len(tool_events)
            rows.append({
                "tool_name": tool_name,
                "total_calls": total,
                "successful_calls": successes,
                "failed_calls": total - successes,
                "success_rate": round(successes / total * 100, 2),
                "avg_execution_time": sum(times) / total,
                "max_execution_time": max(times),
                "min_execution_time": min(times),
            })
        rows.sort(key=lambda r: r["total_calls"], reverse=True)
        return rows

    def clear(self) -> None:
        with self._lock:
            self.tool_events.clear()
            self.reasoning_events.clear()


class CompositeMetricsSink:
    """Fans every event out to several sinks."""

    def __init__(self, sinks: Iterable[MetricsSinkProtocol]):
        self.sinks = list(sinks)

    def record_tool_execution(self, event: ToolExecutionEvent) -> None:
        for sink in self.sinks:
            safe_record(sink.record_tool_execution, event)

    def record_reasoning_pass(self, event: ReasoningPassEvent) -> None:
        for sink in self.sinks:
            safe_record(sink.record_reasoning_pass, event)


def safe_record(method: Any, event: Any) -> None:
    """Call a sink method, logging instead of raising on failure."""
    try:
        method(event)
    except Exception as e:
        logger.warning(f"[Metrics] Sink {type(getattr(method, '__self__', method)).__name__} failed: {e}")
