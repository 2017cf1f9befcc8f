"""Tests for hybridflow.metrics and hybridflow.audit_logger"""

import json
import logging
from unittest.mock import MagicMock

import pytest

from hybridflow.audit_logger import AuditLogger
from hybridflow.metrics import (
    CompositeMetricsSink,
    InMemoryMetricsSink,
    NullMetricsSink,
    ReasoningPassEvent,
    ToolExecutionEvent,
    safe_record,
)
from hybridflow.protocols import MetricsSinkProtocol


def _tool_event(name, success=True, ms=10, tenant="acme"):
    return ToolExecutionEvent(
        tool_name=name,
        tenant_id=tenant,
        conversation_id="conv-1",
        success=success,
        execution_time_ms=ms,
        error_type=None if success else "tool_execution_error",
    )


def _reasoning_event():
    return ReasoningPassEvent(
        tenant_id="acme",
        conversation_id="conv-1",
        message_count=4,
        tool_call_count=1,
        execution_time_ms=850,
        success=True,
        provider="gemini:gemini-2.0-flash",
    )


# =========================================================================
# InMemoryMetricsSink
# =========================================================================


class TestInMemoryMetricsSink:

    def test_summary(self):
        sink = InMemoryMetricsSink()
        sink.record_tool_execution(_tool_event("book_appointment", ms=100))
        sink.record_tool_execution(_tool_event("book_appointment", success=False, ms=300))
        sink.record_tool_execution(_tool_event("book_appointment", ms=200))
        sink.record_tool_execution(_tool_event("get_locations", ms=5))

        rows = sink.summary()

        assert [r["tool_name"] for r in rows] == ["book_appointment", "get_locations"]
        booking = rows[0]
        assert booking["total_calls"] == 3
        assert booking["successful_calls"] == 2
        assert booking["failed_calls"] == 1
        assert booking["success_rate"] == 66.67
        assert booking["avg_execution_time"] == 200
        assert booking["max_execution_time"] == 300
        assert booking["min_execution_time"] == 100

    def test_summary_per_tenant(self):
        sink = InMemoryMetricsSink()
        sink.record_tool_execution(_tool_event("get_locations", tenant="acme"))
        sink.record_tool_execution(_tool_event("get_locations", tenant="globex"))
        assert sink.summary(tenant_id="globex")[0]["total_calls"] == 1
        assert sink.summary(tenant_id="nobody") == []

    def test_bounded(self):
        sink = InMemoryMetricsSink(max_events=2)
        for _ in range(5):
            sink.record_tool_execution(_tool_event("x"))
        assert len(sink.tool_events) == 2

    def test_clear(self):
        sink = InMemoryMetricsSink()
        sink.record_reasoning_pass(_reasoning_event())
        sink.clear()
        assert len(sink.reasoning_events) == 0


class TestCompositeMetricsSink:

    def test_fans_out(self):
        first, second = InMemoryMetricsSink(), InMemoryMetricsSink()
        composite = CompositeMetricsSink([first, second])
        composite.record_tool_execution(_tool_event("x"))
        composite.record_reasoning_pass(_reasoning_event())
        assert len(first.tool_events) == len(second.tool_events) == 1
        assert len(first.reasoning_events) == len(second.reasoning_events) == 1

    def test_failing_sink_isolated(self):
        broken = MagicMock()
        broken.record_tool_execution.side_effect = RuntimeError("statsd down")
        healthy = InMemoryMetricsSink()

        CompositeMetricsSink([broken, healthy]).record_tool_execution(_tool_event("x"))

        assert len(healthy.tool_events) == 1

    def test_safe_record_swallows(self):
        safe_record(MagicMock(side_effect=ValueError("boom")), _tool_event("x"))

    @pytest.mark.parametrize("sink", [NullMetricsSink(), InMemoryMetricsSink(), AuditLogger()])
    def test_protocol(self, sink):
        assert isinstance(sink, MetricsSinkProtocol)


# =========================================================================
# AuditLogger
# =========================================================================


def _entries(caplog):
    return [json.loads(r.getMessage()) for r in caplog.records if r.name == "hybridflow.audit"]


class TestAuditLogger:

    def test_tool_execution(self, caplog):
        with caplog.at_level(logging.INFO, logger="hybridflow.audit"):
            AuditLogger().record_tool_execution(_tool_event("book_appointment", success=False))

        (entry,) = _entries(caplog)
        assert entry["event_type"] == "tool_execution"
        assert entry["tool_name"] == "book_appointment"
        assert entry["tenant_id"] == "acme"
        assert entry["success"] is False
        assert entry["error_type"] == "tool_execution_error"
        assert "timestamp" in entry

    def test_reasoning_pass(self, caplog):
        with caplog.at_level(logging.INFO, logger="hybridflow.audit"):
            AuditLogger().record_reasoning_pass(_reasoning_event())

        (entry,) = _entries(caplog)
        assert entry["event_type"] == "reasoning_pass"
        assert entry["provider"] == "gemini:gemini-2.0-flash"
        assert entry["tool_call_count"] == 1

    def test_transition_uses_default_tenant(self, caplog):
        with caplog.at_level(logging.INFO, logger="hybridflow.audit"):
            AuditLogger(tenant_id="acme").log_transition("reasoning", "executing", "tool_calls_requested")

        (entry,) = _entries(caplog)
        assert entry["event_type"] == "router_transition"
        assert entry["tenant_id"] == "acme"
        assert (entry["from_state"], entry["to_state"]) == ("reasoning", "executing")

    def test_turn_completed(self, caplog):
        with caplog.at_level(logging.INFO, logger="hybridflow.audit"):
            AuditLogger().log_turn(
                ["reasoning", "end"], ["get_locations"], False,
                tenant_id="globex", conversation_id="c9",
            )

        (entry,) = _entries(caplog)
        assert entry["event_type"] == "turn_completed"
        assert entry["tool_calls_count"] == 1
        assert entry["conversation_id"] == "c9"
        assert entry["tenant_id"] == "globex"
