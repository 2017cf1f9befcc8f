"""
Structured audit logging for tool executions and routing decisions.

Produces JSON log entries via Python's standard logging module under
the ``hybridflow.audit`` logger name.  Each entry includes a timestamp,
event_type, tenant_id, and event-specific fields.

AuditLogger also satisfies MetricsSinkProtocol, so it can be passed to the
router directly or combined with other sinks via CompositeMetricsSink.

Usage::

    audit = AuditLogger()
    router = TurnRouter(primary=backend, registry=tools, metrics=audit)
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .metrics import ReasoningPassEvent, ToolExecutionEvent

_audit_logger = logging.getLogger("hybridflow.audit")


class AuditLogger:
    """Structured audit logger for key engine decisions."""

    def __init__(self, tenant_id: Optional[str] = None) -> None:
        self._default_tenant_id = tenant_id

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _emit(self, event_type: str, fields: Dict[str, Any]) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
        }
        entry.update(fields)
        _audit_logger.info(json.dumps(entry, default=str))

    def _tid(self, tenant_id: Optional[str] = None) -> str:
        return tenant_id or self._default_tenant_id or ""

    # ------------------------------------------------------------------
    # MetricsSinkProtocol
    # ------------------------------------------------------------------

    def record_tool_execution(self, event: ToolExecutionEvent) -> None:
        fields = event.to_dict()
        fields["tenant_id"] = self._tid(event.tenant_id)
        fields.pop("timestamp", None)
        self._emit("tool_execution", fields)

    def record_reasoning_pass(self, event: ReasoningPassEvent) -> None:
        fields = event.to_dict()
        fields["tenant_id"] = self._tid(event.tenant_id)
        fields.pop("timestamp", None)
        self._emit("reasoning_pass", fields)

    # ------------------------------------------------------------------
    # routing decisions
    # ------------------------------------------------------------------

    def log_transition(
        self,
        from_state: str,
        to_state: str,
        reason: str,
        tenant_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> None:
        """Log one router state transition."""
        self._emit("router_transition", {
            "tenant_id": self._tid(tenant_id),
            "conversation_id": conversation_id,
            "from_state": from_state,
            "to_state": to_state,
            "reason": reason,
        })

    def log_turn(
        self,
        path: List[str],
        tool_calls: List[str],
        reply_blocked: bool,
        tenant_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> None:
        """Log a completed turn summary."""
        self._emit("turn_completed", {
            "tenant_id": self._tid(tenant_id),
            "conversation_id": conversation_id,
            "path": path,
            "tool_calls": tool_calls,
            "tool_calls_count": len(tool_calls),
            "reply_blocked": reply_blocked,
        })
