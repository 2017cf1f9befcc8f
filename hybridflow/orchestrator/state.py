"""
HybridFlow Conversation State - Per-conversation data carried through a turn

ConversationState is rebuilt from the persisted transcript for every inbound
message (persistence itself is the caller's concern) and mutated by the
router while the turn runs.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from ..tools.models import ParsedToolResult, ToolCall, ToolContext, ToolResult

logger = logging.getLogger(__name__)


class ActiveProvider(str, Enum):
    """Which reasoning role currently owns the turn."""
    REASONING = "reasoning"
    FALLBACK = "fallback"
    EXECUTION_AGENT = "execution_agent"


@dataclass
class SelectionInProgress:
    """
    A pending disambiguation the user was asked to resolve

    Attributes:
        tool_name: Tool that asked for the selection (e.g. book_appointment)
        selection_type: What must be chosen ("location", "staff")
        options: Options presented to the user
        original_params: Arguments of the interrupted call
        created_at: Wall-clock creation time, for staleness checks
    """
    tool_name: str
    selection_type: str
    options: List[Any]
    original_params: Dict[str, Any]
    created_at: float

    def age_seconds(self, now: float) -> float:
        return max(0.0, now - self.created_at)

    def is_stale(self, now: float, window: float) -> bool:
        return self.age_seconds(now) > window

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "selection_type": self.selection_type,
            "options": self.options,
            "original_params": self.original_params,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectionInProgress":
        return cls(
            tool_name=data.get("tool_name", ""),
            selection_type=data.get("selection_type", ""),
            options=list(data.get("options") or []),
            original_params=dict(data.get("original_params") or {}),
            created_at=float(data.get("created_at", 0.0)),
        )


@dataclass
class ConversationState:
    """
    State of one active chat session

    (tenant_id, conversation_id) is the durable key; breakers and caches are
    keyed by tenant_id so one tenant's failures never affect another.
    """
    tenant_id: str
    conversation_id: str
    platform: Optional[str] = None
    messages: List[Dict[str, Any]] = field(default_factory=list)
    active_provider: ActiveProvider = ActiveProvider.REASONING
    pending_tool_calls: List[ToolCall] = field(default_factory=list)
    last_tool_results: List[ParsedToolResult] = field(default_factory=list)
    selection_in_progress: Optional[SelectionInProgress] = None

    # Known customer facts (used for auto-injection, never guessed)
    full_name: Optional[str] = None
    phone_number: Optional[str] = None

    timezone: str = "UTC"
    working_hours: Optional[Any] = None
    system_instructions: str = ""

    assistant_message: Optional[str] = None
    error: Optional[Dict[str, Any]] = None

    def tool_context(self) -> ToolContext:
        return ToolContext(
            tenant_id=self.tenant_id,
            conversation_id=self.conversation_id,
            platform=self.platform,
            timezone=self.timezone,
            full_name=self.full_name,
            phone_number=self.phone_number,
            working_hours=self.working_hours,
        )

    def append(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)

    def successful_tools(self) -> Set[str]:
        return {r.name for r in self.last_tool_results if r.success}

    # ------------------------------------------------------------------
    # Pending selection
    # ------------------------------------------------------------------

    def active_selection(self, now: float, staleness: float) -> Optional[SelectionInProgress]:
        """Return the pending selection if still fresh; discard it once stale."""
        selection = self.selection_in_progress
        if selection is None:
            return None
        if selection.is_stale(now, staleness):
            logger.info(
                f"[ConversationState] Dropping stale {selection.selection_type} selection "
                f"for {self.tenant_id}:{self.conversation_id} "
                f"({int(selection.age_seconds(now) // 60)} min old)"
            )
            self.selection_in_progress = None
            return None
        return selection

    def record_tool_results(
        self,
        results: Iterable[ToolResult],
        now: float,
        calls: Optional[Iterable[ToolCall]] = None,
    ) -> None:
        """
        Store parsed outcomes and update the pending selection

        - A result carrying ``needs_selection`` opens a selection
        - A later success of the same tool without ``needs_selection``
          consumes it
        """
        results = list(results)
        calls_by_id = {c.id: c for c in (calls or [])}
        self.last_tool_results = [r.to_parsed() for r in results]

        for result in results:
            needs = result.needs_selection
            if needs:
                data = result.data if isinstance(result.data, dict) else {}
                original = data.get("context")
                if not isinstance(original, dict):
                    call = calls_by_id.get(result.tool_call_id)
                    original = dict(call.arguments) if call else {}
                self.selection_in_progress = SelectionInProgress(
                    tool_name=result.name,
                    selection_type=str(needs.get("type", "option")),
                    options=list(needs.get("options") or []),
                    original_params=original,
                    created_at=now,
                )
                logger.info(
                    f"[ConversationState] {result.name} needs {self.selection_in_progress.selection_type} "
                    f"selection ({len(self.selection_in_progress.options)} options)"
                )
            elif (
                result.success
                and self.selection_in_progress is not None
                and result.name == self.selection_in_progress.tool_name
            ):
                self.selection_in_progress = None

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "conversation_id": self.conversation_id,
            "platform": self.platform,
            "messages": list(self.messages),
            "active_provider": self.active_provider.value,
            "pending_tool_calls": [
                {**c.to_openai(), "injected": c.injected} for c in self.pending_tool_calls
            ],
            "last_tool_results": [r.to_dict() for r in self.last_tool_results],
            "selection_in_progress": (
                self.selection_in_progress.to_dict() if self.selection_in_progress else None
            ),
            "full_name": self.full_name,
            "phone_number": self.phone_number,
            "timezone": self.timezone,
            "working_hours": self.working_hours,
            "system_instructions": self.system_instructions,
            "assistant_message": self.assistant_message,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationState":
        pending = []
        for raw in data.get("pending_tool_calls") or []:
            call = ToolCall.from_openai(raw)
            call.injected = bool(raw.get("injected", False))
            pending.append(call)
        selection = data.get("selection_in_progress")
        return cls(
            tenant_id=data["tenant_id"],
            conversation_id=data["conversation_id"],
            platform=data.get("platform"),
            messages=list(data.get("messages") or []),
            active_provider=ActiveProvider(data.get("active_provider", ActiveProvider.REASONING.value)),
            pending_tool_calls=pending,
            last_tool_results=[
                ParsedToolResult.from_dict(r) for r in data.get("last_tool_results") or []
            ],
            selection_in_progress=SelectionInProgress.from_dict(selection) if selection else None,
            full_name=data.get("full_name"),
            phone_number=data.get("phone_number"),
            timezone=data.get("timezone") or "UTC",
            working_hours=data.get("working_hours"),
            system_instructions=data.get("system_instructions", ""),
            assistant_message=data.get("assistant_message"),
            error=data.get("error"),
        )
