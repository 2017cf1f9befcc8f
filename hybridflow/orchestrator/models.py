"""
HybridFlow Router Models - States, observations and turn outcomes
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..tools.models import ToolResult


class RouterState(str, Enum):
    """Turn router state machine states"""
    REASONING = "reasoning"
    FALLBACK_REASONING = "fallback_reasoning"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    END = "end"


class ObservationKind(str, Enum):
    """What the router observed after running a state"""
    TOOL_CALLS = "tool_calls"
    TEXT = "text"
    EMPTY = "empty"
    ERROR = "error"
    TOOLS_EXECUTED = "tools_executed"
    FOLLOW_UP_REQUIRED = "follow_up_required"


class TrustVerdict(str, Enum):
    """Outcome of the trust check on a text reply"""
    TRUSTED = "trusted"
    MISSED_TOOL = "missed_tool"
    UNCONFIRMED_CLAIM = "unconfirmed_claim"


class TransitionReason(str, Enum):
    """Why the router moved between two states"""
    TOOL_CALLS_REQUESTED = "tool_calls_requested"
    HYBRID_HANDOFF = "hybrid_handoff"
    BACKEND_ERROR = "backend_error"
    UNCONFIRMED_CLAIM = "unconfirmed_claim"
    MISSED_TOOL_INTENT = "missed_tool_intent"
    TOOLS_EXECUTED = "tools_executed"
    FOLLOW_UP_REQUIRED = "follow_up_required"
    TOOL_ROUNDS_EXHAUSTED = "tool_rounds_exhausted"
    REPLY_ACCEPTED = "reply_accepted"
    REPLY_BLOCKED = "reply_blocked"
    EMPTY_RESPONSE = "empty_response"
    UNRECOVERABLE = "unrecoverable"


@dataclass
class Observation:
    """
    Facts the transition function decides on

    Attributes:
        kind: What the last step produced
        trust: Trust verdict for TEXT observations
        secondary_available: A secondary backend is configured
        fallback_used: The fallback pass already ran this turn
        hybrid_split: Tool execution is handed to the secondary backend
        tool_rounds_exhausted: No more execution rounds are allowed
    """
    kind: ObservationKind
    trust: TrustVerdict = TrustVerdict.TRUSTED
    secondary_available: bool = False
    fallback_used: bool = False
    hybrid_split: bool = False
    tool_rounds_exhausted: bool = False


@dataclass(frozen=True)
class Transition:
    next_state: RouterState
    reason: TransitionReason


@dataclass
class TurnResult:
    """
    Result of handling one inbound message

    Attributes:
        reply: User-facing text (an apology when the turn could not complete)
        state: Terminal router state (always END)
        path: Router states visited, in order
        tool_results: Every tool result produced during the turn
        provider: Backend that produced the final reply
        reply_blocked: A reply was withheld for claiming an unverified action
        error_type: Set when the turn ended on an error path
    """
    reply: str
    state: RouterState = RouterState.END
    path: List[RouterState] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)
    provider: Optional[str] = None
    reply_blocked: bool = False
    error_type: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error_type is None and not self.reply_blocked

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reply": self.reply,
            "state": self.state.value,
            "path": [s.value for s in self.path],
            "tool_results": [r.to_parsed().to_dict() for r in self.tool_results],
            "provider": self.provider,
            "reply_blocked": self.reply_blocked,
            "error_type": self.error_type,
            "success": self.success,
        }
