"""
HybridFlow Orchestrator Module

Per-turn coordination between reasoning backends and tool execution:
- TurnRouter: hybrid REASONING / FALLBACK_REASONING / EXECUTING / FINALIZING state machine
- DependencyResolver: prerequisite injection and wave grouping
- ConversationState: per-conversation state, including pending selections
- prune_messages / repair_tool_pairing: bounded, pairing-safe history
- RegexConfirmationClaimDetector: blocks replies claiming unverified actions

Quick Start:
    from hybridflow.orchestrator import TurnRouter, ConversationState

    router = TurnRouter(primary, registry, secondary=secondary)
    await router.start()

    state = ConversationState(tenant_id="acme", conversation_id="c1")
    result = await router.handle_turn(state, "Book a bath for Rex tomorrow at 3pm")
    print(result.reply)
"""

from .state import ActiveProvider, ConversationState, SelectionInProgress
from .dependency_resolver import DependencyResolver, Resolution, group_into_waves
from .pruning import PruneResult, prune_messages, repair_tool_pairing, summarize_removed
from .confirmation import (
    ConfirmationClaimDetector,
    RegexConfirmationClaimDetector,
    RegexToolIntentDetector,
    ToolIntentDetector,
)
from .models import (
    Observation,
    ObservationKind,
    RouterState,
    Transition,
    TransitionReason,
    TrustVerdict,
    TurnResult,
)
from .router import TurnRouter, transition

__all__ = [
    "ActiveProvider",
    "ConversationState",
    "SelectionInProgress",
    "DependencyResolver",
    "Resolution",
    "group_into_waves",
    "PruneResult",
    "prune_messages",
    "repair_tool_pairing",
    "summarize_removed",
    "ConfirmationClaimDetector",
    "RegexConfirmationClaimDetector",
    "RegexToolIntentDetector",
    "ToolIntentDetector",
    "Observation",
    "ObservationKind",
    "RouterState",
    "Transition",
    "TransitionReason",
    "TrustVerdict",
    "TurnResult",
    "TurnRouter",
    "transition",
]
