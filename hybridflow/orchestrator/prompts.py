"""Context notes the turn router adds to the system prompt.

The engine never authors business instructions; those come from the tenant
as ``ConversationState.system_instructions``. Each section below renders a
runtime fragment (or an empty string) and build_system_prompt() joins them.
"""

import json
from typing import Any, Dict, Optional

from .models import TrustVerdict
from .state import ConversationState, SelectionInProgress


# ---------------------------------------------------------------------------
# Section renderers
# ---------------------------------------------------------------------------

def render_customer_context(state: ConversationState) -> str:
    """Known customer facts, so the backend never asks for them again."""
    lines = []
    if state.full_name:
        lines.append(f"- Customer name: {state.full_name} (already known, do not ask again)")
    if state.phone_number:
        lines.append(f"- Customer phone: {state.phone_number} (already known, do not ask again)")
    if state.platform:
        lines.append(f"- Channel: {state.platform}")
    lines.append(f"- Business timezone: {state.timezone}")
    if state.working_hours:
        lines.append(f"- Working hours: {_compact(state.working_hours)}")
    return "# Customer Context\n\n" + "\n".join(lines)


def render_selection_reminder(selection: Optional[SelectionInProgress], now: float) -> str:
    """Reminder that the previous turn asked the customer to choose an option.

    Args:
        selection: The pending selection, already checked for staleness
        now: Wall-clock time used for the elapsed-minutes figure
    """
    if selection is None:
        return ""
    minutes = int(selection.age_seconds(now) // 60)
    id_field = f"{selection.selection_type}_id"
    return (
        f"# BOOKING IN PROGRESS ({minutes} min ago)\n\n"
        f"{selection.tool_name} was interrupted because the customer must choose a "
        f"{selection.selection_type}.\n"
        f"Original parameters: {_compact(selection.original_params)}\n"
        f"Options offered: {_compact(selection.options)}\n\n"
        f"If the customer's message picks one of these options, call "
        f"{selection.tool_name} again with the original parameters plus "
        f"`{id_field}` set to the chosen option's id. Do not start over."
    )


def render_corrective_note(trust: Optional[TrustVerdict]) -> str:
    if trust == TrustVerdict.UNCONFIRMED_CLAIM:
        return (
            "# Correction\n\n"
            "Your previous draft said an action was completed, but no tool confirmed it. "
            "Never state that an appointment was booked, rescheduled or cancelled unless "
            "a tool result in this conversation confirms it. Call the appropriate tool now, "
            "or tell the customer what is still needed."
        )
    if trust == TrustVerdict.MISSED_TOOL:
        return (
            "# Correction\n\n"
            "The customer's request needs live data (appointments, availability, services, "
            "prices or hours). Answer it by calling the appropriate tool instead of replying "
            "from memory."
        )
    return ""


def render_history_summary(summary: Optional[str]) -> str:
    if not summary:
        return ""
    return f"# Conversation History\n\n{summary}"


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------

def build_system_prompt(
    state: ConversationState,
    *,
    now: float,
    selection: Optional[SelectionInProgress] = None,
    summary: Optional[str] = None,
    corrective: Optional[TrustVerdict] = None,
) -> str:
    """Assemble the system prompt for one backend invocation.

    Args:
        state: Conversation state (instructions and customer facts)
        now: Wall-clock time
        selection: Pending selection to remind the backend about
        summary: Summary of pruned history
        corrective: Trust verdict that triggered a corrective re-reasoning pass

    Returns:
        Complete system prompt string.
    """
    sections = [
        state.system_instructions.strip(),
        render_customer_context(state),
        render_selection_reminder(selection, now),
        render_history_summary(summary),
        render_corrective_note(corrective),
    ]
    return "\n\n".join(s for s in sections if s)


def _compact(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)
