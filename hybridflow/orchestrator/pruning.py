"""
Message Pruning - Bound conversation history without splitting tool pairs

Two operations on OpenAI-format messages:

1. prune_messages(): keep the most recent window of messages. The window
   start is moved forward until no tool-call request or tool result is
   separated from its partner, so the kept history never exceeds the
   window. Removed turns are replaced with a short summary naming how many
   messages were elided and the last few user topics.
2. repair_tool_pairing(): applied before every backend call. Drops tool
   results with no matching request and inserts a synthetic error result
   for any request that never got one.

Message shapes:
- Assistant: {"role": "assistant", "content": "...", "tool_calls": [{"id": "...", ...}]}
- Tool result: {"role": "tool", "tool_call_id": "...", "content": "..."}
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

logger = logging.getLogger(__name__)

SYNTHETIC_TOOL_RESULT = json.dumps({
    "error": "Tool result missing from transcript",
    "type": "tool_execution_error",
})
TOPIC_PREVIEW_CHARS = 80


@dataclass
class PruneResult:
    """
    Attributes:
        messages: Retained messages, in original order
        removed: Messages summarized away
        summary: Text describing the removed messages (empty if none)
    """
    messages: List[Dict[str, Any]]
    removed: List[Dict[str, Any]] = field(default_factory=list)
    summary: str = ""

    @property
    def removed_count(self) -> int:
        return len(self.removed)


def _call_ids(message: Dict[str, Any]) -> List[str]:
    if message.get("role") != "assistant":
        return []
    return [tc.get("id", "") for tc in message.get("tool_calls") or [] if tc.get("id")]


def _content_text(message: Dict[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return " ".join(
            part.get("text", "") for part in content if isinstance(part, dict)
        )
    return ""


# -------------------------------------------------------------------------
# Pruning
# -------------------------------------------------------------------------

def prune_messages(
    messages: List[Dict[str, Any]],
    max_messages: int,
    topic_count: int = 3,
) -> PruneResult:
    """
    Keep at most ``max_messages`` non-system messages, preserving tool pairs.

    System messages are always retained and do not count toward the window.

    Args:
        messages: Full conversation history
        max_messages: Window size
        topic_count: How many removed user messages to name in the summary

    Returns:
        PruneResult
    """
    system = [m for m in messages if m.get("role") == "system"]
    history = [m for m in messages if m.get("role") != "system"]

    if len(history) <= max_messages:
        return PruneResult(messages=list(messages))

    # Index of the assistant message that issued each tool call
    issued_at: Dict[str, int] = {}
    for index, message in enumerate(history):
        for call_id in _call_ids(message):
            issued_at.setdefault(call_id, index)

    start = len(history) - max_messages
    while start < len(history) and _crosses_boundary(history, start, issued_at):
        start += 1

    kept = history[start:]
    removed = history[:start]
    summary = summarize_removed(removed, topic_count)

    logger.info(
        f"[Pruning] Removed {len(removed)} messages, keeping {len(kept)} "
        f"(tool call pairs preserved)"
    )
    return PruneResult(messages=system + kept, removed=removed, summary=summary)


def _crosses_boundary(
    history: List[Dict[str, Any]],
    start: int,
    issued_at: Dict[str, int],
) -> bool:
    """True if a retained tool result belongs to a request before ``start``,
    or a request before ``start`` has a result at or after it."""
    removed_ids: Set[str] = set()
    for message in history[:start]:
        removed_ids.update(_call_ids(message))

    for message in history[start:]:
        if message.get("role") != "tool":
            continue
        call_id = message.get("tool_call_id", "")
        if call_id in removed_ids:
            return True
        issuer = issued_at.get(call_id)
        if issuer is not None and issuer < start:
            return True
    return False


def summarize_removed(removed: List[Dict[str, Any]], topic_count: int = 3) -> str:
    """Build ``[Earlier in conversation: N messages about: t1; t2...]``."""
    if not removed:
        return ""
    user_texts = [
        _content_text(m).strip()[:TOPIC_PREVIEW_CHARS]
        for m in removed
        if m.get("role") == "user"
    ]
    topics = [t for t in user_texts if t][-topic_count:] if topic_count > 0 else []
    if not topics:
        return f"[Earlier in conversation: {len(removed)} messages]"
    return f"[Earlier in conversation: {len(removed)} messages about: {'; '.join(topics)}...]"


# -------------------------------------------------------------------------
# Pairing repair
# -------------------------------------------------------------------------

def repair_tool_pairing(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Place each tool result directly after the assistant message that
    requested it.

    - Orphaned results (no matching request) are dropped
    - Duplicate results keep the first occurrence
    - Requests without a result get a synthetic error result

    Returns the original list when nothing needed fixing.
    """
    requested: Set[str] = set()
    for message in messages:
        requested.update(_call_ids(message))

    results: Dict[str, Dict[str, Any]] = {}
    for message in messages:
        if message.get("role") == "tool":
            call_id = message.get("tool_call_id", "")
            if call_id in requested and call_id not in results:
                results[call_id] = message

    repaired: List[Dict[str, Any]] = []
    placed: Set[str] = set()
    for message in messages:
        if message.get("role") == "tool":
            continue
        repaired.append(message)
        for call_id in _call_ids(message):
            if call_id in placed:
                continue
            placed.add(call_id)
            result = results.get(call_id)
            if result is None:
                logger.warning(f"[Pruning] Inserted synthetic result for tool call {call_id}")
                result = {"role": "tool", "tool_call_id": call_id, "content": SYNTHETIC_TOOL_RESULT}
            repaired.append(result)

    if len(repaired) == len(messages) and all(a is b for a, b in zip(repaired, messages)):
        return messages

    original_results = sum(1 for m in messages if m.get("role") == "tool")
    dropped = original_results - len(results)
    if dropped:
        logger.warning(f"[Pruning] Dropped {dropped} orphaned or duplicate tool results")
    return repaired
