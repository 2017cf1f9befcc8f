"""
Shared constants for the HybridFlow engine.

Centralizes default tunables and user-facing fallback texts that are needed
by both the executor and the router.
"""

from typing import Tuple

# ── Circuit breaker ──

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RECOVERY_TIMEOUT = 60.0          # seconds
DEFAULT_BREAKER_RETENTION = 60 * 60.0    # seconds an OPEN breaker may sit untouched
DEFAULT_SWEEP_INTERVAL = 15 * 60.0       # seconds between idle-reclaim passes

# ── Tool execution ──

DEFAULT_TOOL_TIMEOUT = 15.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_CACHE_TTL = 60.0

# ── Conversation history ──

DEFAULT_MAX_MESSAGES = 15
DEFAULT_SUMMARY_TOPICS = 3

# ── Identifiers ──

INJECTED_CALL_PREFIX = "inj_"
FORCED_CALL_PREFIX = "forced_"
MAX_TOOL_CALL_ID_LENGTH = 40

# ── Tool-result error types ──

TOOL_ERROR_TYPES: Tuple[str, ...] = (
    "validation_error",
    "authorization_error",
    "circuit_breaker_error",
    "timeout_error",
    "tool_execution_error",
    "dependency_error",
)

# ── User-facing fallback replies ──

GENERIC_APOLOGY = (
    "I apologize, but I'm having trouble processing your request right now. "
    "Please try again in a moment."
)
EMPTY_RESPONSE_APOLOGY = (
    "I apologize, but I'm having trouble formulating a response right now. "
    "Could you please rephrase your question?"
)
EMPTY_AFTER_TOOLS_APOLOGY = (
    "I apologize, but I'm having trouble generating a response based on the "
    "results. Could you please try again?"
)
UNVERIFIED_ACTION_APOLOGY = (
    "I'm sorry, I wasn't able to complete that action just now. "
    "Could you confirm the details so I can try again?"
)
