"""
HybridFlow - Hybrid tool-execution orchestration for conversational agents

HybridFlow routes each conversation turn between a primary and an optional
secondary reasoning backend, executes requested tools in dependency-ordered
waves with validation, caching, per-tenant circuit breakers, timeouts and
retries, and never shows a reply that claims an action no tool confirmed.

Key Features:
- Hybrid split: one model reasons and writes replies, another drives tool execution
- Automatic prerequisite injection (never guessed from missing facts)
- Per-(tenant, tool) circuit breakers and per-conversation TTL caches
- History pruning that never separates a tool call from its result
- Structured JSON audit log and pluggable metrics sinks

Quick Start:
    from hybridflow import TurnRouter, ConversationState, ToolRegistry, BOOKING_TOOL_POLICIES
    from hybridflow.llm import LiteLLMClient

    registry = ToolRegistry(BOOKING_TOOL_POLICIES)
    registry.register_handler("get_customer_appointments", get_appointments)
    registry.register_handler("book_appointment", book_appointment)

    router = TurnRouter(
        primary=LiteLLMClient(model="gemini-2.0-flash", provider_name="gemini"),
        secondary=LiteLLMClient(model="gpt-4o", provider_name="openai"),
        registry=registry,
    )
    await router.start()

    state = ConversationState(tenant_id="acme", conversation_id="c1")
    result = await router.handle_turn(state, "Can I book a grooming tomorrow at 3pm?")
    print(result.reply)
"""

__version__ = "0.1.0"

from .errors import (
    HybridFlowError,
    ToolError,
    ValidationError,
    AuthorizationError,
    CircuitOpenError,
    ToolTimeoutError,
    TransientExecutionError,
    DependencyUnsatisfiedError,
    HallucinatedConfirmationError,
    BackendError,
)
from .config import (
    BreakerConfig,
    CacheConfig,
    DependencyPolicy,
    EngineConfig,
    ExecutorConfig,
    PruningConfig,
    RouterConfig,
    load_config,
)
from .protocols import MetricsSinkProtocol, ReasoningBackendProtocol, ToolHandlerProtocol
from .metrics import (
    CompositeMetricsSink,
    InMemoryMetricsSink,
    NullMetricsSink,
    ReasoningPassEvent,
    ToolExecutionEvent,
)
from .audit_logger import AuditLogger
from .tools import (
    ACTION_TOOLS,
    BOOKING_TOOL_POLICIES,
    ToolCall,
    ToolContext,
    ToolExecutor,
    ToolRegistry,
    ToolResult,
    ToolSpec,
)
from .resilience import CircuitBreakerRegistry, ConversationCacheRegistry
from .orchestrator import ConversationState, TurnResult, TurnRouter

__all__ = [
    "__version__",
    # Errors
    "HybridFlowError",
    "ToolError",
    "ValidationError",
    "AuthorizationError",
    "CircuitOpenError",
    "ToolTimeoutError",
    "TransientExecutionError",
    "DependencyUnsatisfiedError",
    "HallucinatedConfirmationError",
    "BackendError",
    # Config
    "BreakerConfig",
    "CacheConfig",
    "DependencyPolicy",
    "EngineConfig",
    "ExecutorConfig",
    "PruningConfig",
    "RouterConfig",
    "load_config",
    # Protocols
    "MetricsSinkProtocol",
    "ReasoningBackendProtocol",
    "ToolHandlerProtocol",
    # Metrics
    "CompositeMetricsSink",
    "InMemoryMetricsSink",
    "NullMetricsSink",
    "ReasoningPassEvent",
    "ToolExecutionEvent",
    "AuditLogger",
    # Tools
    "ACTION_TOOLS",
    "BOOKING_TOOL_POLICIES",
    "ToolCall",
    "ToolContext",
    "ToolExecutor",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    # Resilience
    "CircuitBreakerRegistry",
    "ConversationCacheRegistry",
    # Orchestrator
    "ConversationState",
    "TurnResult",
    "TurnRouter",
]
