"""
HybridFlow Protocols - Abstract interfaces for dependency injection

These protocols define the contracts that external collaborators must fulfill:
reasoning backends, business tool handlers, and metrics sinks. The engine
only depends on these shapes, so any provider or tool implementation can be
swapped in.
"""

from typing import Protocol, List, Dict, Any, Optional, runtime_checkable


@runtime_checkable
class ReasoningBackendProtocol(Protocol):
    """
    Abstract interface for a reasoning backend

    The router passes the system prompt as the first message of ``messages``.
    The returned object must expose ``content`` (str) and ``tool_calls``
    (list of objects with ``id``, ``name``, ``arguments``, or None), the
    shape of :class:`hybridflow.llm.base.LLMResponse`.

    Example:
        class MyBackend:
            name = "my-model"

            async def chat_completion(self, messages, tools=None, config=None):
                return LLMResponse(content="Hello!")
    """

    name: str

    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        config: Optional[Dict[str, Any]] = None
    ) -> Any:
        """Run one reasoning pass over the message history"""
        ...


@runtime_checkable
class ToolHandlerProtocol(Protocol):
    """
    Abstract interface for a business tool handler

    Handlers receive validated arguments and a
    :class:`hybridflow.tools.models.ToolContext`. They return any
    JSON-serializable payload. A payload containing ``needs_selection``
    signals that the user must disambiguate before the action can complete.
    """

    async def __call__(self, arguments: Dict[str, Any], context: Any) -> Any:
        ...


@runtime_checkable
class MetricsSinkProtocol(Protocol):
    """
    Write-only sink for execution metrics

    Implementations must not raise; the engine logs and ignores sink errors.
    """

    def record_tool_execution(self, event: Any) -> None:
        """Record one tool call outcome (ToolExecutionEvent)"""
        ...

    def record_reasoning_pass(self, event: Any) -> None:
        """Record one reasoning backend invocation (ReasoningPassEvent)"""
        ...
