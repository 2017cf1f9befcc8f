"""
HybridFlow Errors - Exception taxonomy for tool execution and turn routing

Tool-level errors carry an ``error_type`` tag that is written into the
structured tool-result content, and a ``retryable`` flag used by the
executor's retry loop. Nothing in this module is ever shown verbatim to an
end user; the router turns irrecoverable states into an apology.
"""

from typing import Any, Dict, Optional, Sequence


class HybridFlowError(Exception):
    """Base class for all engine errors"""
    pass


class ToolError(HybridFlowError):
    """Base class for errors raised while executing a single tool call"""

    error_type: str = "tool_execution_error"
    retryable: bool = True

    def __init__(self, message: str, tool_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.tool_name = tool_name

    def to_payload(self) -> Dict[str, Any]:
        """Structured form written into tool-result content"""
        return {"error": self.message, "type": self.error_type}


class ValidationError(ToolError):
    """Malformed or out-of-range tool arguments. Never retried."""

    error_type = "validation_error"
    retryable = False

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
    ):
        super().__init__(message, tool_name)
        self.fields = list(fields or [])


class AuthorizationError(ToolError):
    """Caller lacks permission for the action. Never retried."""

    error_type = "authorization_error"
    retryable = False


class CircuitOpenError(ToolError):
    """Rejected by an open circuit breaker"""

    error_type = "circuit_breaker_error"
    retryable = False

    def __init__(self, tool_name: str, tenant_id: Optional[str] = None):
        super().__init__(
            f"Tool {tool_name} is temporarily unavailable due to repeated failures",
            tool_name,
        )
        self.tenant_id = tenant_id


class ToolTimeoutError(ToolError, TimeoutError):
    """Tool exceeded its timeout tier. Retried as a transient failure."""

    error_type = "timeout_error"

    def __init__(self, tool_name: str, timeout: float):
        super().__init__(f"Tool '{tool_name}' timed out after {timeout}s", tool_name)
        self.timeout = timeout


class TransientExecutionError(ToolError):
    """Network or backend hiccup inside a tool handler"""

    error_type = "tool_execution_error"


class DependencyUnsatisfiedError(ToolError):
    """A declared prerequisite could not be found or auto-injected"""

    error_type = "dependency_error"
    retryable = False

    def __init__(self, tool_name: str, missing: Sequence[str]):
        super().__init__(
            f"Tool '{tool_name}' requires {', '.join(missing)} which could not be "
            f"resolved from the conversation",
            tool_name,
        )
        self.missing = list(missing)


class HallucinatedConfirmationError(HybridFlowError):
    """Reasoning backend asserted a completed action with no successful tool result"""

    def __init__(self, provider: str, reply: str):
        super().__init__(
            f"{provider} claimed an action completed without tool execution: "
            f"{reply[:100]!r}"
        )
        self.provider = provider
        self.reply = reply


class BackendError(HybridFlowError):
    """A reasoning backend failed after its retries were exhausted"""

    def __init__(self, provider: str, cause: BaseException):
        super().__init__(f"{provider} failed: {cause}")
        self.provider = provider
        self.cause = cause


def is_retryable(error: BaseException) -> bool:
    """Classify an exception raised by a tool handler.

    Engine errors declare retryability themselves. ``PermissionError`` is
    treated as an authorization failure; every other exception is transient.
    """
    if isinstance(error, ToolError):
        return error.retryable
    if isinstance(error, PermissionError):
        return False
    return True


def error_type_of(error: BaseException) -> str:
    """Map an exception to its tool-result ``type`` tag"""
    if isinstance(error, ToolError):
        return error.error_type
    if isinstance(error, PermissionError):
        return AuthorizationError.error_type
    return TransientExecutionError.error_type
