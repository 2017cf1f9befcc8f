"""
HybridFlow Tool Models - Data structures for tool registration and execution
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel

ToolHandler = Callable[[Dict[str, Any], "ToolContext"], Any]
SemanticCheck = Callable[[Dict[str, Any], "ToolContext"], None]


@dataclass
class ToolCall:
    """
    Represents a tool call requested by a reasoning backend or synthesized
    by the dependency resolver

    Attributes:
        id: Unique call ID, echoed back on the tool-result message
        name: Tool name
        arguments: Parsed arguments dict
        injected: True when synthesized as a missing prerequisite
        metadata: Free-form annotations (e.g. unmet dependencies)
    """
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    injected: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_openai(self) -> Dict[str, Any]:
        """Serialize as an entry of an assistant message's ``tool_calls``"""
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.arguments, ensure_ascii=False),
            },
        }

    @classmethod
    def from_openai(cls, data: Dict[str, Any]) -> "ToolCall":
        """Parse an OpenAI-format tool call; malformed arguments become {}."""
        function = data.get("function") or {}
        arguments = function.get("arguments", data.get("arguments", {}))
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments else {}
            except json.JSONDecodeError:
                arguments = {}
        return cls(
            id=data.get("id", ""),
            name=function.get("name", data.get("name", "")),
            arguments=arguments if isinstance(arguments, dict) else {},
        )

    @classmethod
    def coerce(cls, obj: Any) -> "ToolCall":
        """Accept a ToolCall, an OpenAI dict, or any object with id/name/arguments."""
        if isinstance(obj, ToolCall):
            return obj
        if isinstance(obj, dict):
            return cls.from_openai(obj)
        arguments = getattr(obj, "arguments", {}) or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError:
                arguments = {}
        return cls(id=obj.id, name=obj.name, arguments=arguments)


@dataclass
class ToolContext:
    """
    Session-scoped facts passed to every tool handler

    Attributes:
        tenant_id: Tenant owning the conversation (breaker/cache isolation key)
        conversation_id: Conversation (chat) identifier
        platform: Inbound platform name, if any
        timezone: IANA timezone of the business
        full_name: Customer name already known to the conversation
        phone_number: Customer phone already known to the conversation
        working_hours: Business hours payload, passed through untouched
        unmet_dependencies: Prerequisites that could not be resolved for this call
        extra: Any additional facts
    """
    tenant_id: str
    conversation_id: str
    platform: Optional[str] = None
    timezone: str = "UTC"
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    working_hours: Optional[Any] = None
    unmet_dependencies: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CachePolicy:
    """
    Caching rules for a read-only tool

    Attributes:
        ttl: Freshness window in seconds (None uses the engine default)
        key_fields: Argument names that distinguish cache entries
        defaults: Placeholder values for missing key fields
        key_builder: Custom key suffix builder, overrides key_fields
    """
    ttl: Optional[float] = None
    key_fields: Tuple[str, ...] = ()
    defaults: Dict[str, str] = field(default_factory=dict)
    key_builder: Optional[Callable[[Dict[str, Any], ToolContext], str]] = None


@dataclass
class InjectionRule:
    """
    When and how a prerequisite tool may be synthesized

    A rule only fires when every attribute in ``requires_state`` is set on
    the conversation state. Injection never guesses.
    """
    requires_state: Tuple[str, ...] = ()
    build_arguments: Optional[Callable[[Any], Dict[str, Any]]] = None

    def can_inject(self, state: Any) -> bool:
        for attr in self.requires_state:
            value = getattr(state, attr, None)
            if value is None or (isinstance(value, str) and not value.strip()):
                return False
        return True

    def arguments_for(self, state: Any) -> Dict[str, Any]:
        if self.build_arguments is None:
            return {}
        return self.build_arguments(state)


@dataclass
class ToolSpec:
    """
    Registered tool definition

    Attributes:
        name: Unique tool name
        handler: Async callable ``(arguments, context) -> payload``
        description: Description shown to reasoning backends
        argument_model: Pydantic model describing the arguments
        dependencies: Tools that must run in an earlier wave
        timeout: Timeout tier in seconds (None uses the executor default)
        cache_policy: Set for cacheable read-only tools
        injection: Set when this tool may be auto-injected as a prerequisite
        validators: Extra semantic checks run after structural validation
    """
    name: str
    handler: ToolHandler
    description: str = ""
    argument_model: Optional[Type[BaseModel]] = None
    dependencies: Tuple[str, ...] = ()
    timeout: Optional[float] = None
    cache_policy: Optional[CachePolicy] = None
    injection: Optional[InjectionRule] = None
    validators: Tuple[SemanticCheck, ...] = ()

    @property
    def cacheable(self) -> bool:
        return self.cache_policy is not None

    def parameters_schema(self) -> Dict[str, Any]:
        if self.argument_model is None:
            return {"type": "object", "properties": {}}
        schema = self.argument_model.model_json_schema()
        schema.pop("title", None)
        return schema

    def to_openai_schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema(),
            },
        }


@dataclass
class ParsedToolResult:
    """Outcome summary kept on the conversation state for the trust check."""
    name: str
    success: bool
    data: Any = None
    error: Optional[str] = None
    tool_call_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "tool_call_id": self.tool_call_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParsedToolResult":
        return cls(
            name=data["name"],
            success=data.get("success", False),
            data=data.get("data"),
            error=data.get("error"),
            tool_call_id=data.get("tool_call_id"),
        )


@dataclass
class ToolResult:
    """
    Result of a tool execution

    Attributes:
        tool_call_id: ID of the tool call this result is for
        name: Tool name
        content: JSON text placed on the tool-result message
        success: Whether execution succeeded
        data: Handler payload on success
        error_type: Tool-result error tag on failure
        execution_time_ms: Wall-clock time spent, including retries
        from_cache: True when served from the conversation cache
        injected: True when the call was synthesized by the resolver
    """
    tool_call_id: str
    name: str
    content: str
    success: bool = True
    data: Any = None
    error_type: Optional[str] = None
    execution_time_ms: int = 0
    from_cache: bool = False
    injected: bool = False

    @property
    def needs_selection(self) -> Optional[Dict[str, Any]]:
        if self.success and isinstance(self.data, dict):
            return self.data.get("needs_selection")
        return None

    def error_message(self) -> Optional[str]:
        if self.success:
            return None
        try:
            return json.loads(self.content).get("error")
        except (json.JSONDecodeError, AttributeError):
            return self.content

    def to_message(self) -> Dict[str, Any]:
        """Format as an OpenAI ``role=tool`` message"""
        return {
            "role": "tool",
            "tool_call_id": self.tool_call_id,
            "name": self.name,
            "content": self.content,
        }

    def to_parsed(self) -> ParsedToolResult:
        return ParsedToolResult(
            name=self.name,
            success=self.success,
            data=self.data if self.success else None,
            error=self.error_message(),
            tool_call_id=self.tool_call_id,
        )
