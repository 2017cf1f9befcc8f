"""
HybridFlow LLM Client Base - Base class and common types for reasoning backends

This module provides:
- BaseLLMClient: Abstract base class for LLM-backed reasoning backends
- LLMConfig: Configuration dataclass
- LLMResponse: Standardized response format

Tool calls are returned as :class:`hybridflow.tools.models.ToolCall` so the
router can hand them straight to the dependency resolver.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..tools.models import ToolCall, ToolSpec

# Reasoning models that reject sampling params and use max_completion_tokens
_RESTRICTED_MODEL = re.compile(r"^(o1|o3|o4)(-|$)|^gpt-5", re.IGNORECASE)


class StopReason(str, Enum):
    """Reason why the LLM stopped generating"""
    END_TURN = "end_turn"           # Natural completion
    MAX_TOKENS = "max_tokens"       # Hit token limit
    STOP_SEQUENCE = "stop_sequence" # Hit stop sequence
    TOOL_USE = "tool_use"           # Model wants to use a tool
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


@dataclass
class LLMConfig:
    """
    Configuration for LLM clients.

    Attributes:
        api_key: API key for the provider
        model: Model name (e.g., "gpt-4o", "gemini-2.0-flash")
        base_url: Optional base URL override for API
        temperature: Sampling temperature (0.0 - 2.0)
        max_tokens: Maximum tokens in response
        top_p: Nucleus sampling parameter
        timeout: Request timeout in seconds
    """
    api_key: Optional[str] = None
    model: str = "gpt-4o"
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 4096
    top_p: float = 1.0
    timeout: int = 60

    # Cost tracking
    track_costs: bool = True

    # Extra provider-specific config (e.g., api_version for Azure)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary"""
        return {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
        }


@dataclass
class Usage:
    """Token usage information"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    # Cost in USD (if available)
    cost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cost": self.cost,
        }


@dataclass
class LLMResponse:
    """
    Standardized LLM response format.

    All backends return this format; the router only reads ``content`` and
    ``tool_calls``.
    """
    content: str
    tool_calls: Optional[List[ToolCall]] = None
    stop_reason: StopReason = StopReason.END_TURN
    usage: Optional[Usage] = None
    model: Optional[str] = None

    # Raw response for debugging
    raw_response: Optional[Any] = None

    @property
    def has_tool_calls(self) -> bool:
        """Check if response contains tool calls"""
        return self.tool_calls is not None and len(self.tool_calls) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "tool_calls": [
                {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                for tc in self.tool_calls
            ] if self.tool_calls else None,
            "stop_reason": self.stop_reason.value,
            "usage": self.usage.to_dict() if self.usage else None,
            "model": self.model,
        }


class BaseLLMClient(ABC):
    """
    Abstract base class for LLM clients.

    Implements ReasoningBackendProtocol; subclasses only implement
    ``_call_api``.

    Example:
        class MyClient(BaseLLMClient):
            async def _call_api(self, messages, tools, **kwargs):
                # Provider-specific implementation
                pass
    """

    # Provider name (override in subclasses)
    provider: str = "unknown"

    # Cost per 1K tokens (override in subclasses for cost tracking)
    # Format: {"model_name": {"input": cost, "output": cost}}
    PRICING: Dict[str, Dict[str, float]] = {}

    def __init__(self, config: Optional[LLMConfig] = None, **kwargs):
        """
        Initialize the client.

        Args:
            config: LLMConfig instance
            **kwargs: Override config values
        """
        if config is None:
            config = LLMConfig(**kwargs)
        else:
            for key, value in kwargs.items():
                if hasattr(config, key):
                    setattr(config, key, value)

        self.config = config

    @property
    def name(self) -> str:
        """Backend name used in logs and metrics"""
        return f"{self.provider}:{self.config.model}"

    @abstractmethod
    async def _call_api(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs
    ) -> LLMResponse:
        """
        Make the actual API call (provider-specific).

        Args:
            messages: List of message dicts
            tools: Optional list of tool schemas
            **kwargs: Additional provider-specific params

        Returns:
            LLMResponse with standardized format
        """
        pass

    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Any]] = None,
        config: Optional[Dict[str, Any]] = None,
        **kwargs
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            tools: Optional list of tools (OpenAI schema dicts or ToolSpec)
            config: Optional config overrides
            **kwargs: Additional parameters

        Returns:
            LLMResponse with content, tool_calls, usage, etc.
        """
        tool_schemas = None
        if tools:
            tool_schemas = [
                self._format_tool(tool) if isinstance(tool, ToolSpec) else tool
                for tool in tools
            ]

        merged_kwargs = {**kwargs}
        if config:
            merged_kwargs.update(config)

        response = await self._call_api(messages, tool_schemas, **merged_kwargs)

        if self.config.track_costs and response.usage and response.usage.cost is None:
            response.usage.cost = self._calculate_cost(response.usage, response.model)

        return response

    def _format_tool(self, tool: ToolSpec) -> Dict[str, Any]:
        """
        Format a ToolSpec to provider-specific schema.

        Default implementation uses OpenAI format.
        """
        return tool.to_openai_schema()

    def _is_restricted_model(self, model: Optional[str] = None) -> bool:
        return bool(_RESTRICTED_MODEL.search(model or self.config.model))

    def _model_params(self, model: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        """Sampling and length params accepted by ``model``"""
        max_tokens = kwargs.get("max_tokens", self.config.max_tokens)
        if self._is_restricted_model(model):
            return {"max_completion_tokens": max_tokens}
        return {
            "max_tokens": max_tokens,
            "temperature": kwargs.get("temperature", self.config.temperature),
            "top_p": kwargs.get("top_p", self.config.top_p),
        }

    def _calculate_cost(self, usage: Usage, model: Optional[str] = None) -> Optional[float]:
        """Calculate cost based on token usage"""
        model = model or self.config.model
        if model not in self.PRICING:
            return None

        pricing = self.PRICING[model]
        input_cost = (usage.prompt_tokens / 1000) * pricing.get("input", 0)
        output_cost = (usage.completion_tokens / 1000) * pricing.get("output", 0)
        return input_cost + output_cost
