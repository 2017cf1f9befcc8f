"""
HybridFlow LiteLLM Client - Reasoning backend powered by litellm

One client class covers every provider litellm supports, so the primary and
secondary reasoning backends of a TurnRouter can be any mix of:
- OpenAI (GPT-4o, o-series)
- Google Gemini
- Anthropic
- Azure OpenAI
- Ollama (local models)
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from ..tools.models import ToolCall
from .base import (
    BaseLLMClient,
    LLMConfig,
    LLMResponse,
    StopReason,
    Usage,
)

logger = logging.getLogger(__name__)

# Provider -> default environment variable for API key
_PROVIDER_ENV_VARS: Dict[str, Optional[str]] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_OPENAI_API_KEY",
    "gemini": "GOOGLE_API_KEY",
    "ollama": None,
}


def build_litellm_model_string(provider: str, model: str) -> str:
    """Map provider + model to the litellm model string.

    Args:
        provider: Provider name (openai, anthropic, azure, gemini, ollama).
        model: Raw model name (e.g. "gpt-4o", "gemini-2.0-flash").

    Returns:
        litellm-compatible model string.
    """
    provider = provider.lower()
    if provider == "openai":
        return model
    if provider in ("anthropic", "azure", "gemini", "ollama"):
        return f"{provider}/{model}"
    return model


class LiteLLMClient(BaseLLMClient):
    """
    Reasoning backend that delegates to ``litellm.acompletion``.

    Example:
        primary = LiteLLMClient(model="gemini-2.0-flash", provider_name="gemini")
        secondary = LiteLLMClient(model="gpt-4o", provider_name="openai")
        router = TurnRouter(primary, registry, secondary=secondary)
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        provider_name: str = "openai",
        **kwargs,
    ):
        """
        Initialize LiteLLMClient.

        Args:
            config: LLMConfig instance.
            provider_name: Provider name (openai, anthropic, azure, gemini, ollama).
            **kwargs: Overrides forwarded to BaseLLMClient / LLMConfig.
        """
        if config is None:
            if "model" not in kwargs:
                raise ValueError("model is required")
            model = kwargs.pop("model")
            config = LLMConfig(model=model, **kwargs)
            kwargs = {}

        super().__init__(config, **kwargs)

        self.provider = provider_name.lower()
        self._litellm_model = build_litellm_model_string(self.provider, self.config.model)

        # Explicit config > env var
        api_key = self.config.api_key
        if not api_key:
            env_var = _PROVIDER_ENV_VARS.get(self.provider)
            if env_var:
                api_key = os.environ.get(env_var)

        self._base_kwargs: Dict[str, Any] = {"timeout": self.config.timeout}
        if self.config.base_url:
            self._base_kwargs["api_base"] = self.config.base_url
        if api_key:
            self._base_kwargs["api_key"] = api_key
        self._base_kwargs.update(self.config.extra)

        logger.info(
            f"[LiteLLM] Client initialized: provider={self.provider}, "
            f"litellm_model={self._litellm_model}"
        )

    async def _call_api(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ) -> LLMResponse:
        """Make a non-streaming call via litellm.acompletion."""
        import litellm

        model = kwargs.get("model") or self._litellm_model
        params: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            **self._model_params(self.config.model, **kwargs),
            **self._base_kwargs,
        }

        if tools:
            params["tools"] = tools
            params["tool_choice"] = kwargs.get("tool_choice", "auto")

        if "stop" in kwargs:
            params["stop"] = kwargs["stop"]

        logger.info(
            f"[LiteLLM] model={model}, tools={len(tools) if tools else 0}, "
            f"messages={len(messages)}"
        )

        response = await litellm.acompletion(**params)

        choice = response.choices[0]
        message = choice.message

        tool_calls = None
        if getattr(message, "tool_calls", None):
            tool_calls = [self._parse_tool_call(tc) for tc in message.tool_calls]

        usage = None
        if getattr(response, "usage", None):
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        if usage and self.config.track_costs:
            try:
                usage.cost = litellm.completion_cost(completion_response=response)
            except Exception as e:
                logger.debug(f"[LiteLLM] Cost lookup failed for {model}: {e}")

        return LLMResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            stop_reason=self._parse_stop_reason(choice.finish_reason),
            usage=usage,
            model=getattr(response, "model", self.config.model),
            raw_response=response,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_tool_call(tc: Any) -> ToolCall:
        """Convert a litellm tool call; malformed JSON arguments become {}."""
        arguments = tc.function.arguments
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments else {}
            except json.JSONDecodeError:
                logger.warning(f"[LiteLLM] Malformed arguments for {tc.function.name}")
                arguments = {}
        return ToolCall(
            id=tc.id or "",
            name=tc.function.name,
            arguments=arguments if isinstance(arguments, dict) else {},
        )

    @staticmethod
    def _parse_stop_reason(finish_reason: Optional[str]) -> StopReason:
        """Map litellm/OpenAI finish_reason to StopReason enum."""
        if finish_reason is None:
            return StopReason.END_TURN
        mapping = {
            "stop": StopReason.END_TURN,
            "end_turn": StopReason.END_TURN,
            "length": StopReason.MAX_TOKENS,
            "max_tokens": StopReason.MAX_TOKENS,
            "tool_calls": StopReason.TOOL_USE,
            "tool_use": StopReason.TOOL_USE,
            "function_call": StopReason.TOOL_USE,
            "content_filter": StopReason.CONTENT_FILTER,
            "stop_sequence": StopReason.STOP_SEQUENCE,
        }
        return mapping.get(finish_reason, StopReason.END_TURN)
