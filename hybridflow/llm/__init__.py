"""
HybridFlow LLM Module - Reasoning backends via litellm

Usage:
    from hybridflow.llm import LiteLLMClient, LLMConfig

    primary = LiteLLMClient(model="gemini-2.0-flash", provider_name="gemini")
    secondary = LiteLLMClient(config=LLMConfig(model="gpt-4o"), provider_name="openai")
"""

from .base import BaseLLMClient, LLMConfig, LLMResponse, StopReason, Usage
from .litellm_client import LiteLLMClient, build_litellm_model_string

__all__ = [
    "BaseLLMClient",
    "LLMConfig",
    "LLMResponse",
    "StopReason",
    "Usage",
    "LiteLLMClient",
    "build_litellm_model_string",
]
