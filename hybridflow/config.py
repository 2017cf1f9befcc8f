"""
HybridFlow Configuration - Tunables for the orchestration engine

This module defines:
- BreakerConfig: Circuit breaker thresholds and sweep cadence
- CacheConfig: Conversation cache defaults
- ExecutorConfig: Tool timeout/retry policy
- PruningConfig: Conversation history window
- RouterConfig: Turn router limits and fallback behaviour
- EngineConfig: Aggregate of all of the above
- load_config(): Read an EngineConfig from a YAML file

Usage:
    from hybridflow.config import load_config

    config = load_config("hybridflow.yaml")
    router = TurnRouter(primary=backend, registry=tools, config=config)
"""

import os
import re
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict

import yaml

from .constants import (
    DEFAULT_BREAKER_RETENTION,
    DEFAULT_CACHE_TTL,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_MAX_MESSAGES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RECOVERY_TIMEOUT,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_SUMMARY_TOPICS,
    DEFAULT_SWEEP_INTERVAL,
    DEFAULT_TOOL_TIMEOUT,
)


class DependencyPolicy(str, Enum):
    """What to do with a call whose declared prerequisite cannot be resolved."""
    REJECT = "reject"
    PROCEED = "proceed"


@dataclass
class BreakerConfig:
    """Circuit breaker configuration."""

    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    """Consecutive failures that open a breaker."""
    recovery_timeout: float = DEFAULT_RECOVERY_TIMEOUT
    """Seconds after the last failure before a probe is allowed."""
    retention: float = DEFAULT_BREAKER_RETENTION
    """Seconds an OPEN breaker may sit untouched before it is reclaimed."""
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL
    """Seconds between background idle-reclaim passes."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BreakerConfig":
        """Create from dictionary"""
        return cls(
            failure_threshold=data.get("failure_threshold", DEFAULT_FAILURE_THRESHOLD),
            recovery_timeout=data.get("recovery_timeout", DEFAULT_RECOVERY_TIMEOUT),
            retention=data.get("retention", DEFAULT_BREAKER_RETENTION),
            sweep_interval=data.get("sweep_interval", DEFAULT_SWEEP_INTERVAL),
        )


@dataclass
class CacheConfig:
    """Conversation cache configuration."""

    default_ttl: float = DEFAULT_CACHE_TTL
    """TTL for cacheable tools that do not declare their own."""
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL
    """Seconds between background reclaim passes for empty caches."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheConfig":
        """Create from dictionary"""
        return cls(
            default_ttl=data.get("default_ttl", DEFAULT_CACHE_TTL),
            sweep_interval=data.get("sweep_interval", DEFAULT_SWEEP_INTERVAL),
        )


@dataclass
class ExecutorConfig:
    """Tool execution configuration."""

    default_timeout: float = DEFAULT_TOOL_TIMEOUT
    """Timeout for tools that do not declare their own tier."""
    max_retries: int = DEFAULT_MAX_RETRIES
    """Retries after the first attempt for transient failures."""
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY
    """Backoff before retry n is ``retry_base_delay * n`` seconds."""
    unsatisfied_dependency_policy: DependencyPolicy = DependencyPolicy.REJECT
    """Whether a call with an unresolvable prerequisite is rejected or run anyway."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutorConfig":
        """Create from dictionary"""
        return cls(
            default_timeout=data.get("default_timeout", DEFAULT_TOOL_TIMEOUT),
            max_retries=data.get("max_retries", DEFAULT_MAX_RETRIES),
            retry_base_delay=data.get("retry_base_delay", DEFAULT_RETRY_BASE_DELAY),
            unsatisfied_dependency_policy=DependencyPolicy(
                data.get("unsatisfied_dependency_policy", DependencyPolicy.REJECT.value)
            ),
        )


@dataclass
class PruningConfig:
    """Conversation history window."""

    max_messages: int = DEFAULT_MAX_MESSAGES
    """Messages kept before the pairing closure is applied."""
    summary_topics: int = DEFAULT_SUMMARY_TOPICS
    """How many removed user messages are named in the summary."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PruningConfig":
        """Create from dictionary"""
        return cls(
            max_messages=data.get("max_messages", DEFAULT_MAX_MESSAGES),
            summary_topics=data.get("summary_topics", DEFAULT_SUMMARY_TOPICS),
        )


@dataclass
class RouterConfig:
    """Turn router configuration."""

    backend_max_retries: int = 2
    """Retries per backend invocation on transient backend errors."""
    backend_retry_base_delay: float = 1.0
    """Exponential backoff base for backend retries, in seconds."""
    backend_retry_max_delay: float = 5.0
    """Upper bound on a single backend retry delay."""
    selection_staleness: float = 30 * 60.0
    """Seconds a pending location/staff selection stays valid."""
    max_tool_rounds: int = 3
    """Execution rounds allowed per turn before the router gives up."""
    max_steps: int = 12
    """Hard cap on state machine steps per turn."""
    enforce_tool_usage: bool = True
    """Route to the fallback pass when a text reply ignores a tool-requiring intent."""
    hybrid_split: bool = True
    """When a secondary backend exists, hand tool execution to it."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RouterConfig":
        """Create from dictionary"""
        return cls(
            backend_max_retries=data.get("backend_max_retries", 2),
            backend_retry_base_delay=data.get("backend_retry_base_delay", 1.0),
            backend_retry_max_delay=data.get("backend_retry_max_delay", 5.0),
            selection_staleness=data.get("selection_staleness", 30 * 60.0),
            max_tool_rounds=data.get("max_tool_rounds", 3),
            max_steps=data.get("max_steps", 12),
            enforce_tool_usage=data.get("enforce_tool_usage", True),
            hybrid_split=data.get("hybrid_split", True),
        )


@dataclass
class EngineConfig:
    """
    Configuration for the whole engine.

    Attributes:
        breaker: Circuit breaker configuration
        cache: Conversation cache configuration
        executor: Tool execution configuration
        pruning: History window configuration
        router: Turn router configuration
    """
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    pruning: PruningConfig = field(default_factory=PruningConfig)
    router: RouterConfig = field(default_factory=RouterConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        data = asdict(self)
        data["executor"]["unsatisfied_dependency_policy"] = (
            self.executor.unsatisfied_dependency_policy.value
        )
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create from dictionary"""
        return cls(
            breaker=BreakerConfig.from_dict(data.get("breaker") or {}),
            cache=CacheConfig.from_dict(data.get("cache") or {}),
            executor=ExecutorConfig.from_dict(data.get("executor") or {}),
            pruning=PruningConfig.from_dict(data.get("pruning") or {}),
            router=RouterConfig.from_dict(data.get("router") or {}),
        )


def load_config(path: str) -> EngineConfig:
    """Read a YAML config file with ${VAR} environment variable substitution."""
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()

    def _replace_env(match):
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ValueError(
                f"Environment variable '{var_name}' not set "
                f"(referenced in config file '{path}')"
            )
        return value

    resolved = re.sub(r"\$\{(\w+)\}", _replace_env, raw)
    data = yaml.safe_load(resolved) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file '{path}' must contain a mapping")
    return EngineConfig.from_dict(data)
