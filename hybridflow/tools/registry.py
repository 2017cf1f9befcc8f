"""
HybridFlow Tool Registry - Name to tool definition lookup

The registry is a static table: it holds handlers and their execution
policies (argument model, dependencies, timeout tier, cache policy,
injection rule) and carries no runtime state beyond registration.

Usage:
    from hybridflow.tools import ToolRegistry, BOOKING_TOOL_POLICIES

    registry = ToolRegistry(policies=BOOKING_TOOL_POLICIES)
    registry.register_handler("book_appointment", book_appointment)
    schemas = registry.tool_schemas()
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Type

from pydantic import BaseModel

from .models import (
    CachePolicy,
    InjectionRule,
    SemanticCheck,
    ToolHandler,
    ToolSpec,
)

logger = logging.getLogger(__name__)


@dataclass
class ToolPolicy:
    """Everything about a tool except its handler."""
    description: str = ""
    argument_model: Optional[Type[BaseModel]] = None
    dependencies: Tuple[str, ...] = ()
    timeout: Optional[float] = None
    cache_policy: Optional[CachePolicy] = None
    injection: Optional[InjectionRule] = None
    validators: Tuple[SemanticCheck, ...] = field(default_factory=tuple)

    def build(self, name: str, handler: ToolHandler, **overrides: Any) -> ToolSpec:
        spec = ToolSpec(
            name=name,
            handler=handler,
            description=self.description,
            argument_model=self.argument_model,
            dependencies=tuple(self.dependencies),
            timeout=self.timeout,
            cache_policy=self.cache_policy,
            injection=self.injection,
            validators=tuple(self.validators),
        )
        return replace(spec, **overrides) if overrides else spec


class ToolRegistry:
    """
    Registry of callable tools

    Example:
        registry = ToolRegistry()
        registry.register(ToolSpec(name="get_locations", handler=get_locations))
        spec = registry.get("get_locations")
    """

    def __init__(self, policies: Optional[Mapping[str, ToolPolicy]] = None):
        self._tools: Dict[str, ToolSpec] = {}
        self._policies: Dict[str, ToolPolicy] = dict(policies or {})

    def register(self, spec: ToolSpec) -> ToolSpec:
        """Register a fully specified tool. Duplicate names are rejected."""
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        for dep in spec.dependencies:
            if dep == spec.name:
                raise ValueError(f"Tool {spec.name} cannot depend on itself")
        self._tools[spec.name] = spec
        logger.debug(f"[ToolRegistry] Registered {spec.name} (deps={list(spec.dependencies)})")
        return spec

    def register_handler(self, name: str, handler: ToolHandler, **overrides: Any) -> ToolSpec:
        """Register a handler, applying the known policy for ``name`` if any."""
        policy = self._policies.get(name, ToolPolicy())
        return self.register(policy.build(name, handler, **overrides))

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def dependencies_of(self, name: str) -> Tuple[str, ...]:
        spec = self._tools.get(name)
        return spec.dependencies if spec else ()

    def injection_rule(self, name: str) -> Optional[InjectionRule]:
        spec = self._tools.get(name)
        return spec.injection if spec else None

    def timeout_for(self, name: str, default: float) -> float:
        spec = self._tools.get(name)
        if spec is None or spec.timeout is None:
            return default
        return spec.timeout

    def cache_policy(self, name: str) -> Optional[CachePolicy]:
        spec = self._tools.get(name)
        return spec.cache_policy if spec else None

    def tool_schemas(self) -> List[Dict[str, Any]]:
        """OpenAI function schemas for every registered tool"""
        return [spec.to_openai_schema() for spec in self._tools.values()]
