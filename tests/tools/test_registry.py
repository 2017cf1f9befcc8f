"""Tests for hybridflow.tools.registry"""

from unittest.mock import AsyncMock

import pytest

from hybridflow.tools.catalog import (
    BOOKING_TOOL_POLICIES,
    SLOW_TIMEOUT,
    STAFF_LOOKUP_TIMEOUT,
    AddPetArgs,
)
from hybridflow.tools.models import CachePolicy, ToolSpec
from hybridflow.tools.registry import ToolPolicy, ToolRegistry


@pytest.fixture
def registry():
    return ToolRegistry(policies=BOOKING_TOOL_POLICIES)


class TestRegister:

    def test_register_and_get(self):
        registry = ToolRegistry()
        spec = registry.register(ToolSpec(name="get_locations", handler=AsyncMock()))
        assert registry.get("get_locations") is spec
        assert "get_locations" in registry
        assert len(registry) == 1
        assert registry.names() == ["get_locations"]

    def test_duplicate_rejected(self):
        registry = ToolRegistry()
        registry.register(ToolSpec(name="get_locations", handler=AsyncMock()))
        with pytest.raises(ValueError, match="already registered"):
            registry.register(ToolSpec(name="get_locations", handler=AsyncMock()))

    def test_self_dependency_rejected(self):
        registry = ToolRegistry()
        with pytest.raises(ValueError, match="itself"):
            registry.register(ToolSpec(name="loop", handler=AsyncMock(), dependencies=("loop",)))

    def test_unregister(self):
        registry = ToolRegistry()
        registry.register(ToolSpec(name="a", handler=AsyncMock()))
        registry.unregister("a")
        registry.unregister("a")
        assert registry.get("a") is None

    def test_iteration_yields_specs(self):
        registry = ToolRegistry()
        registry.register(ToolSpec(name="a", handler=AsyncMock()))
        registry.register(ToolSpec(name="b", handler=AsyncMock()))
        assert [spec.name for spec in registry] == ["a", "b"]


class TestRegisterHandler:

    def test_applies_catalog_policy(self, registry):
        spec = registry.register_handler("reschedule_appointment", AsyncMock())
        assert spec.dependencies == ("get_customer_appointments",)
        assert spec.timeout == SLOW_TIMEOUT
        assert spec.validators

    def test_unknown_name_gets_empty_policy(self, registry):
        spec = registry.register_handler("custom_tool", AsyncMock())
        assert spec.dependencies == ()
        assert spec.timeout is None
        assert spec.cache_policy is None

    def test_overrides(self, registry):
        spec = registry.register_handler("get_staff_list", AsyncMock(), timeout=1.0)
        assert spec.timeout == 1.0
        assert spec.cache_policy is not None

    def test_policy_build(self):
        policy = ToolPolicy(description="List pets", cache_policy=CachePolicy(ttl=300))
        spec = policy.build("get_customer_pets", AsyncMock())
        assert spec.name == "get_customer_pets"
        assert spec.cacheable is True


class TestLookups:

    def test_timeout_tiers(self, registry):
        registry.register_handler("get_staff_list", AsyncMock())
        registry.register_handler("custom_tool", AsyncMock())
        assert registry.timeout_for("get_staff_list", 15.0) == STAFF_LOOKUP_TIMEOUT
        assert registry.timeout_for("custom_tool", 15.0) == 15.0
        assert registry.timeout_for("missing", 7.0) == 7.0

    def test_dependencies_of_unknown_tool(self, registry):
        assert registry.dependencies_of("missing") == ()

    def test_injection_rule(self, registry):
        registry.register_handler("get_customer_appointments", AsyncMock())
        registry.register_handler("get_customer_phone_number", AsyncMock())
        assert registry.injection_rule("get_customer_appointments") is not None
        assert registry.injection_rule("get_customer_phone_number") is None

    def test_cache_policy(self, registry):
        registry.register_handler("get_service_list", AsyncMock())
        policy = registry.cache_policy("get_service_list")
        assert policy.ttl == 300.0
        assert policy.key_fields == ("pet_type",)
        assert registry.cache_policy("missing") is None


class TestToolSchemas:

    def test_schema_from_argument_model(self, registry):
        registry.register_handler("add_pet", AsyncMock())
        (schema,) = registry.tool_schemas()
        assert schema["type"] == "function"
        function = schema["function"]
        assert function["name"] == "add_pet"
        assert "pet_name" in function["parameters"]["properties"]
        assert set(function["parameters"]["required"]) == {"pet_name", "pet_type"}
        assert "title" not in function["parameters"]

    def test_schema_without_model(self, registry):
        registry.register_handler("get_locations", AsyncMock())
        (schema,) = registry.tool_schemas()
        assert schema["function"]["parameters"] == {"type": "object", "properties": {}}

    def test_schema_matches_pydantic(self):
        spec = ToolSpec(name="add_pet", handler=AsyncMock(), argument_model=AddPetArgs)
        expected = AddPetArgs.model_json_schema()
        assert spec.parameters_schema()["properties"] == expected["properties"]
