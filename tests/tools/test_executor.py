"""Tests for hybridflow.tools.executor

Tests cover:
- Success, caching, and tool_call_id pairing
- Retry with linear backoff, non-retryable errors
- Timeout tiers
- Circuit breaker integration and tenant isolation
- Unsatisfied dependency policy
- Wave ordering
"""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from hybridflow.config import BreakerConfig, DependencyPolicy, ExecutorConfig
from hybridflow.errors import AuthorizationError
from hybridflow.metrics import InMemoryMetricsSink
from hybridflow.resilience.cache import ConversationCacheRegistry
from hybridflow.resilience.circuit_breaker import BreakerState, CircuitBreakerRegistry
from hybridflow.tools.catalog import BOOKING_TOOL_POLICIES
from hybridflow.tools.executor import ToolExecutor
from hybridflow.tools.models import ToolCall, ToolContext
from hybridflow.tools.registry import ToolRegistry


@pytest.fixture
def registry():
    return ToolRegistry(policies=BOOKING_TOOL_POLICIES)


@pytest.fixture
def breakers():
    return CircuitBreakerRegistry(BreakerConfig(failure_threshold=5))


@pytest.fixture
def caches():
    return ConversationCacheRegistry()


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def metrics():
    return InMemoryMetricsSink()


@pytest.fixture
def executor(registry, breakers, caches, sleep, metrics):
    return ToolExecutor(registry, breakers, caches, metrics=metrics, sleep=sleep)


@pytest.fixture
def ctx():
    return ToolContext(tenant_id="acme", conversation_id="conv-1")


def _call(name, call_id="call_1", **arguments):
    return ToolCall(id=call_id, name=name, arguments=arguments)


# =========================================================================
# Success path
# =========================================================================


class TestSuccess:

    @pytest.mark.asyncio
    async def test_result_pairs_with_call(self, executor, registry, ctx):
        handler = AsyncMock(return_value=[{"id": "loc1", "name": "Vake"}])
        registry.register_handler("get_locations", handler)

        result = await executor.execute_call(_call("get_locations", "call_abc"), ctx)

        assert result.success is True
        assert result.tool_call_id == "call_abc"
        assert result.name == "get_locations"
        assert result.data == [{"id": "loc1", "name": "Vake"}]
        assert '"Vake"' in result.content
        assert result.to_message()["role"] == "tool"
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_handler_receives_validated_arguments_and_context(self, executor, registry, ctx):
        handler = AsyncMock(return_value={"success": True})
        registry.register_handler("add_pet", handler)

        await executor.execute_call(_call("add_pet", pet_name="Rex", pet_type="dog"), ctx)

        args, context = handler.await_args.args
        assert args == {"pet_name": "Rex", "pet_type": "dog"}
        assert context.tenant_id == "acme"

    @pytest.mark.asyncio
    async def test_string_payload_kept_verbatim(self, executor, registry, ctx):
        registry.register_handler("custom_tool", AsyncMock(return_value="plain text"))
        result = await executor.execute_call(_call("custom_tool"), ctx)
        assert result.content == "plain text"

    @pytest.mark.asyncio
    async def test_emits_metric(self, executor, registry, metrics, ctx):
        registry.register_handler("get_locations", AsyncMock(return_value=[]))
        await executor.execute_call(_call("get_locations"), ctx)
        (event,) = metrics.tool_events
        assert event.tool_name == "get_locations"
        assert event.tenant_id == "acme"
        assert event.success is True


# =========================================================================
# Cache
# =========================================================================


class TestCaching:

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, executor, registry, ctx):
        handler = AsyncMock(return_value=[{"name": "Full Groom"}])
        registry.register_handler("get_service_list", handler)

        first = await executor.execute_call(_call("get_service_list", "c1"), ctx)
        second = await executor.execute_call(_call("get_service_list", "c2"), ctx)

        assert handler.await_count == 1
        assert first.from_cache is False
        assert second.from_cache is True
        assert second.tool_call_id == "c2"
        assert second.data == first.data

    @pytest.mark.asyncio
    async def test_default_key_field_matches_explicit(self, executor, registry, ctx):
        handler = AsyncMock(return_value=[])
        registry.register_handler("get_service_list", handler)

        await executor.execute_call(_call("get_service_list"), ctx)
        await executor.execute_call(_call("get_service_list", pet_type="all"), ctx)
        await executor.execute_call(_call("get_service_list", pet_type="cat"), ctx)

        assert handler.await_count == 2

    @pytest.mark.asyncio
    async def test_cache_is_per_conversation(self, executor, registry, ctx):
        handler = AsyncMock(return_value=[])
        registry.register_handler("get_locations", handler)

        await executor.execute_call(_call("get_locations"), ctx)
        other = ToolContext(tenant_id="acme", conversation_id="conv-2")
        await executor.execute_call(_call("get_locations"), other)

        assert handler.await_count == 2

    @pytest.mark.asyncio
    async def test_failures_not_cached(self, executor, registry, ctx):
        handler = AsyncMock(side_effect=[RuntimeError("down"), RuntimeError("down"), RuntimeError("down"), []])
        registry.register_handler("get_locations", handler)

        failed = await executor.execute_call(_call("get_locations"), ctx)
        succeeded = await executor.execute_call(_call("get_locations"), ctx)

        assert failed.success is False
        assert succeeded.success is True
        assert succeeded.from_cache is False

    @pytest.mark.asyncio
    async def test_non_cacheable_tool_always_runs(self, executor, registry, ctx):
        handler = AsyncMock(return_value={"success": True})
        registry.register_handler("add_pet", handler)
        for _ in range(2):
            await executor.execute_call(_call("add_pet", pet_name="Rex", pet_type="dog"), ctx)
        assert handler.await_count == 2


# =========================================================================
# Retry
# =========================================================================


class TestRetry:

    @pytest.mark.asyncio
    async def test_transient_failures_retried_with_linear_backoff(self, executor, registry, sleep, ctx):
        handler = AsyncMock(side_effect=[ConnectionError("reset"), ConnectionError("reset"), {"ok": True}])
        registry.register_handler("get_locations", handler)

        result = await executor.execute_call(_call("get_locations"), ctx)

        assert result.success is True
        assert handler.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, executor, registry, ctx):
        handler = AsyncMock(side_effect=RuntimeError("db down"))
        registry.register_handler("get_locations", handler)

        result = await executor.execute_call(_call("get_locations", "call_x"), ctx)

        assert result.success is False
        assert result.error_type == "tool_execution_error"
        assert result.tool_call_id == "call_x"
        assert result.error_message() == "db down"
        assert handler.await_count == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_logged_without_traceback(self, executor, registry, ctx, caplog):
        registry.register_handler("get_locations", AsyncMock(side_effect=RuntimeError("db down")))

        with caplog.at_level(logging.WARNING, logger="hybridflow.tools.executor"):
            await executor.execute_call(_call("get_locations"), ctx)

        records = [r for r in caplog.records if r.name == "hybridflow.tools.executor"]
        assert records
        assert all(r.levelno == logging.WARNING for r in records)
        assert all(r.exc_info is None for r in records)
        assert "failed after 3/3 attempts" in records[-1].getMessage()

    @pytest.mark.asyncio
    async def test_validation_failure_not_retried(self, executor, registry, sleep, ctx):
        handler = AsyncMock()
        registry.register_handler("book_appointment", handler)

        result = await executor.execute_call(_call("book_appointment", appointment_time="tomorrow at 3pm"), ctx)

        assert result.error_type == "validation_error"
        handler.assert_not_awaited()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [AuthorizationError("not allowed"), PermissionError("denied")])
    async def test_authorization_failure_not_retried(self, executor, registry, breakers, error, ctx):
        handler = AsyncMock(side_effect=error)
        registry.register_handler("get_customer_pets", handler)

        result = await executor.execute_call(_call("get_customer_pets"), ctx)

        assert result.error_type == "authorization_error"
        assert handler.await_count == 1
        assert breakers.get("acme", "get_customer_pets").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_unknown_tool(self, executor, ctx):
        result = await executor.execute_call(_call("teleport"), ctx)
        assert result.success is False
        assert result.error_type == "validation_error"

    @pytest.mark.asyncio
    async def test_zero_retries(self, registry, breakers, caches, sleep, ctx):
        executor = ToolExecutor(registry, breakers, caches, config=ExecutorConfig(max_retries=0), sleep=sleep)
        handler = AsyncMock(side_effect=RuntimeError("boom"))
        registry.register_handler("get_locations", handler)

        await executor.execute_call(_call("get_locations"), ctx)

        assert handler.await_count == 1
        sleep.assert_not_awaited()


# =========================================================================
# Timeout
# =========================================================================


class TestTimeout:

    @pytest.mark.asyncio
    async def test_handler_exceeding_tier_times_out(self, registry, breakers, caches, sleep, ctx):
        executor = ToolExecutor(registry, breakers, caches, config=ExecutorConfig(max_retries=1), sleep=sleep)

        async def slow(arguments, context):
            await asyncio.sleep(5)

        registry.register_handler("get_staff_list", slow, timeout=0.01)

        result = await executor.execute_call(_call("get_staff_list", service_name="Bath"), ctx)

        assert result.success is False
        assert result.error_type == "timeout_error"
        assert "timed out" in result.error_message()
        assert sleep.await_count == 1
        assert breakers.get("acme", "get_staff_list").consecutive_failures == 2


# =========================================================================
# Circuit breaker
# =========================================================================


class TestCircuitBreakerIntegration:

    @pytest.mark.asyncio
    async def test_sweep_during_call_keeps_failure_count(self, registry, caches, ctx):
        breakers = CircuitBreakerRegistry(BreakerConfig(failure_threshold=3))
        executor = ToolExecutor(
            registry, breakers, caches, config=ExecutorConfig(max_retries=0), sleep=AsyncMock()
        )

        async def handler(arguments, context):
            breakers.sweep()
            raise ConnectionError("reset")

        registry.register_handler("get_locations", handler)

        for i in range(3):
            result = await executor.execute_call(_call("get_locations", f"call_{i}"), ctx)
            assert result.error_type == "tool_execution_error"

        assert breakers.state_of("acme", "get_locations") == BreakerState.OPEN

    @pytest.mark.asyncio
    async def test_breaker_opens_and_rejects(self, executor, registry, breakers, ctx):
        handler = AsyncMock(side_effect=RuntimeError("upstream down"))
        registry.register_handler("book_appointment", handler)
        call = _call("book_appointment", appointment_time="tomorrow at 3pm", service_name="Bath")

        first = await executor.execute_call(call, ctx)
        assert first.error_type == "tool_execution_error"
        assert handler.await_count == 3

        second = await executor.execute_call(call, ctx)
        assert second.error_type == "circuit_breaker_error"
        assert handler.await_count == 5
        assert breakers.state_of("acme", "book_appointment") == BreakerState.OPEN

        third = await executor.execute_call(call, ctx)
        assert third.error_type == "circuit_breaker_error"
        assert "temporarily unavailable" in third.error_message()
        assert handler.await_count == 5

    @pytest.mark.asyncio
    async def test_other_tenant_unaffected(self, executor, registry, breakers, ctx):
        async def handler(arguments, context):
            if context.tenant_id == "acme":
                raise RuntimeError("acme backend down")
            return {"success": True}

        registry.register_handler("book_appointment", handler)
        call = _call("book_appointment", appointment_time="tomorrow at 3pm", service_name="Bath")

        for _ in range(2):
            await executor.execute_call(call, ctx)
        assert breakers.state_of("acme", "book_appointment") == BreakerState.OPEN

        globex = ToolContext(tenant_id="globex", conversation_id="conv-9")
        result = await executor.execute_call(call, globex)
        assert result.success is True
        assert breakers.state_of("globex", "book_appointment") == BreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_cache_hit_bypasses_open_breaker(self, executor, registry, breakers, ctx):
        handler = AsyncMock(return_value=[{"id": "loc1"}])
        registry.register_handler("get_locations", handler)
        await executor.execute_call(_call("get_locations"), ctx)

        breaker = breakers.get("acme", "get_locations")
        for _ in range(5):
            breaker.record_failure()

        result = await executor.execute_call(_call("get_locations"), ctx)
        assert result.success is True
        assert result.from_cache is True


# =========================================================================
# Dependencies
# =========================================================================


class TestUnsatisfiedDependencies:

    @pytest.mark.asyncio
    async def test_reject_policy(self, executor, registry, ctx):
        handler = AsyncMock()
        registry.register_handler("cancel_appointment", handler)
        call = _call("cancel_appointment", appointment_id="a1")
        call.metadata["unmet_dependencies"] = ["get_customer_appointments"]

        result = await executor.execute_call(call, ctx)

        assert result.error_type == "dependency_error"
        assert "get_customer_appointments" in result.error_message()
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_proceed_policy(self, registry, breakers, caches, ctx):
        executor = ToolExecutor(
            registry, breakers, caches,
            config=ExecutorConfig(unsatisfied_dependency_policy=DependencyPolicy.PROCEED),
        )
        handler = AsyncMock(return_value={"success": True})
        registry.register_handler("cancel_appointment", handler)
        call = _call("cancel_appointment", appointment_id="a1")
        call.metadata["unmet_dependencies"] = ["get_customer_appointments"]

        result = await executor.execute_call(call, ctx)

        assert result.success is True
        _, context = handler.await_args.args
        assert context.unmet_dependencies == ["get_customer_appointments"]
        assert ctx.unmet_dependencies == []


# =========================================================================
# Waves
# =========================================================================


class TestWaves:

    @pytest.mark.asyncio
    async def test_waves_run_in_sequence(self, executor, registry, ctx):
        events = []

        def tracked(name):
            async def handler(arguments, context):
                events.append(f"start:{name}")
                await asyncio.sleep(0)
                events.append(f"end:{name}")
                return {"name": name}
            return handler

        for name in ("get_locations", "get_customer_pets", "get_customer_appointments"):
            registry.register_handler(name, tracked(name))

        waves = [
            [_call("get_locations", "c1"), _call("get_customer_pets", "c2")],
            [_call("get_customer_appointments", "c3")],
        ]
        results = await executor.execute_waves(waves, ctx)

        assert [r.tool_call_id for r in results] == ["c1", "c2", "c3"]
        assert events.index("start:get_customer_appointments") > events.index("end:get_locations")
        assert events.index("start:get_customer_appointments") > events.index("end:get_customer_pets")

    @pytest.mark.asyncio
    async def test_wave_is_concurrent(self, executor, registry, ctx):
        events = []

        def tracked(name):
            async def handler(arguments, context):
                events.append(f"start:{name}")
                await asyncio.sleep(0)
                events.append(f"end:{name}")
                return {}
            return handler

        registry.register_handler("get_locations", tracked("a"))
        registry.register_handler("get_customer_pets", tracked("b"))

        await executor.execute_wave([_call("get_locations", "c1"), _call("get_customer_pets", "c2")], ctx)

        assert events.index("start:b") < events.index("end:a")

    @pytest.mark.asyncio
    async def test_failure_does_not_abort_wave(self, executor, registry, ctx):
        registry.register_handler("get_locations", AsyncMock(side_effect=RuntimeError("down")))
        registry.register_handler("get_customer_pets", AsyncMock(return_value=[]))

        results = await executor.execute_waves(
            [[_call("get_locations", "c1"), _call("get_customer_pets", "c2")]], ctx
        )

        assert [r.success for r in results] == [False, True]

    @pytest.mark.asyncio
    async def test_empty_waves_skipped(self, executor, ctx):
        assert await executor.execute_waves([[], []], ctx) == []
