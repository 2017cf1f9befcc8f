"""
HybridFlow Tool Executor - Run tool calls with full resilience controls

Per-call pipeline:
    validate -> cache lookup -> circuit breaker -> timeout -> retry -> cache write

Calls within a wave run concurrently; waves run strictly in sequence. Every
outcome, including rejections, becomes a ToolResult whose ``tool_call_id``
matches the requesting call, so results can always be paired back to the
assistant message that asked for them.
"""

import asyncio
import json
import logging
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..config import DependencyPolicy, ExecutorConfig
from ..errors import (
    AuthorizationError,
    DependencyUnsatisfiedError,
    ToolError,
    ToolTimeoutError,
    TransientExecutionError,
    ValidationError,
    error_type_of,
    is_retryable,
)
from ..metrics import NullMetricsSink, ToolExecutionEvent, safe_record
from ..protocols import MetricsSinkProtocol
from ..resilience.cache import ConversationCacheRegistry, derive_cache_key
from ..resilience.circuit_breaker import CircuitBreakerRegistry
from .models import ToolCall, ToolContext, ToolResult, ToolSpec
from .registry import ToolRegistry
from .validation import Validator

logger = logging.getLogger(__name__)


class ToolExecutor:
    """
    Executes waves of tool calls

    Usage:
        executor = ToolExecutor(registry, breakers, caches)
        results = await executor.execute_waves(resolution.waves, state.tool_context())
    """

    def __init__(
        self,
        registry: ToolRegistry,
        breakers: CircuitBreakerRegistry,
        caches: ConversationCacheRegistry,
        validator: Optional[Validator] = None,
        metrics: Optional[MetricsSinkProtocol] = None,
        config: Optional[ExecutorConfig] = None,
        default_cache_ttl: float = 60.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize ToolExecutor

        Args:
            registry: Tool definitions
            breakers: Per-(tenant, tool) circuit breakers
            caches: Per-(tenant, conversation) caches
            validator: Argument validator (defaults to one over ``registry``)
            metrics: Sink for per-call events
            config: Timeout/retry policy
            default_cache_ttl: TTL for cacheable tools without their own
            sleep: Backoff sleeper, replaceable in tests
        """
        self.registry = registry
        self.breakers = breakers
        self.caches = caches
        self.validator = validator or Validator(registry)
        self.metrics = metrics or NullMetricsSink()
        self.config = config or ExecutorConfig()
        self.default_cache_ttl = default_cache_ttl
        self._sleep = sleep

    # ==========================================================================
    # WAVES
    # ==========================================================================

    async def execute_waves(
        self,
        waves: Sequence[Sequence[ToolCall]],
        context: ToolContext,
    ) -> List[ToolResult]:
        """Run waves in order; results are returned in wave order."""
        results: List[ToolResult] = []
        for index, wave in enumerate(waves):
            if not wave:
                continue
            logger.info(
                f"[ToolExecutor] Wave {index + 1}/{len(waves)}: "
                f"{', '.join(call.name for call in wave)}"
            )
            results.extend(await self.execute_wave(wave, context))
        return results

    async def execute_wave(
        self,
        calls: Sequence[ToolCall],
        context: ToolContext,
    ) -> List[ToolResult]:
        """Run one wave concurrently, preserving input order."""
        return list(await asyncio.gather(*(self.execute_call(call, context) for call in calls)))

    # ==========================================================================
    # SINGLE CALL
    # ==========================================================================

    async def execute_call(self, call: ToolCall, context: ToolContext) -> ToolResult:
        """Run one call through the full pipeline. Never raises except on cancellation."""
        start = time.monotonic()
        from_cache = False
        try:
            payload, from_cache = await self._run_pipeline(call, context)
        except ToolError as e:
            if e.tool_name is None:
                e.tool_name = call.name
            result = self._error_result(call, e, start)
        except Exception as e:
            # Handler failures arrive as ToolError; anything else is a bug in the pipeline.
            logger.error(f"[ToolExecutor] {call.name} failed unexpectedly: {e}", exc_info=True)
            result = self._error_result(call, e, start)
        else:
            result = ToolResult(
                tool_call_id=call.id,
                name=call.name,
                content=self._serialize(payload),
                success=True,
                data=payload,
                execution_time_ms=self._elapsed_ms(start),
                from_cache=from_cache,
                injected=call.injected,
            )

        status = "ok" if result.success else f"error:{result.error_type}"
        logger.info(
            f"[ToolExecutor] {call.name} ({call.id}) {status} in {result.execution_time_ms}ms"
            f"{' [cache]' if result.from_cache else ''}"
        )
        safe_record(self.metrics.record_tool_execution, ToolExecutionEvent(
            tool_name=call.name,
            tenant_id=context.tenant_id,
            conversation_id=context.conversation_id,
            success=result.success,
            execution_time_ms=result.execution_time_ms,
            error_type=result.error_type,
            from_cache=result.from_cache,
            injected=call.injected,
        ))
        return result

    async def _run_pipeline(self, call: ToolCall, context: ToolContext):
        spec = self.registry.get(call.name)
        if spec is None:
            raise ValidationError(f"Unknown tool: {call.name}", call.name)

        arguments = self.validator.validate(call.name, call.arguments, context)

        unmet = list(call.metadata.get("unmet_dependencies") or [])
        if unmet:
            if self.config.unsatisfied_dependency_policy == DependencyPolicy.REJECT:
                raise DependencyUnsatisfiedError(call.name, unmet)
            logger.error(
                f"[ToolExecutor] Running {call.name} with unmet dependencies: {unmet}"
            )
            context = replace(context, unmet_dependencies=unmet)

        cache_key = None
        if spec.cache_policy is not None:
            cache = self.caches.get(context.tenant_id, context.conversation_id)
            cache_key = derive_cache_key(context.tenant_id, call.name, arguments, spec.cache_policy, context)
            hit, value = cache.lookup(cache_key)
            if hit:
                return value, True

        payload = await self._invoke_with_retry(spec, arguments, context)

        if cache_key is not None:
            ttl = spec.cache_policy.ttl if spec.cache_policy.ttl is not None else self.default_cache_ttl
            self.caches.get(context.tenant_id, context.conversation_id).set(cache_key, payload, ttl)

        return payload, False

    async def _invoke_with_retry(
        self,
        spec: ToolSpec,
        arguments: Dict[str, Any],
        context: ToolContext,
    ) -> Any:
        """Breaker-gated, time-bounded handler call with linear backoff retries."""
        timeout = self.registry.timeout_for(spec.name, self.config.default_timeout)
        attempts = self.config.max_retries + 1
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            # Looked up per attempt: a sweep may have reclaimed the breaker during backoff.
            breaker = self.breakers.get(context.tenant_id, spec.name)
            breaker.before_call()
            try:
                payload = await asyncio.wait_for(spec.handler(arguments, context), timeout=timeout)
            except asyncio.CancelledError:
                breaker.release_probe()
                raise
            except asyncio.TimeoutError:
                breaker.record_failure()
                last_error = ToolTimeoutError(spec.name, timeout)
            except (ValidationError, AuthorizationError):
                # Caller errors say nothing about tool health.
                breaker.release_probe()
                raise
            except PermissionError as e:
                breaker.release_probe()
                raise AuthorizationError(str(e) or type(e).__name__, spec.name) from e
            except Exception as e:
                breaker.record_failure()
                last_error = e
            else:
                breaker.record_success()
                return payload

            if not is_retryable(last_error) or attempt == attempts:
                break

            delay = self.config.retry_base_delay * attempt
            logger.warning(
                f"[ToolExecutor] {spec.name} attempt {attempt}/{attempts} failed "
                f"({last_error}), retrying in {delay}s"
            )
            await self._sleep(delay)

        logger.warning(f"[ToolExecutor] {spec.name} failed after {attempt}/{attempts} attempts: {last_error}")
        if isinstance(last_error, ToolError):
            raise last_error
        raise TransientExecutionError(str(last_error) or type(last_error).__name__, spec.name) from last_error

    # ==========================================================================
    # HELPERS
    # ==========================================================================

    def _error_result(self, call: ToolCall, error: BaseException, start: float) -> ToolResult:
        error_type = error_type_of(error)
        if isinstance(error, ToolError):
            message = error.message
        else:
            message = str(error) or type(error).__name__
        return ToolResult(
            tool_call_id=call.id,
            name=call.name,
            content=json.dumps({"error": message, "type": error_type}, ensure_ascii=False),
            success=False,
            error_type=error_type,
            execution_time_ms=self._elapsed_ms(start),
            injected=call.injected,
        )

    @staticmethod
    def _serialize(payload: Any) -> str:
        if isinstance(payload, str):
            return payload
        return json.dumps(payload, ensure_ascii=False, default=str)

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)
