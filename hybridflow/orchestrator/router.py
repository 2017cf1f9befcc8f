"""
HybridFlow Turn Router - Hybrid reasoning/execution state machine

Each inbound message is one turn:

    REASONING -> EXECUTING -> FINALIZING -> END
    REASONING -> FALLBACK_REASONING -> EXECUTING -> FINALIZING -> END

The primary backend reasons and writes the final reply. A secondary backend
(when configured) takes over for execution-oriented passes: tool calls the
primary proposes are handed to it (hybrid split), and it re-reasons when the
primary errors, ignores a tool-requiring request, or claims an action that
no tool confirmed. Without a secondary, the primary re-reasons under a
corrective note.

Decisions are made by the pure ``transition()`` function; ``TurnRouter``
performs the side effects (backend calls, tool execution, state updates).
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..audit_logger import AuditLogger
from ..config import EngineConfig
from ..constants import (
    EMPTY_AFTER_TOOLS_APOLOGY,
    EMPTY_RESPONSE_APOLOGY,
    FORCED_CALL_PREFIX,
    GENERIC_APOLOGY,
    MAX_TOOL_CALL_ID_LENGTH,
    UNVERIFIED_ACTION_APOLOGY,
)
from ..errors import BackendError, HallucinatedConfirmationError
from ..metrics import CompositeMetricsSink, ReasoningPassEvent, safe_record
from ..protocols import MetricsSinkProtocol, ReasoningBackendProtocol
from ..resilience.cache import ConversationCacheRegistry
from ..resilience.circuit_breaker import CircuitBreakerRegistry
from ..tools.catalog import ACTION_TOOLS, BOOKING_FOLLOW_UPS, FollowUpRule
from ..tools.executor import ToolExecutor
from ..tools.models import ToolCall, ToolResult
from ..tools.registry import ToolRegistry
from .confirmation import (
    ConfirmationClaimDetector,
    RegexConfirmationClaimDetector,
    RegexToolIntentDetector,
    ToolIntentDetector,
)
from .dependency_resolver import DependencyResolver, to_base36
from .models import (
    Observation,
    ObservationKind,
    RouterState,
    Transition,
    TransitionReason,
    TrustVerdict,
    TurnResult,
)
from .prompts import build_system_prompt
from .pruning import prune_messages, repair_tool_pairing
from .state import ActiveProvider, ConversationState

logger = logging.getLogger(__name__)

# Backend errors that another attempt cannot fix
_NON_RETRYABLE_BACKEND_ERRORS = ("auth", "permission", "invalidargument", "badrequest", "notfound")


# =============================================================================
# TRANSITION FUNCTION
# =============================================================================

def _after_text(obs: Observation) -> Transition:
    if obs.trust == TrustVerdict.UNCONFIRMED_CLAIM:
        if not obs.fallback_used:
            return Transition(RouterState.FALLBACK_REASONING, TransitionReason.UNCONFIRMED_CLAIM)
        return Transition(RouterState.END, TransitionReason.REPLY_BLOCKED)
    if obs.trust == TrustVerdict.MISSED_TOOL and obs.secondary_available and not obs.fallback_used:
        return Transition(RouterState.FALLBACK_REASONING, TransitionReason.MISSED_TOOL_INTENT)
    return Transition(RouterState.END, TransitionReason.REPLY_ACCEPTED)


def _after_tool_calls(obs: Observation) -> Transition:
    if obs.tool_rounds_exhausted:
        return Transition(RouterState.END, TransitionReason.TOOL_ROUNDS_EXHAUSTED)
    if obs.hybrid_split:
        return Transition(RouterState.FALLBACK_REASONING, TransitionReason.HYBRID_HANDOFF)
    return Transition(RouterState.EXECUTING, TransitionReason.TOOL_CALLS_REQUESTED)


def transition(state: RouterState, obs: Observation) -> Transition:
    """
    Decide the next router state

    Args:
        state: Current router state
        obs: What running ``state`` produced

    Returns:
        Transition to the next state

    Raises:
        ValueError: ``state`` is END, or ``obs`` cannot occur in ``state``
    """
    kind = obs.kind

    if state == RouterState.REASONING or state == RouterState.FINALIZING:
        if kind == ObservationKind.TOOL_CALLS:
            return _after_tool_calls(obs)
        if kind == ObservationKind.TEXT:
            return _after_text(obs)
        if kind == ObservationKind.EMPTY:
            return Transition(RouterState.END, TransitionReason.EMPTY_RESPONSE)
        if kind == ObservationKind.ERROR:
            if obs.secondary_available and not obs.fallback_used:
                return Transition(RouterState.FALLBACK_REASONING, TransitionReason.BACKEND_ERROR)
            return Transition(RouterState.END, TransitionReason.UNRECOVERABLE)

    elif state == RouterState.FALLBACK_REASONING:
        if kind == ObservationKind.TOOL_CALLS:
            if obs.tool_rounds_exhausted:
                return Transition(RouterState.END, TransitionReason.TOOL_ROUNDS_EXHAUSTED)
            return Transition(RouterState.EXECUTING, TransitionReason.TOOL_CALLS_REQUESTED)
        if kind == ObservationKind.TEXT:
            return _after_text(obs)
        if kind == ObservationKind.EMPTY:
            return Transition(RouterState.END, TransitionReason.EMPTY_RESPONSE)
        if kind == ObservationKind.ERROR:
            return Transition(RouterState.END, TransitionReason.UNRECOVERABLE)

    elif state == RouterState.EXECUTING:
        if kind == ObservationKind.TOOLS_EXECUTED:
            return Transition(RouterState.FINALIZING, TransitionReason.TOOLS_EXECUTED)
        if kind == ObservationKind.FOLLOW_UP_REQUIRED:
            return Transition(RouterState.EXECUTING, TransitionReason.FOLLOW_UP_REQUIRED)
        if kind == ObservationKind.ERROR:
            return Transition(RouterState.END, TransitionReason.UNRECOVERABLE)

    elif state == RouterState.END:
        raise ValueError("END is terminal")

    raise ValueError(f"Observation {kind.value} cannot occur in state {state.value}")


# =============================================================================
# TURN ROUTER
# =============================================================================

@dataclass
class _Turn:
    """Mutable bookkeeping for one turn"""
    user_message: str
    path: List[RouterState] = field(default_factory=list)
    results: List[ToolResult] = field(default_factory=list)
    pending: List[ToolCall] = field(default_factory=list)
    pending_content: Optional[str] = None
    follow_ups: List[ToolCall] = field(default_factory=list)
    reason: Optional[TransitionReason] = None
    draft: Optional[str] = None
    provider: Optional[str] = None
    fallback_used: bool = False
    tool_rounds: int = 0
    error_type: Optional[str] = None


class TurnRouter:
    """
    Runs conversation turns through the hybrid state machine

    Usage:
        router = TurnRouter(primary, registry, secondary=executor_backend)
        await router.start()
        result = await router.handle_turn(state, "Can I book a grooming tomorrow at 3pm?")
        await router.shutdown()
    """

    def __init__(
        self,
        primary: ReasoningBackendProtocol,
        registry: ToolRegistry,
        secondary: Optional[ReasoningBackendProtocol] = None,
        config: Optional[EngineConfig] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        caches: Optional[ConversationCacheRegistry] = None,
        metrics: Optional[MetricsSinkProtocol] = None,
        confirmation_detector: Optional[ConfirmationClaimDetector] = None,
        intent_detector: Optional[ToolIntentDetector] = None,
        audit: Optional[AuditLogger] = None,
        follow_ups: Sequence[FollowUpRule] = BOOKING_FOLLOW_UPS,
        confirming_tools: Iterable[str] = ACTION_TOOLS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize TurnRouter

        Args:
            primary: Backend that reasons and writes final replies
            registry: Registered tools
            secondary: Backend for execution passes and fallback
            config: Engine configuration
            breakers: Shared circuit breaker registry
            caches: Shared conversation cache registry
            metrics: Extra metrics sink (the audit logger always receives events)
            confirmation_detector: Classifies completion claims in replies
            intent_detector: Classifies tool-requiring user messages
            audit: Structured audit logger
            follow_ups: Rules that force follow-up tool calls
            confirming_tools: Tools whose success can confirm an action claim;
                empty means any successful tool counts
            clock: Wall-clock time source
            sleep: Backoff sleeper, replaceable in tests
        """
        self.primary = primary
        self.secondary = secondary
        self.registry = registry
        self.config = config or EngineConfig()
        self.breakers = breakers or CircuitBreakerRegistry(self.config.breaker)
        self.caches = caches or ConversationCacheRegistry(self.config.cache)
        self.audit = audit or AuditLogger()
        sinks: List[MetricsSinkProtocol] = [self.audit]
        if metrics is not None:
            sinks.append(metrics)
        self.metrics = CompositeMetricsSink(sinks)
        self.confirmation_detector = confirmation_detector or RegexConfirmationClaimDetector()
        self.intent_detector = intent_detector or RegexToolIntentDetector()
        self.follow_ups = tuple(follow_ups)
        self.confirming_tools = frozenset(confirming_tools)
        self._clock = clock
        self._sleep = sleep

        self.resolver = DependencyResolver(registry, clock=clock)
        self.executor = ToolExecutor(
            registry,
            self.breakers,
            self.caches,
            metrics=self.metrics,
            config=self.config.executor,
            default_cache_ttl=self.config.cache.default_ttl,
            sleep=sleep,
        )

        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._lock_users: Dict[Tuple[str, str], int] = {}
        self._forced_counter = itertools.count(1)

    @property
    def hybrid_split(self) -> bool:
        return self.secondary is not None and self.config.router.hybrid_split

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    async def start(self) -> None:
        """Start the idle-reclaim sweepers of the breaker and cache registries."""
        await self.breakers.start()
        await self.caches.start()
        logger.info(
            f"[TurnRouter] Started (primary={self.primary.name}, "
            f"secondary={self.secondary.name if self.secondary else None}, "
            f"tools={len(self.registry)})"
        )

    async def shutdown(self) -> None:
        await self.breakers.shutdown()
        await self.caches.shutdown()
        logger.info("[TurnRouter] Shutdown complete")

    def sweep(self) -> Dict[str, int]:
        """Run one idle-reclaim pass over breakers and caches."""
        return {
            "breakers_removed": self.breakers.sweep(),
            "caches_removed": self.caches.sweep(),
        }

    # ==========================================================================
    # TURN HANDLING
    # ==========================================================================

    async def handle_turn(self, state: ConversationState, user_message: str) -> TurnResult:
        """
        Process one inbound message

        Turns of the same conversation are serialized; different
        conversations run concurrently. The returned reply has already
        been appended to ``state.messages``. A conversation's lock is
        dropped once no turn holds or awaits it.
        """
        key = (state.tenant_id, state.conversation_id)
        lock = self._acquire_lock(key)
        try:
            async with lock:
                return await self._run_turn(state, user_message)
        finally:
            self._release_lock(key)

    def _acquire_lock(self, key: Tuple[str, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        return lock

    def _release_lock(self, key: Tuple[str, str]) -> None:
        remaining = self._lock_users.get(key, 0) - 1
        if remaining > 0:
            self._lock_users[key] = remaining
            return
        self._lock_users.pop(key, None)
        self._locks.pop(key, None)

    async def _run_turn(self, state: ConversationState, user_message: str) -> TurnResult:
        turn = _Turn(user_message=user_message or "")
        if user_message:
            state.append({"role": "user", "content": user_message})
        state.last_tool_results = []
        state.pending_tool_calls = []
        state.assistant_message = None
        state.error = None
        state.active_provider = ActiveProvider.REASONING

        current = RouterState.REASONING
        steps = 0
        while current != RouterState.END:
            steps += 1
            if steps > self.config.router.max_steps:
                logger.error(
                    f"[TurnRouter] {state.tenant_id}:{state.conversation_id} exceeded "
                    f"{self.config.router.max_steps} steps, ending turn"
                )
                turn.reason = TransitionReason.UNRECOVERABLE
                turn.error_type = turn.error_type or "max_steps_exceeded"
                break

            turn.path.append(current)
            obs = await self._step(current, state, turn)
            move = transition(current, obs)
            logger.info(
                f"[TurnRouter] {current.value} -> {move.next_state.value} ({move.reason.value})"
            )
            self.audit.log_transition(
                current.value,
                move.next_state.value,
                move.reason.value,
                tenant_id=state.tenant_id,
                conversation_id=state.conversation_id,
            )
            turn.reason = move.reason
            current = move.next_state

        turn.path.append(RouterState.END)
        result = self._finish(state, turn)
        self.audit.log_turn(
            [s.value for s in result.path],
            [r.name for r in result.tool_results],
            result.reply_blocked,
            tenant_id=state.tenant_id,
            conversation_id=state.conversation_id,
        )
        return result

    async def _step(self, current: RouterState, state: ConversationState, turn: _Turn) -> Observation:
        if current == RouterState.REASONING:
            state.active_provider = ActiveProvider.REASONING
            return await self._reason(self.primary, state, turn)

        if current == RouterState.FALLBACK_REASONING:
            if turn.reason == TransitionReason.HYBRID_HANDOFF:
                # Secondary takes ownership of the primary's tool calls
                state.active_provider = ActiveProvider.EXECUTION_AGENT
                logger.info(
                    f"[TurnRouter] Handing {len(turn.pending)} tool call(s) to "
                    f"{self.secondary.name if self.secondary else 'executor'}"
                )
                return self._observe(turn, ObservationKind.TOOL_CALLS)
            turn.fallback_used = True
            state.active_provider = ActiveProvider.FALLBACK
            backend = self.secondary or self.primary
            corrective = {
                TransitionReason.UNCONFIRMED_CLAIM: TrustVerdict.UNCONFIRMED_CLAIM,
                TransitionReason.MISSED_TOOL_INTENT: TrustVerdict.MISSED_TOOL,
            }.get(turn.reason)
            logger.warning(
                f"[TurnRouter] Fallback pass on {backend.name} "
                f"({turn.reason.value if turn.reason else 'unknown'})"
            )
            return await self._reason(backend, state, turn, corrective=corrective)

        if current == RouterState.EXECUTING:
            return await self._execute(state, turn)

        if current == RouterState.FINALIZING:
            state.active_provider = ActiveProvider.REASONING
            return await self._reason(self.primary, state, turn)

        raise ValueError(f"Cannot run state {current.value}")

    def _observe(
        self,
        turn: _Turn,
        kind: ObservationKind,
        trust: TrustVerdict = TrustVerdict.TRUSTED,
    ) -> Observation:
        return Observation(
            kind=kind,
            trust=trust,
            secondary_available=self.secondary is not None,
            fallback_used=turn.fallback_used,
            hybrid_split=self.hybrid_split,
            tool_rounds_exhausted=turn.tool_rounds >= self.config.router.max_tool_rounds,
        )

    # ==========================================================================
    # REASONING
    # ==========================================================================

    async def _reason(
        self,
        backend: ReasoningBackendProtocol,
        state: ConversationState,
        turn: _Turn,
        corrective: Optional[TrustVerdict] = None,
    ) -> Observation:
        messages = self._build_messages(state, corrective)
        tools = self.registry.tool_schemas() or None
        start = time.monotonic()
        try:
            response = await self._invoke_backend(backend, messages, tools)
        except BackendError as e:
            logger.error(f"[TurnRouter] {e}")
            self._record_pass(state, backend, messages, 0, start, success=False, error=str(e.cause))
            turn.error_type = "backend_error"
            state.error = {"type": "backend_error", "provider": e.provider, "message": str(e.cause)}
            return self._observe(turn, ObservationKind.ERROR)

        raw_calls = getattr(response, "tool_calls", None) or []
        self._record_pass(state, backend, messages, len(raw_calls), start, success=True)
        content = (getattr(response, "content", None) or "").strip()

        if raw_calls:
            turn.pending = [self._normalize_call(c) for c in raw_calls]
            turn.pending_content = content or None
            turn.provider = backend.name
            logger.info(
                f"[TurnRouter] {backend.name} requested tools: "
                f"{', '.join(c.name for c in turn.pending)}"
            )
            return self._observe(turn, ObservationKind.TOOL_CALLS)

        if not content:
            logger.warning(f"[TurnRouter] {backend.name} returned an empty response")
            return self._observe(turn, ObservationKind.EMPTY)

        turn.draft = content
        turn.provider = backend.name
        try:
            self._check_claims(backend.name, content, turn)
        except HallucinatedConfirmationError as e:
            logger.error(f"[TurnRouter] {e}")
            return self._observe(turn, ObservationKind.TEXT, TrustVerdict.UNCONFIRMED_CLAIM)

        if self._missed_tool(turn):
            logger.warning(
                f"[TurnRouter] {backend.name} answered a tool-requiring request without tools"
            )
            return self._observe(turn, ObservationKind.TEXT, TrustVerdict.MISSED_TOOL)
        return self._observe(turn, ObservationKind.TEXT)

    async def _invoke_backend(
        self,
        backend: ReasoningBackendProtocol,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
    ) -> Any:
        """Call a backend with bounded exponential backoff; raise BackendError when exhausted."""
        cfg = self.config.router
        attempts = cfg.backend_max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await backend.chat_completion(messages=messages, tools=tools)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error_name = type(e).__name__.lower()
                if any(tag in error_name for tag in _NON_RETRYABLE_BACKEND_ERRORS):
                    raise BackendError(backend.name, e) from e
                if attempt >= attempts:
                    raise BackendError(backend.name, e) from e
                delay = min(cfg.backend_retry_base_delay * (2 ** (attempt - 1)), cfg.backend_retry_max_delay)
                logger.warning(
                    f"[TurnRouter] {backend.name} failed ({type(e).__name__}: {e}), "
                    f"retrying in {delay}s (attempt {attempt}/{attempts})"
                )
                await self._sleep(delay)
        raise BackendError(backend.name, RuntimeError("no attempts made"))

    def _build_messages(
        self,
        state: ConversationState,
        corrective: Optional[TrustVerdict] = None,
    ) -> List[Dict[str, Any]]:
        """Pruned, pairing-safe history behind a freshly built system prompt"""
        now = self._clock()
        pruned = prune_messages(
            state.messages,
            self.config.pruning.max_messages,
            self.config.pruning.summary_topics,
        )
        history = repair_tool_pairing(pruned.messages)
        selection = state.active_selection(now, self.config.router.selection_staleness)
        system_prompt = build_system_prompt(
            state,
            now=now,
            selection=selection,
            summary=pruned.summary,
            corrective=corrective,
        )
        return [{"role": "system", "content": system_prompt}] + history

    def _record_pass(
        self,
        state: ConversationState,
        backend: ReasoningBackendProtocol,
        messages: List[Dict[str, Any]],
        tool_call_count: int,
        start: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        safe_record(self.metrics.record_reasoning_pass, ReasoningPassEvent(
            tenant_id=state.tenant_id,
            conversation_id=state.conversation_id,
            message_count=len(messages),
            tool_call_count=tool_call_count,
            execution_time_ms=int((time.monotonic() - start) * 1000),
            success=success,
            provider=backend.name,
            error_message=error,
        ))

    def _normalize_call(self, raw: Any) -> ToolCall:
        call = ToolCall.coerce(raw)
        if not call.id:
            call.id = f"call_{to_base36(int(self._clock() * 1000))}_{next(self._forced_counter)}"
        return call

    # ==========================================================================
    # TRUST CHECK
    # ==========================================================================

    def _check_claims(self, provider: str, text: str, turn: _Turn) -> None:
        """Raise HallucinatedConfirmationError when ``text`` claims an unconfirmed action."""
        if not self.confirmation_detector.claims_completed_action(text):
            return
        if self._has_confirming_result(turn.results):
            return
        raise HallucinatedConfirmationError(provider, text)

    def _has_confirming_result(self, results: Iterable[ToolResult]) -> bool:
        for result in results:
            if not result.success or result.needs_selection:
                continue
            if isinstance(result.data, dict) and result.data.get("success") is False:
                continue
            if not self.confirming_tools or result.name in self.confirming_tools:
                return True
        return False

    def _missed_tool(self, turn: _Turn) -> bool:
        if not self.config.router.enforce_tool_usage or turn.results or len(self.registry) == 0:
            return False
        return self.intent_detector.requires_tool(turn.user_message)

    # ==========================================================================
    # EXECUTION
    # ==========================================================================

    async def _execute(self, state: ConversationState, turn: _Turn) -> Observation:
        if turn.reason == TransitionReason.FOLLOW_UP_REQUIRED:
            calls, content = turn.follow_ups, None
            turn.follow_ups = []
        else:
            calls, content = turn.pending, turn.pending_content
            turn.tool_rounds += 1
        turn.pending, turn.pending_content = [], None

        satisfied = {r.name for r in turn.results if r.success}
        try:
            resolution = self.resolver.resolve(calls, state, already_satisfied=satisfied)
            state.pending_tool_calls = list(resolution.calls)
            state.append({
                "role": "assistant",
                "content": content,
                "tool_calls": [c.to_openai() for c in resolution.calls],
            })
            results = await self.executor.execute_waves(resolution.waves, state.tool_context())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[TurnRouter] Tool execution failed: {e}", exc_info=True)
            turn.error_type = "tool_execution_error"
            state.error = {"type": "tool_execution_error", "message": str(e)}
            return self._observe(turn, ObservationKind.ERROR)

        for result in results:
            state.append(result.to_message())
        turn.results.extend(results)
        state.record_tool_results(results, self._clock(), calls=resolution.calls)
        state.last_tool_results = [r.to_parsed() for r in turn.results]
        state.pending_tool_calls = []

        follow_ups = self._follow_up_calls(results, called={r.name for r in turn.results})
        if follow_ups:
            turn.follow_ups = follow_ups
            return self._observe(turn, ObservationKind.FOLLOW_UP_REQUIRED)
        return self._observe(turn, ObservationKind.TOOLS_EXECUTED)

    def _follow_up_calls(self, results: Iterable[ToolResult], called: Iterable[str]) -> List[ToolCall]:
        """Forced calls for follow-up rules whose target was not already called this turn."""
        called = set(called)
        calls = []
        for result in results:
            if not result.success or result.tool_call_id.startswith(FORCED_CALL_PREFIX):
                continue
            for rule in self.follow_ups:
                if rule.target_tool in called or rule.target_tool not in self.registry:
                    continue
                arguments = rule.arguments_from(result.name, result.data)
                if arguments is None:
                    continue
                stamp = to_base36(int(self._clock() * 1000))
                call_id = f"{FORCED_CALL_PREFIX}{stamp}_{next(self._forced_counter)}"
                calls.append(ToolCall(
                    id=call_id[:MAX_TOOL_CALL_ID_LENGTH],
                    name=rule.target_tool,
                    arguments=arguments,
                ))
                called.add(rule.target_tool)
                logger.info(
                    f"[TurnRouter] {result.name} requires follow-up {rule.target_tool}"
                )
        return calls

    # ==========================================================================
    # REPLY
    # ==========================================================================

    def _finish(self, state: ConversationState, turn: _Turn) -> TurnResult:
        reason = turn.reason
        blocked = False
        error_type = turn.error_type

        if reason == TransitionReason.REPLY_ACCEPTED and turn.draft:
            reply = turn.draft
            # A recovered backend error is not a failed turn.
            error_type = None
        elif reason == TransitionReason.REPLY_BLOCKED:
            logger.error(
                f"[TurnRouter] Blocked unverified completion claim for "
                f"{state.tenant_id}:{state.conversation_id}"
            )
            reply = UNVERIFIED_ACTION_APOLOGY
            blocked = True
        elif reason == TransitionReason.EMPTY_RESPONSE:
            reply = EMPTY_AFTER_TOOLS_APOLOGY if turn.results else EMPTY_RESPONSE_APOLOGY
        else:
            if reason == TransitionReason.TOOL_ROUNDS_EXHAUSTED:
                logger.warning(
                    f"[TurnRouter] Tool rounds exhausted ({self.config.router.max_tool_rounds})"
                )
                error_type = error_type or "tool_rounds_exhausted"
            reply = GENERIC_APOLOGY
            error_type = error_type or "unrecoverable"

        state.assistant_message = reply
        state.active_provider = ActiveProvider.REASONING
        state.append({"role": "assistant", "content": reply})

        return TurnResult(
            reply=reply,
            state=RouterState.END,
            path=list(turn.path),
            tool_results=list(turn.results),
            provider=turn.provider,
            reply_blocked=blocked,
            error_type=error_type,
        )
