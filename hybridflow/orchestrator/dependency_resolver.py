"""
HybridFlow Dependency Resolver - Prerequisite injection and wave grouping

Some tools are only safe to call after a prerequisite has supplied facts
(e.g. reschedule/cancel need the customer's current appointments). Given a
batch of requested calls, the resolver:

1. Prepends missing prerequisite calls, but only where the prerequisite's
   InjectionRule is satisfied by facts already on the conversation state
2. Marks calls whose prerequisites can be neither found nor injected
3. Groups everything into ordered waves; each call's dependencies are
   satisfied by earlier waves
"""

import itertools
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from ..constants import INJECTED_CALL_PREFIX, MAX_TOOL_CALL_ID_LENGTH
from ..errors import DependencyUnsatisfiedError
from ..tools.models import ToolCall
from ..tools.registry import ToolRegistry
from .state import ConversationState

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


@dataclass
class Resolution:
    """
    Output of dependency resolution

    Attributes:
        calls: Requested calls with injected prerequisites prepended
        waves: Ordered execution waves
        injected: The synthesized prerequisite calls
        unsatisfied: Call id -> prerequisites that could not be resolved
    """
    calls: List[ToolCall]
    waves: List[List[ToolCall]]
    injected: List[ToolCall] = field(default_factory=list)
    unsatisfied: Dict[str, List[str]] = field(default_factory=dict)

    def wave_index(self, call_id: str) -> Optional[int]:
        for index, wave in enumerate(self.waves):
            if any(c.id == call_id for c in wave):
                return index
        return None


class DependencyResolver:
    """
    Resolves declared tool dependencies for one batch of calls

    Example:
        resolver = DependencyResolver(registry)
        resolution = resolver.resolve(calls, state)
        results = await executor.execute_waves(resolution.waves, state.tool_context())
    """

    def __init__(
        self,
        registry: ToolRegistry,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self._clock = clock
        self._counter = itertools.count(1)

    def resolve(
        self,
        calls: Sequence[ToolCall],
        state: ConversationState,
        already_satisfied: Iterable[str] = (),
    ) -> Resolution:
        """
        Inject resolvable prerequisites and group calls into waves

        Args:
            calls: Calls requested by the reasoning backend
            state: Conversation state (source of facts for injection)
            already_satisfied: Tools that already succeeded earlier this turn

        Returns:
            Resolution with waves ready for the executor
        """
        satisfied = set(already_satisfied)
        requested_names = {c.name for c in calls}
        injected: List[ToolCall] = []
        injected_names: Set[str] = set()
        unsatisfied: Dict[str, List[str]] = {}
        marked: Dict[str, ToolCall] = {}

        worklist = list(calls)
        while worklist:
            call = worklist.pop(0)
            missing = []
            for dep in self.registry.dependencies_of(call.name):
                if dep in requested_names or dep in injected_names or dep in satisfied:
                    continue
                prerequisite = self._inject(dep, state)
                if prerequisite is not None:
                    injected.append(prerequisite)
                    injected_names.add(dep)
                    worklist.append(prerequisite)
                    logger.info(
                        f"[DependencyResolver] Injected {dep} ({prerequisite.id}) for {call.name}"
                    )
                else:
                    missing.append(dep)

            if missing:
                error = DependencyUnsatisfiedError(call.name, missing)
                logger.error(f"[DependencyResolver] {error.message}")
                unsatisfied[call.id] = missing
                marked[call.id] = replace(
                    call,
                    metadata={**call.metadata, "unmet_dependencies": list(missing)},
                )

        ordered = [marked.get(c.id, c) for c in injected] + [marked.get(c.id, c) for c in calls]
        waves = group_into_waves(ordered, self.registry, satisfied)
        return Resolution(calls=ordered, waves=waves, injected=injected, unsatisfied=unsatisfied)

    def _inject(self, tool_name: str, state: ConversationState) -> Optional[ToolCall]:
        if tool_name not in self.registry:
            return None
        rule = self.registry.injection_rule(tool_name)
        if rule is None or not rule.can_inject(state):
            return None
        return ToolCall(
            id=self._next_id(),
            name=tool_name,
            arguments=rule.arguments_for(state),
            injected=True,
        )

    def _next_id(self) -> str:
        stamp = to_base36(int(self._clock() * 1000))
        call_id = f"{INJECTED_CALL_PREFIX}{stamp}_{next(self._counter)}"
        return call_id[:MAX_TOOL_CALL_ID_LENGTH]


def group_into_waves(
    calls: Sequence[ToolCall],
    registry: ToolRegistry,
    satisfied: Iterable[str] = (),
) -> List[List[ToolCall]]:
    """Partition calls into waves by iterative fixed point.

    A call joins the current wave once every dependency that is present in
    the batch has a call scheduled in an earlier wave. Dependencies that are
    neither in the batch nor already satisfied are ignored here; the
    executor's dependency policy handles them.

    Leftover calls (only possible with a dependency cycle) are placed in a
    final catch-all wave and logged as a configuration defect.
    """
    if not calls:
        return []

    batch_names = {c.name for c in calls}
    scheduled: Set[str] = set(satisfied)
    remaining = list(calls)
    waves: List[List[ToolCall]] = []

    for _ in range(len(calls) + 1):
        if not remaining:
            break
        wave = []
        for call in remaining:
            required = [
                dep for dep in registry.dependencies_of(call.name)
                if dep in batch_names or dep in scheduled
            ]
            if all(dep in scheduled for dep in required):
                wave.append(call)
        if not wave:
            break
        waves.append(wave)
        scheduled.update(c.name for c in wave)
        wave_ids = {id(c) for c in wave}
        remaining = [c for c in remaining if id(c) not in wave_ids]

    if remaining:
        logger.error(
            f"[DependencyResolver] Dependency cycle among "
            f"{[c.name for c in remaining]}; running them in a final wave"
        )
        waves.append(remaining)

    return waves
