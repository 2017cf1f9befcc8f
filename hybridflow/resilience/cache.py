"""
HybridFlow Conversation Cache - Per-(tenant, conversation) tool result cache

Each entry carries its own TTL, taken from the tool's cache policy, so a
service catalog can stay fresh for minutes while staff availability expires
within seconds. A miss is never an error.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple

from ..config import CacheConfig
from .sweeper import PeriodicSweeper

if TYPE_CHECKING:
    from ..tools.models import CachePolicy, ToolContext

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheEntry:
    key: str
    value: Any
    written_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.written_at < self.ttl


class ConversationCache:
    """Key/value store for one conversation's cacheable tool results."""

    def __init__(
        self,
        tenant_id: str,
        conversation_id: str,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tenant_id = tenant_id
        self.conversation_id = conversation_id
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        """Return a fresh value, or ``default`` on a miss."""
        entry = self._entries.get(key)
        if entry is None:
            return default
        if entry.is_fresh(self._clock()):
            return entry.value
        with self._lock:
            if self._entries.get(key) is entry:
                del self._entries[key]
        return default

    def lookup(self, key: str) -> Tuple[bool, Any]:
        """Return ``(hit, value)`` so cached ``None`` payloads are distinguishable."""
        value = self.get(key, _MISSING)
        if value is _MISSING:
            return False, None
        return True, value

    def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, written_at=self._clock(), ttl=ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if not e.is_fresh(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.lookup(key)[0]


def derive_cache_key(
    tenant_id: str,
    tool_name: str,
    arguments: Dict[str, Any],
    policy: "CachePolicy",
    context: "ToolContext",
) -> str:
    """Build ``tenant:tool[:parts]`` from the policy's key fields or key builder."""
    base = f"{tenant_id}:{tool_name}"
    if policy.key_builder is not None:
        return f"{base}:{policy.key_builder(arguments, context)}"
    if not policy.key_fields:
        return base
    parts = []
    for name in policy.key_fields:
        value = arguments.get(name)
        if value is None:
            value = policy.defaults.get(name, "")
        if not isinstance(value, str):
            value = json.dumps(value, sort_keys=True, ensure_ascii=False)
        parts.append(value)
    return f"{base}:{':'.join(parts)}"


class ConversationCacheRegistry:
    """
    Lazily created caches keyed by (tenant_id, conversation_id)

    The periodic sweep purges expired entries and drops caches left empty.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._caches: Dict[Tuple[str, str], ConversationCache] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicSweeper("ConversationCacheRegistry", self.config.sweep_interval, self.sweep)

    def get(self, tenant_id: str, conversation_id: str) -> ConversationCache:
        if not tenant_id:
            raise ValueError("tenant_id is required for cache isolation")
        key = (tenant_id, conversation_id)
        cache = self._caches.get(key)
        if cache is not None:
            return cache
        with self._lock:
            cache = self._caches.get(key)
            if cache is None:
                cache = ConversationCache(tenant_id, conversation_id, clock=self._clock)
                self._caches[key] = cache
            return cache

    def peek(self, tenant_id: str, conversation_id: str) -> Optional[ConversationCache]:
        return self._caches.get((tenant_id, conversation_id))

    def drop(self, tenant_id: str, conversation_id: str) -> None:
        with self._lock:
            self._caches.pop((tenant_id, conversation_id), None)

    def sweep(self) -> int:
        """Purge expired entries, then remove empty caches. Returns caches removed."""
        for cache in list(self._caches.values()):
            cache.purge_expired()
        with self._lock:
            empty = [k for k, c in self._caches.items() if len(c) == 0]
            for key in empty:
                del self._caches[key]
        return len(empty)

    def __len__(self) -> int:
        return len(self._caches)

    async def start(self) -> None:
        await self._sweeper.start()

    async def shutdown(self) -> None:
        await self._sweeper.stop()
        with self._lock:
            self._caches.clear()
