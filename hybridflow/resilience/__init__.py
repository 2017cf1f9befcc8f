"""
HybridFlow Resilience Module

Tenant-scoped long-lived state shared by all conversations:
- CircuitBreakerRegistry: per-(tenant, tool) CLOSED/OPEN/HALF_OPEN breakers
- ConversationCacheRegistry: per-(tenant, conversation) TTL caches

Both create entries lazily and reclaim idle ones with a PeriodicSweeper.
"""

from .circuit_breaker import (
    BreakerSnapshot,
    BreakerState,
    CircuitBreaker,
    CircuitBreakerRegistry,
)
from .cache import (
    CacheEntry,
    ConversationCache,
    ConversationCacheRegistry,
    derive_cache_key,
)
from .sweeper import PeriodicSweeper

__all__ = [
    "BreakerSnapshot",
    "BreakerState",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CacheEntry",
    "ConversationCache",
    "ConversationCacheRegistry",
    "derive_cache_key",
    "PeriodicSweeper",
]
