"""
Read-through cache of active commission rules.

Keyed by (currency, transfer_type). Entries expire after a TTL, but every
rule mutation also invalidates them explicitly: serving a stale price after
a rule change is a pricing bug, not an acceptable staleness.

The cache is process-scoped and only ever holds copies (RuleSnapshot);
the database stays the source of truth.
"""

import logging
import threading
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

from commission_service.config import settings
from commission_service.models.rule import Currency, TransferType

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


def cache_key(currency, transfer_type) -> CacheKey:
    return (Currency(currency).value, TransferType(transfer_type).value)


class RuleCache:
    """TTL cache with explicit invalidation and per-key generations.

    A load that started before an invalidation must not write its result
    back, otherwise rules read before a commit could be served after it.
    Each invalidation bumps the key's generation; put() is refused when the
    generation changed since the load began.
    """

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, Tuple[float, tuple]] = {}
        self._generations: Dict[CacheKey, int] = {}
        self._global_generation = 0
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _generation(self, key: CacheKey) -> Tuple[int, int]:
        return (self._global_generation, self._generations.get(key, 0))

    def get(self, currency, transfer_type) -> Optional[tuple]:
        key = cache_key(currency, transfer_type)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, rules = entry
            if self._clock() >= expires_at:
                self._entries.pop(key, None)
                return None
            return rules

    def put(self, currency, transfer_type, rules, generation=None) -> bool:
        key = cache_key(currency, transfer_type)
        with self._lock:
            if generation is not None and generation != self._generation(key):
                logger.debug(f"Rule cache put skipped for {key}: invalidated during load")
                return False
            self._entries[key] = (self._clock() + self.ttl_seconds, tuple(rules))
            return True

    async def get_or_load(
        self,
        currency,
        transfer_type,
        loader: Callable[[], Awaitable[list]],
    ) -> tuple:
        """Return cached rules for the key, loading and caching them on a miss."""
        cached = self.get(currency, transfer_type)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        key = cache_key(currency, transfer_type)
        with self._lock:
            generation = self._generation(key)

        rules = tuple(await loader())
        self.put(currency, transfer_type, rules, generation=generation)
        return rules

    def invalidate(self, currency, transfer_type) -> None:
        key = cache_key(currency, transfer_type)
        with self._lock:
            self._entries.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1
        logger.debug(f"Rule cache invalidated for {key}")

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()
            self._global_generation += 1
        logger.debug("Rule cache invalidated (all keys)")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Global cache instance
rule_cache = RuleCache(ttl_seconds=settings.rule_cache_ttl_seconds)


def get_rule_cache() -> RuleCache:
    """Get the process-wide rule cache."""
    return rule_cache
