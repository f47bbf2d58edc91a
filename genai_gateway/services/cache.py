"""
Response Cache Service

This module caches successful generation results by request fingerprint so
repeated requests do not pay for a second backend call.

Entries expire after a TTL and the map is bounded: inserting past max_size
evicts the least recently used entry, and a hit refreshes recency.

Pattern: Cache-aside in front of the fallback router
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import BaseModel

from genai_gateway.core.config import Settings
from genai_gateway.core.exceptions import GatewayValidationError
from genai_gateway.models.domain import GenerationResult
from genai_gateway.observability.events import EventSink, GatewayEvent
from genai_gateway.observability.logging import get_logger
from genai_gateway.observability.metrics import record_cache_operation

logger = get_logger(__name__)


# =============================================================================
# Default Configuration
# =============================================================================


DEFAULT_CACHE_TTL_SECONDS = 3600.0  # 1 hour
DEFAULT_CACHE_MAX_SIZE = 1000


@dataclass
class _CacheEntry:
    result: GenerationResult
    expires_at: float


class CacheStats(BaseModel):
    """Counters and occupancy of the cache."""

    size: int
    max_size: int
    hits: int
    misses: int
    evictions: int
    enabled: bool

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


# =============================================================================
# ResponseCache Service
# =============================================================================


class ResponseCache:
    """
    In-process LRU cache of generation results with per-entry TTL.

    Attributes:
        ttl_seconds: Default entry lifetime
        max_size: Maximum number of entries
        enabled: When False every get misses and every put is dropped
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        max_size: int = DEFAULT_CACHE_MAX_SIZE,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        event_sink: Optional[EventSink] = None,
    ) -> None:
        """
        Initialize ResponseCache.

        Args:
            ttl_seconds: Default entry lifetime in seconds
            max_size: Maximum number of entries
            enabled: Whether the cache serves and stores anything
            clock: Monotonic time source (injectable for tests)
            event_sink: Receives cache_hit / cache_miss events

        Raises:
            GatewayValidationError: If max_size < 1 or ttl_seconds <= 0
        """
        if max_size < 1:
            raise GatewayValidationError(
                "max_size must be >= 1", field="max_size", value=max_size
            )
        if ttl_seconds <= 0:
            raise GatewayValidationError(
                "ttl_seconds must be > 0", field="ttl_seconds", value=ttl_seconds
            )

        self._ttl_seconds = ttl_seconds
        self._max_size = max_size
        self._enabled = enabled
        self._clock = clock
        self._event_sink = event_sink

        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        event_sink: Optional[EventSink] = None,
    ) -> "ResponseCache":
        return cls(
            ttl_seconds=settings.cache_ttl_seconds,
            max_size=settings.cache_max_size,
            enabled=settings.cache_enabled,
            event_sink=event_sink,
        )

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def enabled(self) -> bool:
        return self._enabled

    def __len__(self) -> int:
        return len(self._entries)

    def _emit(self, event: GatewayEvent, fingerprint: str) -> None:
        record_cache_operation("hit" if event == GatewayEvent.CACHE_HIT else "miss")
        if self._event_sink is not None:
            self._event_sink.emit(event, fingerprint=fingerprint[:16])

    # =========================================================================
    # Operations
    # =========================================================================

    async def get(self, fingerprint: str) -> Optional[GenerationResult]:
        """
        Look up a result.

        An expired entry counts as a miss and is removed.

        Returns:
            The cached result, or None on miss
        """
        if not self._enabled:
            self._misses += 1
            self._emit(GatewayEvent.CACHE_MISS, fingerprint)
            return None

        async with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is not None and self._clock() >= entry.expires_at:
                del self._entries[fingerprint]
                entry = None

            if entry is None:
                self._misses += 1
                self._emit(GatewayEvent.CACHE_MISS, fingerprint)
                return None

            self._entries.move_to_end(fingerprint)
            self._hits += 1
            self._emit(GatewayEvent.CACHE_HIT, fingerprint)
            return entry.result

    async def put(
        self,
        fingerprint: str,
        result: GenerationResult,
        ttl: Optional[float] = None,
    ) -> None:
        """
        Store a result, evicting least recently used entries if full.

        Args:
            fingerprint: Request fingerprint
            result: Result to store
            ttl: Lifetime override in seconds

        Raises:
            GatewayValidationError: If ttl is given and not positive
        """
        if ttl is not None and ttl <= 0:
            raise GatewayValidationError("ttl must be > 0", field="ttl", value=ttl)
        if not self._enabled:
            return

        expires_at = self._clock() + (ttl if ttl is not None else self._ttl_seconds)

        async with self._lock:
            if fingerprint in self._entries:
                del self._entries[fingerprint]
            while len(self._entries) >= self._max_size:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("cache entry evicted", fingerprint=evicted[:16])
            self._entries[fingerprint] = _CacheEntry(result=result, expires_at=expires_at)

    async def invalidate(self, fingerprint: str) -> bool:
        """Remove one entry. Returns True if it was present."""
        async with self._lock:
            return self._entries.pop(fingerprint, None) is not None

    async def clear(self) -> int:
        """Remove every entry. Returns how many were removed."""
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def stats(self) -> CacheStats:
        return CacheStats(
            size=len(self._entries),
            max_size=self._max_size,
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            enabled=self._enabled,
        )
