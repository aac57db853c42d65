from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar
from dataclasses import dataclass
from datetime import datetime, timedelta
import asyncio

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300
DEFAULT_MAX_SIZE = 1000
EVICTION_FRACTION = 0.2


@dataclass
class CacheEntry(Generic[T]):
    value: T
    expiry: datetime
    access_count: int = 0
    last_accessed: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expiry


class ValidationCache(Generic[T]):
    """In-memory cache with TTL expiry and bounded size.

    When an insert pushes the map over max_size, the 20% of entries with
    the earliest expiry are evicted. Access recency is tracked for stats
    but does not affect eviction order.
    """

    def __init__(self, ttl: int = DEFAULT_TTL_SECONDS, max_size: int = DEFAULT_MAX_SIZE):
        self.default_ttl = ttl
        self.max_size = max_size
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._validation_times: List[float] = []

    async def get(self, key: str) -> Optional[T]:
        """Get value from cache if not expired"""

        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = datetime.utcnow()
            if entry.is_expired(now):
                del self._entries[key]
                self._misses += 1
                return None

            entry.access_count += 1
            entry.last_accessed = now
            self._hits += 1
            return entry.value

    async def set(self, key: str, value: T, ttl: Optional[int] = None) -> None:
        """Set a value in cache with TTL"""

        async with self._lock:
            now = datetime.utcnow()
            self._entries[key] = CacheEntry(
                value=value,
                expiry=now + timedelta(seconds=self.default_ttl if ttl is None else ttl),
                last_accessed=now
            )
            if len(self._entries) > self.max_size:
                self._evict_oldest()

    def _evict_oldest(self) -> int:
        count = max(1, int(self.max_size * EVICTION_FRACTION))
        oldest = sorted(self._entries.items(), key=lambda item: item[1].expiry)[:count]
        for key, _ in oldest:
            del self._entries[key]
        logger.debug("Evicted cache entries", evicted=len(oldest), size=len(self._entries))
        return len(oldest)

    async def has(self, key: str) -> bool:
        """Check for an unexpired key without touching hit counters"""

        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(datetime.utcnow()):
                del self._entries[key]
                return False
            return True

    async def delete(self, key: str) -> bool:
        """Delete a key from cache"""

        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._validation_times = []

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl: Optional[int] = None
    ) -> T:
        """Return the cached value or build, store and return a new one"""

        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await factory()
        await self.set(key, value, ttl)
        return value

    async def clear_expired(self) -> int:
        """Clear expired entries and return count"""

        async with self._lock:
            now = datetime.utcnow()
            expired_keys = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._entries[key]
            return len(expired_keys)

    async def get_expiring_keys(self, within_seconds: int = 60) -> List[str]:
        """Keys that are still live but expire within the window"""

        async with self._lock:
            now = datetime.utcnow()
            horizon = now + timedelta(seconds=within_seconds)
            return [
                key for key, entry in self._entries.items()
                if not entry.is_expired(now) and entry.expiry <= horizon
            ]

    def record_validation_time(self, duration_ms: float):
        self._validation_times.append(duration_ms)
        if len(self._validation_times) > 1000:
            self._validation_times = self._validation_times[-1000:]

    @property
    def validation_times(self) -> List[float]:
        return list(self._validation_times)

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""

        total = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hit_rate": self._hits / total if total else 0.0,
            "total_validations": total,
            "average_validation_time": (
                sum(self._validation_times) / len(self._validation_times) if self._validation_times else 0.0
            ),
            "cache_efficiency": (self._hits / total) * 100 if total else 0.0
        }
