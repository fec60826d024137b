"""
Aggregation cache with single-flight recomputation.

Caches derived analytics snapshots with:
- TTL expiry (default ANALYTICS_CACHE_TTL seconds)
- Tag-based invalidation (global analytics tag plus one tag per tenant)
- Single-flight: concurrent misses for a key share one computation
- In-memory backend by default, Redis when REDIS_URL is configured
- Circuit breaker on the Redis backend; Redis trouble degrades to
  computing without caching instead of failing the read

Usage:
    from app.services.cache_service import get_aggregation_cache, analytics_cache_key

    cache = get_aggregation_cache()
    snapshot = await cache.get_or_compute(
        analytics_cache_key(flt),
        lambda: compute_snapshot(flt),
        tags=analytics_tags(flt.tenant_ids),
    )
"""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, Optional
from enum import IntEnum

import redis.asyncio as redis

from app.config import settings
from app.schemas.analytics import AnalyticsFilter

logger = logging.getLogger(__name__)


class CircuitState(IntEnum):
    CLOSED = 0
    OPEN = 1
    HALF_OPEN = 2


class CircuitBreaker:
    """
    Trips after `threshold` consecutive failures; after `cooldown` seconds one
    trial call is let through and its outcome closes or re-opens the circuit.
    """

    def __init__(self, threshold: int, cooldown: float, clock: Callable[[], float] = time.monotonic):
        self.threshold = threshold
        self.cooldown = cooldown
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self._opened_at = 0.0

    def allow(self) -> bool:
        if self.state is CircuitState.OPEN and self._clock() - self._opened_at >= self.cooldown:
            self.state = CircuitState.HALF_OPEN
            logger.info("Redis cache circuit half-open, allowing a trial call")
        return self.state is not CircuitState.OPEN

    def succeeded(self) -> None:
        if self.state is CircuitState.HALF_OPEN:
            logger.info("Redis cache circuit closed")
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0

    def failed(self) -> None:
        self.consecutive_failures += 1
        if self.state is CircuitState.HALF_OPEN or self.consecutive_failures >= self.threshold:
            if self.state is not CircuitState.OPEN:
                logger.warning(f"Redis cache circuit opened after {self.consecutive_failures} failures")
            self.state = CircuitState.OPEN
            self._opened_at = self._clock()


class MemoryBackend:
    """
    Process-local store of (value, expires_at) entries plus a tag index.

    Every write sweeps expired entries out of both maps, so one entry per
    distinct filter does not accumulate.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._tags: dict[str, set[str]] = {}
        self._key_tags: dict[str, set[str]] = {}

    def _drop(self, key: str) -> bool:
        found = self._entries.pop(key, None) is not None
        for tag in self._key_tags.pop(key, ()):
            keys = self._tags.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._tags[tag]
        return found

    def prune(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            self._drop(key)
        return len(expired)

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._drop(key)
            return None
        return value

    async def set(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> bool:
        self.prune()
        self._entries[key] = (value, self._clock() + ttl)
        for tag in tags:
            self._tags.setdefault(tag, set()).add(key)
            self._key_tags.setdefault(key, set()).add(tag)
        return True

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self._drop(key))

    async def pop_tag(self, tag: str) -> list[str]:
        keys = self._tags.pop(tag, set())
        for key in keys:
            remaining = self._key_tags.get(key)
            if remaining is not None:
                remaining.discard(tag)
        return sorted(keys)

    def __len__(self) -> int:
        return len(self._entries)


class RedisBackend:
    """
    Shared store for multi-process deployments.

    Values are JSON encoded, tags are Redis sets of keys. Any Redis error is
    reported as a miss or a no-op so analytics reads keep working through an
    outage; the breaker stops hammering a Redis that is down.
    """

    name = "redis"

    def __init__(
        self,
        redis_url: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 30,
        key_prefix: str = "feedback-cache",
    ):
        self._redis_url = redis_url
        self._client = None
        self._prefix = key_prefix
        self.breaker = CircuitBreaker(failure_threshold, recovery_timeout)

    @property
    def circuit_state(self) -> CircuitState:
        return self.breaker.state

    def _get_client(self):
        if self._client is None:
            self._client = redis.from_url(self._redis_url, encoding="utf-8", decode_responses=True)
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self._prefix}:tag:{tag}"

    async def _guarded(self, operation: str, call: Callable[[Any], Awaitable[Any]], fallback: Any) -> Any:
        if not self.breaker.allow():
            return fallback
        try:
            result = await call(self._get_client())
        except (redis.RedisError, OSError) as e:
            logger.debug(f"Redis {operation} failed: {e}")
            self.breaker.failed()
            return fallback
        self.breaker.succeeded()
        return result

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._guarded("get", lambda client: client.get(self._key(key)), None)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            return None

    async def set(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> bool:
        async def write(client) -> bool:
            await client.setex(self._key(key), ttl, json.dumps(value, default=str))
            for tag in tags:
                await client.sadd(self._tag_key(tag), key)
            return True

        return await self._guarded("set", write, False)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        removed = await self._guarded("delete", lambda client: client.delete(*(self._key(k) for k in keys)), 0)
        return int(removed or 0)

    async def pop_tag(self, tag: str) -> list[str]:
        async def pop(client) -> list[str]:
            members = await client.smembers(self._tag_key(tag))
            await client.delete(self._tag_key(tag))
            return sorted(members or [])

        return await self._guarded("tag pop", pop, [])


class AggregationCache:
    """
    Keyed cache of derived snapshots with single-flight recomputation.

    The in-flight map is only touched between awaits, so the event loop
    serializes leader election per key. A failed computation stores nothing
    and leaves any previous entry alone; every waiter sees the error.
    """

    def __init__(self, backend=None, default_ttl: int = 60):
        self._backend = backend if backend is not None else MemoryBackend()
        self.default_ttl = default_ttl

        self._inflight: dict[str, asyncio.Future] = {}
        self._inflight_tags: dict[str, tuple[str, ...]] = {}
        # In-flight keys invalidated mid-computation; their result is not stored
        self._stale: set[str] = set()

        # Track metrics
        self._hits = 0
        self._misses = 0
        self._computations = 0
        self._failures = 0
        self._shared = 0

    @property
    def backend(self):
        return self._backend

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
        tags: Iterable[str] = (),
    ) -> Any:
        """
        Return the cached value for key, computing it at most once at a time.

        Args:
            key: Cache key
            compute_fn: Zero-argument coroutine function producing the value
            ttl: Time to live in seconds (defaults to the cache's TTL)
            tags: Invalidation tags to register the entry under
        """
        inflight = self._inflight.get(key)
        if inflight is not None:
            return await self._join(inflight)

        cached = await self._backend.get(key)
        if cached is not None:
            self._hits += 1
            return cached

        # Another caller may have become leader while the backend was awaited
        inflight = self._inflight.get(key)
        if inflight is not None:
            return await self._join(inflight)

        self._misses += 1
        return await self._lead(key, compute_fn, ttl or self.default_ttl, tuple(tags))

    async def _join(self, future: asyncio.Future) -> Any:
        self._shared += 1
        return await asyncio.shield(future)

    async def _lead(self, key: str, compute_fn, ttl: int, tags: tuple[str, ...]) -> Any:
        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        self._inflight_tags[key] = tags
        self._computations += 1

        try:
            value = await compute_fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            self._failures += 1
            logger.warning(f"Cache computation failed for {key}: {e}")
            future.set_exception(e)
            # Mark retrieved so an unjoined failure is not reported by asyncio
            future.exception()
            raise
        else:
            if key in self._stale:
                logger.debug(f"Not storing {key}: invalidated during computation")
            else:
                await self._backend.set(key, value, ttl, tags)
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)
            self._inflight_tags.pop(key, None)
            self._stale.discard(key)

    async def invalidate(self, key: str) -> int:
        """Drop one entry. Returns the number of entries removed."""
        if key in self._inflight:
            self._stale.add(key)
        return await self._backend.delete(key)

    async def invalidate_tag(self, tag: str) -> int:
        """Drop every entry registered under tag."""
        for key, tags in self._inflight_tags.items():
            if tag in tags:
                self._stale.add(key)
        keys = await self._backend.pop_tag(tag)
        removed = await self._backend.delete(*keys) if keys else 0
        logger.info(f"Invalidated cache tag {tag}: {removed} entries")
        return removed

    def get_stats(self) -> dict:
        """Get cache statistics."""
        lookups = self._hits + self._misses
        hit_rate = (self._hits / lookups * 100) if lookups > 0 else 0.0
        circuit = getattr(self._backend, "circuit_state", None)

        return {
            "backend": self._backend.name,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(hit_rate, 2),
            "computations": self._computations,
            "failures": self._failures,
            "shared_waits": self._shared,
            "in_flight": len(self._inflight),
            "circuit_state": circuit.name if circuit is not None else None,
        }


def analytics_cache_key(flt: AnalyticsFilter) -> str:
    """Stable key: sorted tenant ids, survey id and date range."""
    start = flt.start_date.isoformat() if flt.start_date else ""
    end = flt.end_date.isoformat() if flt.end_date else ""
    return ":".join([
        "analytics",
        ",".join(sorted(set(flt.tenant_ids))),
        flt.survey_id or "all",
        start,
        end,
    ])


def tenant_tag(tenant_id: str) -> str:
    return f"{settings.ANALYTICS_CACHE_TAG}:{tenant_id}"


def analytics_tags(tenant_ids: Iterable[str]) -> tuple[str, ...]:
    """Global analytics tag plus one tag per tenant."""
    return (settings.ANALYTICS_CACHE_TAG,) + tuple(tenant_tag(t) for t in sorted(set(tenant_ids)))


# Global cache instance
_aggregation_cache: Optional[AggregationCache] = None


def get_aggregation_cache() -> AggregationCache:
    """Get or create the global aggregation cache."""
    global _aggregation_cache
    if _aggregation_cache is None:
        backend = RedisBackend(settings.REDIS_URL) if settings.REDIS_URL else MemoryBackend()
        _aggregation_cache = AggregationCache(backend=backend, default_ttl=settings.ANALYTICS_CACHE_TTL)
        logger.info(f"Aggregation cache using {backend.name} backend")
    return _aggregation_cache
