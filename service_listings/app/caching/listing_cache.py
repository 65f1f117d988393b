"""
Read-through cache layer with jittered TTLs.
"""

import json
import random
from typing import Any, Callable, Optional

from shared.logging import get_logger
from ..domain.models import CacheLookup
from ..domain.protocols import CacheBackend, MetricsSink


ABSENT_MARKER = "__absent__"

# Backend TTLs are written in milliseconds.
MIN_TTL_SECONDS = 0.001


def _json_encode(value: Any) -> str:
    return json.dumps(value)


class CacheLayer:
    """TTL-bounded cache for one namespace.

    Backend failures are reported as misses (reads) or False (writes);
    nothing raised by the backend or the metrics sink reaches the caller.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        namespace: str,
        base_ttl: float,
        jitter_fraction: float = 0.2,
        null_ttl: float = 60.0,
        metrics: Optional[MetricsSink] = None,
        metrics_label: str = "entity",
        encode: Callable[[Any], str] = _json_encode,
        decode: Callable[[str], Any] = json.loads,
        rng: Optional[random.Random] = None,
    ):
        if not 0.0 <= jitter_fraction < 1.0:
            raise ValueError("jitter_fraction must be in [0, 1)")

        self.backend = backend
        self.namespace = namespace
        self.base_ttl = base_ttl
        self.jitter_fraction = jitter_fraction
        self.null_ttl = null_ttl
        self.metrics = metrics
        self.metrics_label = metrics_label
        self._encode = encode
        self._decode = decode
        self._rng = rng or random.Random()
        self.logger = get_logger("listings.cache")

    def cache_key(self, key: Any) -> str:
        """Backend key for an entity key, e.g. ``housing-listings::42``."""
        return f"{self.namespace}::{key}"

    def jittered_ttl(self, base_ttl: Optional[float] = None) -> float:
        """base ± uniform(0, base × jitter), never below one millisecond."""
        base = self.base_ttl if base_ttl is None else base_ttl
        spread = base * self.jitter_fraction
        return max(MIN_TTL_SECONDS, base + self._rng.uniform(-spread, spread))

    async def get(self, key: Any, *, record: bool = True) -> CacheLookup:
        """Read a key. ``record=False`` skips hit/miss metrics for re-checks."""
        cache_key = self.cache_key(key)
        try:
            cached = await self.backend.get(cache_key)
        except Exception as exc:
            self.logger.error("Cache fetch error", cache_key=cache_key, error=str(exc))
            self._emit("increment_cache_error", "get")
            if record:
                self._emit("increment_cache_miss", self.metrics_label)
            return CacheLookup()

        if cached is None:
            if record:
                self._emit("increment_cache_miss", self.metrics_label)
            self.logger.debug("Cache MISS", cache_key=cache_key)
            return CacheLookup()

        if isinstance(cached, bytes):
            cached = cached.decode("utf-8")

        if cached == ABSENT_MARKER:
            if record:
                self._emit("increment_cache_hit", self.metrics_label)
            self.logger.debug("Cache HIT (absent)", cache_key=cache_key)
            return CacheLookup(value=None, found=True)

        try:
            value = self._decode(cached)
        except (TypeError, ValueError) as exc:
            self.logger.warning("Failed to deserialize cached payload", cache_key=cache_key, error=str(exc))
            if record:
                self._emit("increment_cache_miss", self.metrics_label)
            return CacheLookup()

        if record:
            self._emit("increment_cache_hit", self.metrics_label)
        self.logger.debug("Cache HIT", cache_key=cache_key)
        return CacheLookup(value=value, found=True)

    async def put(self, key: Any, value: Any, base_ttl: Optional[float] = None) -> bool:
        """Write a value with a jittered TTL."""
        try:
            payload = self._encode(value)
        except (TypeError, ValueError) as exc:
            self.logger.error("Failed to serialize cache payload", key=key, error=str(exc))
            return False
        return await self._write(key, payload, self.jittered_ttl(base_ttl))

    async def put_absent(self, key: Any) -> bool:
        """Cache a confirmed-absent result for the short null TTL."""
        if self.null_ttl <= 0:
            return False
        return await self._write(key, ABSENT_MARKER, self.jittered_ttl(self.null_ttl))

    async def _write(self, key: Any, payload: str, ttl: float) -> bool:
        cache_key = self.cache_key(key)
        try:
            await self.backend.set(cache_key, payload, ttl)
        except Exception as exc:
            self.logger.error("Cache set error", cache_key=cache_key, error=str(exc))
            self._emit("increment_cache_error", "set")
            return False

        self._emit("increment_cache_write", self.metrics_label)
        self.logger.debug("Cached value", cache_key=cache_key, ttl=round(ttl, 3))
        return True

    async def invalidate(self, key: Any) -> bool:
        """Remove a key immediately."""
        cache_key = self.cache_key(key)
        try:
            await self.backend.delete(cache_key)
        except Exception as exc:
            self.logger.error("Cache invalidate error", cache_key=cache_key, error=str(exc))
            self._emit("increment_cache_error", "delete")
            return False

        self.logger.debug("Invalidated cache entry", cache_key=cache_key)
        return True

    async def invalidate_all(self, namespace: Optional[str] = None) -> int:
        """Remove every key in a namespace; defaults to this layer's own."""
        pattern = f"{namespace or self.namespace}::*"
        try:
            removed = await self.backend.delete_pattern(pattern)
        except Exception as exc:
            self.logger.error("Cache clear error", pattern=pattern, error=str(exc))
            self._emit("increment_cache_error", "clear")
            return 0

        self.logger.info("Cleared cache namespace", pattern=pattern, keys_count=removed)
        return removed

    def _emit(self, method: str, *args) -> None:
        if self.metrics is None:
            return
        try:
            getattr(self.metrics, method)(*args)
        except Exception as exc:  # metrics failures should never break caching
            self.logger.debug("Failed to record cache metric", metric=method, error=str(exc))
