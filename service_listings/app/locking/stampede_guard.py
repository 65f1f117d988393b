"""
Stampede guard: single-flight backing store fetches on cache miss.

Per lookup the guard moves MISS -> LOCK_WAIT -> LOCKED_FETCH or
LOCK_TIMEOUT_FALLBACK -> POPULATED. Nothing is kept between lookups.
The lock coordinator is an optimization: when it is unreachable the
lookup falls through to a direct fetch instead of failing.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger
from ..caching.listing_cache import CacheLayer
from ..domain.models import LockLease
from ..domain.protocols import LockCoordinator


FetchFn = Callable[[Any], Awaitable[Optional[Any]]]


class StampedeGuard:
    """Per-key distributed lock around backing store fetches."""

    def __init__(
        self,
        cache: CacheLayer,
        coordinator: LockCoordinator,
        *,
        lock_prefix: str = "lock:housing-listing",
        wait_timeout: float = 5.0,
        lease_timeout: float = 10.0,
        settle_delay: float = 0.5,
        metrics: Optional[Any] = None,
    ):
        self.cache = cache
        self.coordinator = coordinator
        self.lock_prefix = lock_prefix
        self.wait_timeout = wait_timeout
        self.lease_timeout = lease_timeout
        self.settle_delay = settle_delay
        self.metrics = metrics
        self.logger = get_logger("listings.guard")

    def lock_key(self, key: Any) -> str:
        """Cluster-wide lock name for an entity key."""
        return f"{self.lock_prefix}:{key}"

    async def fetch_with_guard(self, key: Any, fetch_fn: FetchFn) -> Optional[Any]:
        """Fetch ``key`` on a cache miss with at most one holder cluster-wide.

        Errors raised by ``fetch_fn`` propagate; the lock is released first.
        """
        lock_key = self.lock_key(key)
        start = time.perf_counter()
        try:
            lease = await self.coordinator.try_acquire(lock_key, self.wait_timeout, self.lease_timeout)
        except Exception as exc:
            self.logger.warning(
                "Lock coordinator unavailable, fetching without lock",
                lock_key=lock_key,
                error=str(exc),
            )
            self._emit("record_lock_outcome", "unavailable")
            return await self.fetch_and_populate(key, fetch_fn, path="fallback")

        if lease is None:
            self._emit("record_lock_outcome", "timeout")
            return await self._timeout_fallback(key, fetch_fn)

        self._emit("record_lock_outcome", "acquired")
        try:
            return await self._locked_fetch(key, fetch_fn, lease)
        finally:
            await self._release(lease)
            self._observe_duration(time.perf_counter() - start)

    async def _locked_fetch(self, key: Any, fetch_fn: FetchFn, lease: LockLease) -> Optional[Any]:
        # Another holder may have populated the cache while this caller waited.
        cached = await self.cache.get(key, record=False)
        if cached.found:
            self.logger.debug("Cache populated by another holder", listing_id=key)
            return cached.value

        self.logger.info("Lock acquired, querying backing store", listing_id=key)
        value = await self.fetch_and_populate(key, fetch_fn, path="guarded")
        if lease.expires_in() <= 0:
            self.logger.warning(
                "Guarded fetch outlived its lease",
                listing_id=key,
                lease_timeout=lease.lease_timeout,
            )
        return value

    async def _timeout_fallback(self, key: Any, fetch_fn: FetchFn) -> Optional[Any]:
        self.logger.warning(
            "Could not acquire lock in time, re-checking cache",
            listing_id=key,
            wait_timeout=self.wait_timeout,
        )
        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)

        cached = await self.cache.get(key, record=False)
        if cached.found:
            return cached.value

        self.logger.warning("Fallback: querying backing store without lock", listing_id=key)
        return await self.fetch_and_populate(key, fetch_fn, path="fallback")

    async def fetch_and_populate(self, key: Any, fetch_fn: FetchFn, *, path: str = "direct") -> Optional[Any]:
        """Fetch from the backing store and write the result through."""
        self._emit("record_store_fetch", path)
        value = await fetch_fn(key)
        if value is None:
            await self.cache.put_absent(key)
        else:
            await self.cache.put(key, value)
        return value

    async def _release(self, lease: LockLease) -> None:
        try:
            await self.coordinator.release(lease)
            self.logger.debug("Lock released", lock_key=lease.lock_key)
        except Exception as exc:
            self.logger.warning(
                "Lock release failed, lease will expire",
                lock_key=lease.lock_key,
                error=str(exc),
            )

    def _observe_duration(self, duration: float) -> None:
        if self.metrics is None:
            return
        try:
            self.metrics.get_metric("guarded_fetch_duration_seconds").observe(duration)
        except Exception as exc:  # metrics failures should never break lookups
            self.logger.debug("Failed to record guard duration", error=str(exc))

    def _emit(self, method: str, *args) -> None:
        if self.metrics is None:
            return
        try:
            getattr(self.metrics, method)(*args)
        except Exception as exc:  # metrics failures should never break lookups
            self.logger.debug("Failed to record guard metric", metric=method, error=str(exc))
