"""
Guarded listing lookups and the write paths that keep them consistent.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

from shared.logging import clear_lookup_context, get_logger, set_lookup_context
from shared.errors import ListingNotFoundError
from ..caching.hot_keys import HotKeyRegistry
from ..caching.listing_cache import CacheLayer
from ..filter.bloom import MembershipFilter
from ..locking.stampede_guard import StampedeGuard
from .models import Listing, ListingSearchCriteria
from .protocols import ListingStore, MetricsSink


class GuardedListingService:
    """Filter -> cache -> stampede guard -> store, in that order.

    Write paths go to the store first, then update the filter and drop
    the affected cache entries. Structural state (does the listing exist)
    is never stale; field values may be for up to one TTL window.
    """

    def __init__(
        self,
        store: ListingStore,
        membership: MembershipFilter,
        cache: CacheLayer,
        search_cache: CacheLayer,
        guard: StampedeGuard,
        *,
        hot_keys: Optional[HotKeyRegistry] = None,
        metrics: Optional[MetricsSink] = None,
        false_positive_rate: float = 0.01,
        filter_headroom: float = 1.0,
        warm_concurrency: int = 5,
    ):
        self.store = store
        self.membership = membership
        self.cache = cache
        self.search_cache = search_cache
        self.guard = guard
        self.hot_keys = hot_keys or HotKeyRegistry()
        self.metrics = metrics
        self.false_positive_rate = false_positive_rate
        self.filter_headroom = filter_headroom
        self._warm_semaphore = asyncio.Semaphore(max(1, warm_concurrency))
        self._pending_adds: Optional[List[Any]] = None
        self._rebuild_lock = asyncio.Lock()
        self.logger = get_logger("listings.lookup")

    async def get_listing(self, listing_id: Any) -> Optional[Listing]:
        """Return the listing, or None when it does not exist."""
        set_lookup_context(listing_id)
        try:
            return await self._lookup(listing_id)
        finally:
            clear_lookup_context()

    async def _lookup(self, listing_id: Any) -> Optional[Listing]:
        if not self.membership.might_contain(listing_id):
            self.logger.info("Membership filter blocked lookup", listing_id=listing_id)
            self._emit("increment_filter_block")
            return None
        self._emit("increment_filter_pass")

        cached = await self.cache.get(listing_id)
        if cached.found:
            return cached.value

        if self.hot_keys.is_hot(listing_id):
            return await self.guard.fetch_with_guard(listing_id, self.store.fetch_by_id)
        return await self.guard.fetch_and_populate(listing_id, self.store.fetch_by_id)

    async def create_listing(self, listing: Listing) -> Listing:
        """Persist a listing and make it visible to the filter and cache."""
        created = await self.store.create(listing)
        self.membership.add(created.id)
        if self._pending_adds is not None:
            self._pending_adds.append(created.id)
        self._set_filter_keys()
        await self.cache.put(created.id, created)
        await self.search_cache.invalidate_all()
        self.logger.info("Created listing", listing_id=created.id)
        return created

    async def update_listing(self, listing_id: Any, changes: Dict[str, Any]) -> Listing:
        """Apply field changes and drop the stale cache entries."""
        updated = await self.store.update(listing_id, changes)
        await self._invalidate(listing_id)
        if updated is None:
            raise ListingNotFoundError(listing_id)
        self.logger.info("Updated listing", listing_id=listing_id, fields=sorted(changes))
        return updated

    async def deactivate_listing(self, listing_id: Any) -> Listing:
        """Soft delete. The ID stays in the membership filter."""
        return await self.update_listing(listing_id, {"is_active": False})

    async def toggle_listing_status(self, listing_id: Any) -> Listing:
        """Flip a listing between active and inactive."""
        current = await self.store.fetch_by_id(listing_id)
        if current is None:
            raise ListingNotFoundError(listing_id)
        return await self.update_listing(listing_id, {"is_active": not current.is_active})

    async def delete_listing(self, listing_id: Any) -> None:
        """Hard delete. The ID stays in the membership filter."""
        deleted = await self.store.delete(listing_id)
        await self._invalidate(listing_id)
        if not deleted:
            raise ListingNotFoundError(listing_id)
        self.logger.info("Deleted listing", listing_id=listing_id)

    async def search_listings(self, criteria: ListingSearchCriteria) -> List[Listing]:
        """Search through the derived search cache."""
        search_key = criteria.cache_key()
        cached = await self.search_cache.get(search_key)
        if cached.found and cached.value is not None:
            return cached.value

        results = await self.store.search(criteria)
        await self.search_cache.put(search_key, results)
        return results

    async def rebuild_filter(self) -> MembershipFilter:
        """Re-enumerate the store and swap in a freshly sized filter.

        Rebuilds run one at a time; a caller arriving during a rebuild waits
        and then enumerates again, so it sees every committed ID.
        """
        async with self._rebuild_lock:
            pending: List[Any] = []
            self._pending_adds = pending
            try:
                keys = await self.store.list_all_keys()
                rebuilt = MembershipFilter.initialize(
                    keys, self.false_positive_rate, headroom=self.filter_headroom
                )
                # IDs created while the enumeration was in flight.
                for key in pending:
                    rebuilt.add(key)
            finally:
                self._pending_adds = None

            self.logger.info(
                "Membership filter rebuilt",
                previous_insertions=self.membership.insertions,
                insertions=rebuilt.insertions,
                created_during_rebuild=len(pending),
            )
            self.membership = rebuilt
            self._set_filter_keys()
            return rebuilt

    async def warm_hot_keys(self, limit: Optional[int] = None) -> Dict[str, Any]:
        """Pre-populate the cache for hot keys.

        Returns a summary of planned, warmed, missing and failed keys.
        """
        keys = self.hot_keys.warm_keys(limit)
        summary: Dict[str, Any] = {"planned": len(keys), "warmed": 0, "misses": 0, "errors": []}
        if not keys:
            self.logger.info("No hot keys configured; cache warm skipped")
            return summary

        results = await asyncio.gather(*(self._warm_key(key) for key in keys), return_exceptions=True)
        for key, outcome in zip(keys, results):
            if isinstance(outcome, Exception):
                self.logger.error("Cache warm task failed", listing_id=key, error=str(outcome))
                summary["errors"].append(str(outcome))
            elif outcome:
                summary["warmed"] += 1
            else:
                summary["misses"] += 1

        self.logger.info(
            "Cache warm completed",
            warmed=summary["warmed"],
            misses=summary["misses"],
            errors=len(summary["errors"]),
        )
        return summary

    async def _warm_key(self, key: Any) -> bool:
        async with self._warm_semaphore:
            start = time.perf_counter()
            listing = await self.guard.fetch_and_populate(key, self.store.fetch_by_id, path="warm")
            self.logger.debug(
                "Warmed listing",
                listing_id=key,
                found=listing is not None,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            return listing is not None

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Filter sizing plus counter tallies."""
        stats: Dict[str, Any] = {
            "filter": self.membership.stats(),
            "cache_namespace": self.cache.namespace,
            "search_namespace": self.search_cache.namespace,
            "guard_mode": self.hot_keys.mode,
        }
        snapshot = getattr(self.metrics, "snapshot", None)
        if snapshot is not None:
            try:
                stats["counters"] = snapshot()
            except Exception as exc:
                self.logger.debug("Failed to snapshot metrics", error=str(exc))
        return stats

    async def _invalidate(self, listing_id: Any) -> None:
        await self.cache.invalidate(listing_id)
        await self.search_cache.invalidate_all()

    def _set_filter_keys(self) -> None:
        self._emit("set_filter_keys", self.membership.insertions)

    def _emit(self, method: str, *args) -> None:
        if self.metrics is None:
            return
        try:
            getattr(self.metrics, method)(*args)
        except Exception as exc:  # metrics failures should never break lookups
            self.logger.debug("Failed to record lookup metric", metric=method, error=str(exc))
