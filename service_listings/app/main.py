"""
Listings cache guard service lifecycle.

Owns the process-wide membership filter and the Redis and Postgres
clients: ``start()`` builds them, ``stop()`` releases them.
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry

from shared.config import ListingsConfig, get_config
from shared.errors import FilterInitializationError, ListingServiceException
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector

from .caching.hot_keys import HotKeyRegistry
from .caching.listing_cache import CacheLayer
from .caching.redis_backend import RedisCacheBackend
from .domain.lookup import GuardedListingService
from .domain.models import decode_listing, decode_listings, encode_listing, encode_listings
from .domain.protocols import CacheBackend, ListingStore, LockCoordinator
from .filter.bloom import MembershipFilter
from .locking.redis_lock import RedisLockCoordinator
from .locking.stampede_guard import StampedeGuard
from .persistence.postgres import PostgresListingStore


SERVICE_NAME = "listings"


def build_listing_service(
    config: ListingsConfig,
    *,
    store: ListingStore,
    backend: CacheBackend,
    coordinator: LockCoordinator,
    membership: MembershipFilter,
    metrics: Optional[MetricsCollector] = None,
) -> GuardedListingService:
    """Wire filter, cache layers, guard and store into the lookup path."""
    cache = CacheLayer(
        backend,
        namespace=config.cache_namespace,
        base_ttl=config.cache_base_ttl_seconds,
        jitter_fraction=config.cache_jitter_fraction,
        null_ttl=config.cache_null_ttl_seconds,
        metrics=metrics,
        metrics_label="entity",
        encode=encode_listing,
        decode=decode_listing,
    )
    search_cache = CacheLayer(
        backend,
        namespace=config.search_namespace,
        base_ttl=config.search_ttl_seconds,
        jitter_fraction=config.cache_jitter_fraction,
        null_ttl=0,
        metrics=metrics,
        metrics_label="search",
        encode=encode_listings,
        decode=decode_listings,
    )
    guard = StampedeGuard(
        cache,
        coordinator,
        lock_prefix=config.lock_prefix,
        wait_timeout=config.lock_wait_timeout_seconds,
        lease_timeout=config.lock_lease_timeout_seconds,
        settle_delay=config.lock_settle_delay_seconds,
        metrics=metrics,
    )
    return GuardedListingService(
        store,
        membership,
        cache,
        search_cache,
        guard,
        hot_keys=HotKeyRegistry(config.guard_mode, config.hot_keys_path),
        metrics=metrics,
        false_positive_rate=config.filter_false_positive_rate,
        filter_headroom=config.filter_headroom,
        warm_concurrency=config.warm_concurrency,
    )


async def build_membership_filter(store: ListingStore, config: ListingsConfig) -> MembershipFilter:
    """Enumerate every listing ID and build the filter.

    Startup must not continue without it: a missing filter would silently
    disable penetration protection.
    """
    try:
        keys = await store.list_all_keys()
    except Exception as exc:
        raise FilterInitializationError(f"Could not enumerate listing IDs: {exc}") from exc
    try:
        return MembershipFilter.initialize(
            keys, config.filter_false_positive_rate, headroom=config.filter_headroom
        )
    except MemoryError as exc:
        raise FilterInitializationError("Not enough memory for the membership filter") from exc


class ListingsService:
    """Process-lifetime owner of the guarded lookup path."""

    def __init__(self, config: Optional[ListingsConfig] = None, *, registry: Optional[CollectorRegistry] = None):
        self.config = config or get_config()
        configure_logging(SERVICE_NAME, self.config.log_level, json_logs=self.config.env != "local")
        self.logger = get_logger(f"{SERVICE_NAME}.service")
        self.metrics = get_metrics_collector(SERVICE_NAME, registry)

        self.cache_backend = RedisCacheBackend(self.config.redis_url)
        self.store = PostgresListingStore(self.config.postgres_dsn)
        self.listings: Optional[GuardedListingService] = None

    async def start(self, *, warm: bool = True) -> GuardedListingService:
        """Connect clients, build the filter and optionally warm hot keys."""
        await self.store.start()
        try:
            await self.cache_backend.start()
        except ListingServiceException as exc:
            # Lookups fail open to the store until Redis comes back.
            self.logger.warning("Starting without Redis; cache guard degraded", error=exc.message)

        membership = await build_membership_filter(self.store, self.config)
        self.listings = build_listing_service(
            self.config,
            store=self.store,
            backend=self.cache_backend,
            coordinator=RedisLockCoordinator(self.cache_backend.redis),
            membership=membership,
            metrics=self.metrics,
        )
        self.metrics.set_filter_keys(membership.insertions)

        if warm:
            await self.listings.warm_hot_keys()

        self.logger.info(
            "Listings service started",
            filter_keys=membership.insertions,
            guard_mode=self.config.guard_mode,
        )
        return self.listings

    async def stop(self):
        """Release clients; the filter goes with the process."""
        await self.cache_backend.stop()
        await self.store.stop()
        self.listings = None
        self.logger.info("Listings service stopped")

    async def health_check(self) -> Dict[str, Any]:
        """Dependency health; a down cache only degrades performance."""
        redis_ok = await self.cache_backend.health_check()
        return {
            "service": SERVICE_NAME,
            "status": "ok" if self.listings is not None else "starting",
            "dependencies": {"redis": "ok" if redis_ok else "degraded"},
        }


def create_service(**overrides) -> ListingsService:
    """Create the listings service from environment configuration."""
    return ListingsService(get_config(**overrides))
