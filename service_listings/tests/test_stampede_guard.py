"""
Unit tests for the stampede guard.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry
from unittest.mock import AsyncMock

from service_listings.app.caching.listing_cache import CacheLayer
from service_listings.app.domain.models import LockLease
from service_listings.app.locking.stampede_guard import StampedeGuard
from shared.metrics import MetricsCollector
from shared.test_helpers import InMemoryCacheBackend, InMemoryLockCoordinator, RecordingMetrics


class TestStampedeGuard:
    """Test cases for StampedeGuard."""

    @pytest.fixture
    def backend(self):
        return InMemoryCacheBackend()

    @pytest.fixture
    def metrics(self):
        return RecordingMetrics()

    @pytest.fixture
    def cache(self, backend):
        return CacheLayer(backend, namespace="housing-listings", base_ttl=60.0, null_ttl=5.0)

    @pytest.fixture
    def coordinator(self):
        return InMemoryLockCoordinator(LockLease)

    @pytest.fixture
    def guard(self, cache, coordinator, metrics):
        return StampedeGuard(
            cache,
            coordinator,
            lock_prefix="lock:housing-listing",
            wait_timeout=0.2,
            lease_timeout=5.0,
            settle_delay=0.0,
            metrics=metrics,
        )

    def test_lock_key_format(self, guard):
        assert guard.lock_key(42) == "lock:housing-listing:42"

    @pytest.mark.asyncio
    async def test_acquired_path_fetches_and_populates(self, guard, cache, coordinator, metrics):
        """Test the holder fetches once, populates and releases."""
        fetch = AsyncMock(return_value={"id": 2})

        result = await guard.fetch_with_guard(2, fetch)

        assert result == {"id": 2}
        fetch.assert_awaited_once_with(2)
        assert (await cache.get(2)).value == {"id": 2}
        assert coordinator.acquired == ["lock:housing-listing:2"]
        assert coordinator.released == ["lock:housing-listing:2"]
        assert not coordinator.is_locked("lock:housing-listing:2")
        assert metrics.count("lock_acquired") == 1
        assert metrics.count("store_fetch_guarded") == 1

    @pytest.mark.asyncio
    async def test_double_check_after_acquire(self, guard, cache, coordinator):
        """A value written while waiting is returned without a fetch."""
        await cache.put(2, {"id": 2, "title": "from another holder"})
        fetch = AsyncMock(return_value={"id": 2})

        result = await guard.fetch_with_guard(2, fetch)

        assert result == {"id": 2, "title": "from another holder"}
        fetch.assert_not_awaited()
        assert coordinator.released == ["lock:housing-listing:2"]

    @pytest.mark.asyncio
    async def test_absent_result_cached_as_absent(self, guard, cache):
        fetch = AsyncMock(return_value=None)

        assert await guard.fetch_with_guard(99, fetch) is None

        lookup = await cache.get(99)
        assert lookup.found is True
        assert lookup.value is None

    @pytest.mark.asyncio
    async def test_timeout_fallback_fetches_directly(self, guard, coordinator, metrics):
        """Test a waiter that times out still gets a value."""
        coordinator.hold("lock:housing-listing:2")
        fetch = AsyncMock(return_value={"id": 2})

        result = await guard.fetch_with_guard(2, fetch)

        assert result == {"id": 2}
        fetch.assert_awaited_once_with(2)
        assert metrics.count("lock_timeout") == 1
        assert metrics.count("store_fetch_fallback") == 1
        assert coordinator.released == []

    @pytest.mark.asyncio
    async def test_timeout_fallback_rechecks_cache(self, cache, coordinator, metrics):
        """The holder's write during the settle delay is picked up."""
        guard = StampedeGuard(
            cache, coordinator, wait_timeout=0.05, lease_timeout=5.0, settle_delay=0.15, metrics=metrics
        )
        coordinator.hold("lock:housing-listing:2")
        fetch = AsyncMock(return_value={"id": 2, "title": "fallback"})

        async def holder_populates():
            await asyncio.sleep(0.08)
            await cache.put(2, {"id": 2, "title": "holder"})

        result, _ = await asyncio.gather(guard.fetch_with_guard(2, fetch), holder_populates())

        assert result == {"id": 2, "title": "holder"}
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_coordinator_unavailable_fails_open(self, guard, coordinator, metrics):
        """Test lookups still succeed when the lock service is down."""
        coordinator.fail_with = ConnectionError("redis down")
        fetch = AsyncMock(return_value={"id": 3})

        result = await guard.fetch_with_guard(3, fetch)

        assert result == {"id": 3}
        assert metrics.count("lock_unavailable") == 1
        assert metrics.count("store_fetch_fallback") == 1

    @pytest.mark.asyncio
    async def test_release_on_fetch_error(self, guard, coordinator):
        """The lock is released before the store error propagates."""
        fetch = AsyncMock(side_effect=RuntimeError("database unavailable"))

        with pytest.raises(RuntimeError):
            await guard.fetch_with_guard(2, fetch)

        assert coordinator.released == ["lock:housing-listing:2"]
        assert not coordinator.is_locked("lock:housing-listing:2")

    @pytest.mark.asyncio
    async def test_release_failure_swallowed(self, guard, coordinator):
        coordinator.release_fails_with = ConnectionError("redis down")
        fetch = AsyncMock(return_value={"id": 2})

        assert await guard.fetch_with_guard(2, fetch) == {"id": 2}

    @pytest.mark.asyncio
    async def test_concurrent_callers_single_fetch(self, backend, coordinator):
        """Many concurrent misses on one key produce one store fetch."""
        cache = CacheLayer(backend, namespace="housing-listings", base_ttl=60.0)
        guard = StampedeGuard(cache, coordinator, wait_timeout=2.0, lease_timeout=5.0, settle_delay=0.0)
        calls = []

        async def fetch(key):
            calls.append(key)
            await asyncio.sleep(0.05)
            return {"id": key}

        results = await asyncio.gather(*(guard.fetch_with_guard(7, fetch) for _ in range(20)))

        assert calls == [7]
        assert all(result == {"id": 7} for result in results)

    @pytest.mark.asyncio
    async def test_fetch_and_populate_direct(self, guard, cache, coordinator, metrics):
        fetch = AsyncMock(return_value={"id": 5})

        assert await guard.fetch_and_populate(5, fetch) == {"id": 5}

        assert coordinator.acquired == []
        assert metrics.count("store_fetch_direct") == 1
        assert (await cache.get(5)).value == {"id": 5}

    @pytest.mark.asyncio
    async def test_metrics_failures_swallowed(self, cache, coordinator):
        guard = StampedeGuard(cache, coordinator, wait_timeout=0.1, settle_delay=0.0, metrics=RecordingMetrics(fail=True))
        fetch = AsyncMock(return_value={"id": 1})

        assert await guard.fetch_with_guard(1, fetch) == {"id": 1}

    @pytest.mark.asyncio
    async def test_guarded_fetch_duration_observed(self, cache, coordinator):
        registry = CollectorRegistry()
        guard = StampedeGuard(cache, coordinator, wait_timeout=0.1, settle_delay=0.0, metrics=MetricsCollector("listings", registry))

        await guard.fetch_with_guard(1, AsyncMock(return_value={"id": 1}))

        assert registry.get_sample_value("guarded_fetch_duration_seconds_count") == 1.0
        assert registry.get_sample_value("lock_acquisitions_total", {"outcome": "acquired"}) == 1.0
