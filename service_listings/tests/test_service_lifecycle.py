"""
Unit tests for the listings service lifecycle.
"""

import pytest
from unittest.mock import AsyncMock, patch

from service_listings.app.caching.redis_backend import RedisCacheBackend
from service_listings.app.domain.models import Listing
from service_listings.app.main import ListingsService
from shared.config import ListingsConfig
from shared.errors import BackingStoreError, FilterInitializationError, ListingServiceException
from shared.test_helpers import InMemoryListingStore, TestDataFactory


class TestListingsService:
    """Test cases for ListingsService."""

    @pytest.fixture
    def service(self):
        service = ListingsService(ListingsConfig(lock_settle_delay_seconds=0.0))
        store = InMemoryListingStore([Listing(id=key, **TestDataFactory.listing_fields()) for key in (1, 2, 3)])
        store.start = AsyncMock()
        store.stop = AsyncMock()
        service.store = store
        return service

    @pytest.mark.asyncio
    async def test_start_without_redis_fails_open(self, service):
        """Test the service comes up and serves from the store when Redis is down."""
        with patch.object(
            RedisCacheBackend, "start", AsyncMock(side_effect=ListingServiceException("REDIS_START_FAILED", "refused"))
        ):
            listings = await service.start()

        assert listings.membership.insertions == 3
        assert (await listings.get_listing(2)).id == 2
        assert await listings.get_listing(4) is None

        health = await service.health_check()
        assert health["status"] == "ok"
        assert health["dependencies"]["redis"] == "degraded"

        await service.stop()
        service.store.stop.assert_awaited_once()
        assert service.listings is None

    @pytest.mark.asyncio
    async def test_start_fails_without_filter(self, service):
        service.store.fail_with = BackingStoreError("database unavailable")

        with patch.object(RedisCacheBackend, "start", AsyncMock()):
            with pytest.raises(FilterInitializationError):
                await service.start()

        assert service.listings is None
