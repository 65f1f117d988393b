"""
PostgreSQL backing store for housing listings.
"""

import asyncio
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

import asyncpg

from shared.logging import get_logger
from shared.errors import BackingStoreError, ListingServiceException
from ..domain.models import Listing, ListingSearchCriteria, filter_listing_changes


LISTING_COLUMNS = (
    "id, title, description, price, address, city, bedrooms, bathrooms, "
    "available_from, available_to, is_active, owner_id, owner_email, created_at, updated_at"
)

# Driver, pool and network failures, plus command_timeout expiry.
STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class PostgresListingStore:
    """Authoritative listing store on an asyncpg pool.

    Every query failure surfaces as ``BackingStoreError``.
    """

    def __init__(self, dsn: str, *, pool: Optional[asyncpg.Pool] = None):
        self.dsn = dsn
        self.logger = get_logger("listings.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = pool

    async def start(self):
        """Start the persistence layer."""
        if self.pool is not None:
            return
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )

            await self._create_tables()

            self.logger.info("PostgreSQL listing store started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL listing store", error=str(e))
            raise ListingServiceException("POSTGRES_START_FAILED", str(e))

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL listing store stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS housing_listings (
                    id BIGSERIAL PRIMARY KEY,
                    title VARCHAR(255) NOT NULL,
                    description TEXT,
                    price NUMERIC(10, 2) NOT NULL,
                    address VARCHAR(255) NOT NULL,
                    city VARCHAR(255) NOT NULL,
                    bedrooms INTEGER NOT NULL,
                    bathrooms INTEGER NOT NULL,
                    available_from DATE NOT NULL,
                    available_to DATE NOT NULL,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    owner_id BIGINT NOT NULL,
                    owner_email VARCHAR(255) NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_housing_listings_city ON housing_listings(city);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_housing_listings_active_created
                    ON housing_listings(is_active, created_at DESC);
            """)

    async def fetch_by_id(self, key: Any) -> Optional[Listing]:
        """Fetch one listing, None when the ID does not exist."""
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT {LISTING_COLUMNS} FROM housing_listings WHERE id = $1",
                    int(key),
                )
        except STORE_ERRORS as e:
            self.logger.error("Failed to fetch listing", listing_id=key, error=str(e))
            raise BackingStoreError(f"Failed to fetch listing {key}: {e}") from e

        return self._row_to_listing(row) if row else None

    async def list_all_keys(self) -> List[int]:
        """Enumerate every listing ID, active or not."""
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch("SELECT id FROM housing_listings")
        except STORE_ERRORS as e:
            self.logger.error("Failed to enumerate listing IDs", error=str(e))
            raise BackingStoreError(f"Failed to enumerate listing IDs: {e}") from e

        return [row["id"] for row in rows]

    async def create(self, listing: Listing) -> Listing:
        """Insert a listing and return it with its assigned ID."""
        now = datetime.now(timezone.utc)
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO housing_listings (
                        title, description, price, address, city, bedrooms, bathrooms,
                        available_from, available_to, is_active, owner_id, owner_email,
                        created_at, updated_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $13)
                    RETURNING {LISTING_COLUMNS}
                    """,
                    listing.title,
                    listing.description,
                    listing.price,
                    listing.address,
                    listing.city,
                    listing.bedrooms,
                    listing.bathrooms,
                    listing.available_from,
                    listing.available_to,
                    listing.is_active,
                    listing.owner_id,
                    listing.owner_email,
                    now,
                )
        except STORE_ERRORS as e:
            self.logger.error("Failed to create listing", error=str(e))
            raise BackingStoreError(f"Failed to create listing: {e}") from e

        return self._row_to_listing(row)

    async def update(self, key: Any, changes: Dict[str, Any]) -> Optional[Listing]:
        """Apply field changes; None when the listing does not exist."""
        fields = dict(filter_listing_changes(changes))
        if "is_active" in changes:
            fields["is_active"] = bool(changes["is_active"])
        fields["updated_at"] = datetime.now(timezone.utc)

        assignments = ", ".join(f"{name} = ${index}" for index, name in enumerate(fields, start=2))
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"UPDATE housing_listings SET {assignments} WHERE id = $1 RETURNING {LISTING_COLUMNS}",
                    int(key),
                    *fields.values(),
                )
        except STORE_ERRORS as e:
            self.logger.error("Failed to update listing", listing_id=key, error=str(e))
            raise BackingStoreError(f"Failed to update listing {key}: {e}") from e

        return self._row_to_listing(row) if row else None

    async def delete(self, key: Any) -> bool:
        """Hard delete a listing."""
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute("DELETE FROM housing_listings WHERE id = $1", int(key))
        except STORE_ERRORS as e:
            self.logger.error("Failed to delete listing", listing_id=key, error=str(e))
            raise BackingStoreError(f"Failed to delete listing {key}: {e}") from e

        return result == "DELETE 1"

    async def search(self, criteria: ListingSearchCriteria) -> List[Listing]:
        """Active listings by city substring and price range, newest first."""
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {LISTING_COLUMNS} FROM housing_listings
                    WHERE is_active = TRUE
                      AND ($1::text IS NULL OR city ILIKE '%' || $1 || '%')
                      AND ($2::numeric IS NULL OR price >= $2)
                      AND ($3::numeric IS NULL OR price <= $3)
                    ORDER BY created_at DESC
                    LIMIT $4 OFFSET $5
                    """,
                    criteria.city,
                    criteria.min_price,
                    criteria.max_price,
                    criteria.size,
                    criteria.page * criteria.size,
                )
        except STORE_ERRORS as e:
            self.logger.error("Failed to search listings", error=str(e))
            raise BackingStoreError(f"Failed to search listings: {e}") from e

        return [self._row_to_listing(row) for row in rows]

    @staticmethod
    def _row_to_listing(row: Any) -> Listing:
        return Listing(**dict(row))
