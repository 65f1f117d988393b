"""
Listing data models for the listings cache guard.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
import time

from pydantic import BaseModel, Field, TypeAdapter


class Listing(BaseModel):
    """Housing listing as held by the backing store and the cache."""
    id: Optional[int] = Field(None, description="Listing ID, assigned by the store")
    title: str = Field(..., max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, decimal_places=2)
    address: str
    city: str
    bedrooms: int = Field(..., ge=0)
    bathrooms: int = Field(..., ge=0)
    available_from: date
    available_to: date
    is_active: bool = True
    owner_id: int
    owner_email: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ListingSearchCriteria(BaseModel):
    """Paged search over active listings."""
    city: Optional[str] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    page: int = Field(0, ge=0)
    size: int = Field(20, ge=1, le=100)

    def cache_key(self) -> str:
        """Derive the search cache key from the criteria."""
        return f"{self.city}:{self.min_price}:{self.max_price}:{self.page}:{self.size}"

    def matches(self, listing: Listing) -> bool:
        """Apply the criteria to a single listing."""
        if not listing.is_active:
            return False
        if self.city and self.city.lower() not in listing.city.lower():
            return False
        if self.min_price is not None and listing.price < self.min_price:
            return False
        if self.max_price is not None and listing.price > self.max_price:
            return False
        return True


@dataclass(frozen=True)
class CacheLookup:
    """Result of a cache read.

    ``found`` with ``value`` of None means the key is cached as absent.
    """
    value: Any = None
    found: bool = False


@dataclass
class LockLease:
    """Exclusive ownership of a per-key critical section."""
    lock_key: str
    token: str
    wait_timeout: float
    lease_timeout: float
    acquired_at: float = field(default_factory=time.monotonic)
    handle: Any = field(default=None, repr=False, compare=False)

    def expires_in(self) -> float:
        """Seconds until the lease auto-expires."""
        return self.lease_timeout - (time.monotonic() - self.acquired_at)


LISTING_UPDATABLE_FIELDS = (
    "title",
    "description",
    "price",
    "address",
    "city",
    "bedrooms",
    "bathrooms",
    "available_from",
    "available_to",
)


def filter_listing_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the fields an owner may change on a listing."""
    return {key: value for key, value in changes.items() if key in LISTING_UPDATABLE_FIELDS}


_listing_list = TypeAdapter(List[Listing])


def encode_listing(listing: Listing) -> str:
    return listing.model_dump_json()


def decode_listing(payload: str) -> Listing:
    return Listing.model_validate_json(payload)


def encode_listings(listings: List[Listing]) -> str:
    return _listing_list.dump_json(listings).decode("utf-8")


def decode_listings(payload: str) -> List[Listing]:
    return _listing_list.validate_json(payload)
