"""
Narrow interfaces to the collaborators of the cache guard.
"""

from typing import Any, Iterable, List, Optional, Protocol

from .models import LockLease


class CacheBackend(Protocol):
    """Distributed key-value store with TTL support."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: float) -> None: ...

    async def delete(self, key: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def delete_pattern(self, pattern: str) -> int: ...


class LockCoordinator(Protocol):
    """Cluster-wide mutual exclusion with lease semantics."""

    async def try_acquire(
        self, lock_key: str, wait_timeout: float, lease_timeout: float
    ) -> Optional[LockLease]: ...

    async def release(self, lease: LockLease) -> None: ...


class ListingStore(Protocol):
    """Authoritative listing store."""

    async def fetch_by_id(self, key: Any) -> Optional[Any]: ...

    async def list_all_keys(self) -> Iterable[Any]: ...

    async def create(self, listing: Any) -> Any: ...

    async def update(self, key: Any, changes: dict) -> Optional[Any]: ...

    async def delete(self, key: Any) -> bool: ...

    async def search(self, criteria: Any) -> List[Any]: ...


class MetricsSink(Protocol):
    """Counter interface called by the cache guard."""

    def increment_filter_block(self) -> None: ...

    def increment_filter_pass(self) -> None: ...

    def increment_cache_hit(self, cache: str = "entity") -> None: ...

    def increment_cache_miss(self, cache: str = "entity") -> None: ...
