"""
Redis lock coordinator for the stampede guard.
"""

import uuid
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import LockError

from shared.logging import get_logger
from ..domain.models import LockLease


class RedisLockCoordinator:
    """Token-owned Redis locks with bounded wait and lease.

    Built on redis-py's Lock: acquisition is ``SET NX PX`` and release is a
    Lua compare-and-delete, so a holder whose lease expired cannot delete
    a lock that has since passed to someone else.
    """

    def __init__(self, client: redis.Redis, *, poll_interval: float = 0.05):
        self.redis = client
        self.poll_interval = poll_interval
        self.logger = get_logger("listings.lock.redis")

    async def try_acquire(self, lock_key: str, wait_timeout: float, lease_timeout: float) -> Optional[LockLease]:
        """Wait up to ``wait_timeout`` for the lock; None if it stayed taken."""
        token = uuid.uuid4().hex
        lock = self.redis.lock(
            lock_key,
            timeout=lease_timeout,
            sleep=self.poll_interval,
            blocking=True,
            blocking_timeout=wait_timeout,
            thread_local=False,
        )
        acquired = await lock.acquire(token=token)
        if not acquired:
            return None

        return LockLease(
            lock_key=lock_key,
            token=token,
            wait_timeout=wait_timeout,
            lease_timeout=lease_timeout,
            handle=lock,
        )

    async def release(self, lease: LockLease) -> None:
        """Release a lease; an already expired lease is logged, not raised."""
        try:
            await lease.handle.release()
        except LockError as exc:
            self.logger.warning(
                "Lock lease expired before release",
                lock_key=lease.lock_key,
                error=str(exc),
            )
