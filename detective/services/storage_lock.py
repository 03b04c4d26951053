"""Per-client storage lock throttling URL Metric submissions.

The lock is a per-client timestamp kept in Redis. A client is locked while
``now < last_lock_time + ttl``. A TTL of zero means clients are never locked.
Client identity is the request IP, hashed before use in a Redis key.

Usage:
    lock = StorageLock(redis_client, ttl=60)
    if await lock.is_locked(client_ip):
        raise StorageLockedError()
    await lock.set_lock(client_ip)
"""

from __future__ import annotations

import hashlib
import time

from detective.core.logging import get_logger, sanitize_error
from detective.core.redis import RedisClient

logger = get_logger(__name__)


class StorageLock:
    """Redis-backed TTL gate over a client-scoped timestamp."""

    def __init__(
        self,
        redis_client: RedisClient,
        ttl: int,
        key_prefix: str = "url_metric_storage_lock",
    ) -> None:
        """Initialize the storage lock.

        Args:
            redis_client: Redis client instance
            ttl: Lock TTL in seconds (0 disables locking)
            key_prefix: Redis key prefix for lock timestamps
        """
        self.redis_client = redis_client
        self.ttl = ttl
        self.key_prefix = key_prefix

    def _make_key(self, client_id: str) -> str:
        digest = hashlib.sha256(client_id.encode("utf-8")).hexdigest()
        return f"{self.key_prefix}:{digest}"

    async def is_locked(
        self,
        client_id: str,
        now: float | None = None,
        *,
        bypass: bool = False,
    ) -> bool:
        """Check whether the client is currently locked out of storing.

        Args:
            client_id: Client identity (IP address)
            now: Current time in seconds (defaults to time.time())
            bypass: Privileged override that skips the lookup entirely

        Returns:
            True if a lock set within the last ``ttl`` seconds exists
        """
        if bypass or self.ttl == 0:
            return False

        now = time.time() if now is None else now
        try:
            lock_time = await self.redis_client.get(self._make_key(client_id))
        except Exception as e:
            # On Redis errors, fail open (allow the submission)
            logger.error(f"Storage lock check failed: {sanitize_error(e)}")
            return False

        if lock_time is None:
            return False
        try:
            return now < float(lock_time) + self.ttl
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed storage lock value: {lock_time!r}")
            return False

    async def set_lock(
        self,
        client_id: str,
        now: float | None = None,
        *,
        bypass: bool = False,
    ) -> None:
        """Record ``now`` as the client's last submission time.

        The Redis key expires with the TTL so idle clients leave no state behind.
        With a TTL of zero any existing lock is removed instead.
        """
        if bypass:
            return

        key = self._make_key(client_id)
        now = time.time() if now is None else now
        try:
            if self.ttl == 0:
                await self.redis_client.delete(key)
            else:
                await self.redis_client.set(key, now, expire=self.ttl)
        except Exception as e:
            logger.error(f"Failed to set storage lock: {sanitize_error(e)}")
