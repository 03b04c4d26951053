"""Client-side storage lock kept in session storage.

The lock time is stored in milliseconds. A client is locked while
``current_time < lock_time + ttl * 1000``. Priming page views bypass both the
check and the write.
"""

from __future__ import annotations

from collections.abc import MutableMapping

STORAGE_LOCK_TIME_KEY = "detectiveStorageLockTime"


class ClientStorageLock:
    """TTL gate over the last submission time of this browser session."""

    def __init__(
        self,
        storage: MutableMapping[str, str],
        ttl: int,
        *,
        is_priming: bool = False,
    ) -> None:
        """Initialize the lock.

        Args:
            storage: Session storage of the page
            ttl: Lock TTL in seconds (0 disables locking)
            is_priming: Whether the page view carries the priming marker
        """
        self.storage = storage
        self.ttl = ttl
        self.is_priming = is_priming

    def is_locked(self, current_time: int) -> bool:
        """Check the lock at ``current_time`` (milliseconds)."""
        if self.is_priming or self.ttl == 0:
            return False

        value = self.storage.get(STORAGE_LOCK_TIME_KEY)
        if value is None:
            return False
        try:
            lock_time = int(value)
        except (TypeError, ValueError):
            return False
        return current_time < lock_time + self.ttl * 1000

    def set_lock(self, current_time: int) -> None:
        if self.is_priming:
            return
        self.storage[STORAGE_LOCK_TIME_KEY] = str(current_time)
