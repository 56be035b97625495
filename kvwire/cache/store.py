"""
Key-Value Store Module

This module implements the shared in-memory key-value storage.

A single KVStore instance is shared by every client session, the
expiration reaper and the per-key deletion timers. Every operation takes
the store lock, so reads and writes are atomic per key.
"""

import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class StoreEntry:
    """
    A stored value.

    Attributes:
        value: The string value
        expire_at: Absolute wall-clock expiration instant (None = no expiration)
        generation: Store-wide write counter captured when the value was written
    """
    value: str
    expire_at: Optional[float] = None
    generation: int = 0

    def is_expired(self, now: float) -> bool:
        return self.expire_at is not None and self.expire_at <= now


class KVStore:
    """
    Concurrency-safe in-memory key-value store with optional per-key expiration.

    Expired entries are logically absent: reads check the expiration instant
    and remove the entry on the spot (lazy expiration). Physical removal is
    also driven by the ExpirationReaper sweep and by per-key deletion timers.

    Internal Storage:
        key -> StoreEntry(value, expire_at, generation)

    Every write stamps the entry with a fresh generation number. Deletion
    timers remember the generation they were scheduled for, so a timer left
    over from an earlier SET never removes a value written afterwards.
    """

    def __init__(self):
        self._store: Dict[str, StoreEntry] = {}
        self._lock = threading.Lock()
        self._generations = itertools.count(1)

    def _live_entry(self, key: str, now: Optional[float] = None) -> Optional[StoreEntry]:
        """Return the entry for key, dropping it if it has expired. Caller holds the lock."""
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.is_expired(time.time() if now is None else now):
            del self._store[key]
            return None
        return entry

    def get(self, key: str) -> Optional[str]:
        """
        Retrieve the value for a given key.

        Returns:
            The value if present and not expired, None otherwise
        """
        with self._lock:
            entry = self._live_entry(key)
            return entry.value if entry is not None else None

    def set(
            self,
            key: str,
            value: str,
            *,
            only_if_absent: bool = False,
            only_if_present: bool = False,
            expire_at: Optional[float] = None,
    ) -> Optional[int]:
        """
        Store a value, optionally conditioned on the key's current presence.

        Any previously recorded expiration is replaced by expire_at
        (None clears it).

        Args:
            key: The key to store
            value: The value to associate with the key
            only_if_absent: Only write if the key does not exist (NX)
            only_if_present: Only write if the key already exists (XX)
            expire_at: Absolute expiration instant, as returned by time.time()

        Returns:
            The generation number of the written entry, or None if the
            condition was not met and nothing was written.
        """
        with self._lock:
            present = self._live_entry(key) is not None
            if only_if_absent and present:
                return None
            if only_if_present and not present:
                return None

            generation = next(self._generations)
            self._store[key] = StoreEntry(value, expire_at, generation)
            return generation

    def getset(self, key: str, value: str) -> Optional[str]:
        """
        Atomically replace the value and return the previous one.

        The new value carries no expiration.

        Returns:
            The previous value, or None if the key was absent
        """
        with self._lock:
            entry = self._live_entry(key)
            self._store[key] = StoreEntry(value, None, next(self._generations))
            return entry.value if entry is not None else None

    def delete(self, key: str) -> bool:
        """
        Delete a key.

        Deleting an absent key is a no-op.

        Returns:
            True if a live key was removed, False otherwise
        """
        with self._lock:
            entry = self._store.pop(key, None)
            return entry is not None and not entry.is_expired(time.time())

    def delete_if_generation(self, key: str, generation: int) -> bool:
        """
        Delete a key only if it still holds the value written at the given generation.

        Returns:
            True if the key was removed
        """
        with self._lock:
            entry = self._store.get(key)
            if entry is None or entry.generation != generation:
                return False
            del self._store[key]
            return True

    def exists(self, key: str) -> bool:
        """Check if a key exists and is not expired."""
        with self._lock:
            return self._live_entry(key) is not None

    def set_expire_at(self, key: str, instant: float) -> bool:
        """
        Record an absolute expiration instant for an existing key.

        Returns:
            True if the key exists, False otherwise
        """
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return False
            entry.expire_at = instant
            return True

    def clear_expire(self, key: str) -> bool:
        """
        Remove the recorded expiration of a key.

        Returns:
            True if the key existed and had an expiration
        """
        with self._lock:
            entry = self._live_entry(key)
            if entry is None or entry.expire_at is None:
                return False
            entry.expire_at = None
            return True

    def get_expire_at(self, key: str) -> Optional[float]:
        """Return the recorded expiration instant of a live key, if any."""
        with self._lock:
            entry = self._live_entry(key)
            return entry.expire_at if entry is not None else None

    def size(self) -> int:
        """
        Get the current number of keys in the store.

        Note: This may include expired keys that haven't been reaped yet.
        """
        with self._lock:
            return len(self._store)

    def clear(self) -> None:
        """Remove all keys from the store."""
        with self._lock:
            self._store.clear()

    def cleanup_expired(self) -> int:
        """
        Remove every key whose expiration instant is at or before now.

        Returns:
            Number of keys removed
        """
        with self._lock:
            now = time.time()
            expired = [k for k, entry in self._store.items() if entry.is_expired(now)]
            for key in expired:
                del self._store[key]
            return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the store.

        Returns:
            Dictionary containing:
            - total_keys: Total keys physically stored
            - expired_keys: Count of expired (but not yet reaped) keys
            - active_keys: Count of non-expired keys
            - volatile_keys: Count of non-expired keys carrying an expiration
        """
        with self._lock:
            now = time.time()
            total = len(self._store)
            expired = sum(1 for entry in self._store.values() if entry.is_expired(now))
            volatile = sum(
                1 for entry in self._store.values()
                if entry.expire_at is not None and not entry.is_expired(now)
            )

        return {
            "total_keys": total,
            "expired_keys": expired,
            "active_keys": total - expired,
            "volatile_keys": volatile,
        }
