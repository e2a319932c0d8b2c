"""Keyed TTL storage used by the code and session stores."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

# Sentinel returned by an update function to delete the key
DELETE = object()


class KeyValueStore(Protocol):
    """Minimal key-value interface with per-key expiry.

    Implementations must make every method atomic with respect to the key.
    A distributed cache can be swapped in without changing call sites.
    """

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl_seconds: float) -> None: ...

    def delete(self, key: str) -> bool: ...

    def update(
        self,
        key: str,
        fn: Callable[[Any | None], Any],
        ttl_seconds: float | None = None,
    ) -> Any | None: ...

    def cleanup(self) -> int: ...


@dataclass
class StoreEntry:
    """A stored value with expiration."""

    value: Any
    expires_at: float


class InMemoryKeyValueStore:
    """Thread-safe in-memory key-value store with TTL and background sweep."""

    def __init__(
        self,
        name: str,
        cleanup_interval_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            name: Label used in log messages.
            cleanup_interval_seconds: Interval of the background sweep.
            clock: Time source in epoch seconds.
        """
        self.name = name
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock
        self._data: dict[str, StoreEntry] = {}
        self._lock = Lock()
        self._cleanup_task: asyncio.Task | None = None

    async def start_cleanup_task(self) -> None:
        """Start background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("%s store cleanup task started", self.name)

    async def stop_cleanup_task(self) -> None:
        """Stop background cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("%s store cleanup task stopped", self.name)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            count = self.cleanup()
            if count > 0:
                logger.debug("%s store cleaned up %d expired entries", self.name, count)

    def _live_entry(self, key: str) -> StoreEntry | None:
        """Return the entry if present and unexpired. Must be called with lock held."""
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._live_entry(key)
            return entry.value if entry else None

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._data[key] = StoreEntry(value=value, expires_at=self._clock() + ttl_seconds)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def update(
        self,
        key: str,
        fn: Callable[[Any | None], Any],
        ttl_seconds: float | None = None,
    ) -> Any | None:
        """Atomically read-modify-write a key.

        ``fn`` receives the current value (or None) and returns the new
        value, or ``DELETE`` to remove the key. Exceptions raised by ``fn``
        leave the key untouched.

        Args:
            key: Key to update.
            fn: Update function, called with the lock held.
            ttl_seconds: When given, the result is upserted with a fresh
                expiry. Otherwise the key keeps its expiry and absent keys
                are not created.

        Returns:
            The new value, or None if the key was deleted or absent.
        """
        with self._lock:
            entry = self._live_entry(key)
            new_value = fn(entry.value if entry else None)
            if new_value is DELETE:
                self._data.pop(key, None)
                return None
            if ttl_seconds is not None:
                self._data[key] = StoreEntry(value=new_value, expires_at=self._clock() + ttl_seconds)
                return new_value
            if entry is None:
                return None
            entry.value = new_value
            return new_value

    def cleanup(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired_keys = [k for k, v in self._data.items() if v.expires_at <= now]
            for key in expired_keys:
                del self._data[key]
            return len(expired_keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def get_stats(self) -> dict:
        """Get store statistics for monitoring."""
        now = self._clock()
        with self._lock:
            valid_count = sum(1 for v in self._data.values() if v.expires_at > now)
            return {
                "name": self.name,
                "total_entries": len(self._data),
                "valid_entries": valid_count,
            }
