from __future__ import annotations

import asyncio
import logging
import sys
import time
from collections import OrderedDict
from threading import Event, Lock, Thread
from typing import Any, Callable, Dict, Optional

from cache_connect.application.ports import Populate
from cache_connect.domain.errors import StoreError

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 2048
DEFAULT_TTL_MS = 60_000
DEFAULT_MAX_ITEMS = 1000
DEFAULT_MAX_MEMORY_MB = 100
DEFAULT_CLEANUP_INTERVAL = 10


class FrameEntry:
    def __init__(self, value: bytes, ttl_ms: Optional[int] = None, created_at: Optional[float] = None):
        self.value = value
        self.ttl_ms = None if ttl_ms is not None and ttl_ms <= 0 else ttl_ms
        self.created_at = created_at if created_at is not None else time.monotonic()
        self.size_bytes = sys.getsizeof(value)


def _limit(name: str, value: Optional[int], default: int, minimum: int) -> int:
    resolved = default if value is None else value
    if resolved < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {resolved}")
    return resolved


class FrameStore:
    """
    In-process LRU store of encoded frames with the ``get_set`` contract.

    TTLs are in milliseconds. ``ttl`` is the default applied when
    ``get_set``/``set`` are not given one; a TTL <= 0 means no expiry.
    """

    def __init__(
        self,
        ttl: Optional[int] = None,
        max_items: Optional[int] = None,
        max_memory_mb: Optional[int] = None,
        cleanup_interval: Optional[int] = None,
        max_value_bytes: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.ttl = _limit("ttl", ttl, DEFAULT_TTL_MS, 0)
        self.max_items = _limit("max_items", max_items, DEFAULT_MAX_ITEMS, 1)
        self.max_memory_bytes = _limit("max_memory_mb", max_memory_mb, DEFAULT_MAX_MEMORY_MB, 1) * 1024 * 1024
        self.cleanup_interval = _limit("cleanup_interval", cleanup_interval, DEFAULT_CLEANUP_INTERVAL, 1)
        self.max_value_bytes = min(
            _limit("max_value_bytes", max_value_bytes, self.max_memory_bytes, 1),
            self.max_memory_bytes,
        )

        self.store: OrderedDict[str, FrameEntry] = OrderedDict()
        self.current_memory_bytes = 0
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.lock = Lock()
        self._clock = clock or time.monotonic

        self._stop_event = Event()
        self.cleaner_thread = Thread(target=self._background_cleanup, daemon=True)
        self.cleaner_thread.start()

    async def get_set(
        self, key: str, populate: Populate, *, ttl: Optional[int] = None
    ) -> tuple[Optional[bytes], bool]:
        """
        Return ``(value, True)`` for a live entry; otherwise populate it.

        ``populate`` is awaited at most once and its errors propagate
        unchanged. A ``None`` result is returned but not stored.
        """
        try:
            value = await asyncio.to_thread(self.get, key)
        except (TypeError, ValueError) as exc:
            raise StoreError(str(exc)) from exc
        if value is not None:
            return value, True

        value = await populate(key)
        if value is None:
            return None, False

        stored = await asyncio.to_thread(self.set, key, value, self.ttl if ttl is None else ttl)
        if not stored:
            logger.warning("Frame for key %r not stored (%d bytes)", key, len(value))
        return value, False

    def _is_expired(self, entry: FrameEntry) -> bool:
        if entry.ttl_ms is None:
            return False
        return (self._clock() - entry.created_at) * 1000 > entry.ttl_ms

    def _validate_key(self, key: str) -> None:
        if not isinstance(key, str):
            raise TypeError("key must be a string")
        if not key:
            raise ValueError("key cannot be empty")
        if len(key) > MAX_KEY_LENGTH:
            raise ValueError(f"key length must be <= {MAX_KEY_LENGTH}")

    def get(self, key: str) -> Optional[bytes]:
        self._validate_key(key)
        with self.lock:
            if key not in self.store:
                self.misses += 1
                return None

            entry = self.store[key]
            if self._is_expired(entry):
                self.misses += 1
                self._remove_entry(key)
                return None

            self.store.move_to_end(key)
            self.hits += 1
            return entry.value

    def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> bool:
        """Store ``value``; on failure any previous frame for ``key`` is kept."""
        self._validate_key(key)
        entry = FrameEntry(value, ttl, created_at=self._clock())
        with self.lock:
            previous = self.store.pop(key, None)
            if previous is not None:
                self.current_memory_bytes -= previous.size_bytes

            if not self._make_room(entry.size_bytes, replacing=previous is not None):
                if previous is not None:
                    self.store[key] = previous
                    self.current_memory_bytes += previous.size_bytes
                return False

            self.store[key] = entry
            self.current_memory_bytes += entry.size_bytes
            return True

    def _make_room(self, size_bytes: int, *, replacing: bool) -> bool:
        if size_bytes > self.max_value_bytes:
            return False
        if self.current_memory_bytes + size_bytes > self.max_memory_bytes:
            if not self._evict_to_fit(size_bytes):
                return False
        if not replacing:
            while len(self.store) >= self.max_items:
                if not self._evict_lru():
                    return False
        return True

    def _remove_entry(self, key: str) -> None:
        if key in self.store:
            entry = self.store.pop(key)
            self.current_memory_bytes -= entry.size_bytes

    def _evict_lru(self) -> bool:
        if not self.store:
            return False

        lru_key = next(iter(self.store))
        self._remove_entry(lru_key)
        self.evictions += 1
        return True

    def _evict_to_fit(self, required_bytes: int) -> bool:
        while (self.current_memory_bytes + required_bytes > self.max_memory_bytes and
               self.store):
            if not self._evict_lru():
                return False
        return self.current_memory_bytes + required_bytes <= self.max_memory_bytes

    def stats(self) -> Dict[str, Any]:
        """
        Return store stats.

        Memory usage counts ``sys.getsizeof`` of each frame only.
        """
        with self.lock:
            lookups = self.hits + self.misses
            return {
                "size": len(self.store),
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "hit_rate": self.hits / lookups if lookups > 0 else 0,
                "memory_usage_bytes": self.current_memory_bytes,
                "max_memory_bytes": self.max_memory_bytes,
                "max_items": self.max_items,
                "ttl_ms": self.ttl,
            }

    def _background_cleanup(self) -> None:
        while not self._stop_event.wait(self.cleanup_interval):
            try:
                with self.lock:
                    items = list(self.store.items())

                expired_keys = [k for k, v in items if self._is_expired(v)]
                if not expired_keys:
                    continue

                with self.lock:
                    for k in expired_keys:
                        entry = self.store.get(k)
                        if entry is not None and self._is_expired(entry):
                            self._remove_entry(k)
            except Exception:
                logger.exception("Error in background cleanup")

    def clear(self) -> None:
        with self.lock:
            self.store.clear()
            self.current_memory_bytes = 0
            self.hits = 0
            self.misses = 0
            self.evictions = 0

    def stop(self) -> None:
        """Stop the background cleanup thread."""
        self._stop_event.set()
        if self.cleaner_thread.is_alive():
            self.cleaner_thread.join(timeout=5)
