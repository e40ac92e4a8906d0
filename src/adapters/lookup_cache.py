"""Bounded in-memory cache with time-to-live for Hubstaff lookups."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Generic, TypeVar

from src.config.logging_config import get_logger

__all__ = ["LookupCache"]

logger = get_logger(__name__)

V = TypeVar("V")

ClockCallable = Callable[[], float]


class LookupCache(Generic[V]):
    """LRU cache whose entries expire after ``ttl_seconds``.

    Used for user display names and task metadata, which change rarely but
    must not grow without bound over the process lifetime.
    """

    def __init__(
        self,
        *,
        name: str,
        ttl_seconds: float,
        max_entries: int,
        clock: ClockCallable | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self._name = name
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: OrderedDict[str, tuple[float, V]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> V | None:
        """Return the cached value, or None when missing or expired."""

        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None

            expires_at, value = item
            if expires_at <= self._clock():
                del self._entries[key]
                return None

            self._entries.move_to_end(key)
            return value

    def put(self, key: str, value: V) -> None:
        """Store a value, evicting the least recently used entry when full."""

        with self._lock:
            self._entries[key] = (self._clock() + self._ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug("lookup_cache_evicted", cache=self._name, key=evicted_key)

    def invalidate(self, key: str | None = None) -> None:
        """Drop one entry, or everything when ``key`` is None."""

        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
