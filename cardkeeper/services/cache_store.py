"""
Ephemeral cache store.

String keys, string payloads, per-entry TTL, bounded capacity. Large
payloads are refused rather than stored: put() returns False and the
caller carries on without a cache.

The store owns no serialization. Components that cache structured values
own their own payload contract (see inventory_cache and usage_cache).
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from cachetools import TLRUCache

from cardkeeper.config import settings

logger = logging.getLogger(__name__)


class CacheStore(Protocol):
    """Key/value cache with TTL, as consumed by the caching components."""

    def get(self, key: str) -> str | None: ...

    def put(self, key: str, value: str, ttl_seconds: float) -> bool: ...

    def remove(self, key: str) -> None: ...


@dataclass(frozen=True, slots=True)
class _Entry:
    value: str
    ttl_seconds: float


def _time_to_use(_key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl_seconds


class MemoryCacheStore:
    """
    In-process CacheStore backed by cachetools.TLRUCache.

    Expired entries are never returned. When maxsize is reached the entry
    closest to expiry is evicted first.
    """

    def __init__(
        self,
        maxsize: int | None = None,
        max_value_bytes: int | None = None,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_value_bytes = (
            max_value_bytes if max_value_bytes is not None else settings.cache_max_value_bytes
        )
        self._cache: TLRUCache[str, _Entry] = TLRUCache(
            maxsize=maxsize if maxsize is not None else settings.cache_max_entries,
            ttu=_time_to_use,
            timer=timer,
        )

    def get(self, key: str) -> str | None:
        """Return the payload for key, or None on miss or expiry."""
        entry = self._cache.get(key)
        if entry is None:
            return None
        return entry.value

    def put(self, key: str, value: str, ttl_seconds: float) -> bool:
        """
        Store a payload.

        Returns:
            True if stored. False if the payload exceeds max_value_bytes
            or the TTL is not positive; any previous entry is dropped so
            a stale value cannot outlive the refused write.
        """
        size = len(value.encode("utf-8"))
        if size > self.max_value_bytes or ttl_seconds <= 0:
            logger.warning(
                "CACHE_PUT_REFUSED",
                extra={"key": key, "bytes": size, "limit": self.max_value_bytes},
            )
            self._cache.pop(key, None)
            return False

        self._cache[key] = _Entry(value=value, ttl_seconds=ttl_seconds)
        return True

    def remove(self, key: str) -> None:
        """Drop an entry. Missing keys are ignored."""
        self._cache.pop(key, None)

    def clear(self) -> None:
        """Drop every entry."""
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
