"""
Response caching for the live transit API.

Departure boards are cached per (stop, limit) for a short TTL so that many
clients looking at the same stop share one journey-planner query. The
cache is bounded; the least recently used board is dropped first.
Also builds the HTTP cache headers sent with every payload.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional

import config


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    created_at: float
    hits: int = 0


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    invalidations: int = 0
    expirations: int = 0
    evictions: int = 0

    @property
    def lookups(self) -> int:
        return self.hits + self.misses


class ResponseCache:
    """Bounded TTL cache keyed by strings."""

    def __init__(self, max_entries: int = config.RESPONSE_CACHE_MAX_ENTRIES,
                 clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self.clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        # last value set per key, kept past expiry for stale fallback
        self._last_good: "OrderedDict[str, Any]" = OrderedDict()
        self.stats = CacheStats()

    def __len__(self):
        return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self.stats.misses += 1
            return None
        if entry.expires_at <= self.clock():
            del self._entries[key]
            self.stats.expirations += 1
            self.stats.misses += 1
            return None

        self._entries.move_to_end(key)
        entry.hits += 1
        self.stats.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        now = self.clock()
        self._entries[key] = CacheEntry(value, expires_at=now + ttl, created_at=now)
        self._entries.move_to_end(key)
        self._last_good[key] = value
        self._last_good.move_to_end(key)
        self.stats.sets += 1
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self.stats.evictions += 1
        while len(self._last_good) > self.max_entries:
            self._last_good.popitem(last=False)

    def get_stale(self, key: str) -> Optional[Any]:
        """Last value set for ``key``, even if it has expired since."""
        return self._last_good.get(key)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``; returns how many went."""
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        for key in [key for key in self._last_good if key.startswith(prefix)]:
            del self._last_good[key]
        self.stats.invalidations += len(keys)
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()
        self._last_good.clear()
        self.stats = CacheStats()

    def cleanup_expired(self) -> int:
        now = self.clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        self.stats.expirations += len(expired)
        return len(expired)

    def expired_count(self) -> int:
        now = self.clock()
        return sum(1 for entry in self._entries.values() if entry.expires_at <= now)

    def get_stats(self) -> Dict[str, Any]:
        lookups = self.stats.lookups
        return {
            "hits": self.stats.hits,
            "misses": self.stats.misses,
            "sets": self.stats.sets,
            "invalidations": self.stats.invalidations,
            "expirations": self.stats.expirations,
            "evictions": self.stats.evictions,
            "total_requests": lookups,
            "hit_rate": self.stats.hits / lookups if lookups else 0,
            "cache_size": len(self._entries),
            "max_entries": self.max_entries,
        }


_response_cache = ResponseCache()


def get_response_cache() -> ResponseCache:
    return _response_cache


def clear_response_cache() -> None:
    _response_cache.clear()


def cached(ttl: float, key_func: Callable[..., str]):
    """
    Cache the result of an async handler in the shared response cache.

    Args:
        ttl: Seconds a result stays valid
        key_func: Builds the cache key from the handler's arguments

    Exceptions are not cached; the next call tries again.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            key = key_func(*args, **kwargs)
            hit = _response_cache.get(key)
            if hit is not None:
                return hit

            result = await func(*args, **kwargs)
            _response_cache.set(key, result, ttl)
            return result

        return wrapper

    return decorator


def get_cache_headers(ttl_seconds: Optional[int] = None, stale: bool = False) -> Dict[str, str]:
    """
    Generate HTTP cache headers for API responses.

    Args:
        ttl_seconds: Cache TTL in seconds
        stale: Mark the payload as served from an older successful refresh

    Returns:
        Dictionary of HTTP headers
    """
    headers = {}

    if stale:
        headers['Cache-Control'] = 'no-cache'
        headers['X-Data-Stale'] = 'true'
    elif ttl_seconds:
        headers['Cache-Control'] = f'public, max-age={int(ttl_seconds)}'
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        headers['Expires'] = expires_at.strftime('%a, %d %b %Y %H:%M:%S GMT')
    else:
        headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
        headers['Pragma'] = 'no-cache'
        headers['Expires'] = '0'

    return headers
