"""Response cache for CORS Proxy Buddy."""

import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional

from cors_proxy.core.models import CacheEntry, ProxyResponse


class ResponseCache:
    """Bounded, time-expiring LRU cache of response snapshots keyed by target URL.

    Entries expire a fixed ``ttl_seconds`` after insertion regardless of
    access. When the cache is full, inserting a new key evicts the least
    recently used entry. Every value handed out is an independent copy of
    the stored snapshot.

    Example:
        >>> cache = ResponseCache(max_entries=500, ttl_seconds=300)
        >>> cache.store("https://example.com", ProxyResponse(200, {}, b"ok"))
        True
        >>> cache.lookup("https://example.com").data
        b'ok'
    """

    def __init__(
        self,
        max_entries: int = 500,
        ttl_seconds: float = 300,
        max_response_size: int = 10485760,
    ) -> None:
        """Initialize the cache.

        Args:
            max_entries: Maximum number of cache entries
            ttl_seconds: Lifetime of an entry from insertion
            max_response_size: Maximum body size to cache (bytes)
        """
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.max_response_size = max_response_size
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "evictions": 0,
            "expired": 0,
            "skipped_oversize": 0,
        }

    def lookup(self, key: str) -> Optional[ProxyResponse]:
        """Return a copy of the cached response, or None if absent or expired.

        A hit marks the entry as most recently used.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            if entry.is_expired(time.time(), self.ttl_seconds):
                del self._entries[key]
                self._stats["expired"] += 1
                self._stats["misses"] += 1
                return None
            self._entries.move_to_end(key)
            self._stats["hits"] += 1
            return entry.response.copy()

    def store(self, key: str, response: ProxyResponse) -> bool:
        """Insert or replace the snapshot for ``key`` and restart its TTL.

        Args:
            key: Target URL
            response: Response to snapshot

        Returns:
            True if cached, False if the body exceeds ``max_response_size``
        """
        if len(response.data) > self.max_response_size:
            with self._lock:
                self._stats["skipped_oversize"] += 1
            return False

        entry = CacheEntry(response=response.copy(), created_at=time.time())
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._stats["evictions"] += 1
            self._stats["sets"] += 1
        return True

    def delete(self, key: str) -> bool:
        """Delete a cache entry."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Clear all cache entries."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(time.time(), self.ttl_seconds)

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def get_cache_performance(self) -> Dict[str, Any]:
        """Return cache performance metrics."""
        with self._lock:
            total_entries = len(self._entries)
            total_size = sum(len(entry.response.data) for entry in self._entries.values())
            stats = dict(self._stats)
        lookups = stats["hits"] + stats["misses"]
        return {
            "total_entries": total_entries,
            "total_size_bytes": total_size,
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hit_rate": stats["hits"] / lookups if lookups > 0 else 0.0,
            "evictions": stats["evictions"],
            "expired_entries": stats["expired"],
        }
