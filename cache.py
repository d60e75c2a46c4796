"""
Small key-indexed query cache.

Keys are tuples such as ("products", "list") or ("products", "detail", id).
Mutations call mark_stale() with a key prefix once they succeed, which evicts
the matching entries; expired entries are dropped when read.
"""

import threading
import time
from typing import Any, Hashable, Optional, Tuple

CacheKey = Tuple[Hashable, ...]

PRODUCTS: CacheKey = ("products",)
PRODUCT_LIST: CacheKey = PRODUCTS + ("list",)


def product_detail(product_id: str) -> CacheKey:
    return PRODUCTS + ("detail", product_id)


class QueryCache:
    def __init__(self, ttl: Optional[float] = None) -> None:
        self.ttl = ttl
        self._entries: dict = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: CacheKey) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if self.ttl is not None and time.monotonic() - stored_at > self.ttl:
                del self._entries[key]
                return None
            return value

    def set(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[key] = (value, time.monotonic())

    def mark_stale(self, prefix: CacheKey = ()) -> int:
        """Evict every entry whose key starts with `prefix`. Returns how many were evicted."""
        with self._lock:
            stale = [key for key in self._entries if key[: len(prefix)] == prefix]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
