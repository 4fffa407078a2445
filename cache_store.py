"""
cache_store.py
--------------
A small, thread-safe, insertion-ordered cache for proxied API responses.

Features:
- Entries carry their own absolute expiry (ms since epoch)
- Expired entries stay readable until overwritten or pruned (stale-on-error)
- Two-phase pruning: expired entries first, then oldest-inserted
- ETag + replay headers kept alongside the raw body

Intended for a single-process FastAPI app. Nothing is persisted and nothing is
shared across instances.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from collections import OrderedDict
from threading import RLock
from typing import Dict, Optional


@dataclass
class CacheEntry:
    body: str
    etag: str
    status: int
    expires_at: float
    headers: Dict[str, str] = field(default_factory=dict)

    def is_fresh(self, now: float) -> bool:
        return self.expires_at > now


class CacheStore:
    """
    Ordered key -> CacheEntry mapping.
    - get(): returns the entry as stored, expired or not (callers decide)
    - set(): overwrites and moves the key to the most-recent position
    - prune(): evicts expired entries, then oldest ones, down to max_entries

    Thread-safe via a single RLock; FastAPI runs sync endpoints on a threadpool.
    """
    def __init__(self, max_entries: int = 200) -> None:
        self.max_entries = max_entries
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = RLock()
        self._evictions = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._store.get(key)

    def set(self, key: str, entry: CacheEntry) -> CacheEntry:
        with self._lock:
            self._store[key] = entry
            self._store.move_to_end(key)
            return entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def delete_if(self, key: str, entry: CacheEntry) -> bool:
        """Delete ``key`` only while it still maps to this very ``entry``."""
        with self._lock:
            if self._store.get(key) is not entry:
                return False
            del self._store[key]
            return True

    def size(self) -> int:
        with self._lock:
            return len(self._store)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._store

    def prune(self, max_entries: int, now: float) -> int:
        """
        Bring the store down to ``max_entries``.

        Expired entries go first; if that is not enough, entries are dropped in
        insertion order. Returns how many entries were evicted. Does nothing
        while the store is within bounds.
        """
        with self._lock:
            if len(self._store) <= max_entries:
                return 0

            evicted = 0
            for key in [k for k, e in self._store.items() if e.expires_at <= now]:
                del self._store[key]
                evicted += 1

            while len(self._store) > max_entries:
                self._store.popitem(last=False)
                evicted += 1

            self._evictions += evicted
            return evicted

    def stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._store),
                "max_entries": self.max_entries,
                "evictions": self._evictions,
            }

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._evictions = 0
