"""Execution-scoped caches with compute-once-per-key semantics."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A computed value; ``None`` is a legitimate cached outcome."""

    value: T
    created_at: float = field(default_factory=time.time)


class ComputeOnceCache(Generic[T]):
    """Map from key to a value computed at most once per execution.

    Concurrent callers asking for the same missing key serialize on a
    per-key lock: the first computes, the rest wait and reuse the result.
    Different keys compute in parallel. A computation that raises leaves
    the key uncached so a later caller can try again.
    """

    def __init__(self, name: str = "cache"):
        self.name = name
        self._entries: Dict[Hashable, CacheEntry[T]] = {}
        self._key_locks: Dict[Hashable, threading.Lock] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _lock_for(self, key: Hashable) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def get_or_compute(self, key: Hashable, compute: Callable[[], T]) -> T:
        """Return the cached value for ``key``, computing it on first use."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._hits += 1
                return entry.value

        with self._lock_for(key):
            with self._lock:
                entry = self._entries.get(key)
                if entry is not None:
                    self._hits += 1
                    return entry.value
                self._misses += 1
            value = compute()
            with self._lock:
                self._entries[key] = CacheEntry(value=value)
            return value

    def get(self, key: Hashable) -> Optional[CacheEntry[T]]:
        """Return the entry for ``key`` without computing, or None."""
        with self._lock:
            return self._entries.get(key)

    def put(self, key: Hashable, value: T) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        """Clear all cached entries."""
        with self._lock:
            self._entries.clear()
            self._key_locks.clear()

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "name": self.name,
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
            }
