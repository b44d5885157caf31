"""Least-recently-used cache with time-to-live for repeatable model calls."""

from __future__ import annotations

import json
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    key: Any
    value: V
    timestamp: float
    hit_count: int = 0


@dataclass(slots=True)
class CacheStats:
    hits: int
    misses: int
    size: int
    hit_rate: float


class LRUCache(Generic[K, V]):
    """Capacity-bounded LRU cache whose entries also expire after `ttl` seconds.

    Recency is the order of the underlying `OrderedDict`: successful `get` and
    every `set` move the entry to the end, eviction pops from the front. An
    expired entry is treated as absent by `get` and `has` regardless of its
    position.
    """

    def __init__(
        self,
        *,
        max_size: int = 50,
        ttl: float = 5 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[K, CacheEntry[V]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: K, default: V | None = None) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return default

        if self._is_expired(entry):
            del self._entries[key]
            self._misses += 1
            return default

        entry.hit_count += 1
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.value

    def set(self, key: K, value: V) -> None:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)

        self._entries[key] = CacheEntry(key=key, value=value, timestamp=self._clock())

    def has(self, key: K) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._is_expired(entry):
            del self._entries[key]
            return False
        return True

    def delete(self, key: K) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def cleanup(self) -> int:
        """Drop every expired entry and return how many were removed."""
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> CacheStats:
        total = self._hits + self._misses
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=len(self._entries),
            hit_rate=self._hits / total if total else 0.0,
        )

    def entries(self) -> list[tuple[K, CacheEntry[V]]]:
        return list(self._entries.items())

    def _is_expired(self, entry: CacheEntry[V]) -> bool:
        return self._clock() - entry.timestamp > self.ttl


def generate_cache_key(fields: Mapping[str, Any]) -> str:
    """Build `name:value|...` with names sorted so field order never matters."""
    parts: list[str] = []
    for name in sorted(fields):
        value = fields[name]
        if isinstance(value, (dict, list, tuple)):
            rendered = json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)
        elif value is None:
            rendered = "None"
        else:
            rendered = str(value)
        parts.append(f"{name}:{rendered}")
    return "|".join(parts)
