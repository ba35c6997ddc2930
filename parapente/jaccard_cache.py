"""Cache of pairwise Jaccard similarities between id-keyed read sets."""

from __future__ import annotations

import threading
from typing import AbstractSet


def compute_jaccard(set1: AbstractSet[int], set2: AbstractSet[int]) -> float:
    """Jaccard similarity of two sets; 0.0 when both are empty or disjoint."""
    if not set1 and not set2:
        return 0.0
    intersection = len(set1 & set2)
    if intersection == 0:
        return 0.0
    return intersection / len(set1 | set2)


class JaccardCache:
    """Thread-safe cache keyed on unordered pairs of set ids."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cache: dict[tuple[int, int], float] = {}
        self._hits = 0
        self._misses = 0

    def get_or_compute(
        self, id1: int, set1: AbstractSet[int], id2: int, set2: AbstractSet[int]
    ) -> float:
        key = (id1, id2) if id1 <= id2 else (id2, id1)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._hits += 1
                return cached
            self._misses += 1
        value = compute_jaccard(set1, set2)
        with self._lock:
            self._cache[key] = value
        return value

    def stats(self) -> tuple[int, int, float]:
        """(hits, misses, hit rate)."""
        with self._lock:
            hits, misses = self._hits, self._misses
        total = hits + misses
        return hits, misses, hits / total if total else 0.0

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


GLOBAL_JACCARD_CACHE = JaccardCache()


def cached_jaccard(
    id1: int, set1: AbstractSet[int], id2: int, set2: AbstractSet[int]
) -> float:
    """Jaccard similarity through the process-wide cache."""
    return GLOBAL_JACCARD_CACHE.get_or_compute(id1, set1, id2, set2)


def report_cache_stats() -> None:
    """Print the process-wide cache statistics, if it has been used."""
    hits, misses, hit_rate = GLOBAL_JACCARD_CACHE.stats()
    if hits + misses > 0:
        print(
            f"  Jaccard cache: {hits} hits, {misses} misses "
            f"({hit_rate * 100.0:.1f}% hit rate)"
        )