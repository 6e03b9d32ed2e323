"""embedding_cache.py
A small in-memory cache for embedding vectors with absolute TTL expiry and
an optional size bound.

Keys are normalised (trimmed, lower-cased) so "Apple " and "apple" share an
entry. Expiry is measured from the moment an entry was written; reads never
extend an entry's life. When the cache is full the entry that was inserted
first is evicted.
"""
from __future__ import annotations

from collections import OrderedDict
from typing import Callable, Dict, Optional, Tuple
import threading
import time

import numpy as np

from logger_config import get_logger

logger = get_logger("wordmath.cache", "embeddings")

DEFAULT_TTL_SECONDS = 24 * 60 * 60


class EmbeddingCache:
    """Thread-safe TTL cache mapping normalised words to vectors."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size is not None and max_size <= 0:
            raise ValueError("max_size must be positive or None")
        self._data: "OrderedDict[str, Tuple[np.ndarray, float]]" = OrderedDict()
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self._clock = clock
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    @staticmethod
    def normalize_key(key: str) -> str:
        return key.strip().lower()

    # ------------------------------------------------------------------
    def _is_expired(self, created_at: float) -> bool:
        return self._clock() - created_at > self.ttl_seconds

    # ------------------------------------------------------------------
    def get(self, key: str) -> Optional[np.ndarray]:
        norm_key = self.normalize_key(key)
        with self._lock:
            entry = self._data.get(norm_key)
            if entry is not None:
                vector, created_at = entry
                if not self._is_expired(created_at):
                    self.hits += 1
                    return vector.copy()
                # Expired, drop it lazily
                del self._data[norm_key]
                logger.debug("Expired cache entry dropped: %s", norm_key)
            self.misses += 1
            return None

    # ------------------------------------------------------------------
    def put(self, key: str, vector) -> None:
        norm_key = self.normalize_key(key)
        stored = np.array(vector, dtype=np.float64).reshape(-1)
        with self._lock:
            if norm_key in self._data:
                del self._data[norm_key]
            elif self.max_size is not None:
                while len(self._data) >= self.max_size:
                    evicted, _ = self._data.popitem(last=False)
                    self.evictions += 1
                    logger.debug("Cache full, evicted oldest entry: %s", evicted)
            self._data[norm_key] = (stored, self._clock())

    # ------------------------------------------------------------------
    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self.hits = 0
            self.misses = 0
            self.evictions = 0

    # ------------------------------------------------------------------
    def stats(self) -> Dict[str, float | int | None]:
        with self._lock:
            total = self.hits + self.misses
            hit_rate = (self.hits / total) if total else 0.0
            return {
                "size": len(self._data),
                "max_size": self.max_size,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": hit_rate,
                "evictions": self.evictions,
                "ttl_seconds": self.ttl_seconds,
            }

    # ------------------------------------------------------------------
    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: str) -> bool:
        """Membership test that ignores expiry bookkeeping and statistics."""
        norm_key = self.normalize_key(key)
        with self._lock:
            entry = self._data.get(norm_key)
            return entry is not None and not self._is_expired(entry[1])
