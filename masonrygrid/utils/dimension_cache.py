"""Shared TTL/capacity-bounded cache of resolved image dimensions."""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from masonrygrid.models.masonry_item import CacheEntry, Dimension
from masonrygrid.utils.image_index_db import ImageIndexDB
from masonrygrid.utils.settings import get_setting

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DimensionCacheConfig:
    ttl_seconds: float = 24 * 60 * 60
    capacity: int = 10000
    db_path: str = ''
    persistent: bool = True

    @classmethod
    def from_settings(cls, source=None) -> 'DimensionCacheConfig':
        return cls(
            ttl_seconds=get_setting('dimension_cache_ttl_seconds', float, source),
            capacity=get_setting('dimension_cache_capacity', int, source),
            db_path=get_setting('dimension_cache_db_path', str, source),
            persistent=get_setting('enable_dimension_cache', bool, source),
        )


class DimensionCache:
    """
    In-memory LRU of `CacheEntry` objects with lazy TTL expiry.

    An optional `ImageIndexDB` acts as a second level: misses read through
    to it and every `put` is written through.
    """

    def __init__(self, config: DimensionCacheConfig = None,
                 store: Optional[ImageIndexDB] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config or DimensionCacheConfig()
        if self.config.capacity < 1:
            raise ValueError(
                f'Cache capacity must be >= 1, got {self.config.capacity}')
        self.store = store
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @classmethod
    def from_config(cls, config: DimensionCacheConfig) -> 'DimensionCache':
        store = None
        if config.persistent and config.db_path:
            store = ImageIndexDB(Path(config.db_path).expanduser())
        return cls(config, store=store)

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return (self.config.ttl_seconds > 0
                and now - entry.resolved_at >= self.config.ttl_seconds)

    def _insert(self, entry: CacheEntry):
        self._entries[entry.reference] = entry
        self._entries.move_to_end(entry.reference)
        while len(self._entries) > self.config.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug('Evicted %s from dimension cache', evicted)

    def get_entry(self, reference: str) -> Optional[CacheEntry]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(reference)
            if entry is not None:
                if self._is_expired(entry, now):
                    del self._entries[reference]
                    entry = None
                else:
                    self._entries.move_to_end(reference)
                    self.hits += 1
                    return entry

        if self.store is not None:
            min_resolved_at = 0.0
            if self.config.ttl_seconds > 0:
                min_resolved_at = now - self.config.ttl_seconds
            row = self.store.get_cached_info(reference, min_resolved_at)
            if row is not None:
                try:
                    dimension = Dimension(row['width'], row['height'],
                                          row['source'])
                except ValueError:
                    self.store.delete_info(reference)
                else:
                    entry = CacheEntry(reference, dimension,
                                       row['resolved_at'])
                    with self._lock:
                        self._insert(entry)
                        self.hits += 1
                    return entry

        with self._lock:
            self.misses += 1
        return None

    def get(self, reference: str) -> Optional[Dimension]:
        entry = self.get_entry(reference)
        return entry.dimension if entry is not None else None

    def put(self, reference: str, dimension: Dimension) -> CacheEntry:
        entry = CacheEntry(reference, dimension, self._clock())
        with self._lock:
            self._insert(entry)
        if self.store is not None:
            self.store.save_info(reference, dimension.width, dimension.height,
                                 dimension.source, entry.resolved_at)
        return entry

    def invalidate(self, reference: str) -> bool:
        with self._lock:
            removed = self._entries.pop(reference, None) is not None
        if self.store is not None:
            self.store.delete_info(reference)
        return removed

    def purge_expired(self) -> int:
        """Drop expired entries eagerly, returning how many were removed."""
        if self.config.ttl_seconds <= 0:
            return 0
        now = self._clock()
        with self._lock:
            expired = [reference for reference, entry in self._entries.items()
                       if self._is_expired(entry, now)]
            for reference in expired:
                del self._entries[reference]
        if self.store is not None:
            self.store.delete_older_than(now - self.config.ttl_seconds)
        return len(expired)

    def clear(self):
        with self._lock:
            self._entries.clear()
        if self.store is not None:
            self.store.clear()

    def close(self):
        if self.store is not None:
            self.store.close()

    def __contains__(self, reference: str) -> bool:
        return self.get_entry(reference) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
