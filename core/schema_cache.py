#!/usr/bin/env python3
"""
Schema caching for repeated table introspection.

Entries are immutable tuples of ColumnDescriptor; a refresh replaces the
entry wholesale. Embedded-file (SQLite) schemas are never cached because the
file behind a path can change between calls.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from core.models import BackendKind, ColumnDescriptor, ConnectionDescriptor

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, Optional[str], Optional[int], str, str]


@dataclass(frozen=True)
class SchemaCacheEntry:
    columns: Tuple[ColumnDescriptor, ...]
    created_at: float
    connection_key: Tuple[str, Optional[str], Optional[int], str]


class SchemaCache:
    """Thread-safe TTL cache of table schemas keyed by connection identity + table"""

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[CacheKey, SchemaCacheEntry] = {}
        self._lock = threading.Lock()
        self.stats = {'hits': 0, 'misses': 0, 'expired': 0}

    @staticmethod
    def _cache_key(descriptor: ConnectionDescriptor, table_name: str) -> CacheKey:
        return descriptor.connection_key() + (table_name,)

    @staticmethod
    def is_cacheable(descriptor: ConnectionDescriptor) -> bool:
        return descriptor.kind is not BackendKind.SQLITE

    def get(self, descriptor: ConnectionDescriptor, table_name: str) -> Optional[Tuple[ColumnDescriptor, ...]]:
        """Return cached columns, or None on miss/expiry"""
        if not self.is_cacheable(descriptor):
            return None

        key = self._cache_key(descriptor, table_name)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats['misses'] += 1
                return None

            age = self._clock() - entry.created_at
            if age > self.ttl:
                del self._entries[key]
                self.stats['expired'] += 1
                self.stats['misses'] += 1
                logger.debug(f"Cache entry expired for table {table_name} (age {age:.1f}s)")
                return None

            self.stats['hits'] += 1

        logger.debug(f"Cache hit for table schema {table_name} (age {age:.1f}s)")
        return entry.columns

    def set(self, descriptor: ConnectionDescriptor, table_name: str,
            columns: Sequence[ColumnDescriptor]) -> None:
        if not self.is_cacheable(descriptor):
            return

        entry = SchemaCacheEntry(
            columns=tuple(columns),
            created_at=self._clock(),
            connection_key=descriptor.connection_key(),
        )
        with self._lock:
            self._entries[self._cache_key(descriptor, table_name)] = entry
        logger.debug(f"Schema cached for table {table_name} ({len(entry.columns)} columns)")

    def invalidate(self, descriptor: ConnectionDescriptor, table_name: Optional[str] = None) -> int:
        """Drop one table, or every table of the descriptor's connection. Returns entries removed."""
        with self._lock:
            if table_name is not None:
                removed = 1 if self._entries.pop(self._cache_key(descriptor, table_name), None) else 0
            else:
                connection_key = descriptor.connection_key()
                keys = [k for k, e in self._entries.items() if e.connection_key == connection_key]
                for key in keys:
                    del self._entries[key]
                removed = len(keys)

        logger.debug(f"Invalidated {removed} schema cache entries for {descriptor.describe()}")
        return removed

    def clear(self) -> None:
        with self._lock:
            size = len(self._entries)
            self._entries.clear()
        logger.info(f"Cleared schema cache ({size} entries)")

    def cleanup_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now - e.created_at > self.ttl]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired schema cache entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            ages = [now - e.created_at for e in self._entries.values()]
            connections = {e.connection_key for e in self._entries.values()}
            return {
                'total_entries': len(self._entries),
                'connections': len(connections),
                'oldest_entry_age': max(ages) if ages else 0.0,
                'newest_entry_age': min(ages) if ages else 0.0,
                'hits': self.stats['hits'],
                'misses': self.stats['misses'],
                'expired': self.stats['expired'],
            }
