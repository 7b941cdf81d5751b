#!/usr/bin/env python3
"""
Connection Resource Manager

Owns every live database handle used during verification:
- a bounded pool of network connections (PostgreSQL, MySQL) shared across
  runs, keyed by (kind, host, port, database, user)
- a cache of read-only embedded-file (SQLite) handles keyed by resolved path

All pool bookkeeping happens under a single lock per structure; connections
are opened and closed outside of it. Idle entries are evicted by periodic
sweeps (60s for the network pool, 5 minutes for embedded handles).

Usage:
    manager = ConnectionResourceManager(connectors={BackendKind.POSTGRESQL: open_pg})
    with manager.lease(descriptor) as conn:
        ...
"""

import logging
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from core.errors import ConnectionError, ResourceExhausted, TimeoutError, ValidationError
from core.models import BackendKind, ConnectionDescriptor

logger = logging.getLogger(__name__)

PoolKey = Tuple[str, Optional[str], Optional[int], str, Optional[str]]
Connector = Callable[[ConnectionDescriptor], Any]


def _close_quietly(connection: Any, context: str = "") -> None:
    try:
        connection.close()
    except Exception as e:
        logger.warning(f"Error closing connection {context}: {e}")


@dataclass(eq=False)
class PooledConnection:
    """A live network connection owned by the pool and lent to one caller at a time"""
    connection: Any
    kind: BackendKind
    descriptor: ConnectionDescriptor
    pool_key: PoolKey
    last_used: float
    in_use: bool = True


@dataclass(eq=False)
class EmbeddedHandle:
    """A cached read-only SQLite connection"""
    connection: Any
    path: str
    last_used: float
    role: Optional[str] = None
    in_use: bool = True
    retired: bool = False


class PeriodicSweeper(threading.Thread):
    """Daemon thread calling `callback` every `interval` seconds until stopped"""

    def __init__(self, name: str, interval: float, callback: Callable[[], Any]):
        super().__init__(name=name, daemon=True)
        self.interval = interval
        self.callback = callback
        self._stop_event = threading.Event()

    def run(self):
        while not self._stop_event.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception(f"Sweep {self.name} failed")

    def stop(self, timeout: Optional[float] = 1.0):
        self._stop_event.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout)


class EmbeddedHandleCache:
    """
    Read-only SQLite handles reused across calls for the same file.

    Each resolved path keeps a list of handles; a borrower gets an idle one or
    a fresh one, so concurrent callers never share a connection. At most
    `max_handles` are open across all paths. A handle idle for `idle_timeout`
    seconds is replaced on the next lookup and closed by the sweep.
    """

    def __init__(self, opener: Callable[[str], Any], idle_timeout: float = 30.0,
                 max_handles: int = 10, clock: Callable[[], float] = time.monotonic):
        self._opener = opener
        self.idle_timeout = idle_timeout
        self.max_handles = max_handles
        self._clock = clock
        self._handles: Dict[str, List[EmbeddedHandle]] = {}
        self._total = 0
        self._lock = threading.Lock()

    def _is_expired(self, handle: EmbeddedHandle, now: float) -> bool:
        return now - handle.last_used >= self.idle_timeout

    def _checkout(self, descriptor: ConnectionDescriptor) -> EmbeddedHandle:
        path = descriptor.resolved_path()
        if not path:
            raise ValidationError("SQLite file path is required", {'field': 'file_path'})

        stale: List[EmbeddedHandle] = []
        reused: Optional[EmbeddedHandle] = None
        exhausted = None

        with self._lock:
            now = self._clock()
            handles = self._handles.get(path, [])
            for handle in list(handles):
                if handle.in_use:
                    continue
                if self._is_expired(handle, now):
                    handles.remove(handle)
                    handle.retired = True
                    self._total -= 1
                    stale.append(handle)
                    continue
                handle.in_use = True
                handle.last_used = now
                reused = handle
                break
            if not handles and path in self._handles:
                del self._handles[path]

            if reused is None:
                if self._total >= self.max_handles:
                    exhausted = self._total
                else:
                    # Reserve the slot before opening outside the lock
                    self._total += 1

        for handle in stale:
            _close_quietly(handle.connection, handle.path)
            logger.debug(f"Closed expired SQLite handle for {handle.path}")

        if reused is not None:
            logger.debug(f"Reusing SQLite handle for {path}")
            return reused

        if exhausted is not None:
            raise ResourceExhausted(
                "SQLite handle limit reached",
                {'open_handles': exhausted, 'max_handles': self.max_handles},
            )

        try:
            connection = self._opener(path)
        except BaseException:
            with self._lock:
                self._total -= 1
            raise

        handle = EmbeddedHandle(connection=connection, path=path,
                                last_used=self._clock(), role=descriptor.role)
        with self._lock:
            self._handles.setdefault(path, []).append(handle)
        logger.debug(f"Opened SQLite handle for {path}")
        return handle

    def _checkin(self, handle: EmbeddedHandle) -> None:
        with self._lock:
            handle.in_use = False
            handle.last_used = self._clock()
            close_now = handle.retired
        if close_now:
            _close_quietly(handle.connection, handle.path)

    @contextmanager
    def lease(self, descriptor: ConnectionDescriptor) -> Iterator[Any]:
        """Borrow a SQLite connection for descriptor's file, exclusive to the caller"""
        handle = self._checkout(descriptor)
        try:
            yield handle.connection
        finally:
            self._checkin(handle)

    def _detach(self, predicate: Callable[[EmbeddedHandle], bool]) -> int:
        """Remove matching handles; idle ones are closed now, lent ones on checkin"""
        to_close: List[EmbeddedHandle] = []
        detached = 0
        with self._lock:
            for path in list(self._handles):
                keep = []
                for handle in self._handles[path]:
                    if predicate(handle):
                        handle.retired = True
                        detached += 1
                        if not handle.in_use:
                            to_close.append(handle)
                    else:
                        keep.append(handle)
                if keep:
                    self._handles[path] = keep
                else:
                    del self._handles[path]
            self._total -= detached
        for handle in to_close:
            _close_quietly(handle.connection, handle.path)
        return detached

    def cleanup_expired(self) -> int:
        now = self._clock()
        expired = self._detach(lambda h: not h.in_use and self._is_expired(h, now))
        if expired:
            logger.info(f"Cleaned up {expired} expired SQLite handles")
        return expired

    def close_all(self) -> int:
        count = self._detach(lambda h: True)
        logger.info(f"Closed all SQLite handles ({count})")
        return count

    def close_by_tag(self, tag: str) -> int:
        """Close handles whose file name starts with '<tag>_' or whose role is tag"""
        prefix = f"{tag}_"
        count = self._detach(lambda h: os.path.basename(h.path).startswith(prefix) or h.role == tag)
        logger.info(f"Closed {count} SQLite handles for role {tag}")
        return count

    def __len__(self) -> int:
        with self._lock:
            return self._total

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats: Dict[str, Any] = {
                'open_handles': self._total,
                'max_handles': self.max_handles,
                'idle_timeout': self.idle_timeout,
                'handles': {},
            }
            for path, handles in self._handles.items():
                in_use = sum(1 for h in handles if h.in_use)
                stats['handles'][path] = {
                    'total': len(handles),
                    'in_use': in_use,
                    'available': len(handles) - in_use,
                }
            return stats


class ConnectionResourceManager:
    """
    Bounded, shared pool of network connections plus the embedded handle cache.

    acquire() hands out an idle, non-expired pooled connection for the same
    identity when one exists, opens a new one while below max_connections,
    and raises ResourceExhausted otherwise. release() returns the entry to the
    idle set; connections are only closed by sweeps or explicit resets.
    """

    def __init__(self, connectors: Mapping[BackendKind, Connector],
                 embedded: Optional[EmbeddedHandleCache] = None,
                 max_connections: int = 10, idle_timeout: float = 300.0,
                 clock: Callable[[], float] = time.monotonic):
        self._connectors = dict(connectors)
        self.embedded = embedded
        self.max_connections = max_connections
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._pools: Dict[PoolKey, List[PooledConnection]] = {}
        self._active = 0
        self._lock = threading.Lock()
        self._sweepers: List[PeriodicSweeper] = []

        self.stats = {
            'connections_created': 0,
            'connections_closed': 0,
            'connections_reused': 0,
            'exhausted': 0,
        }

    @property
    def active_connections(self) -> int:
        with self._lock:
            return self._active

    def _is_expired(self, entry: PooledConnection, now: float) -> bool:
        return now - entry.last_used >= self.idle_timeout

    def acquire(self, descriptor: ConnectionDescriptor) -> PooledConnection:
        """Borrow a network connection for descriptor; the caller must release() it"""
        if not descriptor.kind.is_network:
            raise ValidationError(f"{descriptor.kind.value} connections are not pooled")
        connector = self._connectors.get(descriptor.kind)
        if connector is None:
            raise ValidationError(f"No connector registered for {descriptor.kind.value}")

        pool_key = descriptor.identity_key()
        stale: List[PooledConnection] = []

        with self._lock:
            now = self._clock()
            pool = self._pools.get(pool_key, [])
            for entry in list(pool):
                if entry.in_use:
                    continue
                if self._is_expired(entry, now):
                    pool.remove(entry)
                    self._active -= 1
                    stale.append(entry)
                    continue
                entry.in_use = True
                entry.last_used = now
                self.stats['connections_reused'] += 1
                reused = entry
                break
            else:
                reused = None

            if reused is None:
                if self._active >= self.max_connections:
                    self.stats['exhausted'] += 1
                    active = self._active
                else:
                    # Reserve the slot before connecting outside the lock
                    self._active += 1
                    active = None

        self._close_entries(stale, "expired on acquire")

        if reused is not None:
            logger.debug(f"Reusing pooled connection {descriptor.describe()}")
            return reused

        if active is not None:
            raise ResourceExhausted(
                "Connection pool exhausted",
                {'active_connections': active, 'max_connections': self.max_connections},
            )

        try:
            connection = connector(descriptor)
        except BaseException:
            with self._lock:
                self._active -= 1
            raise

        entry = PooledConnection(
            connection=connection,
            kind=descriptor.kind,
            descriptor=descriptor,
            pool_key=pool_key,
            last_used=self._clock(),
        )
        with self._lock:
            self._pools.setdefault(pool_key, []).append(entry)
            self.stats['connections_created'] += 1
            active = self._active

        logger.info(f"Created pooled connection {descriptor.describe()} ({active}/{self.max_connections} active)")
        return entry

    def _find(self, handle: Any) -> Optional[PooledConnection]:
        for pool in self._pools.values():
            for entry in pool:
                if entry is handle or entry.connection is handle:
                    return entry
        return None

    def release(self, handle: Any) -> None:
        """Return a borrowed connection; releasing twice is a no-op"""
        with self._lock:
            entry = self._find(handle)
            if entry is not None:
                if not entry.in_use:
                    logger.debug("Connection already released")
                    return
                entry.in_use = False
                entry.last_used = self._clock()
                return

        # Not pooled (pool was reset while the connection was lent out)
        raw = handle.connection if isinstance(handle, PooledConnection) else handle
        logger.debug("Connection not found in pool, closing directly")
        _close_quietly(raw, "outside pool")
        with self._lock:
            self.stats['connections_closed'] += 1

    def discard(self, handle: Any) -> None:
        """Remove a connection that is no longer usable and close it"""
        with self._lock:
            entry = self._find(handle)
            if entry is not None:
                self._pools[entry.pool_key].remove(entry)
                if not self._pools[entry.pool_key]:
                    del self._pools[entry.pool_key]
                self._active -= 1
        raw = handle.connection if isinstance(handle, PooledConnection) else handle
        _close_quietly(raw, "discarded")
        with self._lock:
            self.stats['connections_closed'] += 1

    @contextmanager
    def lease(self, descriptor: ConnectionDescriptor) -> Iterator[Any]:
        """
        Borrow a connection for the duration of a with-block.

        Network kinds come from the pool; the embedded kind comes from the
        handle cache. A network connection that failed with a connection or
        timeout error is discarded instead of returned to the pool.
        """
        if not descriptor.kind.is_network:
            if self.embedded is None:
                raise ValidationError("Embedded-file handles are not configured")
            with self.embedded.lease(descriptor) as connection:
                yield connection
            return

        handle = self.acquire(descriptor)
        try:
            yield handle.connection
        except (ConnectionError, TimeoutError):
            self.discard(handle)
            raise
        except BaseException:
            self.release(handle)
            raise
        else:
            self.release(handle)

    def _close_entries(self, entries: List[PooledConnection], reason: str) -> None:
        for entry in entries:
            _close_quietly(entry.connection, reason)
        if entries:
            with self._lock:
                self.stats['connections_closed'] += len(entries)

    def _detach(self, predicate: Callable[[PooledConnection], bool]) -> int:
        """Remove matching entries; idle ones are closed now, lent ones on release"""
        idle: List[PooledConnection] = []
        removed = 0
        with self._lock:
            for key in list(self._pools):
                keep = []
                for entry in self._pools[key]:
                    if predicate(entry):
                        removed += 1
                        if not entry.in_use:
                            idle.append(entry)
                    else:
                        keep.append(entry)
                if keep:
                    self._pools[key] = keep
                else:
                    del self._pools[key]
            self._active -= removed
        self._close_entries(idle, "pool reset")
        return removed

    def cleanup_expired(self) -> int:
        """Close and evict idle connections unused for longer than idle_timeout"""
        expired: List[PooledConnection] = []
        with self._lock:
            now = self._clock()
            for key in list(self._pools):
                pool = self._pools[key]
                keep = [e for e in pool if e.in_use or not self._is_expired(e, now)]
                expired.extend(e for e in pool if not e.in_use and self._is_expired(e, now))
                if keep:
                    self._pools[key] = keep
                else:
                    del self._pools[key]
            self._active -= len(expired)

        self._close_entries(expired, "expired")
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired pooled connections")
        return len(expired)

    def close_pool(self, descriptor: ConnectionDescriptor) -> int:
        pool_key = descriptor.identity_key()
        removed = self._detach(lambda e: e.pool_key == pool_key)
        logger.info(f"Closed connection pool for {descriptor.describe()} ({removed} connections)")
        return removed

    def close_by_tag(self, tag: str) -> int:
        """Hard reset of every handle tagged with role `tag`, in use or not"""
        removed = self._detach(lambda e: e.descriptor.role == tag)
        if self.embedded is not None:
            removed += self.embedded.close_by_tag(tag)
        return removed

    def close_all(self) -> int:
        removed = self._detach(lambda e: True)
        if self.embedded is not None:
            removed += self.embedded.close_all()
        logger.info("Closed all connection pools")
        return removed

    def start_maintenance(self, network_interval: float = 60.0, embedded_interval: float = 300.0) -> None:
        if self._sweepers:
            return
        self._sweepers.append(PeriodicSweeper("network-pool-sweep", network_interval, self.cleanup_expired))
        if self.embedded is not None:
            self._sweepers.append(
                PeriodicSweeper("embedded-handle-sweep", embedded_interval, self.embedded.cleanup_expired)
            )
        for sweeper in self._sweepers:
            sweeper.start()

    def stop_maintenance(self) -> None:
        for sweeper in self._sweepers:
            sweeper.stop()
        self._sweepers = []

    def get_pool_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats: Dict[str, Any] = {
                'active_connections': self._active,
                'max_connections': self.max_connections,
                'pools': {},
                **self.stats,
            }
            for key, pool in self._pools.items():
                in_use = sum(1 for e in pool if e.in_use)
                stats['pools'][':'.join(str(part) for part in key)] = {
                    'total': len(pool),
                    'in_use': in_use,
                    'available': len(pool) - in_use,
                }
        if self.embedded is not None:
            stats['embedded'] = self.embedded.get_stats()
        return stats
