#!/usr/bin/env python3
"""
Process-level verification context.

Owns the shared, mutable pieces of the engine (connection pools, schema
cache, progress tracker) so that they can be created once per process, or
once per test, and handed to the orchestrator.
"""

import logging
from typing import List, Mapping, Optional

from config.settings import VerifierSettings
from core.connection_manager import ConnectionResourceManager, EmbeddedHandleCache, PeriodicSweeper
from core.database_manager import DatabaseAdapter, DatabaseManager, default_adapters
from core.models import BackendKind
from core.progress import ProgressChannel, ProgressTracker
from core.schema_cache import SchemaCache

logger = logging.getLogger(__name__)


class VerificationContext:
    """
    Usage:
        with VerificationContext(load_settings(), channel=QueueProgressChannel()) as context:
            context.start_maintenance()
            ...
    """

    def __init__(self, settings: Optional[VerifierSettings] = None,
                 adapters: Optional[Mapping[BackendKind, DatabaseAdapter]] = None,
                 channel: Optional[ProgressChannel] = None):
        self.settings = settings or VerifierSettings()
        self.adapters = dict(adapters or default_adapters(self.settings))

        embedded = None
        sqlite_adapter = self.adapters.get(BackendKind.SQLITE)
        if sqlite_adapter is not None:
            embedded = EmbeddedHandleCache(
                opener=sqlite_adapter.open_path,
                idle_timeout=self.settings.embedded_idle_timeout,
                max_handles=self.settings.max_embedded_handles,
            )

        self.resources = ConnectionResourceManager(
            connectors={kind: a.open_connection for kind, a in self.adapters.items() if kind.is_network},
            embedded=embedded,
            max_connections=self.settings.max_connections,
            idle_timeout=self.settings.network_idle_timeout,
        )
        self.schema_cache = SchemaCache(ttl=self.settings.schema_cache_ttl)
        self.database = DatabaseManager(self.resources, self.schema_cache, self.settings, self.adapters)
        self.progress = ProgressTracker(channel, retention=self.settings.progress_retention)
        self._sweepers: List[PeriodicSweeper] = []

    def start_maintenance(self) -> None:
        """Start the background idle sweeps for pools, handles, cache and progress sessions"""
        if self._sweepers:
            return
        self.resources.start_maintenance(self.settings.network_sweep_interval,
                                         self.settings.embedded_sweep_interval)
        self._sweepers = [
            PeriodicSweeper("schema-cache-sweep", self.settings.cache_sweep_interval,
                            self.schema_cache.cleanup_expired),
            PeriodicSweeper("progress-sweep", self.settings.progress_retention, self.progress.prune),
        ]
        for sweeper in self._sweepers:
            sweeper.start()
        logger.info("Background maintenance started")

    def close(self) -> None:
        for sweeper in self._sweepers:
            sweeper.stop()
        self._sweepers = []
        self.resources.stop_maintenance()
        self.resources.close_all()
        self.schema_cache.clear()
        logger.info("Verification context closed")

    def __enter__(self) -> 'VerificationContext':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
