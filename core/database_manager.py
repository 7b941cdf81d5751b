#!/usr/bin/env python3
"""
Migration Verifier Database Manager - Multi-Backend Database Access

This module provides a unified interface over the supported backends,
borrowing connections from the ConnectionResourceManager and running every
backend call under a time budget.

Supported backends:
- PostgreSQL (psycopg2)
- MySQL / MariaDB (PyMySQL)
- SQLite (built-in, read-only)

Usage:
    manager = DatabaseManager(resources, schema_cache, settings)
    tables = manager.list_tables(descriptor)
    columns = manager.get_table_schema(descriptor, "customers")
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from config.settings import VerifierSettings
from core.connection_manager import ConnectionResourceManager
from core.errors import (
    ConnectionError,
    QueryError,
    TimeoutError,
    VerificationError,
    categorize_error,
    error_detail,
)
from core.models import BackendKind, ColumnDescriptor, ConnectionDescriptor
from core.schema_cache import SchemaCache
from core.timeouts import call_with_timeout

logger = logging.getLogger(__name__)


class DatabaseAdapter:
    """
    Base class for backend adapters.

    Adapters hold no connections of their own: every query method receives a
    live connection borrowed by the DatabaseManager, plus the descriptor it
    belongs to. open_connection() is used by the resource manager to create
    pooled connections and by connectivity tests for scoped ones.
    """

    kind: BackendKind = None

    def __init__(self, settings: Optional[VerifierSettings] = None):
        self.settings = settings or VerifierSettings(read_environment=False)

    def open_connection(self, descriptor: ConnectionDescriptor) -> Any:
        raise NotImplementedError("Subclasses must implement open_connection")

    def close_connection(self, connection: Any) -> None:
        try:
            connection.close()
        except Exception as e:
            logger.warning(f"Error closing {self.kind.value} connection: {e}")

    def ping(self, connection: Any) -> None:
        raise NotImplementedError("Subclasses must implement ping")

    def list_tables(self, connection: Any, descriptor: ConnectionDescriptor) -> List[str]:
        raise NotImplementedError("Subclasses must implement list_tables")

    def count_rows(self, connection: Any, descriptor: ConnectionDescriptor, table_name: str) -> int:
        raise NotImplementedError("Subclasses must implement count_rows")

    def fetch_schema(self, connection: Any, descriptor: ConnectionDescriptor,
                     table_name: str) -> List[ColumnDescriptor]:
        raise NotImplementedError("Subclasses must implement fetch_schema")

    def fetch_sample(self, connection: Any, descriptor: ConnectionDescriptor,
                     table_name: str, limit: int) -> List[Dict[str, Any]]:
        raise NotImplementedError("Subclasses must implement fetch_sample")

    def translate_error(self, error: Exception, operation: str) -> VerificationError:
        """Map a driver exception onto the verification error hierarchy"""
        return QueryError(f"{operation} failed: {error}", {'backend': self.kind.value})


def default_adapters(settings: VerifierSettings) -> Dict[BackendKind, DatabaseAdapter]:
    """One adapter per backend kind"""
    from extensions.plugins.mysql_adapter import MySQLAdapter
    from extensions.plugins.postgresql_adapter import PostgreSQLAdapter
    from extensions.plugins.sqlite_adapter import SQLiteAdapter

    return {
        BackendKind.POSTGRESQL: PostgreSQLAdapter(settings),
        BackendKind.MYSQL: MySQLAdapter(settings),
        BackendKind.SQLITE: SQLiteAdapter(settings),
    }


class DatabaseManager:
    """
    Uniform access to table metadata and data across backends.

    Every operation borrows a connection through the resource manager, runs
    under query_timeout (connection_timeout for connectivity tests), and
    translates driver errors into ConnectionError / QueryError / TimeoutError.
    """

    def __init__(self, resources: ConnectionResourceManager, schema_cache: SchemaCache,
                 settings: Optional[VerifierSettings] = None,
                 adapters: Optional[Mapping[BackendKind, DatabaseAdapter]] = None):
        self.resources = resources
        self.schema_cache = schema_cache
        self.settings = settings or VerifierSettings(read_environment=False)
        self.adapters: Dict[BackendKind, DatabaseAdapter] = dict(adapters or default_adapters(self.settings))

    def adapter_for(self, descriptor: ConnectionDescriptor) -> DatabaseAdapter:
        adapter = self.adapters.get(descriptor.kind)
        if adapter is None:
            raise QueryError(f"Unsupported database type: {descriptor.kind.value}")
        return adapter

    def _log_failure(self, error: BaseException, descriptor: ConnectionDescriptor,
                     operation: str, table_name: Optional[str]) -> None:
        context = {
            'backend': descriptor.kind.value,
            'database': descriptor.database,
            'operation': operation,
            'table': table_name,
            'category': categorize_error(error),
        }
        logger.error(f"{operation} failed: {error_detail(error)} {context}")

    def _run(self, descriptor: ConnectionDescriptor, operation: str,
             func: Callable[[DatabaseAdapter, Any], Any], table_name: Optional[str] = None) -> Any:
        adapter = self.adapter_for(descriptor)

        def borrowed():
            with self.resources.lease(descriptor) as connection:
                try:
                    return func(adapter, connection)
                except VerificationError:
                    raise
                except Exception as e:
                    raise adapter.translate_error(e, operation) from e

        try:
            return call_with_timeout(borrowed, self.settings.query_timeout,
                                     f"{descriptor.kind.value} {operation}")
        except Exception as e:
            self._log_failure(e, descriptor, operation, table_name)
            raise

    def test_connectivity(self, descriptor: ConnectionDescriptor) -> None:
        """
        Open a fresh connection, issue a minimal round-trip and close it.

        Raises:
            ConnectionError: network, authentication, host or timeout failure
        """
        adapter = self.adapter_for(descriptor)

        def round_trip():
            connection = adapter.open_connection(descriptor)
            try:
                adapter.ping(connection)
            finally:
                adapter.close_connection(connection)

        timeout = self.settings.connection_timeout
        try:
            call_with_timeout(round_trip, timeout, f"{descriptor.kind.value} connectivity test")
        except ConnectionError as e:
            self._log_failure(e, descriptor, 'test_connectivity', None)
            raise
        except TimeoutError as e:
            self._log_failure(e, descriptor, 'test_connectivity', None)
            raise ConnectionError(
                f"Connection test timed out after {timeout:g}s",
                {'backend': descriptor.kind.value, 'timeout_seconds': timeout},
            ) from e
        except VerificationError as e:
            self._log_failure(e, descriptor, 'test_connectivity', None)
            raise ConnectionError(e.message, {'backend': descriptor.kind.value}) from e
        except Exception as e:
            self._log_failure(e, descriptor, 'test_connectivity', None)
            raise ConnectionError(f"Connection test failed: {e}", {'backend': descriptor.kind.value}) from e

        logger.info(f"Connection test successful for {descriptor.describe()}")

    def list_tables(self, descriptor: ConnectionDescriptor) -> List[str]:
        tables = self._run(descriptor, 'list_tables',
                           lambda adapter, conn: adapter.list_tables(conn, descriptor))
        logger.info(f"Found {len(tables)} tables in {descriptor.describe()}")
        return tables

    def count_rows(self, descriptor: ConnectionDescriptor, table_name: str) -> int:
        return self._run(descriptor, 'count_rows',
                         lambda adapter, conn: adapter.count_rows(conn, descriptor, table_name),
                         table_name)

    def get_table_schema(self, descriptor: ConnectionDescriptor, table_name: str) -> Tuple[ColumnDescriptor, ...]:
        cached = self.schema_cache.get(descriptor, table_name)
        if cached is not None:
            return cached

        columns = tuple(self._run(
            descriptor, 'fetch_schema',
            lambda adapter, conn: adapter.fetch_schema(conn, descriptor, table_name),
            table_name,
        ))
        self.schema_cache.set(descriptor, table_name, columns)
        logger.debug(f"Table {table_name} schema retrieved ({len(columns)} columns)")
        return columns

    def fetch_sample(self, descriptor: ConnectionDescriptor, table_name: str,
                     limit: Optional[int] = None) -> List[Dict[str, Any]]:
        limit = limit or self.settings.sample_size
        return self._run(descriptor, 'fetch_sample',
                         lambda adapter, conn: adapter.fetch_sample(conn, descriptor, table_name, limit),
                         table_name)
