#!/usr/bin/env python3
"""
Migration Verifier SQLite Adapter

Embedded-file backend. Database files are opened read-only through a
`file:...?mode=ro` URI so verification can never modify them. Statements are
interrupted by a progress handler once the query budget is spent.
"""

import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, List

from core.database_manager import DatabaseAdapter
from core.errors import ConnectionError, QueryError, TimeoutError, VerificationError
from core.models import BackendKind, ColumnDescriptor, ConnectionDescriptor

logger = logging.getLogger(__name__)

# VM instructions between deadline checks
PROGRESS_INTERVAL = 1000


def quote_identifier(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


class SQLiteAdapter(DatabaseAdapter):
    """SQLite backend (sqlite3, read-only)"""

    kind = BackendKind.SQLITE

    def open_path(self, path: str) -> sqlite3.Connection:
        """Open a read-only connection to an existing database file"""
        file_path = Path(path)
        if not file_path.is_file():
            raise ConnectionError(f"SQLite database file not found: {file_path.name}",
                                  {'backend': self.kind.value})
        try:
            conn = sqlite3.connect(
                f"{file_path.resolve().as_uri()}?mode=ro",
                uri=True,
                timeout=self.settings.connection_timeout,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise ConnectionError(f"Failed to open SQLite database {file_path.name}: {e}",
                                  {'backend': self.kind.value}) from e
        conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to SQLite database: {file_path.name}")
        return conn

    def open_connection(self, descriptor: ConnectionDescriptor) -> sqlite3.Connection:
        return self.open_path(descriptor.resolved_path())

    def _execute(self, connection: sqlite3.Connection, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        deadline = time.monotonic() + self.settings.query_timeout

        def check_deadline():
            # Non-zero return interrupts the running statement
            return 1 if time.monotonic() > deadline else 0

        connection.set_progress_handler(check_deadline, PROGRESS_INTERVAL)
        try:
            return connection.execute(sql, params).fetchall()
        finally:
            connection.set_progress_handler(None, PROGRESS_INTERVAL)

    def ping(self, connection: sqlite3.Connection) -> None:
        # Touches the schema so a non-database file fails here
        self._execute(connection, "SELECT name FROM sqlite_master WHERE type = 'table' LIMIT 1")

    def list_tables(self, connection: sqlite3.Connection, descriptor: ConnectionDescriptor) -> List[str]:
        rows = self._execute(connection, """
            SELECT name
            FROM sqlite_master
            WHERE type = 'table'
            AND name NOT LIKE 'sqlite_%'
            ORDER BY name
        """)
        tables = [row['name'] for row in rows]
        logger.debug(f"Found {len(tables)} tables: {tables}")
        return tables

    def count_rows(self, connection: sqlite3.Connection, descriptor: ConnectionDescriptor,
                   table_name: str) -> int:
        rows = self._execute(connection, f"SELECT COUNT(*) AS count FROM {quote_identifier(table_name)}")
        return int(rows[0]['count']) if rows else 0

    def fetch_schema(self, connection: sqlite3.Connection, descriptor: ConnectionDescriptor,
                     table_name: str) -> List[ColumnDescriptor]:
        rows = self._execute(connection, f"PRAGMA table_info({quote_identifier(table_name)})")
        return [
            ColumnDescriptor(
                name=row['name'],
                type=row['type'] or 'TEXT',
                nullable=row['notnull'] == 0,
            )
            for row in rows
        ]

    def fetch_sample(self, connection: sqlite3.Connection, descriptor: ConnectionDescriptor,
                     table_name: str, limit: int) -> List[Dict[str, Any]]:
        rows = self._execute(connection, f"SELECT * FROM {quote_identifier(table_name)} LIMIT ?", (int(limit),))
        return [dict(row) for row in rows]

    def translate_error(self, error: Exception, operation: str) -> VerificationError:
        details = {'backend': self.kind.value, 'operation': operation}
        message = str(error).lower()
        if 'interrupted' in message:
            return TimeoutError(f"SQLite {operation} interrupted after {self.settings.query_timeout:g}s",
                                self.settings.query_timeout, operation)
        if 'unable to open' in message or 'not a database' in message:
            return ConnectionError(f"SQLite {operation} failed: {error}", details)
        return QueryError(f"SQLite {operation} failed: {error}", details)
