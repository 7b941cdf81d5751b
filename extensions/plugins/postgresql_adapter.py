#!/usr/bin/env python3
"""
Migration Verifier PostgreSQL Adapter

Read-only metadata and sampling queries against PostgreSQL:
- table discovery across the database-named schema and `public`
- schema-qualified row counts with an unqualified fallback
- column discovery ordered by ordinal position
- bounded sample rows in backend-default order

Connections are opened in autocommit mode with a server-side
statement_timeout so abandoned queries do not linger.

Usage:
    adapter = PostgreSQLAdapter(settings)
    conn = adapter.open_connection(descriptor)
    tables = adapter.list_tables(conn, descriptor)
"""

import logging
from enum import Enum
from typing import Any, Dict, List

import psycopg2
import psycopg2.extensions
import psycopg2.extras
import psycopg2.sql

from core.database_manager import DatabaseAdapter
from core.errors import ConnectionError, QueryError, TimeoutError, VerificationError
from core.models import BackendKind, ColumnDescriptor, ConnectionDescriptor

logger = logging.getLogger(__name__)


class SSLMode(Enum):
    """SSL connection modes"""
    DISABLE = "disable"
    ALLOW = "allow"
    PREFER = "prefer"
    REQUIRE = "require"
    VERIFY_CA = "verify-ca"
    VERIFY_FULL = "verify-full"


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL backend (psycopg2)"""

    kind = BackendKind.POSTGRESQL

    @property
    def ssl_mode(self) -> SSLMode:
        return SSLMode(self.settings.postgres_sslmode)

    def to_connection_params(self, descriptor: ConnectionDescriptor) -> Dict[str, Any]:
        """Convert a descriptor to psycopg2 connection parameters"""
        statement_timeout_ms = int(self.settings.query_timeout * 1000)
        return {
            'host': descriptor.host,
            'port': descriptor.port,
            'dbname': descriptor.database,
            'user': descriptor.user,
            'password': descriptor.password,
            'connect_timeout': max(1, int(self.settings.connection_timeout)),
            'application_name': self.settings.application_name,
            'sslmode': self.ssl_mode.value,
            'options': f'-c statement_timeout={statement_timeout_ms}',
        }

    def open_connection(self, descriptor: ConnectionDescriptor) -> Any:
        try:
            conn = psycopg2.connect(**self.to_connection_params(descriptor))
        except psycopg2.Error as e:
            raise ConnectionError(
                f"Could not connect to PostgreSQL at {descriptor.host}:{descriptor.port}: {e}",
                {'backend': self.kind.value, 'database': descriptor.database},
            ) from e
        conn.autocommit = True
        logger.debug(f"Opened PostgreSQL connection to {descriptor.describe()}")
        return conn

    def ping(self, connection: Any) -> None:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()

    def list_tables(self, connection: Any, descriptor: ConnectionDescriptor) -> List[str]:
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema IN (%s, 'public')
            AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
            cursor.execute(query, (descriptor.database,))
            rows = cursor.fetchall()

        # A table present in both schemas is listed once
        tables = list(dict.fromkeys(row['table_name'] for row in rows))
        logger.debug(f"Found {len(tables)} tables: {tables}")
        return tables

    def _execute_qualified(self, connection: Any, template: str, descriptor: ConnectionDescriptor,
                           table_name: str, params: tuple = ()) -> List[Dict[str, Any]]:
        """
        Run `template` against "database"."table", retrying with "table" when the
        qualified form fails (the database name is usually not a schema name).
        """
        qualified = psycopg2.sql.SQL(template).format(
            table=psycopg2.sql.SQL('.').join([
                psycopg2.sql.Identifier(descriptor.database),
                psycopg2.sql.Identifier(table_name),
            ])
        )
        unqualified = psycopg2.sql.SQL(template).format(table=psycopg2.sql.Identifier(table_name))

        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
            try:
                cursor.execute(qualified, params)
            except psycopg2.ProgrammingError as e:
                logger.debug(f"Qualified query failed for {table_name}, trying unqualified: {e}")
                cursor.execute(unqualified, params)
            return [dict(row) for row in cursor.fetchall()]

    def count_rows(self, connection: Any, descriptor: ConnectionDescriptor, table_name: str) -> int:
        rows = self._execute_qualified(
            connection, "SELECT COUNT(*) AS count FROM {table}", descriptor, table_name
        )
        return int(rows[0]['count']) if rows else 0

    def fetch_schema(self, connection: Any, descriptor: ConnectionDescriptor,
                     table_name: str) -> List[ColumnDescriptor]:
        query = """
            SELECT table_schema, column_name, data_type, is_nullable
            FROM information_schema.columns
            WHERE table_name = %s AND table_schema IN (%s, 'public')
            ORDER BY CASE WHEN table_schema = %s THEN 0 ELSE 1 END, ordinal_position
        """
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
            cursor.execute(query, (table_name, descriptor.database, descriptor.database))
            rows = cursor.fetchall()

        if not rows:
            return []

        # Only the first matching schema describes the table
        schema = rows[0]['table_schema']
        return [
            ColumnDescriptor(
                name=row['column_name'],
                type=row['data_type'],
                nullable=row['is_nullable'] == 'YES',
            )
            for row in rows if row['table_schema'] == schema
        ]

    def fetch_sample(self, connection: Any, descriptor: ConnectionDescriptor,
                     table_name: str, limit: int) -> List[Dict[str, Any]]:
        return self._execute_qualified(
            connection, "SELECT * FROM {table} LIMIT %s", descriptor, table_name, (int(limit),)
        )

    def translate_error(self, error: Exception, operation: str) -> VerificationError:
        details = {'backend': self.kind.value, 'operation': operation}
        if isinstance(error, psycopg2.extensions.QueryCanceledError):
            return TimeoutError(f"PostgreSQL {operation} cancelled: {error}",
                                self.settings.query_timeout, operation)
        if isinstance(error, (psycopg2.OperationalError, psycopg2.InterfaceError)):
            return ConnectionError(f"PostgreSQL connection failed during {operation}: {error}", details)
        return QueryError(f"PostgreSQL {operation} failed: {error}", details)
