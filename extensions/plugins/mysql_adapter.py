#!/usr/bin/env python3
"""
Migration Verifier MySQL Adapter

Read-only metadata and sampling queries against MySQL / MariaDB through
PyMySQL. Identifiers are backtick-quoted; the connection's read timeout is
the query budget.

Usage:
    adapter = MySQLAdapter(settings)
    conn = adapter.open_connection(descriptor)
    count = adapter.count_rows(conn, descriptor, "customers")
"""

import logging
from typing import Any, Dict, List

import pymysql
import pymysql.cursors
from pymysql import MySQLError

from core.database_manager import DatabaseAdapter
from core.errors import ConnectionError, QueryError, TimeoutError, VerificationError
from core.models import BackendKind, ColumnDescriptor, ConnectionDescriptor

logger = logging.getLogger(__name__)

# Client/server error codes that mean the connection itself is unusable
CONNECTION_ERROR_CODES = {
    1044,  # access denied to database
    1045,  # access denied for user
    1049,  # unknown database
    2002,  # can't connect through socket
    2003,  # can't connect to server
    2005,  # unknown host
    2006,  # server has gone away
    2013,  # lost connection during query
}


def quote_identifier(name: str) -> str:
    """Backtick-quote a MySQL identifier"""
    return '`' + str(name).replace('`', '``') + '`'


class MySQLAdapter(DatabaseAdapter):
    """MySQL / MariaDB backend (PyMySQL)"""

    kind = BackendKind.MYSQL
    charset = "utf8mb4"

    def to_connection_params(self, descriptor: ConnectionDescriptor) -> Dict[str, Any]:
        """Convert a descriptor to PyMySQL connection parameters"""
        return {
            'host': descriptor.host,
            'port': descriptor.port,
            'database': descriptor.database,
            'user': descriptor.user,
            'password': descriptor.password or '',
            'connect_timeout': max(1, int(self.settings.connection_timeout)),
            'read_timeout': max(1, int(self.settings.query_timeout)),
            'write_timeout': max(1, int(self.settings.query_timeout)),
            'charset': self.charset,
            'autocommit': True,
            'cursorclass': pymysql.cursors.DictCursor,
        }

    def open_connection(self, descriptor: ConnectionDescriptor) -> Any:
        try:
            conn = pymysql.connect(**self.to_connection_params(descriptor))
        except MySQLError as e:
            raise ConnectionError(
                f"Could not connect to MySQL at {descriptor.host}:{descriptor.port}: {e}",
                {'backend': self.kind.value, 'database': descriptor.database},
            ) from e
        logger.debug(f"Opened MySQL connection to {descriptor.describe()}")
        return conn

    def ping(self, connection: Any) -> None:
        connection.ping(reconnect=False)

    def list_tables(self, connection: Any, descriptor: ConnectionDescriptor) -> List[str]:
        with connection.cursor() as cursor:
            cursor.execute("SHOW TABLES")
            rows = cursor.fetchall()

        # SHOW TABLES names its only column after the database
        tables = sorted(str(next(iter(row.values()))) for row in rows)
        logger.debug(f"Found {len(tables)} tables: {tables}")
        return tables

    def count_rows(self, connection: Any, descriptor: ConnectionDescriptor, table_name: str) -> int:
        with connection.cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS count FROM {quote_identifier(table_name)}")
            row = cursor.fetchone()
        return int(row['count']) if row else 0

    def fetch_schema(self, connection: Any, descriptor: ConnectionDescriptor,
                     table_name: str) -> List[ColumnDescriptor]:
        query = """
            SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
            ORDER BY ORDINAL_POSITION
        """
        with connection.cursor() as cursor:
            cursor.execute(query, (descriptor.database, table_name))
            rows = cursor.fetchall()

        return [
            ColumnDescriptor(
                name=row.get('COLUMN_NAME') or row.get('column_name'),
                type=row.get('DATA_TYPE') or row.get('data_type'),
                nullable=(row.get('IS_NULLABLE') or row.get('is_nullable')) == 'YES',
            )
            for row in rows
        ]

    def fetch_sample(self, connection: Any, descriptor: ConnectionDescriptor,
                     table_name: str, limit: int) -> List[Dict[str, Any]]:
        with connection.cursor() as cursor:
            cursor.execute(f"SELECT * FROM {quote_identifier(table_name)} LIMIT %s", (int(limit),))
            return [dict(row) for row in cursor.fetchall()]

    def translate_error(self, error: Exception, operation: str) -> VerificationError:
        details = {'backend': self.kind.value, 'operation': operation}
        code = error.args[0] if error.args and isinstance(error.args[0], int) else None
        if code is not None:
            details['mysql_error_code'] = code

        message = str(error).lower()
        if 'timed out' in message or 'timeout' in message:
            return TimeoutError(f"MySQL {operation} timed out: {error}",
                                self.settings.query_timeout, operation)
        if isinstance(error, (pymysql.err.OperationalError, pymysql.err.InterfaceError)) \
                and (code in CONNECTION_ERROR_CODES or code is None):
            return ConnectionError(f"MySQL connection failed during {operation}: {error}", details)
        return QueryError(f"MySQL {operation} failed: {error}", details)
