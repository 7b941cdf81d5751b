#!/usr/bin/env python3
"""
Per-table verification.

For one table: row counts from both sides, positional schema comparison
through the type compatibility table, then (only when schema and counts
agree) a bounded sample comparison. Any backend failure becomes a MISMATCH
verdict for the table instead of an exception.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from core.database_manager import DatabaseManager
from core.errors import error_detail
from core.models import (
    BackendKind,
    ColumnDescriptor,
    ConnectionDescriptor,
    DataComparison,
    SchemaComparison,
    TableStatus,
    TableVerdict,
)
from core.type_compat import TypeCompatibility

logger = logging.getLogger(__name__)

NOT_VERIFIED = "Not verified"
SAME_FILE_DETAILS = "Identical SQLite database - same file for source and target"


def compare_schemas(source_columns: Sequence[ColumnDescriptor],
                    target_columns: Sequence[ColumnDescriptor]) -> SchemaComparison:
    """
    Compare two column sequences position by position.

    Names compare case-insensitively, nullability exactly, types through
    TypeCompatibility.
    """
    if len(source_columns) != len(target_columns):
        return SchemaComparison(
            False,
            f"Different number of columns: source={len(source_columns)}, target={len(target_columns)}",
        )

    for position, (source, target) in enumerate(zip(source_columns, target_columns), start=1):
        if source.name.lower() != target.name.lower():
            return SchemaComparison(
                False, f"Name mismatch at column {position}: {source.name} vs {target.name}"
            )
        if source.nullable != target.nullable:
            return SchemaComparison(
                False, f"Nullable mismatch at column {position} ({source.name})"
            )
        if not TypeCompatibility.are_compatible(source.type, target.type):
            return SchemaComparison(
                False,
                f"Type mismatch at column {position} ({source.name}): {source.type} vs {target.type}",
            )

    return SchemaComparison(True, "Schemas match")


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value).strip()


def _display(value: Any) -> str:
    return 'null' if value is None else _stringify(value)


def compare_samples(source_rows: List[Dict[str, Any]], target_rows: List[Dict[str, Any]]) -> DataComparison:
    """Compare sampled rows in order; the first difference found is reported"""
    if len(source_rows) != len(target_rows):
        return DataComparison(
            False, f"Row count mismatch in sample: source={len(source_rows)}, target={len(target_rows)}"
        )

    for index, (source_row, target_row) in enumerate(zip(source_rows, target_rows), start=1):
        if len(source_row) != len(target_row):
            return DataComparison(
                False,
                f"Column count mismatch in row {index}: source={len(source_row)}, target={len(target_row)}",
            )

        target_keys = {str(key).lower(): key for key in target_row}

        for source_key, source_value in source_row.items():
            target_key = target_keys.get(str(source_key).lower())
            if target_key is None:
                return DataComparison(False, f'Column "{source_key}" not found in target row {index}')

            target_value = target_row[target_key]

            if source_value is None or target_value is None:
                if source_value is not target_value:
                    return DataComparison(
                        False,
                        f'Null value mismatch in row {index}, column "{source_key}": '
                        f'source={_display(source_value)}, target={_display(target_value)}',
                    )
                continue

            source_str = _stringify(source_value)
            target_str = _stringify(target_value)
            if source_str != target_str:
                return DataComparison(
                    False,
                    f'Value mismatch in row {index}, column "{source_key}/{target_key}": '
                    f'source="{source_str}", target="{target_str}"',
                )

    return DataComparison(True, f"All {len(source_rows)} sample rows match perfectly")


def same_embedded_database(source: ConnectionDescriptor, target: ConnectionDescriptor) -> bool:
    """True when both descriptors point at the same SQLite file"""
    if source.kind is not BackendKind.SQLITE or target.kind is not BackendKind.SQLITE:
        return False
    return source.resolved_path() == target.resolved_path()


class TableVerifier:
    """Produces one TableVerdict per table; never raises for backend failures"""

    def __init__(self, database: DatabaseManager, sample_size: Optional[int] = None):
        self.database = database
        self.sample_size = sample_size or database.settings.sample_size

    def verify_data_mapping(self, source: ConnectionDescriptor, target: ConnectionDescriptor,
                            table_name: str) -> DataComparison:
        logger.debug(f"Verifying data mapping for table {table_name} with sample size {self.sample_size}")

        if same_embedded_database(source, target):
            logger.info(f"Same SQLite database detected for source and target: {source.database}")
            return DataComparison(True, SAME_FILE_DETAILS)

        try:
            source_rows = self.database.fetch_sample(source, table_name, self.sample_size)
            target_rows = self.database.fetch_sample(target, table_name, self.sample_size)
        except Exception as e:
            logger.warning(f"Data mapping verification failed for table {table_name}: {e}")
            return DataComparison(False, f"Error during data mapping verification: {error_detail(e)}")

        return compare_samples(source_rows, target_rows)

    def verify(self, source: ConnectionDescriptor, target: ConnectionDescriptor, table_name: str) -> TableVerdict:
        try:
            source_count = self.database.count_rows(source, table_name)
            target_count = self.database.count_rows(target, table_name)
            source_columns = self.database.get_table_schema(source, table_name)
            target_columns = self.database.get_table_schema(target, table_name)
        except Exception as e:
            logger.error(f"Table {table_name} processing failed: {error_detail(e)}")
            return TableVerdict.failed(table_name, error_detail(e))

        schema = compare_schemas(source_columns, target_columns)
        if not schema.matches:
            logger.info(f"Schema comparison failed for table {table_name}: {schema.reason}")

        rows_match = source_count == target_count
        data = DataComparison(True, NOT_VERIFIED)
        if schema.matches and rows_match:
            data = self.verify_data_mapping(source, target, table_name)

        status = TableStatus.MATCH if schema.matches and rows_match and data.is_valid else TableStatus.MISMATCH

        logger.info(
            f"Table {table_name} verification result: {status.value} "
            f"(rows {source_count}/{target_count}, schema_match={schema.matches}, "
            f"data_mapping_valid={data.is_valid})"
        )

        return TableVerdict(
            table_name=table_name,
            source_rows=source_count,
            target_rows=target_count,
            schema_match=schema.matches,
            data_mapping_valid=data.is_valid,
            data_mapping_details=data.details,
            status=status,
            source_columns=tuple(source_columns),
            target_columns=tuple(target_columns),
        )
