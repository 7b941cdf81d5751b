#!/usr/bin/env python3
"""
Table verifier tests: schema comparison, sample comparison and per-table verdicts.
"""

import unittest
from unittest.mock import patch

from core.errors import TimeoutError
from core.models import ColumnDescriptor, ConnectionDescriptor, TableStatus
from core.table_verifier import (
    NOT_VERIFIED,
    SAME_FILE_DETAILS,
    TableVerifier,
    compare_samples,
    compare_schemas,
    same_embedded_database,
)
from tests.conftest import PRODUCTS


def col(name, type_name='integer', nullable=True):
    return ColumnDescriptor(name, type_name, nullable)


class TestCompareSchemas(unittest.TestCase):

    def test_matching_with_compatible_types(self):
        source = [col('ID', 'int', False), col('name', 'varchar'), col('active', 'tinyint')]
        target = [col('id', 'integer', False), col('Name', 'character varying'), col('active', 'boolean')]
        self.assertTrue(compare_schemas(source, target).matches)

    def test_column_count_differs(self):
        result = compare_schemas([col('a'), col('b')], [col('a')])
        self.assertFalse(result.matches)
        self.assertIn('Different number of columns', result.reason)

    def test_positional_not_by_name(self):
        source = [col('a'), col('b')]
        target = [col('b'), col('a')]
        self.assertFalse(compare_schemas(source, target).matches)

    def test_nullability_must_match(self):
        result = compare_schemas([col('a', nullable=False)], [col('a', nullable=True)])
        self.assertFalse(result.matches)
        self.assertIn('Nullable mismatch', result.reason)

    def test_incompatible_type(self):
        result = compare_schemas([col('a', 'varchar')], [col('a', 'integer')])
        self.assertFalse(result.matches)
        self.assertIn('Type mismatch at column 1', result.reason)


class TestCompareSamples(unittest.TestCase):

    def test_all_rows_match(self):
        rows = [{'id': 1, 'name': 'a '}, {'id': 2, 'name': None}]
        target = [{'ID': '1', 'NAME': 'a'}, {'ID': 2, 'NAME': None}]
        result = compare_samples(rows, target)
        self.assertTrue(result.is_valid)
        self.assertEqual(result.details, 'All 2 sample rows match perfectly')

    def test_sample_size_differs(self):
        result = compare_samples([{'id': 1}], [])
        self.assertEqual(result.details, 'Row count mismatch in sample: source=1, target=0')

    def test_column_count_differs(self):
        result = compare_samples([{'id': 1, 'x': 2}], [{'id': 1}])
        self.assertEqual(result.details, 'Column count mismatch in row 1: source=2, target=1')

    def test_missing_column(self):
        result = compare_samples([{'id': 1, 'x': 2}], [{'id': 1, 'y': 2}])
        self.assertEqual(result.details, 'Column "x" not found in target row 1')

    def test_null_only_equals_null(self):
        result = compare_samples([{'id': None}], [{'id': 'None'}])
        self.assertFalse(result.is_valid)
        self.assertEqual(result.details, 'Null value mismatch in row 1, column "id": source=null, target=None')

    def test_value_mismatch_identifies_row_and_column(self):
        result = compare_samples(
            [{'id': 1, 'name': 'a'}, {'id': 2, 'name': 'b'}],
            [{'id': 1, 'Name': 'a'}, {'id': 2, 'Name': 'c'}],
        )
        self.assertFalse(result.is_valid)
        self.assertEqual(result.details, 'Value mismatch in row 2, column "name/Name": source="b", target="c"')

    def test_bytes_and_booleans(self):
        self.assertTrue(compare_samples([{'b': b'\x01\xff'}], [{'b': memoryview(b'\x01\xff')}]).is_valid)
        self.assertTrue(compare_samples([{'flag': True}], [{'flag': 'true'}]).is_valid)
        self.assertFalse(compare_samples([{'flag': True}], [{'flag': 1}]).is_valid)


class TestSameEmbeddedDatabase(unittest.TestCase):

    def test_same_file(self):
        a = ConnectionDescriptor(kind='sqlite', database='', file_path='/data/./shop.db')
        b = ConnectionDescriptor(kind='sqlite', database='', file_path='/data/shop.db')
        self.assertTrue(same_embedded_database(a, b))

    def test_same_name_different_directory(self):
        a = ConnectionDescriptor(kind='sqlite', database='', file_path='/data/a/shop.db')
        b = ConnectionDescriptor(kind='sqlite', database='', file_path='/data/b/shop.db')
        self.assertFalse(same_embedded_database(a, b))

    def test_network_kinds_never_shortcut(self):
        a = ConnectionDescriptor(kind='mysql', database='shop', host='h', user='u')
        self.assertFalse(same_embedded_database(a, a))


class TestTableVerifier:

    def test_customers_with_widened_integer_match(self, context, migration_pair):
        source, target = migration_pair
        verdict = TableVerifier(context.database).verify(source, target, 'customers')

        assert len(verdict.source_columns) == 13
        assert verdict.target_columns[10].type == 'BIGINT'
        assert verdict.schema_match
        assert verdict.source_rows == verdict.target_rows == 5
        assert verdict.data_mapping_valid
        assert verdict.data_mapping_details == 'All 5 sample rows match perfectly'
        assert verdict.status is TableStatus.MATCH

    def test_employees_dropped_column_mismatch(self, context, migration_pair):
        source, target = migration_pair
        verifier = TableVerifier(context.database)
        with patch.object(context.database, 'fetch_sample', wraps=context.database.fetch_sample) as sample:
            verdict = verifier.verify(source, target, 'employees')

        assert len(verdict.source_columns) == 8
        assert len(verdict.target_columns) == 7
        assert not verdict.schema_match
        assert verdict.status is TableStatus.MISMATCH
        assert verdict.data_mapping_details == NOT_VERIFIED
        sample.assert_not_called()

    def test_single_value_difference(self, context, make_sqlite_db, sqlite_descriptor):
        source = sqlite_descriptor(make_sqlite_db("p_src.db", PRODUCTS.format(third_name='Widget')))
        target = sqlite_descriptor(make_sqlite_db("p_tgt.db", PRODUCTS.format(third_name='Gadget')))

        verdict = TableVerifier(context.database).verify(source, target, 'products')

        assert verdict.schema_match
        assert verdict.rows_match
        assert verdict.status is TableStatus.MISMATCH
        assert verdict.data_mapping_details == \
            'Value mismatch in row 3, column "name/name": source="Widget", target="Gadget"'

    def test_same_file_skips_sampling(self, context, migration_pair):
        source, _ = migration_pair
        target = ConnectionDescriptor(kind='sqlite', database='', file_path=source.file_path, role='target')
        with patch.object(context.database, 'fetch_sample') as sample:
            verdict = TableVerifier(context.database).verify(source, target, 'customers')

        sample.assert_not_called()
        assert verdict.status is TableStatus.MATCH
        assert verdict.data_mapping_details == SAME_FILE_DETAILS

    def test_missing_table_becomes_failed_verdict(self, context, migration_pair):
        source, target = migration_pair
        verdict = TableVerifier(context.database).verify(source, target, 'orders')

        assert verdict.status is TableStatus.MISMATCH
        assert verdict.source_rows == 0
        assert verdict.data_mapping_details.startswith('Processing failed: ')

    def test_sampling_error_keeps_counts(self, context, migration_pair):
        source, target = migration_pair
        with patch.object(context.database, 'fetch_sample', side_effect=RuntimeError('disk I/O error')):
            verdict = TableVerifier(context.database).verify(source, target, 'customers')

        assert verdict.source_rows == 5
        assert verdict.schema_match
        assert not verdict.data_mapping_valid
        assert verdict.status is TableStatus.MISMATCH
        assert verdict.data_mapping_details == 'Error during data mapping verification: disk I/O error'

    def test_timeout_detail_names_operation(self, context, migration_pair):
        source, target = migration_pair
        timeout = TimeoutError("sqlite count_rows timed out after 10s", 10.0, "sqlite count_rows")
        with patch.object(context.database, 'count_rows', side_effect=timeout):
            verdict = TableVerifier(context.database).verify(source, target, 'timeout_log')

        assert verdict.status is TableStatus.MISMATCH
        assert verdict.data_mapping_details == 'Processing failed: sqlite count_rows timed out after 10s'

    def test_sampling_timeout_detail(self, context, migration_pair):
        source, target = migration_pair
        timeout = TimeoutError("sqlite fetch_sample timed out after 10s", 10.0, "sqlite fetch_sample")
        with patch.object(context.database, 'fetch_sample', side_effect=timeout):
            verdict = TableVerifier(context.database).verify(source, target, 'customers')

        assert verdict.data_mapping_details == \
            'Error during data mapping verification: sqlite fetch_sample timed out after 10s'
