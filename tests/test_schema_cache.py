#!/usr/bin/env python3
"""
Schema cache tests with a controllable clock.
"""

import unittest

from core.models import ColumnDescriptor, ConnectionDescriptor
from core.schema_cache import SchemaCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


COLUMNS = [ColumnDescriptor('id', 'integer', False), ColumnDescriptor('name', 'text', True)]


class TestSchemaCache(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.cache = SchemaCache(ttl=300.0, clock=self.clock)
        self.pg = ConnectionDescriptor(kind='postgres', database='shop', host='db', user='u')
        self.pg_other_user = ConnectionDescriptor(kind='postgres', database='shop', host='db', user='v')
        self.sqlite = ConnectionDescriptor(kind='sqlite', database='', file_path='/tmp/x.db')

    def test_hit_and_miss(self):
        self.assertIsNone(self.cache.get(self.pg, 'customers'))
        self.cache.set(self.pg, 'customers', COLUMNS)
        self.assertEqual(self.cache.get(self.pg, 'customers'), tuple(COLUMNS))
        self.assertEqual(self.cache.stats['hits'], 1)
        self.assertEqual(self.cache.stats['misses'], 1)

    def test_entries_are_immutable_snapshots(self):
        columns = list(COLUMNS)
        self.cache.set(self.pg, 'customers', columns)
        columns.append(ColumnDescriptor('extra', 'text', True))
        self.assertEqual(len(self.cache.get(self.pg, 'customers')), 2)

    def test_key_ignores_user(self):
        self.cache.set(self.pg, 'customers', COLUMNS)
        self.assertIsNotNone(self.cache.get(self.pg_other_user, 'customers'))

    def test_expiry(self):
        self.cache.set(self.pg, 'customers', COLUMNS)
        self.clock.now += 299
        self.assertIsNotNone(self.cache.get(self.pg, 'customers'))
        self.clock.now += 2
        self.assertIsNone(self.cache.get(self.pg, 'customers'))
        self.assertEqual(len(self.cache), 0)
        self.assertEqual(self.cache.stats['expired'], 1)

    def test_sqlite_never_cached(self):
        self.cache.set(self.sqlite, 'customers', COLUMNS)
        self.assertIsNone(self.cache.get(self.sqlite, 'customers'))
        self.assertEqual(len(self.cache), 0)

    def test_invalidate(self):
        self.cache.set(self.pg, 'customers', COLUMNS)
        self.cache.set(self.pg, 'orders', COLUMNS)
        self.assertEqual(self.cache.invalidate(self.pg, 'orders'), 1)
        self.assertEqual(self.cache.invalidate(self.pg, 'orders'), 0)
        self.cache.set(self.pg, 'orders', COLUMNS)
        self.assertEqual(self.cache.invalidate(self.pg), 2)
        self.assertEqual(len(self.cache), 0)

    def test_cleanup_and_stats(self):
        self.cache.set(self.pg, 'customers', COLUMNS)
        self.clock.now += 200
        self.cache.set(self.pg, 'orders', COLUMNS)
        stats = self.cache.get_stats()
        self.assertEqual(stats['total_entries'], 2)
        self.assertEqual(stats['connections'], 1)
        self.assertEqual(stats['oldest_entry_age'], 200)

        self.clock.now += 150
        self.assertEqual(self.cache.cleanup_expired(), 1)
        self.assertIsNotNone(self.cache.get(self.pg, 'orders'))

        self.cache.clear()
        self.assertEqual(len(self.cache), 0)


if __name__ == '__main__':
    unittest.main()
