#!/usr/bin/env python3
"""
Migration Verifier Test Configuration - PyTest Configuration and Fixtures

Shared fixtures: SQLite database files built from SQL scripts, settings
that ignore the environment, and isolated verification contexts whose
progress events are collected on a queue.
"""

import os
import sqlite3
import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.settings import VerifierSettings
from core.context import VerificationContext
from core.models import ConnectionDescriptor
from core.progress import QueueProgressChannel


CUSTOMERS_DDL = """
CREATE TABLE customers (
    customer_id INTEGER PRIMARY KEY,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT,
    phone TEXT,
    address TEXT,
    city TEXT,
    state TEXT,
    postal_code TEXT,
    country TEXT,
    loyalty_points {points_type},
    balance REAL,
    created_at TEXT
);
"""

CUSTOMERS_ROWS = """
INSERT INTO customers VALUES (1, 'Ada', 'Lovelace', 'ada@example.com', '555-0101', '12 Analytical St', 'London', NULL, 'N1', 'UK', 120, 10.5, '2024-01-02');
INSERT INTO customers VALUES (2, 'Alan', 'Turing', 'alan@example.com', '555-0102', '3 Bletchley Rd', 'Milton Keynes', NULL, 'MK3', 'UK', 80, 0.0, '2024-01-03');
INSERT INTO customers VALUES (3, 'Grace', 'Hopper', 'grace@example.com', NULL, '1 Navy Way', 'Arlington', 'VA', '22201', 'US', 300, 42.25, '2024-01-04');
INSERT INTO customers VALUES (4, 'Edsger', 'Dijkstra', NULL, NULL, '7 Shortest Path', 'Austin', 'TX', '78701', 'US', 0, 5.0, '2024-01-05');
INSERT INTO customers VALUES (5, 'Barbara', 'Liskov', 'barbara@example.com', '555-0105', '77 Mass Ave', 'Cambridge', 'MA', '02139', 'US', 55, 19.99, '2024-01-06');
"""

EMPLOYEES_SOURCE = """
CREATE TABLE employees (
    employee_id INTEGER PRIMARY KEY,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT,
    department TEXT,
    salary REAL,
    hired_on TEXT,
    manager_id INTEGER
);
INSERT INTO employees VALUES (1, 'Ken', 'Thompson', 'ken@example.com', 'Systems', 100.0, '1969-01-01', NULL);
INSERT INTO employees VALUES (2, 'Dennis', 'Ritchie', 'dmr@example.com', 'Systems', 100.0, '1969-01-01', 1);
"""

# Same table with manager_id dropped
EMPLOYEES_TARGET = """
CREATE TABLE employees (
    employee_id INTEGER PRIMARY KEY,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT,
    department TEXT,
    salary REAL,
    hired_on TEXT
);
INSERT INTO employees VALUES (1, 'Ken', 'Thompson', 'ken@example.com', 'Systems', 100.0, '1969-01-01');
INSERT INTO employees VALUES (2, 'Dennis', 'Ritchie', 'dmr@example.com', 'Systems', 100.0, '1969-01-01');
"""

PRODUCTS = """
CREATE TABLE products (
    product_id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    price NUMERIC
);
INSERT INTO products VALUES (1, 'Bolt', 0.25);
INSERT INTO products VALUES (2, 'Nut', 0.10);
INSERT INTO products VALUES (3, '{third_name}', 4.50);
"""


def build_sqlite_db(path: Path, script: str) -> Path:
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(script)
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def make_sqlite_db(tmp_path):
    """Factory: make_sqlite_db("name.db", script) -> Path of a populated database file"""
    def factory(name: str, script: str) -> Path:
        return build_sqlite_db(tmp_path / name, script)
    return factory


@pytest.fixture
def sqlite_descriptor():
    """Factory: sqlite_descriptor(path, role=None) -> ConnectionDescriptor"""
    def factory(path, role=None) -> ConnectionDescriptor:
        return ConnectionDescriptor(kind='sqlite', database='', file_path=str(path), role=role)
    return factory


@pytest.fixture
def settings():
    return VerifierSettings(
        read_environment=False,
        connection_timeout=5.0,
        query_timeout=10.0,
        processing_timeout=10.0,
        max_concurrent_tables=3,
    )


@pytest.fixture
def progress_channel():
    return QueueProgressChannel()


@pytest.fixture
def context(settings, progress_channel):
    ctx = VerificationContext(settings, channel=progress_channel)
    yield ctx
    ctx.close()


@pytest.fixture
def migration_pair(make_sqlite_db, sqlite_descriptor):
    """
    Source and target databases for a typical MySQL-style -> widened-types migration:
    - customers: identical data, loyalty_points INTEGER -> BIGINT
    - employees: manager_id dropped in target
    - orders: only in source
    - audit_log: only in target
    """
    source_script = (
        CUSTOMERS_DDL.format(points_type='INTEGER') + CUSTOMERS_ROWS + EMPLOYEES_SOURCE
        + "CREATE TABLE orders (order_id INTEGER PRIMARY KEY, total REAL);"
    )
    target_script = (
        CUSTOMERS_DDL.format(points_type='BIGINT') + CUSTOMERS_ROWS + EMPLOYEES_TARGET
        + "CREATE TABLE audit_log (entry_id INTEGER PRIMARY KEY, message TEXT);"
    )
    source = make_sqlite_db("source_shop.db", source_script)
    target = make_sqlite_db("target_shop.db", target_script)
    return sqlite_descriptor(source, 'source'), sqlite_descriptor(target, 'target')
