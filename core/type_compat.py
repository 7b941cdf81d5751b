#!/usr/bin/env python3
"""
Column Type Compatibility

Decides whether a column type on the source side may legitimately appear as
another type on the target side after a migration between MySQL, PostgreSQL
and SQLite.

Resolution order:
1. exact match after trim/lowercase
2. direct table lookup source -> target, then target -> source
3. both types accepted by the same entry of the table (shared group)

There is no transitive closure across entries; chaining groups would accept
pairs such as tinyint -> bigint that no entry lists together.
"""

import logging
from typing import Dict, FrozenSet, Tuple

logger = logging.getLogger(__name__)


class TypeCompatibility:
    # Source type -> types accepted as its migration target.
    # Lowercase keys come from the MySQL/PostgreSQL catalogs; the uppercase keys
    # are SQLite declared types, looked up case-insensitively.
    COMPATIBLE_TYPES: Dict[str, Tuple[str, ...]] = {
        # String types
        'varchar': ('character varying', 'text', 'varchar', 'char', 'character'),
        'char': ('character', 'char', 'character varying', 'varchar'),
        'text': ('text', 'character varying', 'varchar'),
        'longtext': ('text', 'character varying'),
        'mediumtext': ('text', 'character varying'),
        'tinytext': ('text', 'character varying', 'varchar'),

        # Integer types
        'int': ('integer', 'bigint', 'int', 'int4', 'int8'),
        'integer': ('integer', 'bigint', 'int', 'int4', 'int8'),
        'tinyint': ('smallint', 'integer', 'boolean', 'int2', 'int4'),
        'smallint': ('smallint', 'integer', 'int2', 'int4'),
        'mediumint': ('integer', 'int4'),
        'bigint': ('bigint', 'integer', 'int8', 'int4'),

        # Decimal/Numeric types
        'decimal': ('numeric', 'decimal'),
        'numeric': ('numeric', 'decimal'),
        'float': ('real', 'double precision', 'float4', 'float8'),
        'double': ('double precision', 'real', 'float8', 'float4'),
        'real': ('real', 'float4'),

        # Date/Time types
        'datetime': ('timestamp', 'timestamp without time zone', 'timestamp with time zone'),
        'timestamp': ('timestamp', 'timestamp without time zone', 'timestamp with time zone', 'datetime'),
        'date': ('date',),
        'time': ('time', 'time without time zone'),
        'year': ('integer', 'smallint'),

        # Boolean types
        'boolean': ('boolean', 'bool'),
        'bool': ('boolean', 'bool'),

        # Binary types
        'blob': ('bytea', 'blob'),
        'longblob': ('bytea', 'blob'),
        'mediumblob': ('bytea', 'blob'),
        'tinyblob': ('bytea', 'blob'),
        'binary': ('bytea', 'blob'),
        'varbinary': ('bytea', 'blob'),

        # SQLite declared types
        'TEXT': ('text', 'character varying', 'varchar', 'char'),
        'INTEGER': ('integer', 'bigint', 'int', 'smallint', 'int4', 'int8', 'int2'),
        'REAL': ('real', 'double precision', 'float', 'numeric', 'decimal'),
        'NUMERIC': ('numeric', 'decimal', 'real', 'double precision'),
        'BLOB': ('bytea', 'blob'),

        # JSON types
        'json': ('json', 'jsonb'),
        'jsonb': ('json', 'jsonb'),
    }

    # Case-insensitive index over COMPATIBLE_TYPES; keys that only differ in
    # case (integer / INTEGER) accept the union of both entries.
    _ACCEPTS: Dict[str, FrozenSet[str]] = {}
    _GROUPS: Tuple[FrozenSet[str], ...] = ()

    @classmethod
    def _build_index(cls) -> None:
        accepts: Dict[str, set] = {}
        for base_type, targets in cls.COMPATIBLE_TYPES.items():
            accepts.setdefault(base_type.lower(), set()).update(t.lower() for t in targets)
        cls._ACCEPTS = {k: frozenset(v) for k, v in accepts.items()}
        cls._GROUPS = tuple(
            frozenset(t.lower() for t in targets) for targets in cls.COMPATIBLE_TYPES.values()
        )

    @staticmethod
    def normalize(type_name) -> str:
        if type_name is None:
            return ''
        return str(type_name).strip().lower()

    @classmethod
    def accepted_targets(cls, type_name: str) -> FrozenSet[str]:
        """Types accepted as a migration target for type_name (empty when unknown)"""
        return cls._ACCEPTS.get(cls.normalize(type_name), frozenset())

    @classmethod
    def are_compatible(cls, source_type: str, target_type: str) -> bool:
        """
        Check whether two column types are migration-compatible.

        Never raises; unknown types are simply incompatible with anything but
        themselves.
        """
        source = cls.normalize(source_type)
        target = cls.normalize(target_type)

        if source == target:
            return True

        if target in cls._ACCEPTS.get(source, ()):
            logger.debug(f"Direct mapping: {source} -> {target}")
            return True

        if source in cls._ACCEPTS.get(target, ()):
            logger.debug(f"Reverse mapping: {target} -> {source}")
            return True

        for group in cls._GROUPS:
            if source in group and target in group:
                logger.debug(f"Shared compatibility group: {source}, {target}")
                return True

        logger.debug(f"Types are not compatible: {source} vs {target}")
        return False


TypeCompatibility._build_index()


def compatible(source_type: str, target_type: str) -> bool:
    """Module-level shortcut for TypeCompatibility.are_compatible"""
    return TypeCompatibility.are_compatible(source_type, target_type)
