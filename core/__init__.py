#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration Verifier Core Package
Exports the data model, error hierarchy and type compatibility table.
The orchestrator lives in core.verification and the per-process context in
core.context.
"""

from core.errors import (
    ConnectionError,
    ErrorCode,
    QueryError,
    ResourceExhausted,
    TimeoutError,
    ValidationError,
    VerificationError,
)
from core.models import (
    BackendKind,
    ColumnDescriptor,
    ConnectionDescriptor,
    ProgressEvent,
    RunStatus,
    RunSummary,
    TableStatus,
    TableVerdict,
)
from core.type_compat import TypeCompatibility, compatible

__version__ = "0.1.0"

__all__ = [
    'BackendKind',
    'ColumnDescriptor',
    'ConnectionDescriptor',
    'ConnectionError',
    'ErrorCode',
    'ProgressEvent',
    'QueryError',
    'ResourceExhausted',
    'RunStatus',
    'RunSummary',
    'TableStatus',
    'TableVerdict',
    'TimeoutError',
    'TypeCompatibility',
    'ValidationError',
    'VerificationError',
    'compatible',
]
