#!/usr/bin/env python3
"""
Migration Verifier Error Hierarchy
Canonical exception classes for the verification engine.

ConnectionError and TimeoutError shadow the builtin names; import
them from this module explicitly when both meanings are in scope.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    UNKNOWN = "UNKNOWN_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    QUERY_ERROR = "QUERY_ERROR"
    TIMEOUT = "TIMEOUT"
    RESOURCE_EXHAUSTED = "RESOURCE_EXHAUSTED"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class VerificationError(Exception):
    """Base class for all verification engine exceptions"""
    def __init__(self, message: str, code: ErrorCode = ErrorCode.UNKNOWN, details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ConnectionError(VerificationError):
    """Raised on network, authentication or host failures (retryable by the caller)"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.CONNECTION_ERROR, details)


class QueryError(VerificationError):
    """Raised when a metadata or data query fails (not retried)"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.QUERY_ERROR, details)


class TimeoutError(VerificationError):
    """Raised when an operation exceeds its time budget"""
    def __init__(self, message: str, timeout: Optional[float] = None, operation: Optional[str] = None):
        details = {'timeout_seconds': timeout, 'operation': operation}
        super().__init__(message, ErrorCode.TIMEOUT, details)
        self.timeout = timeout
        self.operation = operation


class ResourceExhausted(VerificationError):
    """Raised when the connection pool is at capacity"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.RESOURCE_EXHAUSTED, details)


class ValidationError(VerificationError):
    """Raised for malformed connection descriptors or settings, before any I/O"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)


def categorize_error(error: BaseException) -> str:
    """Get error category for logs and error payloads"""
    if isinstance(error, TimeoutError):
        return 'TIMEOUT'
    if isinstance(error, ConnectionError):
        return 'CONNECTION'
    if isinstance(error, QueryError):
        return 'QUERY'
    if isinstance(error, ResourceExhausted):
        return 'RESOURCE'
    if isinstance(error, ValidationError):
        return 'VALIDATION'

    message = str(error).lower()
    if 'timeout' in message or 'timed out' in message:
        return 'TIMEOUT'
    if 'connection' in message or 'connect' in message:
        return 'CONNECTION'
    if 'sql' in message or 'query' in message:
        return 'QUERY'
    if 'invalid' in message or 'validation' in message:
        return 'VALIDATION'
    return 'UNKNOWN'


_ABSOLUTE_PATH = re.compile(r'(?<![\w:])/(?:[\w.\-]+/)+[\w.\-]+')


def error_detail(error: BaseException) -> str:
    """Original error text with credentials and absolute paths masked, for verdicts and logs"""
    from core.redaction import redact_text

    return _ABSOLUTE_PATH.sub('[PATH_REDACTED]', redact_text(str(error)))


def sanitize_error_message(error: BaseException) -> str:
    """
    Produce a user-facing message for an error.

    Common driver failures are replaced by friendly texts; anything else is
    returned as error_detail() does. Meant for fatal errors shown to a user;
    per-table verdicts keep the original text.
    """
    message = str(error).lower()

    if 'econnrefused' in message or 'connection refused' in message:
        return 'Database connection refused. Please check if the database server is running and accessible.'
    if ('could not translate host name' in message or 'name or service not known' in message
            or 'getaddrinfo' in message):
        return 'Database host not found. Please verify the hostname or IP address.'
    if 'timeout' in message or 'timed out' in message:
        return 'Database operation timed out. Please check network connectivity and firewall settings.'
    if 'access denied' in message or 'authentication failed' in message:
        return 'Database authentication failed. Please verify your username and password.'
    if 'database' in message and ('does not exist' in message or 'unknown database' in message):
        return 'The specified database does not exist. Please verify the database name.'
    if 'permission denied' in message or 'insufficient privileges' in message:
        return 'Insufficient database permissions. Please check user privileges.'

    return error_detail(error)


def error_payload(error: BaseException, run_id: Optional[str] = None) -> Dict[str, Any]:
    """Build the structured error dictionary handed to an outer request layer"""
    category = categorize_error(error)
    details: Dict[str, Any] = {}
    if isinstance(error, VerificationError):
        details = {k: v for k, v in error.details.items() if k != 'original_error'}
        code = error.code.value
    else:
        code = ErrorCode.UNKNOWN.value

    return {
        'success': False,
        'error': {
            'code': code,
            'message': sanitize_error_message(error),
            'category': category,
            'details': details,
        },
        'run_id': run_id,
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }
