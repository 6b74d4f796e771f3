"""Utility modules for ted."""

from ted.utils.sql_validator import (
    validate_sql_query,
    validate_query_safe,
    SQLValidationError,
    QueryKind,
)

__all__ = [
    "validate_sql_query",
    "validate_query_safe",
    "SQLValidationError",
    "QueryKind",
]
