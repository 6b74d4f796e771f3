"""Core ted functionality."""

from ted.core.database import TedDatabase, connect
from ted.core.dialect import DbType, Dialect, get_dialect

__all__ = ["TedDatabase", "connect", "DbType", "Dialect", "get_dialect"]
