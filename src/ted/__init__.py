"""ted - a spreadsheet-style table editor for SQLite, PostgreSQL, MySQL and DuckDB."""

from ted.core.database import TedDatabase, connect
from ted.core.dialect import DbType

try:
    from importlib.metadata import version
    __version__ = version("ted")
except Exception:
    # Package metadata is not available when running from a source checkout
    __version__ = "0.1.0"

__all__ = ["TedDatabase", "connect", "DbType"]
