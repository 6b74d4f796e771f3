"""SQL dialect capabilities for the supported backends."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List


class DbType(str, Enum):
    """Supported database backends."""

    SQLITE = "sqlite"
    POSTGRES = "postgres"
    MYSQL = "mysql"
    DUCKDB = "duckdb"


# Identifiers in this set are always quoted.
RESERVED_WORDS = frozenset(
    [
        "select", "insert", "update", "delete", "into", "values", "create",
        "alter", "drop", "table", "index", "view", "from", "where", "group",
        "order", "by", "having", "limit", "offset", "join", "inner", "left",
        "right", "full", "outer", "and", "or", "not", "in", "is", "like",
        "between", "exists", "null", "true", "false", "as", "on", "user",
        "default", "primary", "key", "references", "check", "unique",
        "distinct", "union", "all", "case", "when", "then", "else", "end",
        "with", "desc", "asc", "set", "column", "constraint",
    ]
)

_SIMPLE_IDENTIFIER = re.compile(r"[a-z_][a-z0-9_]*")


@dataclass(frozen=True)
class Dialect:
    """Capability record for one backend.

    Attributes:
        db_type: Backend this record describes
        sqlglot_dialect: Dialect name understood by sqlglot
        quote_char: Character used to quote identifiers
        positional_placeholders: Whether placeholders are numbered ($1, $2, ...)
        supports_returning: Whether INSERT/UPDATE/DELETE accept RETURNING
        supports_row_value_comparison: Whether (a, b) > (?, ?) is valid
        exclusive_streams: Whether an open stream must be closed before any other statement
    """

    db_type: DbType
    sqlglot_dialect: str
    quote_char: str = '"'
    positional_placeholders: bool = False
    supports_returning: bool = True
    supports_row_value_comparison: bool = True
    supports_nulls_not_distinct: bool = False
    exclusive_streams: bool = False

    @property
    def name(self) -> str:
        return self.db_type.value

    def quote(self, identifier: str) -> str:
        """Quote a single identifier when it needs quoting.

        Lowercase identifiers made of letters, digits and underscores that are
        not reserved words are returned unchanged. Anything else is wrapped in
        the dialect's quote character with embedded quotes doubled.
        """
        if _SIMPLE_IDENTIFIER.fullmatch(identifier) and identifier not in RESERVED_WORDS:
            return identifier
        q = self.quote_char
        return q + identifier.replace(q, q + q) + q

    def quote_qualified(self, name: str) -> str:
        """Quote a possibly schema-qualified name part by part."""
        return ".".join(self.quote(part) for part in name.split("."))

    def quote_all(self, identifiers: List[str]) -> str:
        return ", ".join(self.quote(identifier) for identifier in identifiers)

    def placeholder(self, position: int) -> str:
        """Return the bind placeholder for a 1-based parameter position."""
        if self.positional_placeholders:
            return f"${position}"
        return "?"

    def unquote(self, identifier: str) -> str:
        """Reverse quote() for a single identifier."""
        q = self.quote_char
        if len(identifier) >= 2 and identifier[0] == q and identifier[-1] == q:
            return identifier[1:-1].replace(q + q, q)
        return identifier


DIALECTS: Dict[DbType, Dialect] = {
    DbType.SQLITE: Dialect(db_type=DbType.SQLITE, sqlglot_dialect="sqlite"),
    DbType.POSTGRES: Dialect(
        db_type=DbType.POSTGRES,
        sqlglot_dialect="postgres",
        positional_placeholders=True,
        supports_nulls_not_distinct=True,
        exclusive_streams=True,
    ),
    DbType.MYSQL: Dialect(
        db_type=DbType.MYSQL,
        sqlglot_dialect="mysql",
        quote_char="`",
        supports_returning=False,
        exclusive_streams=True,
    ),
    DbType.DUCKDB: Dialect(db_type=DbType.DUCKDB, sqlglot_dialect="duckdb"),
}


def get_dialect(db_type: DbType) -> Dialect:
    """Look up the dialect for a backend type (or its string value)."""
    return DIALECTS[DbType(db_type)]
