"""Unified database interface for ted."""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from ted.config import ConnectionSettings, TedConfig
from ted.core.connection import DatabaseConnection
from ted.core.dialect import DbType, Dialect
from ted.managers.base import ConnectionContext
from ted.models.relation import Relation, SortColumn

if TYPE_CHECKING:
    from ted.core.update_queue import UpdateQueue
    from ted.core.window import RowWindow

logger = logging.getLogger(__name__)


class TedDatabase:
    """One open database and the relations browsed in it.

    Examples:
        db = connect("shop.db")
        users = db.open_relation("users")
        window = db.window(users, size=20)
        window.load_from()
        for row in window.visible_rows():
            print(row.data)
    """

    def __init__(self, settings: ConnectionSettings, config: Optional[TedConfig] = None):
        """Open a connection.

        Args:
            settings: Resolved connection settings
            config: Loaded configuration; defaults when None
        """
        self.settings = settings
        self.config = config or TedConfig()
        self.connection = DatabaseConnection(settings)
        self.context = ConnectionContext(connection=self.connection, config=self.config)

    @property
    def db_type(self) -> DbType:
        return self.connection.db_type

    @property
    def dialect(self) -> Dialect:
        return self.connection.dialect

    def list_tables(self) -> List[str]:
        return self.context.schema.list_tables()

    def list_views(self) -> List[str]:
        return self.context.schema.list_views()

    def list_relations(self) -> List[str]:
        """Tables and views, sorted by name."""
        return self.context.schema.list_relations()

    def describe(self, name: str, refresh: bool = False) -> Relation:
        """Relation descriptor of a table or view, even when it has no key."""
        return self.context.schema.load(name, refresh=refresh)

    def open_relation(self, name: str) -> Relation:
        """Load a table or view for browsing.

        Raises:
            RelationNotFoundError: If the relation does not exist
            NoKeyError: If no lookup key could be found
            ViewAnalysisError: If a view definition cannot be analyzed
        """
        from ted.managers.schema import require_key

        return require_key(self.describe(name))

    def open_sql(self, sql: str) -> Relation:
        """Build a read-only relation over a custom SELECT statement."""
        return self.context.views.describe_sql(sql)

    def window(
        self,
        relation: Relation,
        size: int,
        sort: Optional[SortColumn] = None,
        queue: Optional["UpdateQueue"] = None,
    ) -> "RowWindow":
        """Create a row window over a relation. Call load_from() to fill it."""
        from ted.core.window import RowWindow

        return RowWindow(self.context, relation, size, sort=sort, queue=queue)

    def get_foreign_row(
        self, table: str, key_values: Dict[str, Any], display_columns: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """Fetch one row of ``table`` by column equality."""
        relation = self.context.schema.load(table)
        return self.context.lookup.get_foreign_row(relation, key_values, display_columns)

    def find_next(
        self,
        relation: Relation,
        column: str,
        needle: Any,
        current: Sequence[Any],
        sort: Optional[SortColumn] = None,
    ) -> Optional[Tuple[List[Any], bool]]:
        """Key of the next row whose ``column`` equals ``needle``, and whether the search wrapped."""
        return self.context.lookup.find_next(relation, relation.index_of(column), needle, current, sort)

    def close(self) -> None:
        """Close the connection."""
        self.connection.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        _ = (exc_type, exc_val, exc_tb)  # Unused but required by protocol
        self.close()
        return False


def connect(
    database: str,
    host: Optional[str] = None,
    port: Optional[int] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    db_type: Optional[DbType] = None,
    config: Optional[TedConfig] = None,
) -> TedDatabase:
    """Connect to a SQLite, PostgreSQL, MySQL or DuckDB database.

    Args:
        database: File path, database name, or an alias from the config file
        host: Server host (PostgreSQL/MySQL)
        port: Server port (PostgreSQL/MySQL)
        username: User name; defaults to the current OS user for servers
        password: Password
        db_type: Backend; detected from the file extension when None
        config: Loaded configuration, used for aliases and display settings

    Returns:
        TedDatabase connection instance

    Examples:
        # SQLite file
        db = connect("shop.db")

        # PostgreSQL on localhost
        db = connect("shop", db_type=DbType.POSTGRES)

        # Alias from .ted.yml
        db = connect("prod", config=Config().load())
    """
    settings = ConnectionSettings.resolve(
        database,
        host=host,
        port=port,
        username=username,
        password=password,
        db_type=db_type,
        config=config,
    )
    return TedDatabase(settings, config=config)
