"""Base manager class and shared context for all ted managers."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from ted.config import TedConfig
from ted.core.connection import DatabaseConnection
from ted.core.dialect import Dialect
from ted.utils.query_builder import QueryBuilder

if TYPE_CHECKING:
    from ted.managers.lookup import LookupManager
    from ted.managers.mutation import MutationManager
    from ted.managers.schema import SchemaManager
    from ted.managers.view import ViewAnalyzer


@dataclass
class ConnectionContext:
    """Shared connection context for all managers.

    Managers are created on first access and kept, so the schema cache is
    shared by everything that uses this context.

    Attributes:
        connection: Open database connection
        config: Loaded configuration
    """

    connection: DatabaseConnection
    config: TedConfig = field(default_factory=TedConfig)
    _schema: Optional["SchemaManager"] = field(default=None, init=False, repr=False)
    _views: Optional["ViewAnalyzer"] = field(default=None, init=False, repr=False)
    _mutations: Optional["MutationManager"] = field(default=None, init=False, repr=False)
    _lookup: Optional["LookupManager"] = field(default=None, init=False, repr=False)
    _builder: Optional[QueryBuilder] = field(default=None, init=False, repr=False)

    @property
    def dialect(self) -> Dialect:
        return self.connection.dialect

    @property
    def builder(self) -> QueryBuilder:
        if self._builder is None:
            self._builder = QueryBuilder(self.dialect)
        return self._builder

    # Manager properties use lazy imports to avoid circular dependencies

    @property
    def schema(self) -> "SchemaManager":
        """Access SchemaManager for this context."""
        if self._schema is None:
            from ted.managers.schema import SchemaManager
            self._schema = SchemaManager(self)
        return self._schema

    @property
    def views(self) -> "ViewAnalyzer":
        """Access ViewAnalyzer for this context."""
        if self._views is None:
            from ted.managers.view import ViewAnalyzer
            self._views = ViewAnalyzer(self)
        return self._views

    @property
    def mutations(self) -> "MutationManager":
        """Access MutationManager for this context."""
        if self._mutations is None:
            from ted.managers.mutation import MutationManager
            self._mutations = MutationManager(self)
        return self._mutations

    @property
    def lookup(self) -> "LookupManager":
        """Access LookupManager for this context."""
        if self._lookup is None:
            from ted.managers.lookup import LookupManager
            self._lookup = LookupManager(self)
        return self._lookup


class BaseManager:
    """Base class for all ted managers."""

    def __init__(self, context: ConnectionContext):
        """Initialize base manager with connection context.

        Args:
            context: ConnectionContext shared by all managers
        """
        self.context = context
        self.connection = context.connection
        self.dialect = context.dialect
        self.builder = context.builder
        self.config = context.config
