"""Schema introspection for tables across all supported backends."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from ted.core.connection import DatabaseError
from ted.core.dialect import DbType
from ted.managers.base import BaseManager, ConnectionContext
from ted.models.relation import Column, Reference, Relation
from ted.utils.type_utils import parse_enum_values, size_of

logger = logging.getLogger(__name__)

DEFAULT_SCHEMAS = {
    DbType.POSTGRES: "public",
    DbType.DUCKDB: "main",
}


class RelationNotFoundError(ValueError):
    """Raised when a table or view does not exist."""

    pass


class NoKeyError(ValueError):
    """Raised when a relation has no column set that identifies a row."""

    pass


@dataclass
class KeyCandidate:
    """A primary key or unique constraint that might identify rows."""

    name: str
    columns: List[str]
    primary: bool = False
    nulls_not_distinct: bool = False


@dataclass
class ForeignKey:
    """A foreign key constraint as read from the catalog.

    A foreign column of None means the referenced table's primary key column
    at the same position.
    """

    name: str
    foreign_table: str
    pairs: List[Tuple[str, Optional[str]]] = field(default_factory=list)


def select_key(candidates: List[KeyCandidate], columns: Dict[str, Column], accept_nulls_not_distinct: bool = False) -> List[str]:
    """
    Pick the lookup key among candidate constraints.

    The primary key wins outright. Otherwise a unique constraint is eligible
    when all its columns are NOT NULL (or, where supported, it treats NULLs as
    equal), and eligible candidates are ranked by column count, estimated byte
    width, then name.

    Args:
        candidates: Primary key and unique constraints of the table
        columns: Table columns by name
        accept_nulls_not_distinct: Whether NULLS NOT DISTINCT makes nullable columns eligible

    Returns:
        Key column names, or an empty list when no candidate qualifies
    """
    for candidate in candidates:
        if candidate.primary and candidate.columns:
            return list(candidate.columns)

    eligible = []
    for candidate in candidates:
        if not candidate.columns or any(name not in columns for name in candidate.columns):
            continue
        if accept_nulls_not_distinct and candidate.nulls_not_distinct:
            eligible.append(candidate)
        elif all(not columns[name].nullable for name in candidate.columns):
            eligible.append(candidate)

    if not eligible:
        return []

    eligible.sort(
        key=lambda c: (
            len(c.columns),
            sum(size_of(columns[name].type) for name in c.columns),
            c.name,
        )
    )
    return list(eligible[0].columns)


class SchemaManager(BaseManager):
    """Loads relation descriptors and lists the relations of a database."""

    def __init__(self, context: ConnectionContext):
        """Initialize schema manager.

        Args:
            context: ConnectionContext shared by all managers
        """
        super().__init__(context)
        self.db_type = context.dialect.db_type
        self._cache: Dict[str, Relation] = {}

    # Names

    def split_name(self, name: str) -> Tuple[Optional[str], str]:
        """Split ``schema.table`` into its parts, applying the backend default schema."""
        if "." in name:
            schema, table = name.split(".", 1)
            return schema, table
        return DEFAULT_SCHEMAS.get(self.db_type), name

    # Listing

    def list_tables(self) -> List[str]:
        """List user tables in the default schema, sorted by name."""
        if self.db_type == DbType.SQLITE:
            sql = "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        elif self.db_type == DbType.MYSQL:
            sql = (
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = DATABASE() AND table_type = 'BASE TABLE' ORDER BY table_name"
            )
        else:
            schema = DEFAULT_SCHEMAS[self.db_type]
            sql = (
                "SELECT table_name FROM information_schema.tables "
                f"WHERE table_schema = '{schema}' AND table_type = 'BASE TABLE' ORDER BY table_name"
            )
        with self.connection.operation("list tables"):
            return [row[0] for row in self.connection.query(sql)]

    def list_views(self) -> List[str]:
        """List views in the default schema, sorted by name."""
        if self.db_type == DbType.SQLITE:
            sql = "SELECT name FROM sqlite_master WHERE type = 'view' ORDER BY name"
        elif self.db_type == DbType.POSTGRES:
            sql = "SELECT viewname FROM pg_views WHERE schemaname = 'public' ORDER BY viewname"
        elif self.db_type == DbType.MYSQL:
            sql = "SELECT table_name FROM information_schema.views WHERE table_schema = DATABASE() ORDER BY table_name"
        else:
            sql = "SELECT view_name FROM duckdb_views() WHERE NOT internal AND schema_name = 'main' ORDER BY view_name"
        with self.connection.operation("list views"):
            return [row[0] for row in self.connection.query(sql)]

    def list_relations(self) -> List[str]:
        """List tables and views together, sorted by name."""
        return sorted(set(self.list_tables()) | set(self.list_views()))

    # Views

    def is_view(self, name: str) -> bool:
        """Check whether a relation is a view."""
        schema, table = self.split_name(name)
        if self.db_type == DbType.SQLITE:
            sql, params = "SELECT 1 FROM sqlite_master WHERE type = 'view' AND name = ?", [table]
        elif self.db_type == DbType.POSTGRES:
            sql, params = "SELECT 1 FROM pg_views WHERE schemaname = $1 AND viewname = $2", [schema, table]
        elif self.db_type == DbType.MYSQL:
            sql = "SELECT 1 FROM information_schema.views WHERE table_schema = COALESCE(?, DATABASE()) AND table_name = ?"
            params = [schema, table]
        else:
            sql = "SELECT 1 FROM duckdb_views() WHERE NOT internal AND schema_name = ? AND view_name = ?"
            params = [schema, table]
        with self.connection.operation(f"check view '{name}'"):
            return self.connection.query_one(sql, params) is not None

    def view_definition(self, name: str) -> str:
        """Return the SQL text of a view.

        Raises:
            RelationNotFoundError: If the view does not exist
        """
        schema, table = self.split_name(name)
        if self.db_type == DbType.SQLITE:
            sql, params = "SELECT sql FROM sqlite_master WHERE type = 'view' AND name = ?", [table]
        elif self.db_type == DbType.POSTGRES:
            sql = "SELECT pg_get_viewdef($1::regclass, true)"
            params = [self.dialect.quote(schema) + "." + self.dialect.quote(table)]
        elif self.db_type == DbType.MYSQL:
            sql = (
                "SELECT view_definition FROM information_schema.views "
                "WHERE table_schema = COALESCE(?, DATABASE()) AND table_name = ?"
            )
            params = [schema, table]
        else:
            sql = "SELECT sql FROM duckdb_views() WHERE NOT internal AND schema_name = ? AND view_name = ?"
            params = [schema, table]

        with self.connection.operation(f"load definition of view '{name}'"):
            row = self.connection.query_one(sql, params)
        if not row or not row[0]:
            raise RelationNotFoundError(f"View '{name}' does not exist")
        return row[0]

    def table_columns(self, name: str) -> List[str]:
        """Column names of a table or view in declaration order."""
        probe = f"SELECT * FROM {self.dialect.quote_qualified(name)} LIMIT 0"
        with self.connection.operation(f"read columns of '{name}'"):
            return [column_name for column_name, _ in self.connection.describe(probe)]

    # Relations

    def load(self, name: str, refresh: bool = False) -> Relation:
        """Load the descriptor of a table or view, using the cache when possible.

        Args:
            name: Relation name, optionally schema-qualified
            refresh: Reload even if cached

        Returns:
            Relation descriptor; its key is empty when no lookup key exists

        Raises:
            RelationNotFoundError: If the relation does not exist
        """
        if not refresh and name in self._cache:
            return self._cache[name]

        if self.is_view(name):
            relation = self.context.views.describe_view(name)
        else:
            relation = self.describe_table(name)
        self._cache[name] = relation
        return relation

    def invalidate(self, name: Optional[str] = None) -> None:
        """Drop one cached relation, or all of them."""
        if name is None:
            self._cache.clear()
        else:
            self._cache.pop(name, None)

    def describe_table(self, name: str) -> Relation:
        """Introspect a table: columns, lookup key, foreign keys and enum types.

        Failures while loading foreign keys or enum values are logged and the
        relation is returned without them.

        Raises:
            RelationNotFoundError: If the table does not exist
        """
        with self.connection.operation(f"load columns of '{name}'"):
            columns = self._load_columns(name)
        if not columns:
            raise RelationNotFoundError(f"Relation '{name}' does not exist")

        by_name = {column.name: column for column in columns}
        column_index = {column.name: i for i, column in enumerate(columns)}

        with self.connection.operation(f"load keys of '{name}'"):
            candidates = self._key_candidates(name)
        key_names = select_key(candidates, by_name, self.dialect.supports_nulls_not_distinct)
        if not key_names:
            logger.warning(f"Table '{name}' has no primary key or NOT NULL unique constraint")

        references: List[Reference] = []
        try:
            with self.connection.operation(f"load foreign keys of '{name}'"):
                foreign_keys = self._load_foreign_keys(name)
                references = self._build_references(foreign_keys, columns, column_index)
        except DatabaseError as e:
            logger.warning(f"Ignoring foreign keys of '{name}': {e}")

        try:
            with self.connection.operation(f"load enum types of '{name}'"):
                self._load_enums(name, columns)
        except (DatabaseError, SqlglotError) as e:
            logger.warning(f"Ignoring enum types of '{name}': {e}")

        relation = Relation(
            name=name,
            db_type=self.db_type,
            columns=columns,
            column_index=column_index,
            key=[column_index[key_name] for key_name in key_names],
            references=references,
        )
        logger.info(f"Loaded table '{name}': {len(columns)} columns, key {key_names or 'none'}")
        return relation

    def primary_key_columns(self, name: str) -> List[str]:
        """Primary key column names of a table, in key order."""
        for candidate in self._key_candidates(name):
            if candidate.primary:
                return list(candidate.columns)
        return []

    def _build_references(
        self, foreign_keys: List[ForeignKey], columns: List[Column], column_index: Dict[str, int]
    ) -> List[Reference]:
        references: List[Reference] = []
        for foreign_key in foreign_keys:
            locals_ = [local for local, _ in foreign_key.pairs]
            if any(local not in column_index for local in locals_):
                continue

            foreign_columns = [foreign for _, foreign in foreign_key.pairs]
            if any(foreign is None for foreign in foreign_columns):
                primary = self.primary_key_columns(foreign_key.foreign_table)
                if len(primary) != len(foreign_columns):
                    logger.warning(
                        f"Foreign key {foreign_key.name} references '{foreign_key.foreign_table}' "
                        "without columns and its primary key does not match"
                    )
                    continue
                foreign_columns = primary

            reference = Reference(
                foreign_table=foreign_key.foreign_table,
                foreign_columns={
                    column_index[local]: foreign for local, foreign in zip(locals_, foreign_columns)
                },
            )
            for local in locals_:
                column = columns[column_index[local]]
                if column.reference < 0:
                    column.reference = len(references)
            references.append(reference)
        return references

    # Per-backend catalog queries

    def _load_columns(self, name: str) -> List[Column]:
        schema, table = self.split_name(name)
        columns: List[Column] = []

        if self.db_type == DbType.SQLITE:
            rows = self.connection.query(f"PRAGMA table_info({self.dialect.quote(table)})")
            for _cid, column_name, column_type, notnull, _default, _pk in rows:
                columns.append(Column(name=column_name, type=column_type or "", nullable=not notnull))

        elif self.db_type == DbType.POSTGRES:
            rows = self.connection.query(
                "SELECT column_name, data_type, is_nullable, udt_name, character_maximum_length, is_generated "
                "FROM information_schema.columns WHERE table_schema = $1 AND table_name = $2 "
                "ORDER BY ordinal_position",
                [schema, table],
            )
            for column_name, data_type, is_nullable, udt_name, char_len, is_generated in rows:
                custom_type = None
                if data_type == "USER-DEFINED":
                    column_type = udt_name
                    custom_type = udt_name
                elif char_len:
                    column_type = f"{data_type}({char_len})"
                else:
                    column_type = data_type
                columns.append(
                    Column(
                        name=column_name,
                        type=column_type,
                        nullable=str(is_nullable).lower() == "yes",
                        custom_type_name=custom_type,
                        generated=str(is_generated).upper() == "ALWAYS",
                    )
                )

        elif self.db_type == DbType.MYSQL:
            rows = self.connection.query(
                "SELECT column_name, column_type, is_nullable, extra FROM information_schema.columns "
                "WHERE table_schema = COALESCE(?, DATABASE()) AND table_name = ? ORDER BY ordinal_position",
                [schema, table],
            )
            for column_name, column_type, is_nullable, extra in rows:
                if isinstance(column_type, bytes):
                    column_type = column_type.decode()
                columns.append(
                    Column(
                        name=column_name,
                        type=column_type,
                        nullable=str(is_nullable).lower() == "yes",
                        generated="GENERATED" in str(extra or "").upper(),
                    )
                )

        else:
            rows = self.connection.query(
                "SELECT column_name, data_type, is_nullable, character_maximum_length "
                "FROM information_schema.columns WHERE table_schema = ? AND table_name = ? "
                "ORDER BY ordinal_position",
                [schema, table],
            )
            for column_name, data_type, is_nullable, char_len in rows:
                column_type = f"{data_type}({char_len})" if char_len else data_type
                columns.append(
                    Column(name=column_name, type=column_type, nullable=str(is_nullable).lower() == "yes")
                )

        return columns

    def _key_candidates(self, name: str) -> List[KeyCandidate]:
        schema, table = self.split_name(name)
        candidates: List[KeyCandidate] = []

        if self.db_type == DbType.SQLITE:
            rows = self.connection.query(f"PRAGMA table_info({self.dialect.quote(table)})")
            primary = sorted((pk, column_name) for _cid, column_name, _t, _nn, _d, pk in rows if pk)
            if primary:
                candidates.append(
                    KeyCandidate(name="primary", columns=[column_name for _, column_name in primary], primary=True)
                )
            for _seq, index_name, unique, origin, partial in self.connection.query(
                f"PRAGMA index_list({self.dialect.quote(table)})"
            ):
                if not unique or origin == "pk" or partial:
                    continue
                info = self.connection.query(f"PRAGMA index_info({self.dialect.quote(index_name)})")
                index_columns = [column_name for _seqno, _cid, column_name in sorted(info)]
                if index_columns and all(index_columns):
                    candidates.append(KeyCandidate(name=index_name, columns=index_columns))

        elif self.db_type == DbType.POSTGRES:
            rows = self.connection.query(
                "SELECT i.indexrelid::regclass::text, i.indisprimary, "
                "COALESCE((to_jsonb(i) ->> 'indnullsnotdistinct')::boolean, false), "
                "array_agg(a.attname::text ORDER BY k.ord) "
                "FROM pg_index i "
                "JOIN pg_class c ON c.oid = i.indrelid "
                "JOIN pg_namespace n ON n.oid = c.relnamespace "
                "CROSS JOIN LATERAL unnest(i.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord) "
                "JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = k.attnum "
                "WHERE n.nspname = $1 AND c.relname = $2 AND i.indisunique AND i.indpred IS NULL "
                "AND 0 <> ALL (i.indkey::int2[]) "
                "GROUP BY 1, 2, 3",
                [schema, table],
            )
            for index_name, is_primary, nulls_not_distinct, index_columns in rows:
                candidates.append(
                    KeyCandidate(
                        name=index_name,
                        columns=list(index_columns),
                        primary=bool(is_primary),
                        nulls_not_distinct=bool(nulls_not_distinct),
                    )
                )

        elif self.db_type == DbType.MYSQL:
            rows = self.connection.query(
                "SELECT index_name, column_name FROM information_schema.statistics "
                "WHERE table_schema = COALESCE(?, DATABASE()) AND table_name = ? AND non_unique = 0 "
                "ORDER BY index_name, seq_in_index",
                [schema, table],
            )
            grouped: Dict[str, List[Optional[str]]] = {}
            for index_name, column_name in rows:
                grouped.setdefault(index_name, []).append(column_name)
            for index_name, index_columns in grouped.items():
                if all(index_columns):
                    candidates.append(
                        KeyCandidate(name=index_name, columns=index_columns, primary=index_name == "PRIMARY")
                    )

        else:
            rows = self.connection.query(
                "SELECT constraint_type, constraint_text, constraint_column_names FROM duckdb_constraints() "
                "WHERE schema_name = ? AND table_name = ? AND constraint_type IN ('PRIMARY KEY', 'UNIQUE')",
                [schema, table],
            )
            for constraint_type, constraint_text, constraint_columns in rows:
                candidates.append(
                    KeyCandidate(
                        name=constraint_text,
                        columns=list(constraint_columns),
                        primary=constraint_type == "PRIMARY KEY",
                    )
                )

        return candidates

    def _load_foreign_keys(self, name: str) -> List[ForeignKey]:
        schema, table = self.split_name(name)
        foreign_keys: List[ForeignKey] = []

        if self.db_type == DbType.SQLITE:
            grouped: Dict[int, ForeignKey] = {}
            rows = self.connection.query(f"PRAGMA foreign_key_list({self.dialect.quote(table)})")
            for fk_id, _seq, foreign_table, local, foreign, *_ in sorted(rows, key=lambda r: (r[0], r[1])):
                foreign_key = grouped.setdefault(fk_id, ForeignKey(name=str(fk_id), foreign_table=foreign_table))
                foreign_key.pairs.append((local, foreign))
            foreign_keys = list(grouped.values())

        elif self.db_type == DbType.POSTGRES:
            rows = self.connection.query(
                "SELECT con.conname, fn.nspname, fc.relname, "
                "array_agg(la.attname::text ORDER BY k.ord), array_agg(fa.attname::text ORDER BY k.ord) "
                "FROM pg_constraint con "
                "JOIN pg_class c ON c.oid = con.conrelid "
                "JOIN pg_namespace n ON n.oid = c.relnamespace "
                "JOIN pg_class fc ON fc.oid = con.confrelid "
                "JOIN pg_namespace fn ON fn.oid = fc.relnamespace "
                "CROSS JOIN LATERAL unnest(con.conkey, con.confkey) WITH ORDINALITY AS k(local_attnum, foreign_attnum, ord) "
                "JOIN pg_attribute la ON la.attrelid = con.conrelid AND la.attnum = k.local_attnum "
                "JOIN pg_attribute fa ON fa.attrelid = con.confrelid AND fa.attnum = k.foreign_attnum "
                "WHERE con.contype = 'f' AND n.nspname = $1 AND c.relname = $2 "
                "GROUP BY con.oid, con.conname, fn.nspname, fc.relname ORDER BY con.conname",
                [schema, table],
            )
            for constraint_name, foreign_schema, foreign_table, local_columns, foreign_columns in rows:
                if foreign_schema != DEFAULT_SCHEMAS[DbType.POSTGRES]:
                    foreign_table = f"{foreign_schema}.{foreign_table}"
                foreign_keys.append(
                    ForeignKey(
                        name=constraint_name,
                        foreign_table=foreign_table,
                        pairs=list(zip(local_columns, foreign_columns)),
                    )
                )

        elif self.db_type == DbType.MYSQL:
            rows = self.connection.query(
                "SELECT constraint_name, referenced_table_name, column_name, referenced_column_name "
                "FROM information_schema.key_column_usage "
                "WHERE table_schema = COALESCE(?, DATABASE()) AND table_name = ? "
                "AND referenced_table_name IS NOT NULL ORDER BY constraint_name, ordinal_position",
                [schema, table],
            )
            by_name: Dict[str, ForeignKey] = {}
            for constraint_name, foreign_table, local, foreign in rows:
                foreign_key = by_name.setdefault(
                    constraint_name, ForeignKey(name=constraint_name, foreign_table=foreign_table)
                )
                foreign_key.pairs.append((local, foreign))
            foreign_keys = list(by_name.values())

        else:
            rows = self.connection.query(
                "SELECT constraint_text, referenced_table, constraint_column_names, referenced_column_names "
                "FROM duckdb_constraints() "
                "WHERE schema_name = ? AND table_name = ? AND constraint_type = 'FOREIGN KEY'",
                [schema, table],
            )
            for constraint_text, foreign_table, local_columns, foreign_columns in rows:
                foreign_keys.append(
                    ForeignKey(
                        name=constraint_text,
                        foreign_table=foreign_table,
                        pairs=list(zip(local_columns, foreign_columns)),
                    )
                )

        return foreign_keys

    def _load_enums(self, name: str, columns: List[Column]) -> None:
        by_name = {column.name: column for column in columns}
        schema, table = self.split_name(name)

        if self.db_type == DbType.SQLITE:
            row = self.connection.query_one(
                "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?", [table]
            )
            if row and row[0]:
                for column_name, values in check_constraint_enums(row[0]).items():
                    if column_name in by_name:
                        by_name[column_name].enum_values = values

        elif self.db_type == DbType.POSTGRES:
            rows = self.connection.query(
                "SELECT c.column_name, e.enumlabel FROM information_schema.columns c "
                "JOIN pg_type t ON t.typname = c.udt_name "
                "JOIN pg_enum e ON e.enumtypid = t.oid "
                "WHERE c.table_schema = $1 AND c.table_name = $2 AND c.data_type = 'USER-DEFINED' "
                "ORDER BY c.ordinal_position, e.enumsortorder",
                [schema, table],
            )
            for column_name, label in rows:
                if column_name in by_name:
                    by_name[column_name].enum_values.append(label)

        else:
            # MySQL column_type and DuckDB data_type spell enums as ENUM('a', 'b')
            for column in columns:
                values = parse_enum_values(column.type)
                if values:
                    column.enum_values = values


def check_constraint_enums(create_sql: str) -> Dict[str, List[str]]:
    """
    Find ``CHECK (col IN ('a', 'b'))`` constraints in a CREATE TABLE statement.

    Returns:
        Column name to allowed values, for IN lists made only of string literals
    """
    enums: Dict[str, List[str]] = {}
    tree = sqlglot.parse_one(create_sql, read="sqlite")
    for in_expr in tree.find_all(exp.In):
        target = in_expr.this
        options = in_expr.expressions
        if not isinstance(target, exp.Column) or not options:
            continue
        if all(isinstance(option, exp.Literal) and option.is_string for option in options):
            enums[target.name] = [option.this for option in options]
    return enums


def require_key(relation: Relation) -> Relation:
    """Return the relation, or raise NoKeyError if it cannot identify rows."""
    if not relation.key:
        kind = "View" if relation.is_view else "Relation"
        raise NoKeyError(
            f"{kind} '{relation.name}' has no usable key (no primary key or NOT NULL unique constraint)"
        )
    return relation
