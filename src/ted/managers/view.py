"""View and custom query analysis for ted.

A view's SELECT is parsed with sqlglot to recover, for every output column,
the base table column it passes through (its lineage). Lineage decides which
columns form the view's lookup key and which cells can be edited by
rewriting the edit against a base table.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Type

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from ted.core.dialect import DbType
from ted.managers.base import BaseManager, ConnectionContext
from ted.managers.schema import RelationNotFoundError
from ted.models.relation import BaseTable, Column, Reference, Relation
from ted.models.view import ColumnLineage, ViewAnalysis
from ted.utils.query_builder import CUSTOM_QUERY_ALIAS
from ted.utils.sql_validator import validate_query_safe

logger = logging.getLogger(__name__)

MAX_NESTING = 16

_SET_OPERATIONS = (exp.Union, exp.Except, exp.Intersect)


class ViewAnalysisError(ValueError):
    """Raised when a view or query definition cannot be analyzed."""

    pass


@dataclass
class _Source:
    """One FROM/JOIN item of a SELECT."""

    alias: str
    table: Optional[str] = None
    analysis: Optional[ViewAnalysis] = None
    outer: bool = False

    @property
    def base_tables(self) -> List[str]:
        if self.table:
            return [self.table]
        return list(self.analysis.base_tables) if self.analysis else []


def _first_arg(node: exp.Expression, kind: Type[exp.Expression]) -> Optional[exp.Expression]:
    for value in node.args.values():
        if isinstance(value, kind):
            return value
    return None


def _dedupe(items: List) -> List:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def derive_view_key(analysis: ViewAnalysis, base_tables: Dict[str, BaseTable]) -> List[int]:
    """
    Choose the lookup key of a view from its analysis.

    - GROUP BY covering the key of every (inner-joined) base table: the union of those keys.
    - Other GROUP BY: the view columns the GROUP BY items map to.
    - DISTINCT: every column.
    - Otherwise: the union of inner-joined base table keys that are fully selected.

    Outer-joined tables never contribute key columns. Returns positions with
    duplicates removed, possibly empty.
    """
    columns = analysis.columns
    keyed = [base for base in base_tables.values() if not base.outer and base.key_columns]

    if analysis.has_group_by:
        group_pairs = {(c.source_table, c.source_column) for c in analysis.group_by_columns}
        for position in analysis.group_by_positions:
            if 0 <= position < len(columns) and not columns[position].is_derived:
                group_pairs.add((columns[position].source_table, columns[position].source_column))

        covers_keys = bool(keyed) and all(
            base.key_visible and all((base.name, name) in group_pairs for name in base.key_columns)
            for base in keyed
        )
        if covers_keys:
            key = [idx for base in keyed for idx in base.key]
        else:
            key = []
            for i, column in enumerate(columns):
                if (
                    i in analysis.group_by_positions
                    or (not column.is_derived and (column.source_table, column.source_column) in group_pairs)
                    or (column.expression and column.expression in analysis.group_by_exprs)
                ):
                    key.append(i)
    elif analysis.has_distinct:
        key = list(range(len(columns)))
    else:
        key = [idx for base in keyed if base.key_visible for idx in base.key]

    return _dedupe(key)


class ViewAnalyzer(BaseManager):
    """Analyzes views and custom queries and builds their relation descriptors."""

    def __init__(self, context: ConnectionContext):
        """Initialize view analyzer.

        Args:
            context: ConnectionContext shared by all managers
        """
        super().__init__(context)
        self.sqlglot_dialect = context.dialect.sqlglot_dialect

    # Parsing

    def parse(self, sql: str) -> exp.Expression:
        """Parse a SELECT or CREATE VIEW statement down to its query.

        Raises:
            ViewAnalysisError: If the SQL cannot be parsed
        """
        text = sql.strip().rstrip("; \t\n\r")
        try:
            tree = sqlglot.parse_one(text, read=self.sqlglot_dialect)
        except SqlglotError as e:
            raise ViewAnalysisError(f"Could not parse query: {e}") from e
        if isinstance(tree, exp.Create):
            tree = tree.expression
        if tree is None:
            raise ViewAnalysisError("Query is empty")
        return tree

    def analyze(self, sql: str) -> ViewAnalysis:
        """Analyze the lineage of a SELECT (or CREATE VIEW) statement."""
        return self._analyze_query(self.parse(sql), {}, 0)

    def _analyze_query(self, node: exp.Expression, ctes: Dict[str, exp.Expression], depth: int) -> ViewAnalysis:
        if depth > MAX_NESTING:
            raise ViewAnalysisError("Query nesting is too deep to analyze")

        with_ = _first_arg(node, exp.With)
        if with_ is not None:
            ctes = dict(ctes)
            for cte in with_.expressions:
                ctes[cte.alias_or_name.lower()] = cte.this

        if isinstance(node, exp.Subquery):
            return self._analyze_query(node.this, ctes, depth + 1)

        if isinstance(node, _SET_OPERATIONS):
            left = self._analyze_query(node.this, ctes, depth + 1)
            right = self._analyze_query(node.expression, ctes, depth + 1)
            return ViewAnalysis(
                columns=[ColumnLineage(name=c.name, expression=c.expression) for c in left.columns],
                base_tables=_dedupe(left.base_tables + right.base_tables),
                outer_tables=_dedupe(left.outer_tables + right.outer_tables),
                has_distinct=isinstance(node, exp.Union) and bool(node.args.get("distinct")),
            )

        if not isinstance(node, exp.Select):
            raise ViewAnalysisError(f"Unsupported query type: {node.key.upper()}")

        sources = self._collect_sources(node, ctes, depth)
        columns: List[ColumnLineage] = []
        for item in node.expressions:
            columns.extend(self._select_item(item, sources))

        analysis = ViewAnalysis(
            columns=columns,
            base_tables=_dedupe([t for source in sources for t in source.base_tables]),
            outer_tables=self._outer_tables(sources),
            has_distinct=_first_arg(node, exp.Distinct) is not None,
        )

        group = _first_arg(node, exp.Group)
        if group is not None and group.expressions:
            analysis.has_group_by = True
            self._analyze_group_by(group, node.expressions, sources, analysis)
        return analysis

    def _outer_tables(self, sources: List[_Source]) -> List[str]:
        outer = []
        for source in sources:
            if source.outer:
                outer.extend(source.base_tables)
            elif source.analysis:
                outer.extend(source.analysis.outer_tables)
        return _dedupe(outer)

    def _collect_sources(self, node: exp.Select, ctes: Dict[str, exp.Expression], depth: int) -> List[_Source]:
        items: List[Tuple[exp.Expression, str]] = []
        from_ = _first_arg(node, exp.From)
        if from_ is not None:
            if from_.this is not None:
                items.append((from_.this, ""))
            for extra in from_.expressions:
                items.append((extra, ""))
        for join in node.args.get("joins") or []:
            items.append((join.this, join.side or ""))

        sources: List[_Source] = []
        for expression, side in items:
            source = self._make_source(expression, ctes, depth)
            if side in ("RIGHT", "FULL"):
                for previous in sources:
                    previous.outer = True
            if side in ("LEFT", "FULL"):
                source.outer = True
            sources.append(source)
        return sources

    def _table_name(self, table: exp.Table) -> str:
        if table.db and self.dialect.db_type != DbType.MYSQL:
            default = {"postgres": "public", "duckdb": "main"}.get(self.dialect.name)
            if table.db != default:
                return f"{table.db}.{table.name}"
        return table.name

    def _make_source(self, expression: exp.Expression, ctes: Dict[str, exp.Expression], depth: int) -> _Source:
        alias = expression.alias_or_name

        if isinstance(expression, exp.Table) and expression.name:
            if not expression.db and expression.name.lower() in ctes:
                analysis = self._analyze_query(ctes[expression.name.lower()], ctes, depth + 1)
                return _Source(alias=alias, analysis=analysis)

            name = self._table_name(expression)
            if self.context.schema.is_view(name):
                definition = self.context.schema.view_definition(name)
                analysis = self._analyze_query(self.parse(definition), {}, depth + 1)
                return _Source(alias=alias, analysis=analysis)
            return _Source(alias=alias, table=name)

        if isinstance(expression, exp.Subquery):
            return _Source(alias=alias, analysis=self._analyze_query(expression.this, ctes, depth + 1))

        # Table functions, VALUES lists and the like have no recoverable lineage
        return _Source(alias=alias, analysis=ViewAnalysis())

    def _find_source(self, qualifier: str, sources: List[_Source]) -> Optional[_Source]:
        if qualifier:
            matches = [s for s in sources if s.alias.lower() == qualifier.lower()]
        else:
            matches = sources
        return matches[0] if len(matches) == 1 else None

    def _source_columns(self, source: _Source) -> List[ColumnLineage]:
        if source.table:
            return [
                ColumnLineage(name=name, expression=name, source_table=source.table, source_column=name)
                for name in self.context.schema.table_columns(source.table)
            ]
        return [column.model_copy() for column in source.analysis.columns] if source.analysis else []

    def _resolve(self, column: exp.Column, sources: List[_Source]) -> Tuple[Optional[str], Optional[str]]:
        source = self._find_source(column.table, sources)
        if source is None:
            return None, None
        if source.table:
            return source.table, column.name
        for candidate in source.analysis.columns if source.analysis else []:
            if candidate.name.lower() == column.name.lower():
                return candidate.source_table, candidate.source_column
        return None, None

    def _select_item(self, item: exp.Expression, sources: List[_Source]) -> List[ColumnLineage]:
        if isinstance(item, exp.Star):
            return [column for source in sources for column in self._source_columns(source)]

        if isinstance(item, exp.Column) and isinstance(item.this, exp.Star):
            source = self._find_source(item.table, sources)
            if source is None:
                raise ViewAnalysisError(f"Unknown table in {item.sql()}")
            return self._source_columns(source)

        inner = item.this if isinstance(item, exp.Alias) else item
        name = item.alias_or_name or item.sql(dialect=self.sqlglot_dialect)
        expression = inner.sql(dialect=self.sqlglot_dialect)

        if isinstance(inner, exp.Column):
            source_table, source_column = self._resolve(inner, sources)
            return [
                ColumnLineage(
                    name=name, expression=expression, source_table=source_table, source_column=source_column
                )
            ]
        return [ColumnLineage(name=name, expression=expression)]

    def _analyze_group_by(
        self,
        group: exp.Group,
        select_items: List[exp.Expression],
        sources: List[_Source],
        analysis: ViewAnalysis,
    ) -> None:
        aliases = {
            item.alias.lower(): i for i, item in enumerate(select_items) if isinstance(item, exp.Alias)
        }
        for expression in group.expressions:
            text = expression.sql(dialect=self.sqlglot_dialect)
            analysis.group_by_exprs.append(text)

            if isinstance(expression, exp.Literal) and expression.is_int:
                analysis.group_by_positions.append(int(expression.this) - 1)
            elif isinstance(expression, exp.Column):
                if not expression.table and expression.name.lower() in aliases:
                    analysis.group_by_positions.append(aliases[expression.name.lower()])
                    continue
                source_table, source_column = self._resolve(expression, sources)
                if source_table and source_column:
                    analysis.group_by_columns.append(
                        ColumnLineage(
                            name=source_column,
                            expression=text,
                            source_table=source_table,
                            source_column=source_column,
                        )
                    )

    # Relations

    def describe_view(self, name: str) -> Relation:
        """Build the relation descriptor of a view.

        Raises:
            ViewAnalysisError: If the definition cannot be analyzed
            RelationNotFoundError: If the view does not exist
        """
        definition = self.context.schema.view_definition(name)
        analysis = self.analyze(definition)
        probe = f"SELECT * FROM {self.dialect.quote_qualified(name)} LIMIT 0"
        relation = self._build_relation(name, analysis, probe, is_view=True)
        logger.info(f"Loaded view '{name}': {len(relation.columns)} columns, key {relation.key_columns or 'none'}")
        return relation

    def describe_sql(self, sql: str) -> Relation:
        """Build the relation descriptor of a custom read-only query.

        When no key can be derived every column forms the key.

        Raises:
            SQLValidationError: If the query is not a single SELECT/WITH statement
            ViewAnalysisError: If the query cannot be analyzed
        """
        statement = validate_query_safe(sql)
        analysis = self.analyze(statement)
        probe = f"SELECT * FROM ({statement}) AS {CUSTOM_QUERY_ALIAS} LIMIT 0"
        relation = self._build_relation(
            CUSTOM_QUERY_ALIAS, analysis, probe, is_custom_sql=True, sql_statement=statement
        )
        if not relation.key:
            logger.info("No key derivable for custom query, using every column")
            relation.key = list(range(len(relation.columns)))
        return relation

    def _build_relation(
        self,
        name: str,
        analysis: ViewAnalysis,
        probe: str,
        is_view: bool = False,
        is_custom_sql: bool = False,
        sql_statement: Optional[str] = None,
    ) -> Relation:
        with self.connection.operation(f"read columns of '{name}'"):
            described = self.connection.describe(probe)
        if len(described) != len(analysis.columns):
            raise ViewAnalysisError(
                f"'{name}' returns {len(described)} columns but its definition yields {len(analysis.columns)}"
            )

        base_relations: Dict[str, Relation] = {}
        for table in analysis.base_tables:
            try:
                base_relations[table] = self.context.schema.load(table)
            except RelationNotFoundError as e:
                logger.warning(f"Skipping base table of '{name}': {e}")

        columns: List[Column] = []
        lineage_index: Dict[Tuple[str, str], int] = {}
        for i, ((column_name, type_code), lineage) in enumerate(zip(described, analysis.columns)):
            lineage.name = column_name
            column = Column(name=column_name, type=type_code if isinstance(type_code, str) else "")
            base = base_relations.get(lineage.source_table) if not lineage.is_derived else None
            if base is not None and lineage.source_column in base.column_index:
                base_column = base.columns[base.column_index[lineage.source_column]]
                column = Column(
                    name=column_name,
                    type=base_column.type,
                    nullable=base_column.nullable,
                    enum_values=list(base_column.enum_values),
                    custom_type_name=base_column.custom_type_name,
                    generated=base_column.generated,
                    source_table=lineage.source_table,
                    source_column=lineage.source_column,
                )
                lineage_index.setdefault((lineage.source_table, lineage.source_column), i)
            elif not lineage.is_derived:
                lineage.source_table = None
                lineage.source_column = None
            columns.append(column)

        base_tables: Dict[str, BaseTable] = {}
        references: List[Reference] = []
        for table, base in base_relations.items():
            key = [
                lineage_index[(table, key_column)]
                for key_column in base.key_columns
                if (table, key_column) in lineage_index
            ]
            base_tables[table] = BaseTable(
                name=table,
                key_columns=base.key_columns,
                key=key,
                outer=table in analysis.outer_tables,
            )
            for reference in base.references:
                mapped = {}
                for local_idx, foreign_column in reference.foreign_columns.items():
                    view_idx = lineage_index.get((table, base.columns[local_idx].name))
                    if view_idx is None:
                        break
                    mapped[view_idx] = foreign_column
                else:
                    for view_idx in mapped:
                        if columns[view_idx].reference < 0:
                            columns[view_idx].reference = len(references)
                    references.append(Reference(foreign_table=reference.foreign_table, foreign_columns=mapped))

        return Relation(
            name=name,
            db_type=self.dialect.db_type,
            is_view=is_view,
            is_custom_sql=is_custom_sql,
            sql_statement=sql_statement,
            columns=columns,
            key=derive_view_key(analysis, base_tables),
            references=references,
            base_tables=base_tables,
        )

