"""SQL statement builder.

Every statement ted runs is produced here as ``(sql, params)`` using the
dialect's quoting and placeholders. Pagination uses lexicographic cursor
conditions over the ordering columns (optional sort column, then the key).
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from ted.core.dialect import DbType, Dialect
from ted.models.relation import Relation, SortColumn
from ted.utils.type_utils import EMPTY_CELL, format_literal

CUSTOM_QUERY_ALIAS = "custom_query"

Statement = Tuple[str, List[Any]]


class _Bind:
    """A value bound as a parameter wherever it appears in a condition."""

    def __init__(self, value: Any, column_type: str = ""):
        self.value = value
        self.column_type = column_type


class _Params:
    """Collects parameters and hands out placeholders in order."""

    def __init__(self, dialect: Dialect, inline: bool = False):
        self.dialect = dialect
        self.inline = inline
        self.values: List[Any] = []

    def add(self, value: Any, column_type: str = "") -> str:
        if self.inline:
            return format_literal(value, column_type, self.dialect)
        self.values.append(value)
        return self.dialect.placeholder(len(self.values))


class QueryBuilder:
    """Builds parameterized statements for one dialect."""

    def __init__(self, dialect: Dialect):
        self.dialect = dialect

    def _params(self, inline: bool = False) -> _Params:
        return _Params(self.dialect, inline)

    def source(self, relation: Relation) -> str:
        """FROM target for a relation: its quoted name, or the wrapped custom query."""
        if relation.is_custom_sql:
            return f"({relation.sql_statement}) AS {CUSTOM_QUERY_ALIAS}"
        return self.dialect.quote_qualified(relation.name)

    def _render(self, params: _Params, operand: Any) -> str:
        if isinstance(operand, _Bind):
            return params.add(operand.value, operand.column_type)
        return operand

    def _comparison(
        self,
        params: _Params,
        lhs: Sequence[Any],
        rhs: Sequence[Any],
        ascending: Sequence[bool],
        inclusive: bool,
    ) -> str:
        """Condition that holds when ``lhs`` sorts after ``rhs``.

        Each position compares with ``>`` when ascending and ``<`` otherwise.
        Operands are SQL text or _Bind values.
        """
        if not lhs or len(lhs) != len(rhs) or len(lhs) != len(ascending):
            raise ValueError("Comparison requires equally sized, non-empty operand lists")

        def op(asc: bool, last: bool) -> str:
            symbol = ">" if asc else "<"
            return symbol + "=" if inclusive and last else symbol

        if len(lhs) == 1:
            return f"{self._render(params, lhs[0])} {op(ascending[0], True)} {self._render(params, rhs[0])}"

        uniform = all(asc == ascending[0] for asc in ascending)
        if uniform and self.dialect.supports_row_value_comparison:
            left = ", ".join(self._render(params, operand) for operand in lhs)
            right = ", ".join(self._render(params, operand) for operand in rhs)
            return f"({left}) {op(ascending[0], True)} ({right})"

        terms = []
        for i in range(len(lhs)):
            parts = [
                f"{self._render(params, lhs[j])} = {self._render(params, rhs[j])}"
                for j in range(i)
            ]
            last = i == len(lhs) - 1
            parts.append(
                f"{self._render(params, lhs[i])} {op(ascending[i], last)} {self._render(params, rhs[i])}"
            )
            terms.append("(" + " AND ".join(parts) + ")")
        return "(" + " OR ".join(terms) + ")"

    def ordering(self, relation: Relation, sort: Optional[SortColumn] = None) -> Tuple[List[str], List[bool]]:
        """Ordering columns and their ascending flags for forward scrolling."""
        if not relation.key:
            raise ValueError(f"Relation '{relation.name}' has no key columns")
        names: List[str] = []
        ascending: List[bool] = []
        if sort is not None:
            relation.index_of(sort.name)
            names.append(sort.name)
            ascending.append(sort.asc)
        for name in relation.key_columns:
            names.append(name)
            ascending.append(True)
        return names, ascending

    def ordering_values(self, relation: Relation, data: Sequence[Any], sort: Optional[SortColumn] = None) -> List[Any]:
        """Values of the ordering columns taken from a full row."""
        values = []
        if sort is not None:
            values.append(data[relation.index_of(sort.name)])
        values.extend(relation.key_values(data))
        return values

    def _order_by(self, names: Sequence[str], ascending: Sequence[bool]) -> str:
        return ", ".join(
            f"{self.dialect.quote(name)} {'ASC' if asc else 'DESC'}" for name, asc in zip(names, ascending)
        )

    def select_rows(
        self,
        relation: Relation,
        columns: Optional[List[str]] = None,
        sort: Optional[SortColumn] = None,
        anchor: Optional[Sequence[Any]] = None,
        scroll_down: bool = True,
        inclusive: bool = False,
        limit: Optional[int] = None,
    ) -> Statement:
        """Paginated SELECT in key order.

        Args:
            relation: Relation to read
            columns: Columns to select; all columns by default
            sort: Optional column ordered ahead of the key
            anchor: Ordering values (sort value first, then key values) to start from
            scroll_down: Ascending key order when True, descending otherwise
            inclusive: Whether the anchor row itself is included
            limit: Optional row limit

        Returns:
            Tuple of (sql, params)
        """
        params = self._params()
        names, ascending = self.ordering(relation, sort)
        if not scroll_down:
            ascending = [not asc for asc in ascending]

        select_columns = columns if columns is not None else relation.column_names
        sql = f"SELECT {self.dialect.quote_all(select_columns)} FROM {self.source(relation)}"

        if anchor is not None:
            if len(anchor) != len(names):
                raise ValueError(f"Anchor has {len(anchor)} values but ordering has {len(names)} columns")
            lhs = [self.dialect.quote(name) for name in names]
            rhs = [_Bind(value) for value in anchor]
            sql += " WHERE " + self._comparison(params, lhs, rhs, ascending, inclusive)

        sql += f" ORDER BY {self._order_by(names, ascending)}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return sql, params.values

    def _key_condition(self, params: _Params, key_columns: Sequence[str], key_values: Sequence[Any], column_types: Optional[Dict[str, str]] = None) -> str:
        if not key_columns:
            raise ValueError("Key columns cannot be empty")
        if len(key_columns) != len(key_values):
            raise ValueError(f"Expected {len(key_columns)} key values, got {len(key_values)}")
        types = column_types or {}
        return " AND ".join(
            f"{self.dialect.quote(name)} = {params.add(value, types.get(name, ''))}"
            for name, value in zip(key_columns, key_values)
        )

    def _returning(self, returning: Optional[List[str]]) -> str:
        if returning and self.dialect.supports_returning:
            return f" RETURNING {self.dialect.quote_all(returning)}"
        return ""

    def select_by_key(self, relation: Relation, key_values: Sequence[Any], columns: Optional[List[str]] = None) -> Statement:
        """SELECT one row of a relation by its key."""
        params = self._params()
        select_columns = columns if columns is not None else relation.column_names
        condition = self._key_condition(params, relation.key_columns, key_values)
        sql = f"SELECT {self.dialect.quote_all(select_columns)} FROM {self.source(relation)} WHERE {condition}"
        return sql, params.values

    def select_table_row(self, table: str, key_columns: Sequence[str], key_values: Sequence[Any], columns: List[str]) -> Statement:
        """SELECT one row of a base table by its key columns."""
        params = self._params()
        condition = self._key_condition(params, key_columns, key_values)
        sql = (
            f"SELECT {self.dialect.quote_all(columns)} FROM {self.dialect.quote_qualified(table)} "
            f"WHERE {condition}"
        )
        return sql, params.values

    def update_row(
        self,
        table: str,
        assignments: Dict[str, Any],
        key_columns: Sequence[str],
        key_values: Sequence[Any],
        returning: Optional[List[str]] = None,
        column_types: Optional[Dict[str, str]] = None,
        inline: bool = False,
    ) -> Statement:
        """UPDATE one row identified by its full key.

        With ``inline=True`` values are rendered as literals for display.
        """
        if not assignments:
            raise ValueError("UPDATE requires at least one column")
        params = self._params(inline)
        types = column_types or {}
        set_clause = ", ".join(
            f"{self.dialect.quote(name)} = {params.add(value, types.get(name, ''))}"
            for name, value in assignments.items()
        )
        condition = self._key_condition(params, key_columns, key_values, types)
        sql = (
            f"UPDATE {self.dialect.quote_qualified(table)} SET {set_clause} WHERE {condition}"
            f"{self._returning(returning)}"
        )
        return sql, params.values

    def insert_row(
        self,
        table: str,
        columns: Sequence[str],
        values: Sequence[Any],
        returning: Optional[List[str]] = None,
        column_types: Optional[Dict[str, str]] = None,
        inline: bool = False,
    ) -> Statement:
        """INSERT one row, leaving out columns whose value is EMPTY_CELL."""
        if len(columns) != len(values):
            raise ValueError(f"Expected {len(columns)} values, got {len(values)}")
        params = self._params(inline)
        types = column_types or {}
        present = [(name, value) for name, value in zip(columns, values) if value is not EMPTY_CELL]
        target = self.dialect.quote_qualified(table)

        if not present:
            if self.dialect.db_type == DbType.MYSQL:
                sql = f"INSERT INTO {target} () VALUES ()"
            else:
                sql = f"INSERT INTO {target} DEFAULT VALUES"
        else:
            names = self.dialect.quote_all([name for name, _ in present])
            placeholders = ", ".join(params.add(value, types.get(name, "")) for name, value in present)
            sql = f"INSERT INTO {target} ({names}) VALUES ({placeholders})"
        return sql + self._returning(returning), params.values

    def delete_row(
        self,
        table: str,
        key_columns: Sequence[str],
        key_values: Sequence[Any],
        returning: Optional[List[str]] = None,
        column_types: Optional[Dict[str, str]] = None,
        inline: bool = False,
    ) -> Statement:
        """DELETE one row identified by its full key."""
        params = self._params(inline)
        condition = self._key_condition(params, key_columns, key_values, column_types)
        sql = f"DELETE FROM {self.dialect.quote_qualified(table)} WHERE {condition}{self._returning(returning)}"
        return sql, params.values

    def compare_position(
        self,
        relation: Relation,
        target: Sequence[Any],
        first: Sequence[Any],
        last: Sequence[Any],
        sort: Optional[SortColumn] = None,
    ) -> Statement:
        """SELECT reporting whether ``target`` sorts before ``first`` or after ``last``.

        All three are ordering values (sort value first, then key values).
        The result row is ``(is_above, is_below)``.
        """
        params = self._params()
        _, ascending = self.ordering(relation, sort)
        target_binds = [_Bind(value) for value in target]
        above = self._comparison(params, [_Bind(value) for value in first], target_binds, ascending, False)
        below = self._comparison(params, target_binds, [_Bind(value) for value in last], ascending, False)
        return f"SELECT {above} AS is_above, {below} AS is_below", params.values

    def find_next(
        self,
        relation: Relation,
        column: str,
        needle: Any,
        current: Sequence[Any],
        sort: Optional[SortColumn] = None,
        wrap: bool = False,
    ) -> Statement:
        """SELECT the ordering values of the next row whose ``column`` equals ``needle``.

        Without ``wrap`` the search runs forward from ``current``; with
        ``wrap`` it runs backward from ``current`` and returns the nearest
        earlier match.
        """
        params = self._params()
        names, ascending = self.ordering(relation, sort)
        if len(current) != len(names):
            raise ValueError(f"Expected {len(names)} position values, got {len(current)}")
        if wrap:
            ascending = [not asc for asc in ascending]

        quoted = self.dialect.quote(column)
        if needle is None:
            match = f"{quoted} IS NULL"
        else:
            match = f"{quoted} = {params.add(needle)}"

        lhs = [self.dialect.quote(name) for name in names]
        position = self._comparison(params, lhs, [_Bind(value) for value in current], ascending, False)
        sql = (
            f"SELECT {self.dialect.quote_all(names)} FROM {self.source(relation)} "
            f"WHERE {match} AND {position} ORDER BY {self._order_by(names, ascending)} LIMIT 1"
        )
        return sql, params.values

    def rows_exist(self, relation: Relation, keys: Sequence[Sequence[Any]]) -> Statement:
        """SELECT the keys among ``keys`` that still exist."""
        if not keys:
            raise ValueError("rows_exist requires at least one key")
        params = self._params()
        key_columns = relation.key_columns
        if len(key_columns) == 1:
            placeholders = ", ".join(params.add(key[0]) for key in keys)
            condition = f"{self.dialect.quote(key_columns[0])} IN ({placeholders})"
        else:
            condition = " OR ".join(
                "(" + self._key_condition(params, key_columns, key) + ")" for key in keys
            )
        sql = f"SELECT {self.dialect.quote_all(key_columns)} FROM {self.source(relation)} WHERE {condition}"
        return sql, params.values

    def select_where_equal(self, table: str, conditions: Dict[str, Any], columns: List[str]) -> Statement:
        """SELECT one row of a table matching every column = value condition."""
        if not conditions:
            raise ValueError("At least one condition is required")
        params = self._params()
        where = " AND ".join(
            f"{self.dialect.quote(name)} IS NULL" if value is None else f"{self.dialect.quote(name)} = {params.add(value)}"
            for name, value in conditions.items()
        )
        sql = (
            f"SELECT {self.dialect.quote_all(columns)} FROM {self.dialect.quote_qualified(table)} "
            f"WHERE {where} LIMIT 1"
        )
        return sql, params.values

    def probe_columns(self, relation: Relation) -> str:
        """SELECT returning no rows, used to read result column metadata."""
        return f"SELECT * FROM {self.source(relation)} LIMIT 0"
