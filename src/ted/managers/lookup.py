"""Foreign key previews, find-next search and position checks."""

import logging
from typing import Any, Collection, Dict, List, Optional, Sequence, Tuple

from ted.core.connection import DatabaseError
from ted.managers.base import BaseManager, ConnectionContext
from ted.managers.schema import RelationNotFoundError
from ted.models.relation import Reference, Relation, SortColumn
from ted.utils.type_utils import display_value

logger = logging.getLogger(__name__)


class RowNotFoundError(ValueError):
    """Raised when a lookup by key matches no row."""

    pass


def format_logfmt(values: Dict[str, Any]) -> str:
    """Render a column to value mapping as ``name=value`` pairs."""
    parts = []
    for name, value in values.items():
        text = display_value(value)
        if text == "" or any(ch in text for ch in ' ="'):
            text = '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'
        parts.append(f"{name}={text}")
    return " ".join(parts)


class LookupManager(BaseManager):
    """Single-row lookups used by previews and search."""

    def __init__(self, context: ConnectionContext):
        """Initialize lookup manager.

        Args:
            context: ConnectionContext shared by all managers
        """
        super().__init__(context)

    def foreign_relation(self, reference: Reference) -> Relation:
        """Load the table a foreign key points at."""
        return self.context.schema.load(reference.foreign_table)

    def get_foreign_row(
        self,
        relation: Relation,
        key_values: Dict[str, Any],
        display_columns: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Fetch one row matching every ``column = value`` pair.

        Args:
            relation: Table to read
            key_values: Column name to value conditions
            display_columns: Columns to return; by default every column not in the conditions

        Returns:
            Column name to value mapping

        Raises:
            RowNotFoundError: If no row matches
        """
        columns = display_columns or [name for name in relation.column_names if name not in key_values]
        if not columns:
            columns = relation.column_names

        sql, params = self.builder.select_where_equal(relation.name, key_values, columns)
        with self.connection.operation(f"load row of {relation.name}"):
            row = self.connection.query_one(sql, params)
        if row is None:
            raise RowNotFoundError(f"No row in '{relation.name}' matches {key_values}")
        return dict(zip(columns, row))

    def preview_reference(
        self,
        relation: Relation,
        row: Sequence[Any],
        column_idx: int,
        visible_columns: Optional[Collection[int]] = None,
    ) -> Optional[str]:
        """Logfmt preview of the row a foreign key cell points at.

        Returns None when the column is not a foreign key, when a column of
        the constraint is hidden or NULL, or when the lookup fails (failures
        are logged).
        """
        column = relation.columns[column_idx]
        if column.reference < 0:
            return None
        reference = relation.references[column.reference]
        if visible_columns is not None and any(idx not in visible_columns for idx in reference.foreign_columns):
            return None

        conditions = {foreign: row[local] for local, foreign in reference.foreign_columns.items()}
        if any(value is None for value in conditions.values()):
            return None

        try:
            foreign = self.foreign_relation(reference)
            values = self.get_foreign_row(foreign, conditions)
        except (DatabaseError, RelationNotFoundError, RowNotFoundError) as e:
            logger.warning(f"Foreign key preview for '{column.name}' failed: {e}")
            return None
        return format_logfmt(values)

    def find_next(
        self,
        relation: Relation,
        column_idx: int,
        needle: Any,
        current: Sequence[Any],
        sort: Optional[SortColumn] = None,
    ) -> Optional[Tuple[List[Any], bool]]:
        """Find the next row after ``current`` whose column equals ``needle``.

        The search runs forward in display order; when nothing matches it
        wraps around and returns the nearest match before ``current``.

        Args:
            relation: Relation to search
            column_idx: Position of the column to match
            needle: Value to match; None matches NULL
            current: Ordering values of the current row (sort value first, then key)
            sort: Active sort column, if any

        Returns:
            Tuple of (key values, wrapped) or None if no row matches

        Raises:
            ValueError: If the column index or the number of ordering values is wrong
        """
        if column_idx < 0 or column_idx >= len(relation.columns):
            raise ValueError(f"Column index {column_idx} is out of range")
        expected = len(relation.key) + (1 if sort is not None else 0)
        if len(current) != expected:
            raise ValueError(f"Expected {expected} position values, got {len(current)}")

        column = relation.columns[column_idx].name
        offset = 1 if sort is not None else 0
        for wrap in (False, True):
            sql, params = self.builder.find_next(relation, column, needle, current, sort=sort, wrap=wrap)
            with self.connection.operation("find next"):
                row = self.connection.query_one(sql, params)
            if row is not None:
                return list(row[offset:]), wrap
        return None

    def compare_position(
        self,
        relation: Relation,
        target: Sequence[Any],
        first: Sequence[Any],
        last: Sequence[Any],
        sort: Optional[SortColumn] = None,
    ) -> Tuple[bool, bool]:
        """Ask the backend whether ``target`` sorts before ``first`` or after ``last``.

        Returns:
            Tuple of (is_above, is_below)
        """
        sql, params = self.builder.compare_position(relation, target, first, last, sort=sort)
        with self.connection.operation("compare row position"):
            row = self.connection.query_one(sql, params)
        return bool(row[0]), bool(row[1])
