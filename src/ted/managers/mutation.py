"""Row mutations: cell updates, inserts and deletes."""

import logging
from typing import Any, Dict, List, Sequence, Tuple

from ted.managers.base import BaseManager, ConnectionContext
from ted.models.relation import Relation
from ted.utils.type_utils import EMPTY_CELL, coerce_value

logger = logging.getLogger(__name__)


class NoRowsAffectedError(ValueError):
    """Raised when an UPDATE or DELETE matched no row.

    The row was changed or deleted by someone else since it was read.
    """

    pass


class ReadOnlyError(ValueError):
    """Raised when an edit targets something that cannot be written."""

    pass


class MutationManager(BaseManager):
    """Executes edits against tables, routing view edits to their base tables."""

    def __init__(self, context: ConnectionContext):
        """Initialize mutation manager.

        Args:
            context: ConnectionContext shared by all managers
        """
        super().__init__(context)

    def _target(self, relation: Relation, idx: int) -> Tuple[Relation, str, List[int]]:
        """Resolve the table, column and key positions an edit of column ``idx`` writes to."""
        column = relation.columns[idx]
        if not relation.is_view and not relation.is_custom_sql:
            return relation, column.name, list(relation.key)

        if not relation.is_column_editable(idx):
            raise ReadOnlyError(f"Column '{column.name}' is not editable")
        base = relation.base_tables[column.source_table]
        table = self.context.schema.load(base.name)
        return table, column.source_column, list(base.key)

    @staticmethod
    def _column_types(relation: Relation) -> Dict[str, str]:
        return {column.name: column.type for column in relation.columns}

    def coerce(self, relation: Relation, column: str, raw: str) -> Any:
        """Convert typed text into a value for the given column."""
        idx = relation.index_of(column)
        return coerce_value(raw, relation.columns[idx].type, self.config.null_glyph)

    def update_cell(self, relation: Relation, row: Sequence[Any], column: str, raw: str) -> List[Any]:
        """Set one cell from text typed by the user.

        Args:
            relation: Relation the row belongs to
            row: Current values of the row, aligned to relation.columns
            column: Name of the column to change
            raw: Text entered; the configured null glyph stands for NULL

        Returns:
            The row as stored after the update, aligned to relation.columns

        Raises:
            NoRowsAffectedError: If the row no longer exists
            ReadOnlyError: If the column cannot be edited
        """
        return self.update_value(relation, row, column, self.coerce(relation, column, raw))

    def update_value(self, relation: Relation, row: Sequence[Any], column: str, value: Any) -> List[Any]:
        """Set one cell to an already coerced value. See update_cell()."""
        idx = relation.index_of(column)
        table, target_column, key_positions = self._target(relation, idx)
        key_values = [row[i] for i in key_positions]

        stored = self._update_table_row(table, target_column, value, key_values)
        logger.info(f"Updated {table.name}.{target_column} where {table.key_columns} = {key_values}")

        if table is relation:
            return stored

        # Re-project the base row into the view's columns
        updated = list(row)
        for i, view_column in enumerate(relation.columns):
            if view_column.source_table == table.name and view_column.source_column in table.column_index:
                updated[i] = stored[table.column_index[view_column.source_column]]
        return updated

    def _update_table_row(self, table: Relation, column: str, value: Any, key_values: List[Any]) -> List[Any]:
        key_columns = table.key_columns
        returning = table.column_names
        sql, params = self.builder.update_row(table.name, {column: value}, key_columns, key_values, returning=returning)

        with self.connection.operation(f"update {table.name}"):
            with self.connection.transaction():
                if self.dialect.supports_returning:
                    rows = self.connection.query(sql, params)
                    if not rows:
                        raise NoRowsAffectedError("no rows updated")
                    return list(rows[0])

                count, _ = self.connection.execute_update(sql, params)
                if count == 0:
                    raise NoRowsAffectedError("no rows updated")
                new_key = [value if name == column else old for name, old in zip(key_columns, key_values)]
                select_sql, select_params = self.builder.select_table_row(table.name, key_columns, new_key, returning)
                row = self.connection.query_one(select_sql, select_params)
                if row is None:
                    raise NoRowsAffectedError("no rows updated")
                return list(row)

    def insert_row(self, relation: Relation, values: Sequence[Any]) -> List[Any]:
        """Insert a row, leaving EMPTY_CELL columns to their defaults.

        Args:
            relation: Table to insert into
            values: One value per column; EMPTY_CELL omits the column

        Returns:
            The stored row aligned to relation.columns

        Raises:
            ReadOnlyError: If the relation is not a table
            ValueError: If values are missing
        """
        if relation.is_view or relation.is_custom_sql:
            raise ReadOnlyError(f"Rows can only be inserted into tables, '{relation.name}' is not a table")
        if len(values) != len(relation.columns):
            raise ValueError(f"Expected {len(relation.columns)} values, got {len(values)}")
        if len(relation.key) > 1:
            for idx in relation.key:
                if values[idx] is EMPTY_CELL:
                    raise ValueError(
                        "multi-column key requires all key values to be provided "
                        f"(key column {relation.columns[idx].name} is missing)"
                    )

        columns = relation.column_names
        sql, params = self.builder.insert_row(relation.name, columns, list(values), returning=columns)

        with self.connection.operation(f"insert into {relation.name}"):
            with self.connection.transaction():
                if self.dialect.supports_returning:
                    rows = self.connection.query(sql, params)
                    stored = list(rows[0])
                else:
                    _, last_id = self.connection.execute_update(sql, params)
                    key_values = relation.key_values(values)
                    if len(key_values) == 1 and key_values[0] is EMPTY_CELL:
                        if last_id is None:
                            raise ValueError(f"Cannot read back the row inserted into '{relation.name}'")
                        key_values = [last_id]
                    select_sql, select_params = self.builder.select_by_key(relation, key_values)
                    row = self.connection.query_one(select_sql, select_params)
                    if row is None:
                        raise NoRowsAffectedError(f"inserted row not found in '{relation.name}'")
                    stored = list(row)

        logger.info(f"Inserted into {relation.name} with key {relation.key_values(stored)}")
        return stored

    def delete_row(self, relation: Relation, row: Sequence[Any]) -> None:
        """Delete the row identified by the key values in ``row``.

        Raises:
            NoRowsAffectedError: If no row matched
            ReadOnlyError: If the relation is not a table
        """
        if relation.is_view or relation.is_custom_sql:
            raise ReadOnlyError(f"Rows can only be deleted from tables, '{relation.name}' is not a table")

        key_columns = relation.key_columns
        key_values = relation.key_values(row)
        sql, params = self.builder.delete_row(relation.name, key_columns, key_values, returning=key_columns)

        with self.connection.operation(f"delete from {relation.name}"):
            with self.connection.transaction():
                if self.dialect.supports_returning:
                    count = len(self.connection.query(sql, params))
                else:
                    count, _ = self.connection.execute_update(sql, params)
                if count == 0:
                    raise NoRowsAffectedError("no rows were deleted")

        logger.info(f"Deleted from {relation.name} where {key_columns} = {key_values}")

    # Previews render the statement a mutation would run, with inline literals

    def preview_update(self, relation: Relation, row: Sequence[Any], column: str, raw: str) -> str:
        idx = relation.index_of(column)
        table, target_column, key_positions = self._target(relation, idx)
        sql, _ = self.builder.update_row(
            table.name,
            {target_column: self.coerce(relation, column, raw)},
            table.key_columns,
            [row[i] for i in key_positions],
            column_types=self._column_types(table),
            inline=True,
        )
        return sql

    def preview_insert(self, relation: Relation, values: Sequence[Any]) -> str:
        sql, _ = self.builder.insert_row(
            relation.name,
            relation.column_names,
            list(values),
            column_types=self._column_types(relation),
            inline=True,
        )
        return sql

    def preview_delete(self, relation: Relation, row: Sequence[Any]) -> str:
        sql, _ = self.builder.delete_row(
            relation.name,
            relation.key_columns,
            relation.key_values(row),
            column_types=self._column_types(relation),
            inline=True,
        )
        return sql
