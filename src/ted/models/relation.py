"""Relation, Column and Reference models for ted."""

from typing import Any, Dict, List, Optional, Sequence

from pydantic import Field, model_validator

from ted.core.dialect import DbType
from ted.models.base import TedBaseModel


class Column(TedBaseModel):
    """A column of a table, view or custom query."""

    name: str = Field(description="Column name")
    type: str = Field(default="", description="Type as declared by the backend")
    nullable: bool = Field(default=True, description="Whether column allows NULL values")
    reference: int = Field(
        default=-1, description="Index into Relation.references, or -1 when not a foreign key"
    )
    enum_values: List[str] = Field(default_factory=list, description="Allowed values of an enum type")
    custom_type_name: Optional[str] = Field(default=None, description="Name of a user-defined type")
    generated: bool = Field(default=False, description="Whether the value is computed by the backend")
    source_table: Optional[str] = Field(
        default=None, description="Base table of a view column; None when derived"
    )
    source_column: Optional[str] = Field(
        default=None, description="Base column of a view column; None when derived"
    )

    @property
    def is_derived(self) -> bool:
        return self.source_table is None or self.source_column is None


class Reference(TedBaseModel):
    """A foreign key constraint, possibly spanning several columns."""

    foreign_table: str = Field(description="Referenced table name")
    foreign_columns: Dict[int, str] = Field(
        default_factory=dict, description="Local column index to referenced column name"
    )


class BaseTable(TedBaseModel):
    """A table a view or custom query selects from."""

    name: str = Field(description="Base table name")
    key_columns: List[str] = Field(default_factory=list, description="Base table key column names")
    key: List[int] = Field(
        default_factory=list, description="View column index of each key column that is visible"
    )
    outer: bool = Field(default=False, description="Whether the table is outer-joined")

    @property
    def key_visible(self) -> bool:
        """True when every base key column is selected as a bare column."""
        return bool(self.key_columns) and len(self.key) == len(self.key_columns)


class SortColumn(TedBaseModel):
    """Optional ORDER BY column placed ahead of the key."""

    name: str = Field(description="Column name")
    asc: bool = Field(default=True, description="Ascending when True")


class Relation(TedBaseModel):
    """A table, view or custom query opened for browsing."""

    name: str = Field(description="Relation name, possibly schema-qualified")
    db_type: DbType = Field(description="Backend type")
    is_view: bool = Field(default=False, description="Whether the relation is a view")
    is_custom_sql: bool = Field(default=False, description="Whether rows come from a user query")
    sql_statement: Optional[str] = Field(default=None, description="Query text of a custom relation")
    columns: List[Column] = Field(default_factory=list, description="Columns in display order")
    column_index: Dict[str, int] = Field(default_factory=dict, description="Column name to position")
    key: List[int] = Field(default_factory=list, description="Lookup key as column positions")
    references: List[Reference] = Field(default_factory=list, description="Foreign keys")
    base_tables: Dict[str, BaseTable] = Field(
        default_factory=dict, description="Base tables of a view or custom query"
    )

    @model_validator(mode="after")
    def _check_columns(self) -> "Relation":
        if not self.column_index:
            self.column_index = {column.name: i for i, column in enumerate(self.columns)}
        for idx in self.key:
            if idx < 0 or idx >= len(self.columns):
                raise ValueError(f"Key index {idx} is out of range for '{self.name}'")
        return self

    @property
    def is_keyable(self) -> bool:
        return bool(self.key)

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def key_columns(self) -> List[str]:
        return [self.columns[idx].name for idx in self.key]

    def index_of(self, name: str) -> int:
        """Position of a column by name.

        Raises:
            ValueError: If the column does not exist
        """
        if name not in self.column_index:
            raise ValueError(f"Column '{name}' does not exist in '{self.name}'")
        return self.column_index[name]

    def key_values(self, data: Sequence[Any]) -> List[Any]:
        """Extract the key values from a row's data."""
        return [data[idx] for idx in self.key]

    def is_column_editable(self, idx: int) -> bool:
        """Whether a cell edit in this column can be routed to a table.

        Every table column is editable. A view column is editable when it is a
        bare, non-generated reference to a base table whose whole key is also
        selected.
        """
        if idx < 0 or idx >= len(self.columns):
            return False
        if not self.is_view and not self.is_custom_sql:
            return True

        column = self.columns[idx]
        if column.is_derived or column.generated:
            return False
        base = self.base_tables.get(column.source_table)
        return base is not None and base.key_visible
