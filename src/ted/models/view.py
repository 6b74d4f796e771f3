"""View analysis models for ted."""

from typing import List, Optional

from pydantic import Field

from ted.models.base import TedBaseModel


class ColumnLineage(TedBaseModel):
    """Where one selected column comes from."""

    name: str = Field(description="Output column name")
    expression: str = Field(default="", description="SQL text of the select item")
    source_table: Optional[str] = Field(default=None, description="Base table, None when derived")
    source_column: Optional[str] = Field(default=None, description="Base column, None when derived")

    @property
    def is_derived(self) -> bool:
        return self.source_table is None or self.source_column is None


class ViewAnalysis(TedBaseModel):
    """Result of statically analyzing a SELECT."""

    columns: List[ColumnLineage] = Field(default_factory=list, description="Select items in order")
    base_tables: List[str] = Field(
        default_factory=list, description="Tables referenced in FROM/JOIN, through CTEs and subqueries"
    )
    outer_tables: List[str] = Field(
        default_factory=list, description="Base tables on the NULL-extended side of an outer join"
    )
    has_group_by: bool = Field(default=False, description="Whether the query groups")
    has_distinct: bool = Field(default=False, description="Whether the query is DISTINCT")
    group_by_exprs: List[str] = Field(default_factory=list, description="GROUP BY expressions as SQL")
    group_by_columns: List[ColumnLineage] = Field(
        default_factory=list, description="GROUP BY items that resolve to base columns"
    )
    group_by_positions: List[int] = Field(
        default_factory=list, description="0-based select positions that GROUP BY refers to"
    )
