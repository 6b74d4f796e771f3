"""Core data models for ted."""

from .base import TedBaseModel
from .relation import BaseTable, Column, Reference, Relation, SortColumn
from .row import Row, RowState
from .view import ColumnLineage, ViewAnalysis

__all__ = [
    "TedBaseModel",
    "BaseTable",
    "Column",
    "Reference",
    "Relation",
    "SortColumn",
    "Row",
    "RowState",
    "ColumnLineage",
    "ViewAnalysis",
]
