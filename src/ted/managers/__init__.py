"""ted managers."""

from ted.managers.base import BaseManager, ConnectionContext
from ted.managers.lookup import LookupManager, RowNotFoundError
from ted.managers.mutation import MutationManager, NoRowsAffectedError, ReadOnlyError
from ted.managers.schema import NoKeyError, RelationNotFoundError, SchemaManager
from ted.managers.view import ViewAnalysisError, ViewAnalyzer

__all__ = [
    "BaseManager",
    "ConnectionContext",
    "LookupManager",
    "RowNotFoundError",
    "MutationManager",
    "NoRowsAffectedError",
    "ReadOnlyError",
    "NoKeyError",
    "RelationNotFoundError",
    "SchemaManager",
    "ViewAnalysisError",
    "ViewAnalyzer",
]
