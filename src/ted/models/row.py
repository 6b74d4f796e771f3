"""Row models for the window buffer."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional


class RowState(str, Enum):
    """Display state of a buffered row."""

    NORMAL = "normal"
    NEW = "new"
    DELETED = "deleted"
    MODIFIED = "modified"
    INSERT = "insert"
    BOTTOM_BORDER = "bottom_border"


@dataclass
class Row:
    """One buffered row; data is aligned to Relation.columns."""

    data: Optional[List[Any]] = None
    state: RowState = RowState.NORMAL
    modified: List[int] = field(default_factory=list)

    @classmethod
    def bottom_border(cls) -> "Row":
        """Sentinel marking the end of the relation."""
        return cls(data=None, state=RowState.BOTTOM_BORDER)

    @property
    def is_border(self) -> bool:
        return self.state == RowState.BOTTOM_BORDER
