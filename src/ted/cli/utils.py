"""Utility functions for the CLI."""

import logging
from typing import List

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table as RichTable

from ted.config import TedConfig
from ted.models.relation import Relation
from ted.models.row import Row, RowState
from ted.utils.type_utils import display_value

console = Console()
err_console = Console(stderr=True)

ROW_STYLES = {
    RowState.NEW: "green",
    RowState.DELETED: "red strike",
    RowState.MODIFIED: "yellow",
}


def setup_logging(debug: bool = False) -> None:
    """Route log records to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=debug, show_path=debug)],
        force=True,
    )


def render_relation(relation: Relation, rows: List[Row], config: TedConfig, reached_end: bool) -> RichTable:
    """Build a rich table for the rows of a window."""
    kind = "view" if relation.is_view else "query" if relation.is_custom_sql else "table"
    table = RichTable(title=f"{relation.name} ({kind})", caption=None if reached_end else "…")

    for i, column in enumerate(relation.columns):
        header = f"🔑 {column.name}" if i in relation.key else column.name
        table.add_column(
            header,
            style="cyan" if i in relation.key else None,
            max_width=config.column_width(column.type),
            overflow="ellipsis",
            no_wrap=True,
        )

    for row in rows:
        table.add_row(*[display_value(value) for value in row.data], style=ROW_STYLES.get(row.state))
    return table


def render_names(title: str, names: List[str]) -> RichTable:
    """Single-column table listing relation names."""
    table = RichTable(title=title)
    table.add_column("Name", style="cyan")
    for name in names:
        table.add_row(name)
    return table
