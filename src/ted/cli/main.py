"""Main CLI entry point for ted."""

import logging
from typing import Optional

import typer
from rich.markup import escape

from ted.cli.utils import console, err_console, render_names, render_relation, setup_logging
from ted.config import Config
from ted.core.connection import DatabaseError
from ted.core.database import connect
from ted.core.dialect import DbType
from ted.utils.sql_validator import SQLValidationError

logger = logging.getLogger(__name__)

# Title, header and border lines around the rows
TABLE_CHROME = 6

app = typer.Typer(
    name="ted",
    help="ted - a spreadsheet-style editor for database tables",
    add_completion=False,
)


def fail(message: str) -> None:
    """Print an error to stderr and exit with status 1."""
    err_console.print(f"[red]❌ {escape(message)}[/red]")
    raise typer.Exit(1)


@app.command()
def main(
    database: Optional[str] = typer.Argument(
        None, help="Database file, name, or alias from .ted.yml"
    ),
    table: Optional[str] = typer.Argument(None, help="Table or view to open"),
    database_flag: Optional[str] = typer.Option(
        None, "--database", "-d", help="Database name or file (overrides DATABASE)"
    ),
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Database server host"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Database server port"),
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Database user"),
    password: Optional[str] = typer.Option(None, "--password", help="Database password"),
    postgres: bool = typer.Option(False, "--postgres", "--pg", help="Connect to PostgreSQL"),
    mysql: bool = typer.Option(False, "--mysql", "--my", help="Connect to MySQL"),
    command: Optional[str] = typer.Option(
        None, "--command", "-c", help="Read-only SELECT to open instead of a table"
    ),
    rows: Optional[int] = typer.Option(
        None, "--rows", "-n", min=2, help="Rows to show (default: terminal height)"
    ),
    debug: bool = typer.Option(False, "--debug", help="Log SQL and cursor activity"),
):
    """Open a table or view, or list the relations of a database.

    Examples:

        ted shop.db users

        ted --pg shop orders

        ted shop.db -c "SELECT id, name FROM users WHERE active"
    """
    setup_logging(debug)

    if postgres and mysql:
        fail("--postgres/--pg and --mysql/--my are mutually exclusive")
    if database_flag and (postgres or mysql):
        fail("-d/--database cannot be used with --pg or --mysql/--my")

    name = database
    if database_flag:
        # With -d a lone positional names the table
        if table is None:
            table = database
        name = database_flag
    if not name:
        fail("missing database name")

    db_type = DbType.POSTGRES if postgres else DbType.MYSQL if mysql else None

    try:
        config = Config().load()
        db = connect(
            name,
            host=host,
            port=port,
            username=username,
            password=password,
            db_type=db_type,
            config=config,
        )
    except (DatabaseError, FileNotFoundError, RuntimeError, ValueError) as e:
        fail(str(e))

    with db:
        try:
            if command:
                relation = db.open_sql(command)
            elif table:
                relation = db.open_relation(table)
            else:
                console.print(render_names("Tables", db.list_tables()))
                console.print(render_names("Views", db.list_views()))
                return

            size = rows or max(2, console.height - TABLE_CHROME)
            with db.window(relation, size) as window:
                window.load_from()
                console.print(
                    render_relation(relation, window.visible_rows(), config, window.is_at_bottom())
                )
        except (DatabaseError, SQLValidationError, ValueError) as e:
            logger.debug(f"Failed to open relation: {e!r}")
            fail(str(e))


if __name__ == "__main__":
    app()
