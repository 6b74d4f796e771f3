"""Pytest configuration and shared fixtures."""

import shutil
import sqlite3
import tempfile
from pathlib import Path

import pytest

from ted.config import ConnectionSettings, TedConfig
from ted.core.connection import DatabaseConnection
from ted.core.database import TedDatabase
from ted.core.dialect import DbType
from ted.managers.base import ConnectionContext

USERS_SCHEMA = """
    CREATE TABLE users (
        id INTEGER PRIMARY KEY,
        name TEXT
    );
    INSERT INTO users (id, name) VALUES (1, 'a'), (2, 'b'), (3, 'c');
"""


def create_sqlite(path: Path, script: str) -> Path:
    """Create a SQLite database file from a SQL script."""
    conn = sqlite3.connect(path)
    try:
        conn.executescript(script)
        conn.commit()
    finally:
        conn.close()
    return path


def sqlite_settings(path: Path) -> ConnectionSettings:
    return ConnectionSettings(db_type=DbType.SQLITE, database=str(path))


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    temp = tempfile.mkdtemp()
    yield Path(temp)
    shutil.rmtree(temp)


@pytest.fixture
def make_db(temp_dir):
    """Factory creating SQLite files and open TedDatabase instances over them."""
    opened = []

    def factory(script: str, name: str = "test.db") -> TedDatabase:
        path = create_sqlite(temp_dir / name, script)
        db = TedDatabase(sqlite_settings(path), TedConfig())
        opened.append(db)
        return db

    yield factory
    for db in opened:
        db.close()


@pytest.fixture
def users_db(make_db):
    """Database with users(id INTEGER PRIMARY KEY, name TEXT) holding three rows."""
    return make_db(USERS_SCHEMA)


@pytest.fixture
def make_context(temp_dir):
    """Factory for ConnectionContext objects over a fresh SQLite file."""
    connections = []

    def factory(script: str, name: str = "ctx.db", connection_hook=None) -> ConnectionContext:
        path = create_sqlite(temp_dir / name, script)
        connection = DatabaseConnection(sqlite_settings(path))
        if connection_hook is not None:
            connection_hook(connection)
        connections.append(connection)
        return ConnectionContext(connection=connection, config=TedConfig())

    yield factory
    for connection in connections:
        connection.close()


@pytest.fixture
def users_connection(temp_dir):
    """Raw DatabaseConnection over the users database."""
    path = create_sqlite(temp_dir / "users.db", USERS_SCHEMA)
    connection = DatabaseConnection(sqlite_settings(path))
    yield connection
    connection.close()
