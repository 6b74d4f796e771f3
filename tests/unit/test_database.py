"""Tests for the TedDatabase interface."""

import sqlite3

import pytest

from ted import DbType, TedDatabase, connect
from ted.config import DatabaseConfig, TedConfig
from ted.managers.lookup import RowNotFoundError
from ted.managers.schema import NoKeyError, RelationNotFoundError
from ted.utils.sql_validator import SQLValidationError

SCHEMA = """
    CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, age INTEGER);
    CREATE TABLE notes (body TEXT);
    INSERT INTO users VALUES (1, 'a', 20), (2, 'b', 25), (3, 'c', 25);
    CREATE VIEW adults AS SELECT id, name FROM users WHERE age >= 21;
"""


class TestTedDatabase:
    """Test the unified database interface."""

    @pytest.fixture
    def db(self, make_db):
        return make_db(SCHEMA)

    def test_connection_info(self, db):
        assert isinstance(db, TedDatabase)
        assert db.db_type == DbType.SQLITE
        assert db.dialect.supports_row_value_comparison

    def test_listing(self, db):
        assert db.list_tables() == ["notes", "users"]
        assert db.list_views() == ["adults"]
        assert db.list_relations() == ["adults", "notes", "users"]

    def test_open_relation(self, db):
        users = db.open_relation("users")

        assert users.key_columns == ["id"]
        assert db.open_relation("adults").is_view

    def test_open_relation_without_key(self, db):
        assert db.describe("notes").key == []
        with pytest.raises(NoKeyError):
            db.open_relation("notes")

    def test_open_missing_relation(self, db):
        with pytest.raises(RelationNotFoundError):
            db.open_relation("missing")

    def test_open_sql(self, db):
        relation = db.open_sql("SELECT id, name FROM users WHERE age > 20")

        window = db.window(relation, 5)
        window.load_from()
        assert [row.data for row in window.visible_rows()] == [[2, "b"], [3, "c"]]
        window.close()

    def test_open_sql_rejects_writes(self, db):
        with pytest.raises(SQLValidationError):
            db.open_sql("UPDATE users SET name = 'x'")

    def test_get_foreign_row(self, db):
        assert db.get_foreign_row("users", {"id": 2}) == {"name": "b", "age": 25}
        with pytest.raises(RowNotFoundError):
            db.get_foreign_row("users", {"id": 9})

    def test_find_next(self, db):
        users = db.open_relation("users")

        assert db.find_next(users, "age", 25, [1]) == ([2], False)
        assert db.find_next(users, "age", 25, [3]) == ([2], True)


class TestConnect:
    """Test the connect() helper."""

    def test_connect_sqlite_file(self, temp_dir):
        path = temp_dir / "shop.db"
        sqlite3.connect(path).close()

        with connect(str(path)) as db:
            assert db.db_type == DbType.SQLITE
            assert db.list_tables() == []
        assert not db.connection.is_open

    def test_connect_alias(self, temp_dir):
        path = temp_dir / "data.bin"
        sqlite3.connect(path).close()
        config = TedConfig(databases={"local": DatabaseConfig(type=DbType.SQLITE, dbname=str(path))})

        with connect("local", config=config) as db:
            assert db.settings.database == str(path)
            assert db.config is config

    def test_connect_missing_file(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            connect(str(temp_dir / "missing.db"))
