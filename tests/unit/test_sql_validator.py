"""Tests for custom query validation."""

import pytest

from ted.utils.sql_validator import (
    QueryKind,
    SQLValidationError,
    validate_query_safe,
    validate_sql_query,
)


class TestSQLValidator:
    """Test validation of user-supplied read-only SQL."""

    def test_select_allowed(self):
        is_valid, error, kind = validate_sql_query("SELECT * FROM users")
        assert is_valid
        assert error is None
        assert kind == QueryKind.SELECT

    def test_with_allowed(self):
        is_valid, _, kind = validate_sql_query("WITH t AS (SELECT 1 AS x) SELECT x FROM t")
        assert is_valid
        assert kind == QueryKind.WITH

    def test_trailing_terminators_trimmed(self):
        assert validate_query_safe("SELECT 1;  \n\t;") == "SELECT 1"

    def test_multiple_statements_rejected(self):
        is_valid, error, _ = validate_sql_query("SELECT 1; SELECT 2")
        assert not is_valid
        assert error == "multiple statements not allowed"

    @pytest.mark.parametrize(
        "sql",
        ["DELETE FROM users", "UPDATE users SET name = 'x'", "DROP TABLE users", "PRAGMA table_info(users)"],
    )
    def test_writes_rejected(self, sql):
        with pytest.raises(SQLValidationError, match="not allowed"):
            validate_query_safe(sql)

    def test_data_modifying_cte_rejected(self):
        with pytest.raises(SQLValidationError, match="DELETE"):
            validate_query_safe("WITH gone AS (DELETE FROM users RETURNING id) SELECT * FROM gone")

    def test_column_names_containing_keywords(self):
        """Restricted words only match whole words."""
        is_valid, _, _ = validate_sql_query("WITH t AS (SELECT updated_at FROM users) SELECT * FROM t")
        assert is_valid

    def test_empty_rejected(self):
        with pytest.raises(SQLValidationError, match="empty"):
            validate_query_safe("   ")
        with pytest.raises(SQLValidationError, match="empty"):
            validate_query_safe("-- just a comment")

    def test_comments_removed(self):
        assert validate_query_safe("SELECT id FROM users -- trailing note") == "SELECT id FROM users"
