"""Tests for dialect capabilities and identifier quoting."""

import pytest

from ted.core.dialect import DIALECTS, DbType, get_dialect


class TestQuote:
    """Test identifier quoting."""

    @pytest.fixture
    def sqlite(self):
        return get_dialect(DbType.SQLITE)

    @pytest.fixture
    def mysql(self):
        return get_dialect(DbType.MYSQL)

    def test_simple_identifiers_unquoted(self, sqlite):
        """Lowercase identifiers are left alone."""
        assert sqlite.quote("users") == "users"
        assert sqlite.quote("_private_2") == "_private_2"

    def test_mixed_case_quoted(self, sqlite):
        assert sqlite.quote("UserName") == '"UserName"'

    def test_reserved_words_quoted(self, sqlite, mysql):
        """Reserved words are always quoted."""
        assert sqlite.quote("order") == '"order"'
        assert mysql.quote("select") == "`select`"

    def test_special_characters_quoted(self, sqlite):
        assert sqlite.quote("first name") == '"first name"'
        assert sqlite.quote("2fast") == '"2fast"'

    def test_trailing_newline_quoted(self, sqlite):
        assert sqlite.quote("abc\n") == '"abc\n"'

    def test_embedded_quotes_doubled(self, sqlite, mysql):
        assert sqlite.quote('say"hi') == '"say""hi"'
        assert mysql.quote("it`s") == "`it``s`"

    def test_qualified_names(self, sqlite):
        """Each part of a qualified name is quoted independently."""
        assert sqlite.quote_qualified("public.users") == "public.users"
        assert sqlite.quote_qualified("Sales.Order") == '"Sales"."Order"'

    @pytest.mark.parametrize("identifier", ["users", "Mixed", 'a"b', "select", "with space", "", "abc\n"])
    def test_unquote_reverses_quote(self, identifier):
        for dialect in DIALECTS.values():
            assert dialect.unquote(dialect.quote(identifier)) == identifier


class TestCapabilities:
    """Test per-backend feature flags."""

    def test_placeholders(self):
        assert get_dialect(DbType.POSTGRES).placeholder(3) == "$3"
        assert get_dialect(DbType.SQLITE).placeholder(3) == "?"
        assert get_dialect(DbType.MYSQL).placeholder(1) == "?"
        assert get_dialect(DbType.DUCKDB).placeholder(2) == "?"

    def test_returning_support(self):
        assert get_dialect(DbType.POSTGRES).supports_returning
        assert get_dialect(DbType.SQLITE).supports_returning
        assert get_dialect(DbType.DUCKDB).supports_returning
        assert not get_dialect(DbType.MYSQL).supports_returning

    def test_lookup_by_string(self):
        assert get_dialect("mysql").quote_char == "`"
        assert get_dialect("postgres").name == "postgres"

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            get_dialect("oracle")

    def test_exclusive_streams(self):
        assert get_dialect(DbType.POSTGRES).exclusive_streams
        assert get_dialect(DbType.MYSQL).exclusive_streams
        assert not get_dialect(DbType.SQLITE).exclusive_streams
        assert not get_dialect(DbType.DUCKDB).exclusive_streams
