"""Tests for SchemaManager."""

import pytest

from ted.managers.schema import (
    KeyCandidate,
    NoKeyError,
    RelationNotFoundError,
    check_constraint_enums,
    require_key,
    select_key,
)
from ted.models.relation import Column

SCHEMA = """
    CREATE TABLE teams (
        id INTEGER PRIMARY KEY,
        label TEXT NOT NULL
    );
    CREATE TABLE members (
        id INTEGER PRIMARY KEY,
        team_id INTEGER REFERENCES teams(id),
        mentor_team INTEGER REFERENCES teams,
        name TEXT,
        status TEXT CHECK (status IN ('active', 'retired'))
    );
    CREATE TABLE codes (
        code TEXT NOT NULL UNIQUE,
        seq INTEGER NOT NULL UNIQUE,
        note TEXT
    );
    CREATE TABLE tags (
        label TEXT UNIQUE,
        note TEXT
    );
    CREATE TABLE pairs (
        a INTEGER NOT NULL,
        b INTEGER NOT NULL,
        PRIMARY KEY (a, b)
    );
    CREATE VIEW team_names AS SELECT id, label FROM teams;
"""


class TestSchemaManager:
    """Test table introspection on SQLite."""

    @pytest.fixture
    def schema(self, make_context):
        return make_context(SCHEMA).schema

    def test_list_tables(self, schema):
        assert schema.list_tables() == ["codes", "members", "pairs", "tags", "teams"]

    def test_list_views(self, schema):
        assert schema.list_views() == ["team_names"]

    def test_list_relations(self, schema):
        assert schema.list_relations() == ["codes", "members", "pairs", "tags", "team_names", "teams"]

    def test_primary_key(self, schema):
        relation = schema.load("teams")

        assert relation.column_names == ["id", "label"]
        assert relation.key_columns == ["id"]
        assert not relation.columns[1].nullable

    def test_composite_primary_key(self, schema):
        relation = schema.load("pairs")

        assert relation.key == [0, 1]

    def test_unique_not_null_ranked_by_width(self, schema):
        relation = schema.load("codes")

        # seq is an integer, narrower than the text column
        assert relation.key_columns == ["seq"]

    def test_nullable_unique_gives_no_key(self, schema):
        relation = schema.load("tags")

        assert relation.key == []
        assert not relation.is_keyable
        with pytest.raises(NoKeyError, match="no usable key"):
            require_key(relation)

    def test_foreign_keys(self, schema):
        relation = schema.load("members")

        assert len(relation.references) == 2
        team = relation.columns[relation.index_of("team_id")]
        reference = relation.references[team.reference]
        assert reference.foreign_table == "teams"
        assert reference.foreign_columns == {1: "id"}
        assert relation.columns[relation.index_of("name")].reference == -1

    def test_foreign_key_without_columns_uses_primary_key(self, schema):
        relation = schema.load("members")

        mentor = relation.columns[relation.index_of("mentor_team")]
        assert relation.references[mentor.reference].foreign_columns == {2: "id"}

    def test_check_constraint_enum(self, schema):
        relation = schema.load("members")

        assert relation.columns[relation.index_of("status")].enum_values == ["active", "retired"]
        assert relation.columns[relation.index_of("name")].enum_values == []

    def test_missing_relation(self, schema):
        with pytest.raises(RelationNotFoundError, match="does not exist"):
            schema.load("nope")

    def test_view_is_routed_to_analyzer(self, schema):
        relation = schema.load("team_names")

        assert relation.is_view
        assert relation.key_columns == ["id"]

    def test_cache_and_refresh(self, schema):
        first = schema.load("teams")

        assert schema.load("teams") is first
        assert schema.load("teams", refresh=True) is not first
        schema.invalidate()
        assert schema.load("teams") is not first

    def test_view_definition(self, schema):
        assert "SELECT id, label FROM teams" in schema.view_definition("team_names")
        with pytest.raises(RelationNotFoundError):
            schema.view_definition("teams")


class TestSelectKey:
    """Test ranking of key candidates."""

    def columns(self, **types):
        return {name: Column(name=name, type=t, nullable=False) for name, t in types.items()}

    def test_primary_key_wins(self):
        columns = self.columns(a="INTEGER", b="TEXT")
        candidates = [
            KeyCandidate(name="u_a", columns=["a"]),
            KeyCandidate(name="pk", columns=["b"], primary=True),
        ]

        assert select_key(candidates, columns) == ["b"]

    def test_fewer_columns_first(self):
        columns = self.columns(a="INTEGER", b="INTEGER", c="TEXT")
        candidates = [
            KeyCandidate(name="u_ab", columns=["a", "b"]),
            KeyCandidate(name="u_c", columns=["c"]),
        ]

        assert select_key(candidates, columns) == ["c"]

    def test_name_breaks_ties(self):
        columns = self.columns(a="INTEGER", b="INTEGER")
        candidates = [
            KeyCandidate(name="u_z", columns=["a"]),
            KeyCandidate(name="u_m", columns=["b"]),
        ]

        assert select_key(candidates, columns) == ["b"]

    def test_nullable_columns_excluded(self):
        columns = {"a": Column(name="a", type="INTEGER", nullable=True)}
        candidates = [KeyCandidate(name="u_a", columns=["a"])]

        assert select_key(candidates, columns) == []

    def test_nulls_not_distinct_accepted_when_supported(self):
        columns = {"a": Column(name="a", type="INTEGER", nullable=True)}
        candidates = [KeyCandidate(name="u_a", columns=["a"], nulls_not_distinct=True)]

        assert select_key(candidates, columns) == []
        assert select_key(candidates, columns, accept_nulls_not_distinct=True) == ["a"]


class TestCheckConstraintEnums:
    """Test reading CHECK IN lists from CREATE TABLE text."""

    def test_string_literals_only(self):
        enums = check_constraint_enums(
            "CREATE TABLE t (a TEXT CHECK (a IN ('x', 'y')), b INTEGER CHECK (b IN (1, 2)))"
        )

        assert enums == {"a": ["x", "y"]}
