"""Tests for relation models."""

import pytest

from ted.core.dialect import DbType
from ted.models.relation import BaseTable, Column, Relation


def make_query_relation(**column_overrides):
    """Custom query over orders(id, total, total_with_tax) with the key selected."""
    columns = [
        Column(name="id", type="integer", source_table="orders", source_column="id"),
        Column(name="total", type="numeric", source_table="orders", source_column="total"),
        Column(
            **{
                "name": "total_with_tax",
                "type": "numeric",
                "source_table": "orders",
                "source_column": "total_with_tax",
                **column_overrides,
            }
        ),
    ]
    return Relation(
        name="custom query",
        db_type=DbType.POSTGRES,
        is_custom_sql=True,
        sql_statement="SELECT id, total, total_with_tax FROM orders",
        columns=columns,
        key=[0],
        base_tables={"orders": BaseTable(name="orders", key_columns=["id"], key=[0])},
    )


class TestRelation:
    """Test Relation helpers."""

    def test_column_index_built(self):
        relation = make_query_relation()

        assert relation.column_index == {"id": 0, "total": 1, "total_with_tax": 2}
        assert relation.key_columns == ["id"]
        assert relation.index_of("total") == 1

    def test_unknown_column(self):
        with pytest.raises(ValueError, match="does not exist"):
            make_query_relation().index_of("missing")

    def test_key_out_of_range(self):
        with pytest.raises(ValueError, match="out of range"):
            Relation(name="t", db_type=DbType.SQLITE, columns=[Column(name="id")], key=[1])


class TestColumnEditability:
    """Test which cells can be routed to a base table."""

    def test_base_columns_editable(self):
        relation = make_query_relation()

        assert relation.is_column_editable(0)
        assert relation.is_column_editable(2)

    def test_generated_column_not_editable(self):
        relation = make_query_relation(generated=True)

        assert relation.is_column_editable(1)
        assert not relation.is_column_editable(2)

    def test_derived_column_not_editable(self):
        relation = make_query_relation(source_table=None, source_column=None)

        assert not relation.is_column_editable(2)

    def test_key_not_selected(self):
        relation = make_query_relation()
        relation.base_tables["orders"].key = []

        assert not relation.is_column_editable(1)

    def test_out_of_range(self):
        assert not make_query_relation().is_column_editable(3)

    def test_table_columns_always_editable(self):
        relation = Relation(
            name="orders",
            db_type=DbType.SQLITE,
            columns=[Column(name="id"), Column(name="total")],
            key=[0],
        )

        assert relation.is_column_editable(1)
