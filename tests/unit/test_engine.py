"""Unit tests for the in-memory report engine."""

import math
import sqlite3

import pytest

from ra_agent.errors import QueryExecutionError
from ra_agent.models import AggregationSpec, JoinPrecedence, JoinSpec, ReportRequest
from ra_agent.query.engine import (
    ReportQueryEngine,
    aggregate_rows,
    join_rows,
    parse_number,
    project_rows,
)

JOIN = JoinSpec(
    parent_table="products", parent_key="generated_id", child_table="orders", child_key="product_id"
)

PRODUCTS = [
    {"generated_id": "products_1", "name": "Widget", "price": "10"},
    {"generated_id": "products_2", "name": "Gadget", "price": "20"},
]

ORDERS = [
    {"generated_id": "orders_1", "product_id": "products_1", "qty": "2"},
    {"generated_id": "orders_2", "product_id": "products_2", "qty": "1"},
    {"generated_id": "orders_3", "product_id": "products_1", "qty": "5"},
    {"generated_id": "orders_4", "product_id": None, "qty": "1"},
]


class TestParseNumber:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("10", 10.0),
            (" 3.5kg", 3.5),
            ("-2e3", -2000.0),
            (".5", 0.5),
            (7, 7.0),
            ("x", None),
            ("", None),
            (None, None),
            (True, None),
            (float("nan"), None),
        ],
    )
    def test_values(self, value, expected):
        assert parse_number(value) == expected

    def test_infinity(self):
        assert parse_number("-Infinity") == -math.inf


class TestJoin:
    def test_row_count_equals_child_count(self):
        joined = join_rows(PRODUCTS, ORDERS, JOIN)
        assert len(joined) == len(ORDERS)
        assert joined[0]["name"] == "Widget"
        assert joined[1]["name"] == "Gadget"

    def test_unmatched_child_gets_null_parent_fields(self):
        joined = join_rows(PRODUCTS, ORDERS, JOIN)
        assert joined[3]["name"] is None
        assert joined[3]["price"] is None

    def test_child_wins_on_shared_field_by_default(self):
        joined = join_rows(PRODUCTS, ORDERS, JOIN)
        assert joined[0]["generated_id"] == "orders_1"

    def test_parent_precedence(self):
        joined = join_rows(PRODUCTS, ORDERS, JOIN, JoinPrecedence.PARENT)
        assert joined[0]["generated_id"] == "products_1"
        assert joined[3]["generated_id"] == "orders_4"

    def test_first_parent_wins_on_duplicate_keys(self):
        parents = PRODUCTS + [{"generated_id": "products_1", "name": "Impostor", "price": "0"}]
        joined = join_rows(parents, ORDERS, JOIN)
        assert joined[0]["name"] == "Widget"


class TestAggregate:
    ROWS = [{"g": "A", "v": "10"}, {"g": "A", "v": "20"}, {"g": "B", "v": "x"}]

    def _spec(self, method):
        return AggregationSpec(group_by="g", column="v", method=method, output_column="out")

    def test_sum(self):
        assert aggregate_rows(self.ROWS, self._spec("SUM")) == [
            {"g": "A", "out": 30},
            {"g": "B", "out": 0},
        ]

    def test_avg_excludes_non_numeric(self):
        assert aggregate_rows(self.ROWS, self._spec("AVG")) == [
            {"g": "A", "out": 15},
            {"g": "B", "out": 0},
        ]

    def test_count(self):
        result = aggregate_rows(self.ROWS, self._spec("COUNT"))
        assert result == [{"g": "A", "out": 2}, {"g": "B", "out": 1}]
        assert isinstance(result[0]["out"], int)

    def test_missing_group_value_is_own_group(self):
        rows = [{"v": "1"}, {"g": "A", "v": "2"}, {"v": "3"}]
        result = aggregate_rows(rows, self._spec("SUM"))
        assert result == [{"g": None, "out": 4}, {"g": "A", "out": 2}]

    def test_equal_values_of_different_types_stay_separate(self):
        rows = [{"g": True, "v": "1"}, {"g": 1, "v": "2"}, {"g": 1.0, "v": "4"}, {"g": 1, "v": "8"}]
        result = aggregate_rows(rows, self._spec("SUM"))
        assert [r["out"] for r in result] == [1, 10, 4]
        assert [type(r["g"]) for r in result] == [bool, int, float]


class TestProject:
    def test_fills_missing_with_none(self):
        assert project_rows([{"a": 1, "z": 9}], ["a", "b"]) == [{"a": 1, "b": None}]


class TestReportQueryEngine:
    @pytest.fixture
    def engine(self, store):
        store.save_rows("products", PRODUCTS)
        store.save_rows("orders", ORDERS)
        return ReportQueryEngine(store)

    def test_join_and_sum(self, engine):
        request = ReportRequest(
            tables=["orders", "products"],
            join=JOIN,
            aggregation=AggregationSpec(
                group_by="name", column="qty", method="SUM", output_column="units"
            ),
        )
        result = engine.execute(request)
        assert result.columns == ["name", "units"]
        assert result.rows == [
            {"name": "Widget", "units": 7},
            {"name": "Gadget", "units": 1},
            {"name": None, "units": 1},
        ]
        assert result.chart.labels == ["Widget", "Gadget", None]
        assert result.chart.values == [7, 1, 1]
        assert result.chart.label == "units"

    def test_projection_only(self, engine):
        request = ReportRequest(tables=["orders"], columns={"orders": ["generated_id", "qty", "missing"]})
        result = engine.execute(request)
        assert result.row_count == 4
        assert result.rows[0] == {"generated_id": "orders_1", "qty": "2", "missing": None}
        assert result.chart.label_column == "generated_id"

    def test_malformed_request_is_audited(self, engine):
        with pytest.raises(QueryExecutionError):
            engine.execute(ReportRequest(tables=["orders", "products"]))
        entries = engine.get_audit_entries()
        assert len(entries) == 1
        assert "without a join" in entries[0]["error"]

    def test_store_failure_is_audited(self, engine, monkeypatch):
        def broken_load(table):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(engine.store, "load_rows", broken_load)
        with pytest.raises(sqlite3.OperationalError):
            engine.execute(ReportRequest(tables=["orders"]))
        entries = engine.get_audit_entries()
        assert len(entries) == 1
        assert entries[0]["error"] == "database is locked"

    def test_unknown_table(self, engine):
        with pytest.raises(QueryExecutionError, match="Unknown table"):
            engine.execute(ReportRequest(tables=["ghost"]))

    def test_audit_skipped_when_disabled(self, engine):
        engine.execute(ReportRequest(tables=["orders"]), record_audit=False)
        assert engine.get_audit_entries() == []
