"""Unit tests for the report request guard."""

import pytest

from ra_agent.errors import QueryExecutionError
from ra_agent.models import ReportRequest
from ra_agent.query.guard import validate_request

JOIN = {
    "parent_table": "products",
    "parent_key": "generated_id",
    "child_table": "orders",
    "child_key": "product_id",
}


class TestValidRequests:
    def test_single_table(self):
        req = ReportRequest(tables=["orders"], columns={"orders": ["customer"]})
        assert validate_request(req, ["orders"]) is req

    def test_join(self):
        req = ReportRequest(tables=["orders", "products"], join=JOIN)
        assert validate_request(req, ["orders", "products"]).join.child_table == "orders"

    def test_duplicate_table_names_collapsed(self):
        req = ReportRequest(tables=["orders", "orders"])
        assert validate_request(req).tables == ["orders"]

    def test_count_needs_no_column(self):
        req = ReportRequest(
            tables=["orders"],
            aggregation={"group_by": "customer", "method": "COUNT", "output_column": "n"},
        )
        assert validate_request(req) is req


class TestRejectedRequests:
    def test_no_tables(self):
        with pytest.raises(QueryExecutionError, match="no tables"):
            validate_request(ReportRequest(tables=[]))

    def test_too_many_tables(self):
        with pytest.raises(QueryExecutionError, match="3 tables"):
            validate_request(ReportRequest(tables=["a", "b", "c"]))

    def test_unknown_table(self):
        with pytest.raises(QueryExecutionError, match="Unknown table"):
            validate_request(ReportRequest(tables=["ghost"]), ["orders"])

    def test_multiple_tables_without_join(self):
        with pytest.raises(QueryExecutionError, match="without a join"):
            validate_request(ReportRequest(tables=["orders", "products"]))

    def test_join_on_other_tables(self):
        req = ReportRequest(tables=["orders", "customers"], join=JOIN)
        with pytest.raises(QueryExecutionError, match="does not match"):
            validate_request(req)

    def test_self_join(self):
        join = {**JOIN, "parent_table": "orders"}
        with pytest.raises(QueryExecutionError, match="different tables"):
            validate_request(ReportRequest(tables=["orders", "orders2"], join=join))

    @pytest.mark.parametrize("method", ["SUM", "AVG"])
    def test_sum_avg_need_column(self, method):
        req = ReportRequest(
            tables=["orders"],
            aggregation={"group_by": "customer", "method": method, "output_column": "x"},
        )
        with pytest.raises(QueryExecutionError, match="requires a column"):
            validate_request(req)
