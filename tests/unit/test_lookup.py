"""Unit tests for natural-key encoding and lookup maps."""

import pytest

from ra_agent.models import TableSchema
from ra_agent.pipeline.lookup import LookupMap, LookupMapRegistry, NaturalKeyEncoder


class TestNaturalKeyEncoder:
    def test_delimited(self):
        enc = NaturalKeyEncoder()
        assert enc.encode({"a": "x", "b": 2}, ["a", "b"]) == "x|2"

    def test_missing_and_null_are_empty(self):
        enc = NaturalKeyEncoder()
        assert enc.encode({"a": None}, ["a", "b"]) == "|"

    def test_integral_float_matches_int(self):
        enc = NaturalKeyEncoder()
        assert enc.encode({"q": 5.0}, ["q"]) == enc.encode({"q": 5}, ["q"])

    def test_delimited_collision(self):
        enc = NaturalKeyEncoder()
        assert enc.encode({"a": "x|y", "b": "z"}, ["a", "b"]) == enc.encode(
            {"a": "x", "b": "y|z"}, ["a", "b"]
        )

    def test_json_mode_avoids_collisions(self):
        enc = NaturalKeyEncoder("json")
        assert enc.encode({"a": "x|y", "b": "z"}, ["a", "b"]) != enc.encode(
            {"a": "x", "b": "y|z"}, ["a", "b"]
        )
        assert enc.encode({"a": None}, ["a"]) != enc.encode({"a": ""}, ["a"])
        assert enc.encode({"a": None}, ["a"]) == enc.encode({}, ["a"])

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            NaturalKeyEncoder("base64")


class TestLookupMap:
    def test_assign_sequential_ids(self):
        lookup = LookupMap("tbl")
        assert lookup.assign("A") == "tbl_1"
        assert lookup.assign("B") == "tbl_2"
        assert lookup.get("A") == "tbl_1"
        assert "B" in lookup
        assert len(lookup) == 2

    def test_from_rows_continues_after_highest_id(self):
        schema = TableSchema(
            name="products", columns=["generated_id", "name"], natural_key=["name"]
        )
        stored = [
            {"generated_id": "products_1", "name": "A"},
            {"generated_id": "products_7", "name": "B"},
        ]
        lookup = LookupMap.from_rows(schema, stored, NaturalKeyEncoder())
        assert lookup.get("A") == "products_1"
        assert lookup.get("B") == "products_7"
        assert lookup.assign("C") == "products_8"

    def test_from_rows_without_surrogate_column(self):
        schema = TableSchema(name="links", columns=["a", "b"], primary_key=["a", "b"])
        lookup = LookupMap.from_rows(
            schema, [{"a": 1, "b": 2}, {"a": 1, "b": 3}], NaturalKeyEncoder()
        )
        assert lookup.get("1|2") == "links_1"
        assert lookup.next_index == 3

    def test_json_keys_from_stored_rows_match_rows_missing_the_column(self):
        schema = TableSchema(
            name="products", columns=["generated_id", "name", "size"], natural_key=["name", "size"]
        )
        enc = NaturalKeyEncoder("json")
        stored = [{"generated_id": "products_1", "name": "A", "size": None}]
        lookup = LookupMap.from_rows(schema, stored, enc)
        assert lookup.get(enc.encode({"name": "A"}, schema.key_fields)) == "products_1"


class TestLookupMapRegistry:
    def test_register_and_clear(self):
        registry = LookupMapRegistry()
        registry.register(LookupMap("a"))
        assert "a" in registry
        assert registry.tables() == ["a"]
        registry.clear()
        assert len(registry) == 0
        assert registry.get("a") is None
