"""
Unit tests for the JSON parser.
"""

import json
import pytest

from parsers.base import ParseOptions
from parsers.json_parser import JsonParser
from exceptions import MalformedInputError


@pytest.fixture
def parser():
    return JsonParser()


def encode(data) -> bytes:
    return json.dumps(data).encode("utf-8")


class TestJsonStructures:
    """Accepted top-level shapes."""

    def test_bare_array(self, parser):
        result = parser.parse(encode([{"sku": "A"}, {"sku": "B"}]), ParseOptions())

        assert result.rows == [{"sku": "A"}, {"sku": "B"}]
        assert result.metadata["original_structure"] == "array"

    @pytest.mark.parametrize("key", ["products", "items", "data"])
    def test_wrapped_array(self, parser, key):
        result = parser.parse(encode({key: [{"sku": "A"}]}), ParseOptions())

        assert result.rows == [{"sku": "A"}]
        assert result.metadata["original_structure"] == "object"

    def test_products_key_checked_first(self, parser):
        data = {"data": [{"sku": "from-data"}], "products": [{"sku": "from-products"}]}

        result = parser.parse(encode(data), ParseOptions())

        assert result.rows == [{"sku": "from-products"}]

    def test_single_object_is_one_row(self, parser):
        result = parser.parse(encode({"sku": "A", "name": "Widget"}), ParseOptions())

        assert result.rows == [{"sku": "A", "name": "Widget"}]

    def test_scalar_top_level_raises(self, parser):
        with pytest.raises(MalformedInputError):
            parser.parse(b"42", ParseOptions())

    def test_invalid_json_raises(self, parser):
        with pytest.raises(MalformedInputError) as exc_info:
            parser.parse(b'[{"sku": "A",]', ParseOptions())

        assert "Invalid JSON" in exc_info.value.message


class TestJsonNormalization:
    """Values are flattened to strings."""

    def test_columns_are_union_in_first_seen_order(self, parser):
        data = [{"sku": "A"}, {"name": "Widget", "sku": "B"}]

        result = parser.parse(encode(data), ParseOptions())

        assert result.columns == ["sku", "name"]
        assert result.rows[0] == {"sku": "A", "name": ""}

    def test_value_types(self, parser):
        data = [{
            "price": 19.99,
            "qty": 5.0,
            "active": True,
            "note": None,
            "tags": ["a", "b"],
            "attrs": {"color": "red"},
        }]

        row = parser.parse(encode(data), ParseOptions()).rows[0]

        assert row["price"] == "19.99"
        assert row["qty"] == "5"
        assert row["active"] == "true"
        assert row["note"] == ""
        assert json.loads(row["tags"]) == ["a", "b"]
        assert json.loads(row["attrs"]) == {"color": "red"}

    def test_string_values_are_not_trimmed(self, parser):
        row = parser.parse(encode([{"name": "  Widget "}]), ParseOptions()).rows[0]

        assert row["name"] == "  Widget "

    def test_scalar_items_become_value_rows(self, parser):
        result = parser.parse(encode(["A", "B"]), ParseOptions())

        assert result.rows == [{"value": "A"}, {"value": "B"}]

    def test_max_rows(self, parser):
        result = parser.parse(encode([{"sku": str(i)} for i in range(10)]), ParseOptions(max_rows=3))

        assert result.row_count == 3


class TestJsonRoundTrip:

    def test_serialized_rows_parse_back(self, parser):
        data = [
            {"sku": "A1", "name": "Widget", "attrs": {"color": "red", "sizes": ["S", "M"]}},
            {"sku": "A2", "name": "Gadget", "attrs": {"color": "blue", "sizes": []}},
        ]

        rows = parser.parse(encode({"products": data}), ParseOptions()).rows

        assert [{"sku": r["sku"], "name": r["name"]} for r in rows] == [
            {"sku": "A1", "name": "Widget"},
            {"sku": "A2", "name": "Gadget"},
        ]
        assert [json.loads(r["attrs"]) for r in rows] == [d["attrs"] for d in data]
