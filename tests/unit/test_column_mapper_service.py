"""
Unit tests for the column mappers.

Claude is replaced by a stub client; no network calls are made.
"""

import json
import pytest
from types import SimpleNamespace
from unittest.mock import MagicMock

import anthropic
import httpx

from services.column_mapper_service import (
    ClaudeColumnMapper,
    FallbackColumnMapper,
    PatternColumnMapper,
)
from exceptions import AIAnalysisError


@pytest.fixture
def mapper():
    return PatternColumnMapper(price_threshold=10000, preview_rows=5)


def targets(result) -> dict[str, str]:
    return {m.source_column: m.target_field for m in result.column_mapping}


def claude_response(payload) -> SimpleNamespace:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


def stub_client(response=None, error=None) -> MagicMock:
    client = MagicMock()
    if error is not None:
        client.messages.create.side_effect = error
    else:
        client.messages.create.return_value = response
    return client


# ===================
# PATTERN MAPPER
# ===================

class TestMatchColumn:
    """Tests for PatternColumnMapper.match_column()"""

    @pytest.mark.parametrize("header,target", [
        ("SKU", "variant.sku"),
        ("Артикул", "variant.sku"),
        ("vendorCode", "variant.sku"),
        ("Name", "product.title"),
        ("Наименование", "product.title"),
        ("Título", "product.title"),
        ("Price", "product.base_price_minor"),
        ("Цена", "product.base_price_minor"),
        ("old_price", "variant.compare_at_price_minor"),
        ("Stock", "variant.inventory_quantity"),
        ("EAN", "variant.barcode"),
        ("Description", "product.description"),
        ("picture", "product.image_url"),
        ("currencyId", "product.currency"),
        ("ID", "product.id"),
        ("  sku  ", "variant.sku"),
    ])
    def test_known_headers(self, mapper, header, target):
        assert mapper.match_column(header) == target

    def test_patterns_must_match_whole_header(self, mapper):
        """'price' inside a longer header is not a match."""
        assert mapper.match_column("price notes") is None

    def test_unknown_header(self, mapper):
        assert mapper.match_column("Warehouse shelf") is None


class TestPatternAnalyze:
    """Tests for PatternColumnMapper.analyze()"""

    def test_maps_columns_with_pattern_confidence(self, mapper):
        result = mapper.analyze(["SKU", "Name"], [{"SKU": "A", "Name": "Widget"}])

        assert targets(result) == {"SKU": "variant.sku", "Name": "product.title"}
        assert all(m.confidence == 0.8 for m in result.column_mapping)
        assert result.strategy == "pattern"
        assert result.detected_columns == ["SKU", "Name"]

    def test_same_input_same_mapping(self, mapper):
        columns = ["Артикул", "Name", "Price", "Qty", "Barcode", "Shelf"]
        rows = [{"Артикул": "A1", "Name": "Widget", "Price": "9.99", "Qty": "3", "Barcode": "400", "Shelf": "2"}]

        first = mapper.analyze(columns, rows)
        second = mapper.analyze(columns, rows)

        assert first.column_mapping
        assert first.column_mapping == second.column_mapping
        assert first.warnings == second.warnings

    def test_warnings_for_missing_required_columns(self, mapper):
        result = mapper.analyze(["Shelf"], [{"Shelf": "3"}])

        assert result.warnings == [
            "Unmapped columns: Shelf. Please review and map manually.",
            "No SKU column detected. SKU is recommended for matching existing products.",
            "No product title column detected. Title is required.",
            "No price column detected. Price is recommended.",
        ]
        assert result.column_mapping == []
        assert result.suggestions == []

    def test_suggestion_counts_mapped_columns(self, mapper):
        result = mapper.analyze(["SKU", "Name", "Price"], [])

        assert "3 columns were automatically mapped" in result.suggestions[0]

    def test_sample_data_limited_to_preview_rows(self, mapper):
        rows = [{"SKU": str(i)} for i in range(20)]

        result = mapper.analyze(["SKU"], rows)

        assert len(result.sample_data) == 5


class TestPriceHeuristic:
    """Major-unit price columns get multiply_by_100."""

    def _price_mapping(self, mapper, column, values):
        rows = [{column: v} for v in values]
        result = mapper.analyze([column], rows)
        return result.column_mapping[0], result

    def test_decimal_point_means_major_units(self, mapper):
        mapping, result = self._price_mapping(mapper, "Price", ["19.99", "5"])

        assert mapping.transformation == "multiply_by_100"
        assert any("Price" in s and "major units" in s for s in result.suggestions)

    def test_decimal_comma_means_major_units(self, mapper):
        mapping, _ = self._price_mapping(mapper, "Price", ["19,99"])

        assert mapping.transformation == "multiply_by_100"

    def test_small_integers_mean_major_units(self, mapper):
        mapping, _ = self._price_mapping(mapper, "Price", ["19", "250"])

        assert mapping.transformation == "multiply_by_100"

    def test_large_integers_are_minor_units(self, mapper):
        mapping, _ = self._price_mapping(mapper, "Price", ["1999", "25000"])

        assert mapping.transformation is None

    def test_threshold_is_exclusive(self, mapper):
        mapping, _ = self._price_mapping(mapper, "Price", ["10000"])

        assert mapping.transformation is None

    def test_minor_unit_header_is_left_alone(self, mapper):
        mapping, _ = self._price_mapping(mapper, "base_price_minor", ["19.99"])

        assert mapping.target_field == "product.base_price_minor"
        assert mapping.transformation is None

    def test_no_sample_values(self, mapper):
        mapping, _ = self._price_mapping(mapper, "Price", ["", ""])

        assert mapping.transformation is None

    def test_non_price_columns_ignored(self, mapper):
        result = mapper.analyze(["Stock"], [{"Stock": "1.5"}])

        assert result.column_mapping[0].transformation is None


class TestCustomPatterns:

    def test_patterns_loaded_from_file(self, tmp_path):
        from config.column_patterns import load_column_patterns

        path = tmp_path / "patterns.json"
        path.write_text(json.dumps({"variant.sku": ["ref"], "product.title": ["label"]}), encoding="utf-8")

        mapper = PatternColumnMapper(patterns=load_column_patterns(str(path)))

        assert mapper.match_column("REF") == "variant.sku"
        assert mapper.match_column("sku") is None


# ===================
# CLAUDE MAPPER
# ===================

class TestClaudeColumnMapper:
    """Tests for ClaudeColumnMapper with a stub client."""

    COLUMNS = ["Артикул", "Наименование", "Цена"]
    ROWS = [{"Артикул": "A-1", "Наименование": "Стол", "Цена": "1999.50"}]

    def test_valid_response(self):
        client = stub_client(claude_response({
            "column_mapping": [
                {"source_column": "Артикул", "target_field": "variant.sku", "confidence": 0.95},
                {"source_column": "Наименование", "target_field": "product.title", "confidence": 0.9},
                {
                    "source_column": "Цена",
                    "target_field": "product.base_price_minor",
                    "confidence": 0.9,
                    "transformation": "multiply_by_100",
                },
            ],
            "suggestions": ["Prices look like rubles"],
            "warnings": [],
        }))

        result = ClaudeColumnMapper(client=client).analyze(self.COLUMNS, self.ROWS)

        assert targets(result) == {
            "Артикул": "variant.sku",
            "Наименование": "product.title",
            "Цена": "product.base_price_minor",
        }
        assert result.column_mapping[2].transformation == "multiply_by_100"
        assert result.suggestions == ["Prices look like rubles"]
        assert result.strategy == "ai"

        kwargs = client.messages.create.call_args.kwargs
        assert "Наименование" in kwargs["messages"][0]["content"]
        assert kwargs["system"] == ClaudeColumnMapper.SYSTEM_PROMPT

    def test_markdown_fence_is_stripped(self):
        payload = json.dumps({
            "column_mapping": [{"source_column": "Артикул", "target_field": "variant.sku", "confidence": 1}]
        })
        client = stub_client(claude_response(f"```json\n{payload}\n```"))

        result = ClaudeColumnMapper(client=client).analyze(self.COLUMNS, self.ROWS)

        assert targets(result) == {"Артикул": "variant.sku"}

    def test_invalid_entries_are_dropped(self):
        client = stub_client(claude_response({
            "column_mapping": [
                {"source_column": "Артикул", "target_field": "variant.sku", "confidence": 0.9},
                {"source_column": "Артикул", "target_field": "product.title", "confidence": 0.5},
                {"source_column": "Unknown", "target_field": "product.title", "confidence": 0.9},
                {"source_column": "Цена", "target_field": "product.price", "confidence": 0.9},
                {"source_column": "Наименование", "target_field": "product.title", "confidence": 7},
            ]
        }))

        result = ClaudeColumnMapper(client=client).analyze(self.COLUMNS, self.ROWS)

        assert targets(result) == {"Артикул": "variant.sku"}

    def test_non_json_raises(self):
        client = stub_client(claude_response("I think the first column is the SKU."))

        with pytest.raises(AIAnalysisError):
            ClaudeColumnMapper(client=client).analyze(self.COLUMNS, self.ROWS)

    def test_json_array_raises(self):
        client = stub_client(claude_response([1, 2, 3]))

        with pytest.raises(AIAnalysisError):
            ClaudeColumnMapper(client=client).analyze(self.COLUMNS, self.ROWS)

    def test_no_usable_mapping_raises(self):
        client = stub_client(claude_response({"column_mapping": []}))

        with pytest.raises(AIAnalysisError):
            ClaudeColumnMapper(client=client).analyze(self.COLUMNS, self.ROWS)

    def test_api_error_raises(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client = stub_client(error=anthropic.APIConnectionError(request=request))

        with pytest.raises(AIAnalysisError) as exc_info:
            ClaudeColumnMapper(client=client).analyze(self.COLUMNS, self.ROWS)

        assert exc_info.value.status_code == 503


# ===================
# FALLBACK
# ===================

class TestFallbackColumnMapper:

    def test_uses_primary_when_it_succeeds(self, mapper):
        primary = MagicMock()
        primary.analyze.return_value = "primary-result"

        result = FallbackColumnMapper(primary, mapper).analyze(["SKU"], [])

        assert result == "primary-result"

    def test_falls_back_on_failure(self, mapper):
        client = stub_client(claude_response("not json"))
        fallback = FallbackColumnMapper(ClaudeColumnMapper(client=client), mapper)

        result = fallback.analyze(["SKU", "Name"], [{"SKU": "A", "Name": "Widget"}])

        assert result.strategy == "pattern"
        assert targets(result) == {"SKU": "variant.sku", "Name": "product.title"}
