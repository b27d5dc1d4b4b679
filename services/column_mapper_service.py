"""
Column mapping service.

Infers how the columns of an uploaded catalog map onto the product/variant
schema. Two strategies:
    - PatternColumnMapper: deterministic regex table (config/column_patterns.py)
    - ClaudeColumnMapper: asks Claude, validates the answer
FallbackColumnMapper runs the first and drops to the second on any failure.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
import json
import re
import structlog

import anthropic
from pydantic import ValidationError as PydanticValidationError

from config import settings
from config.column_patterns import (
    CompiledPatterns,
    MINOR_UNIT_HINTS,
    MULTIPLY_BY_100,
    PATTERN_CONFIDENCE,
    PRICE_FIELDS,
    PRICE_LIKE_FIELDS,
    SKU_FIELDS,
    TARGET_FIELDS,
    TARGET_SCHEMA,
    TITLE_FIELDS,
    load_column_patterns,
)
from exceptions import AIAnalysisError
from models.import_session import AnalysisResult, ColumnMapping
from utils.text_utils import parse_decimal

logger = structlog.get_logger(__name__)

RawRow = dict[str, str]


class ColumnMapper(ABC):
    """Strategy interface: columns + sample rows -> AnalysisResult."""

    strategy: str = ""

    @abstractmethod
    def analyze(self, columns: list[str], sample_rows: list[RawRow]) -> AnalysisResult:
        ...


# ===================
# PATTERN STRATEGY
# ===================

class PatternColumnMapper(ColumnMapper):
    """
    Map columns by header name.

    For each column the pattern table is walked in order; the first target
    whose pattern fully matches wins and the column is not considered again.
    """

    strategy = "pattern"

    def __init__(
        self,
        patterns: Optional[CompiledPatterns] = None,
        price_threshold: Optional[int] = None,
        preview_rows: Optional[int] = None,
    ):
        self.patterns = patterns if patterns is not None else load_column_patterns(
            settings.column_patterns_file
        )
        self.price_threshold = price_threshold or settings.price_major_unit_threshold
        self.preview_rows = preview_rows or settings.preview_sample_rows

    def match_column(self, column: str) -> Optional[str]:
        """Target field for a header, or None."""
        name = column.strip()
        for target, patterns in self.patterns:
            if any(p.fullmatch(name) for p in patterns):
                return target
        return None

    def analyze(self, columns: list[str], sample_rows: list[RawRow]) -> AnalysisResult:
        mappings: list[ColumnMapping] = []
        warnings: list[str] = []
        suggestions: list[str] = []

        for column in columns:
            target = self.match_column(column)
            if target:
                mappings.append(ColumnMapping(
                    source_column=column,
                    target_field=target,
                    confidence=PATTERN_CONFIDENCE,
                ))

        mapped_columns = {m.source_column for m in mappings}
        unmapped = [c for c in columns if c not in mapped_columns]
        if unmapped:
            warnings.append(
                f"Unmapped columns: {', '.join(unmapped)}. Please review and map manually."
            )

        targets = {m.target_field for m in mappings}
        if not targets.intersection(SKU_FIELDS):
            warnings.append("No SKU column detected. SKU is recommended for matching existing products.")
        if not targets.intersection(TITLE_FIELDS):
            warnings.append("No product title column detected. Title is required.")
        if not targets.intersection(PRICE_FIELDS):
            warnings.append("No price column detected. Price is recommended.")

        if mappings:
            suggestions.append(
                f"{len(mappings)} columns were automatically mapped. "
                "Review the mappings before proceeding."
            )

        converted = self._apply_price_heuristic(mappings, sample_rows)
        if converted:
            suggestions.append(
                f"Prices in {', '.join(converted)} appear to be in major units. "
                "They will be converted to minor units (multiplied by 100)."
            )

        logger.info(
            "pattern_analysis_completed",
            columns=len(columns),
            mapped=len(mappings),
            unmapped=len(unmapped)
        )

        return AnalysisResult(
            detected_columns=list(columns),
            column_mapping=mappings,
            suggestions=suggestions,
            warnings=warnings,
            sample_data=sample_rows[:self.preview_rows],
            strategy=self.strategy,
        )

    def _apply_price_heuristic(
        self,
        mappings: list[ColumnMapping],
        sample_rows: list[RawRow],
    ) -> list[str]:
        """
        Attach multiply_by_100 to price columns holding major units.

        Returns:
            Source columns that were marked for conversion
        """
        converted = []
        for mapping in mappings:
            if mapping.target_field not in PRICE_LIKE_FIELDS:
                continue

            column = mapping.source_column.lower()
            if any(hint in column for hint in MINOR_UNIT_HINTS):
                continue

            if self._looks_like_major_units(mapping.source_column, sample_rows):
                mapping.transformation = MULTIPLY_BY_100
                converted.append(mapping.source_column)

        return converted

    def _looks_like_major_units(self, column: str, sample_rows: list[RawRow]) -> bool:
        values = [
            str(row.get(column, "")).strip()
            for row in sample_rows
        ]
        values = [v for v in values if v]
        if not values:
            return False

        if any("." in v or "," in v for v in values):
            return True

        numbers = [n for n in (parse_decimal(v) for v in values) if n is not None]
        return bool(numbers) and max(numbers) < self.price_threshold


# ===================
# CLAUDE STRATEGY
# ===================

class ClaudeColumnMapper(ColumnMapper):
    """
    Map columns with Claude.

    The model sees the target schema, the headers and the first sample
    rows and must answer with a JSON object.
    """

    strategy = "ai"

    SYSTEM_PROMPT = f"""You are a product data analyst. Analyze import file columns and map them to a product schema.

IMPORTANT: Return ONLY valid JSON, no markdown, no explanation.

Return JSON with:
- column_mapping: array of {{ "source_column", "target_field", "confidence" (0-1), "transformation" (optional) }}
- suggestions: array of helpful suggestions for the user
- warnings: array of potential issues found

Target schema fields (target_field is the dot path, e.g. "product.title", "variant.sku", "product.seo.meta_title"):
{json.dumps(TARGET_SCHEMA, indent=2, ensure_ascii=False)}

Important rules:
1. SKU/article is critical for matching existing products
2. Prices are stored in minor units (cents). If a price column holds major units set transformation to "multiply_by_100"
3. Map to the most specific field possible and map each source column at most once
4. Only use source_column values that appear in the column list
5. confidence should reflect how certain you are about the mapping
6. Column names may be in English, Russian or Spanish"""

    def __init__(self, client: Optional[Any] = None):
        self.model = settings.ai_model
        self.max_tokens = settings.ai_max_tokens
        self.preview_rows = settings.preview_sample_rows
        self.client = client or anthropic.Anthropic(
            api_key=settings.anthropic_api_key,
            timeout=settings.ai_timeout_seconds,
            max_retries=1,
        )

    def build_prompt(self, columns: list[str], sample_rows: list[RawRow]) -> str:
        sample = sample_rows[:self.preview_rows]
        return (
            "Analyze these columns and sample data from a product import file:\n\n"
            f"Columns: {json.dumps(columns, ensure_ascii=False)}\n\n"
            f"Sample data (first {len(sample)} rows):\n"
            f"{json.dumps(sample, indent=2, ensure_ascii=False)}\n\n"
            "Map each source column to the appropriate target field in the product schema. "
            "Identify any data quality issues or missing required fields."
        )

    def analyze(self, columns: list[str], sample_rows: list[RawRow]) -> AnalysisResult:
        """
        Raises:
            AIAnalysisError: API failure, non-JSON answer or no usable mapping
        """
        logger.info("ai_analysis_started", model=self.model, columns=len(columns))

        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=self.SYSTEM_PROMPT,
                messages=[{
                    "role": "user",
                    "content": self.build_prompt(columns, sample_rows)
                }]
            )
        except anthropic.APIError as e:
            logger.error("claude_api_error", error=str(e), error_type=type(e).__name__)
            raise AIAnalysisError(f"Claude API error: {e}")

        response_text = "".join(
            getattr(block, "text", "") for block in response.content
        )
        logger.debug("claude_response_received", response_length=len(response_text))

        result = self.parse_response(response_text, columns, sample_rows)

        logger.info(
            "ai_analysis_completed",
            mapped=len(result.column_mapping),
            warnings=len(result.warnings)
        )
        return result

    def parse_response(
        self,
        response_text: str,
        columns: list[str],
        sample_rows: list[RawRow],
    ) -> AnalysisResult:
        """Validate Claude's JSON answer into an AnalysisResult."""
        cleaned = response_text.strip()
        if cleaned.startswith("```"):
            cleaned = re.sub(r'^```(?:json)?\s*', '', cleaned)
            cleaned = re.sub(r'\s*```$', '', cleaned)

        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.error("json_parse_failed", response_preview=response_text[:500], error=str(e))
            raise AIAnalysisError("Claude returned invalid JSON", {"error": str(e)})

        if not isinstance(data, dict):
            raise AIAnalysisError("Claude response is not a JSON object")

        known_columns = set(columns)
        mappings: list[ColumnMapping] = []
        mapped_columns: set[str] = set()
        dropped = 0

        for raw in data.get("column_mapping") or []:
            try:
                mapping = ColumnMapping.model_validate(raw)
            except PydanticValidationError:
                dropped += 1
                continue

            if (
                mapping.source_column not in known_columns
                or mapping.target_field not in TARGET_FIELDS
                or mapping.source_column in mapped_columns
            ):
                dropped += 1
                continue

            mapped_columns.add(mapping.source_column)
            mappings.append(mapping)

        if dropped:
            logger.warning("ai_mappings_dropped", dropped=dropped)

        if not mappings:
            raise AIAnalysisError("Claude returned no usable column mappings")

        return AnalysisResult(
            detected_columns=list(columns),
            column_mapping=mappings,
            suggestions=[str(s) for s in data.get("suggestions") or []],
            warnings=[str(w) for w in data.get("warnings") or []],
            sample_data=sample_rows[:self.preview_rows],
            strategy=self.strategy,
        )


# ===================
# FALLBACK WRAPPER
# ===================

class FallbackColumnMapper(ColumnMapper):
    """Run primary; on any failure run fallback instead."""

    def __init__(self, primary: ColumnMapper, fallback: ColumnMapper):
        self.primary = primary
        self.fallback = fallback

    @property
    def strategy(self) -> str:
        return self.primary.strategy

    def analyze(self, columns: list[str], sample_rows: list[RawRow]) -> AnalysisResult:
        try:
            return self.primary.analyze(columns, sample_rows)
        except Exception as e:
            logger.warning(
                "ai_analysis_failed_using_fallback",
                error=str(e),
                error_type=type(e).__name__,
                fallback=self.fallback.strategy
            )
            return self.fallback.analyze(columns, sample_rows)


# Singleton instance
_column_mapper: Optional[ColumnMapper] = None


def get_column_mapper() -> ColumnMapper:
    """
    Get or create the configured column mapper.

    Claude with pattern fallback when ANTHROPIC_API_KEY is set,
    otherwise patterns only.
    """
    global _column_mapper
    if _column_mapper is None:
        if settings.ai_configured:
            _column_mapper = FallbackColumnMapper(ClaudeColumnMapper(), PatternColumnMapper())
        else:
            logger.warning("anthropic_not_configured_using_patterns")
            _column_mapper = PatternColumnMapper()
    return _column_mapper
