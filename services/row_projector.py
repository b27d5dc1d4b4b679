"""
Row projector.

Applies a column mapping to one raw row and produces the typed
{product, variant} payload plus the row's validation errors.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional
import json

from pydantic import ValidationError as PydanticValidationError

from config.column_patterns import (
    BOOLEAN_FIELDS,
    COMPOSITE_FIELDS,
    INTEGER_FIELDS,
    MULTIPLY_BY_100,
)
from models.import_item import (
    ImportItemAction,
    ImportItemStatus,
    MappedData,
    MappedProductData,
    MappedVariantData,
)
from models.import_session import ColumnMapping
from utils.text_utils import parse_decimal

MISSING_REQUIRED_ERROR = "Missing required field: title or SKU"

TRUE_VALUES = frozenset({"true", "yes", "y", "1", "on", "да", "si", "sí", "verdadero"})
FALSE_VALUES = frozenset({"false", "no", "n", "0", "off", "нет", "falso"})

LIST_SEPARATORS = (",", ";", "|")


# ===================
# VALUE COERCION
# ===================

def _to_minor_units(value: Any) -> int:
    number = parse_decimal(value)
    if number is None:
        raise ValueError("not a number")
    return int((number * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _to_integer(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = parse_decimal(value)
    if number is None:
        raise ValueError("not an integer")
    return int(number.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _to_number(value: Any) -> float:
    number = parse_decimal(value)
    if number is None:
        raise ValueError("not a number")
    return float(number)


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValueError("not a boolean")


def _split_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return value
    text = str(value)
    for separator in LIST_SEPARATORS:
        if separator in text:
            return [part.strip() for part in text.split(separator) if part.strip()]
    return [text.strip()] if text.strip() else []


TRANSFORMATIONS = {
    MULTIPLY_BY_100: _to_minor_units,
    "to_integer": _to_integer,
    "to_number": _to_number,
    "to_boolean": _to_boolean,
    "split_list": _split_list,
}


def apply_transformation(value: Any, transformation: Optional[str]) -> Any:
    """
    Apply a named transformation.

    Unknown names leave the value unchanged.

    Raises:
        ValueError: If the value cannot be converted
    """
    if not transformation:
        return value
    func = TRANSFORMATIONS.get(transformation)
    if func is None:
        return value
    return func(value)


def coerce_field(field_name: str, value: Any) -> Any:
    """
    Coerce a value to the type its target field holds.

    Raises:
        ValueError: If the value cannot be coerced
    """
    if field_name in COMPOSITE_FIELDS:
        if isinstance(value, str) and value.strip()[:1] in ("[", "{"):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return value

    if field_name in INTEGER_FIELDS:
        return _to_integer(value)

    if field_name in BOOLEAN_FIELDS:
        return _to_boolean(value)

    return value


# ===================
# PROJECTION
# ===================

@dataclass
class ProjectionResult:
    """Projected payload of one row and what is wrong with it."""
    mapped_data: MappedData
    validation_errors: list[str] = field(default_factory=list)

    @property
    def is_eligible(self) -> bool:
        return not self.validation_errors

    @property
    def status(self) -> ImportItemStatus:
        return ImportItemStatus.NEW if self.is_eligible else ImportItemStatus.PENDING

    @property
    def action(self) -> ImportItemAction:
        return ImportItemAction.INSERT if self.is_eligible else ImportItemAction.SKIP

    def to_item_update(self) -> dict[str, Any]:
        """
        Item columns after (re-)projection.

        Match results are cleared; matching must run again.
        """
        return {
            "mapped_data": dump_mapped_data(self.mapped_data),
            "status": self.status.value,
            "action": self.action.value,
            "validation_errors": self.validation_errors or None,
            "matched_product_id": None,
            "matched_variant_id": None,
            "matched_by": None,
            "match_confidence": None,
            "changes": None,
            "error_message": None,
        }


def _set_path(target: dict, path: list[str], value: Any) -> None:
    for key in path[:-1]:
        child = target.get(key)
        if not isinstance(child, dict):
            child = {}
            target[key] = child
        target = child
    target[path[-1]] = value


def _build_section(model_cls, data: dict, prefix: str, errors: list[str]):
    """Validate one section, dropping fields whose values do not fit their type."""
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        for error in e.errors():
            name = error["loc"][0] if error["loc"] else None
            if name in data:
                errors.append(f"Invalid value for {prefix}.{name}: {data.pop(name)!r}")
        return model_cls.model_validate(data)


def project_row(raw_row: dict[str, str], mappings: list[ColumnMapping]) -> ProjectionResult:
    """
    Apply column mappings to a raw row.

    Empty source values are skipped. A value that fails its transformation
    or type coercion is dropped and reported.

    Args:
        raw_row: Normalized row from the parser
        mappings: Column mapping of the session

    Returns:
        ProjectionResult with the mapped data and validation errors
    """
    sections: dict[str, dict[str, Any]] = {"product": {}, "variant": {}}
    errors: list[str] = []

    for mapping in mappings:
        value = raw_row.get(mapping.source_column)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue

        section, _, path = mapping.target_field.partition(".")
        if section not in sections or not path:
            continue

        keys = path.split(".")
        try:
            value = apply_transformation(value, mapping.transformation)
            value = coerce_field(keys[-1], value)
        except (ValueError, ArithmeticError):
            errors.append(
                f"Invalid value for {mapping.target_field}: {raw_row.get(mapping.source_column)!r}"
            )
            continue

        _set_path(sections[section], keys, value)

    mapped_data = MappedData(
        product=_build_section(MappedProductData, sections["product"], "product", errors),
        variant=_build_section(MappedVariantData, sections["variant"], "variant", errors),
    )

    errors.extend(validate_mapped_data(mapped_data))
    return ProjectionResult(mapped_data=mapped_data, validation_errors=errors)


def validate_mapped_data(mapped_data: MappedData) -> list[str]:
    """Row-level checks on a projected payload."""
    if not mapped_data.title and not mapped_data.sku:
        return [MISSING_REQUIRED_ERROR]
    return []


def classify(projection: ProjectionResult) -> tuple[ImportItemStatus, ImportItemAction]:
    """Initial review status and action of a projected row."""
    return projection.status, projection.action


def dump_mapped_data(mapped_data: MappedData) -> dict[str, Any]:
    """JSON-ready form stored on the item (unset fields omitted)."""
    return mapped_data.model_dump(mode="json", exclude_none=True)
