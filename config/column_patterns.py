"""
Target schema and column name patterns for import column mapping.

The pattern table is ordered: each source column is tested against the
targets top to bottom and the first full match wins. Patterns are
case-insensitive and cover English, Russian and Spanish headers.

Set COLUMN_PATTERNS_FILE to a JSON object {"target.field": ["regex", ...]}
to replace the table without code changes.
"""

import json
import re
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


# =============================================================================
# TARGET SCHEMA
# =============================================================================
# Field descriptions are sent to the AI mapper and define the set of valid
# target paths ("product.title", "product.seo.meta_title", "variant.sku", ...)

TARGET_SCHEMA: dict[str, dict] = {
    "product": {
        "id": "Existing product ID (exports from this platform)",
        "title": "Product title/name",
        "short_description": "Short product description",
        "description": "Full product description",
        "type": "Product type (PHYSICAL, DIGITAL, SERVICE)",
        "status": "Product status (draft, active, deleted)",
        "base_price_minor": "Base price in minor units (cents)",
        "currency": "Currency code (USD, RUB, EUR)",
        "image_url": "Main product image URL",
        "images": "Array of additional image URLs",
        "slug": "URL-friendly slug",
        "category": "Product category",
        "tags": "Product tags array",
        "brand": "Brand name",
        "weight": "Product weight",
        "meta_title": "SEO meta title",
        "meta_description": "SEO meta description",
        "seo": {
            "meta_title": "SEO meta title",
            "meta_description": "SEO meta description",
            "keywords": "SEO keywords array",
        },
    },
    "variant": {
        "sku": "Stock Keeping Unit (unique identifier)",
        "title": "Variant title",
        "price_minor": "Variant price in minor units",
        "compare_at_price_minor": "Compare at price (original price)",
        "inventory_quantity": "Stock quantity",
        "inventory_policy": "Inventory policy (deny, continue)",
        "barcode": "Barcode (EAN, UPC)",
        "weight": "Variant weight",
        "requires_shipping": "Requires shipping (boolean)",
        "taxable": "Is taxable (boolean)",
        "attrs": "Custom variant attributes",
    },
}


def _flatten_schema(node: dict, prefix: str = "") -> list[str]:
    paths = []
    for key, value in node.items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            paths.extend(_flatten_schema(value, path))
        else:
            paths.append(path)
    return paths


TARGET_FIELDS: frozenset[str] = frozenset(_flatten_schema(TARGET_SCHEMA))


# =============================================================================
# FIELD GROUPS
# =============================================================================

# Targets checked after mapping; absence is surfaced as a warning
SKU_FIELDS = ("variant.sku",)
TITLE_FIELDS = ("product.title",)
PRICE_FIELDS = ("product.base_price_minor", "variant.price_minor")

# Price-like targets eligible for the major -> minor unit conversion
PRICE_LIKE_FIELDS = (
    "product.base_price_minor",
    "variant.price_minor",
    "variant.compare_at_price_minor",
)

# A source column containing one of these already holds minor units
MINOR_UNIT_HINTS = ("minor", "cents", "cent", "kopeck", "копе", "centavo")

# Transformation attached to major-unit price columns
MULTIPLY_BY_100 = "multiply_by_100"

# Field names whose values may arrive as JSON arrays/objects
COMPOSITE_FIELDS = frozenset({"images", "tags", "category", "attrs", "keywords", "param"})

# Field names coerced to integers (minor units, stock counts)
INTEGER_FIELDS = frozenset({
    "base_price_minor",
    "price_minor",
    "compare_at_price_minor",
    "inventory_quantity",
})

# Field names coerced to booleans
BOOLEAN_FIELDS = frozenset({"requires_shipping", "taxable"})

# Confidence assigned by the pattern mapper
PATTERN_CONFIDENCE = 0.8


# =============================================================================
# COLUMN PATTERNS
# =============================================================================

_SEP = r"[_\s\-]?"

DEFAULT_COLUMN_PATTERNS: list[tuple[str, list[str]]] = [
    # Product ID first: our own export format round-trips through it
    ("product.id", [rf"product{_SEP}id", r"id"]),
    ("product.title", [
        rf"product{_SEP}title", r"title", r"name", rf"product{_SEP}name",
        r"наименование", r"название", r"товар",
        r"nombre", r"t[ií]tulo", r"producto",
    ]),
    ("product.type", [rf"product{_SEP}type", r"type", r"тип", r"tipo"]),
    ("product.status", [rf"product{_SEP}status", r"status", r"статус", r"estado"]),
    ("product.short_description", [
        rf"short{_SEP}description", rf"short{_SEP}desc", rf"краткое{_SEP}описание",
        r"preview", rf"descripci[oó]n{_SEP}corta",
    ]),
    ("product.description", [
        r"description", r"desc", r"описание", rf"full{_SEP}desc",
        r"descripci[oó]n",
    ]),
    ("product.base_price_minor", [
        rf"base{_SEP}price{_SEP}minor", rf"base{_SEP}price", r"price", r"цена",
        r"стоимость", r"cost", r"precio",
    ]),
    ("product.currency", [
        r"currency", rf"currency{_SEP}id", r"валюта", r"curr", r"moneda",
    ]),
    ("product.image_url", [
        rf"image{_SEP}url", r"image", r"picture", r"photo", r"img",
        r"картинка", r"фото", r"изображение", r"imagen", r"foto",
    ]),
    ("product.images", [
        r"images", r"pictures", r"photos", r"gallery", r"галерея",
        r"фотографии", r"im[aá]genes", r"galer[ií]a",
    ]),
    ("product.category", [
        r"category", r"категория", r"cat", rf"category{_SEP}id",
        r"categor[ií]a",
    ]),
    ("product.tags", [
        r"tags", r"теги", r"keywords", rf"ключевые{_SEP}слова", r"etiquetas",
    ]),
    ("product.brand", [
        r"brand", r"бренд", r"vendor", r"производитель", r"manufacturer",
        r"marca", r"fabricante",
    ]),
    ("product.weight", [r"weight", r"вес", r"масса", r"peso"]),
    ("product.slug", [r"slug", r"url", r"ссылка"]),
    ("product.meta_title", [rf"meta{_SEP}title", rf"seo{_SEP}title"]),
    ("product.meta_description", [rf"meta{_SEP}description", rf"seo{_SEP}description"]),
    ("variant.sku", [
        rf"variant{_SEP}sku", r"sku", r"артикул", rf"vendor{_SEP}code", r"код",
        r"article", r"c[oó]digo", r"referencia",
    ]),
    ("variant.title", [
        rf"variant{_SEP}title", rf"variant{_SEP}name", r"вариант", r"variante",
    ]),
    ("variant.price_minor", [
        rf"variant{_SEP}price{_SEP}minor", rf"variant{_SEP}price", rf"sale{_SEP}price",
        rf"precio{_SEP}oferta",
    ]),
    ("variant.compare_at_price_minor", [
        rf"variant{_SEP}compare{_SEP}at{_SEP}price{_SEP}minor",
        rf"compare{_SEP}at{_SEP}price", rf"old{_SEP}price", rf"original{_SEP}price",
        rf"старая{_SEP}цена", rf"precio{_SEP}anterior",
    ]),
    ("variant.inventory_quantity", [
        rf"variant{_SEP}inventory{_SEP}quantity", r"quantity", r"qty", r"stock",
        r"остаток", r"количество", r"inventory",
        r"cantidad", r"existencias",
    ]),
    ("variant.inventory_policy", [
        rf"variant{_SEP}inventory{_SEP}policy", rf"inventory{_SEP}policy",
    ]),
    ("variant.barcode", [
        rf"variant{_SEP}barcode", r"barcode", rf"штрих{_SEP}код", r"ean", r"upc",
        r"gtin", rf"c[oó]digo{_SEP}de{_SEP}barras",
    ]),
    ("variant.weight", [rf"variant{_SEP}weight"]),
    ("variant.requires_shipping", [
        rf"variant{_SEP}requires{_SEP}shipping", rf"requires{_SEP}shipping",
    ]),
    ("variant.taxable", [rf"variant{_SEP}taxable", r"taxable"]),
    ("variant.attrs", [
        rf"variant{_SEP}attrs", r"attrs", r"attributes", r"атрибуты", r"param",
        r"params", r"характеристики", r"atributos",
    ]),
]


CompiledPatterns = list[tuple[str, list[re.Pattern]]]


def compile_patterns(table: list[tuple[str, list[str]]]) -> CompiledPatterns:
    """Compile a pattern table, preserving target order."""
    return [
        (target, [re.compile(p, re.IGNORECASE) for p in patterns])
        for target, patterns in table
    ]


def load_column_patterns(path: Optional[str] = None) -> CompiledPatterns:
    """
    Load the column pattern table.

    Args:
        path: Optional JSON file with {"target.field": ["regex", ...]}.
              Key order defines matching priority.

    Returns:
        Compiled (target_field, patterns) pairs in priority order
    """
    if not path:
        return compile_patterns(DEFAULT_COLUMN_PATTERNS)

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    table = [(target, list(patterns)) for target, patterns in raw.items()]

    unknown = [target for target, _ in table if target not in TARGET_FIELDS]
    if unknown:
        logger.warning("column_patterns_unknown_targets", targets=unknown, path=path)

    logger.info("column_patterns_loaded", path=path, targets=len(table))
    return compile_patterns(table)
