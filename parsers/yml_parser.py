"""
YML (Yandex Market Language) / XML offer feed parser.

Offers are flattened into rows with normalized keys; repeated pictures
become a JSON list and <param> blocks one JSON object.
"""

from typing import Optional
import json
import xml.etree.ElementTree as ET
import structlog

from exceptions import MalformedInputError
from models.import_session import ImportFileFormat
from parsers.base import (
    FileParser,
    ParseOptions,
    ParseResult,
    build_result,
    file_extension,
    limit_rows,
)

logger = structlog.get_logger(__name__)

# Searched in order; the first tag must equal the document root
OFFER_PATHS = [
    ("yml_catalog", "shop", "offers", "offer"),
    ("yml_catalog", "offers", "offer"),
    ("catalog", "shop", "offers", "offer"),
    ("shop", "offers", "offer"),
    ("offers", "offer"),
]

SHOP_PATHS = [
    ("yml_catalog", "shop"),
    ("catalog", "shop"),
    ("shop",),
]

# Row key -> offer child tags tried in order ("@" marks an attribute)
OFFER_FIELDS: dict[str, list[str]] = {
    "id": ["@id", "id"],
    "name": ["name", "model", "typePrefix"],
    "price": ["price"],
    "oldprice": ["oldprice"],
    "currencyId": ["currencyId"],
    "categoryId": ["categoryId"],
    "picture": ["picture"],
    "url": ["url"],
    "vendor": ["vendor"],
    "vendorCode": ["vendorCode"],
    "description": ["description"],
    "barcode": ["barcode"],
    "weight": ["weight"],
    "dimensions": ["dimensions"],
    "param": ["param"],
}

# Offer attributes copied as-is
OFFER_ATTRIBUTES = ("available", "type")


class YmlParser(FileParser):

    format = ImportFileFormat.YML
    extensions = ("yml", "xml")
    mime_keywords = ("xml", "yml")

    def detect_format(self, filename: str, mime_type: Optional[str] = None) -> ImportFileFormat:
        if file_extension(filename) == "yml":
            return ImportFileFormat.YML
        if file_extension(filename) == "xml" or (mime_type and "xml" in mime_type.lower()):
            return ImportFileFormat.XML
        return ImportFileFormat.YML

    def parse(
        self,
        content: bytes,
        options: ParseOptions,
        filename: str = "",
    ) -> ParseResult:
        try:
            # Bytes in, so the XML declaration decides the encoding
            root = ET.fromstring(content)
        except ET.ParseError as e:
            raise MalformedInputError(
                f"Invalid XML: {e}",
                details={"position": list(e.position) if e.position else None}
            )

        offers = limit_rows(_find_offers(root), options.max_rows)
        records = [_normalize_offer(offer) for offer in offers]

        shop = _find_shop(root)
        result = build_result(
            records,
            metadata={
                "format": "yml",
                "shop_name": _child_text(shop, "name") if shop is not None else None,
                "categories": _extract_categories(shop),
            },
        )

        logger.debug("yml_parsed", offers=result.row_count, columns=len(result.columns))
        return result


# ===================
# TREE HELPERS
# ===================

def _local_name(tag: str) -> str:
    return str(tag or "").split("}", 1)[-1]


def _children(element: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in element if _local_name(child.tag) == name]


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    found = _children(element, name)
    if not found:
        return None
    return (found[0].text or "").strip()


def _walk(root: ET.Element, path: tuple[str, ...]) -> list[ET.Element]:
    """Elements reached from root along path; path[0] names the root itself."""
    if _local_name(root.tag) != path[0]:
        return []
    current = [root]
    for name in path[1:]:
        current = [child for element in current for child in _children(element, name)]
        if not current:
            return []
    return current


def _find_offers(root: ET.Element) -> list[ET.Element]:
    for path in OFFER_PATHS:
        offers = _walk(root, path)
        if offers:
            return offers
    return []


def _find_shop(root: ET.Element) -> Optional[ET.Element]:
    for path in SHOP_PATHS:
        found = _walk(root, path)
        if found:
            return found[0]
    return None


def _extract_categories(shop: Optional[ET.Element]) -> dict[str, str]:
    categories: dict[str, str] = {}
    if shop is None:
        return categories

    for container in _children(shop, "categories"):
        for category in _children(container, "category"):
            category_id = category.get("id") or _child_text(category, "id")
            if category_id:
                categories[str(category_id)] = (category.text or "").strip()
    return categories


# ===================
# OFFER FLATTENING
# ===================

def _param_pairs(elements: list[ET.Element]) -> dict[str, str]:
    params = {}
    for element in elements:
        name = element.get("name") or _child_text(element, "name")
        if name:
            params[name] = (element.text or "").strip()
    return params


def _normalize_offer(offer: ET.Element) -> dict[str, str]:
    row: dict[str, str] = {}

    for key, sources in OFFER_FIELDS.items():
        for source in sources:
            if source.startswith("@"):
                value = offer.get(source[1:])
                if value is not None:
                    row[key] = value.strip()
                    break
                continue

            elements = _children(offer, source)
            if not elements:
                continue

            if key == "param":
                row[key] = json.dumps(_param_pairs(elements), ensure_ascii=False)
            elif len(elements) > 1:
                row[key] = json.dumps(
                    [(e.text or "").strip() for e in elements],
                    ensure_ascii=False
                )
            else:
                row[key] = (elements[0].text or "").strip()
            break

    for attribute in OFFER_ATTRIBUTES:
        value = offer.get(attribute)
        if value is not None:
            row[attribute] = value

    return row
