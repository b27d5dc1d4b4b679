"""
Product matcher.

Links a projected import row to an existing catalog product/variant,
lists the fields that would change, and flags changes that need a human
decision (conflicts).
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional
import json
import structlog

from config import settings
from models.catalog import CatalogProduct, CatalogVariant
from models.import_item import (
    FieldChange,
    ImportItemStatus,
    MappedData,
    MatchMethod,
    MatchStats,
)
from utils.text_utils import jaccard_similarity, normalize_key

logger = structlog.get_logger(__name__)

# (catalog attribute, change field) compared on the product
PRODUCT_CHANGE_FIELDS = [
    ("title", "product.title"),
    ("short_description", "product.short_description"),
    ("description", "product.description"),
    ("base_price_minor", "product.base_price_minor"),
    ("image_url", "product.image_url"),
]

# Compared only when a variant was matched
VARIANT_CHANGE_FIELDS = [
    ("title", "variant.title"),
    ("price_minor", "variant.price_minor"),
    ("compare_at_price_minor", "variant.compare_at_price_minor"),
    ("inventory_quantity", "variant.inventory_quantity"),
]

TITLE_FIELD = "product.title"
PRICE_CHANGE_FIELDS = ("product.base_price_minor", "variant.price_minor")

CONFIDENCE_BY_METHOD = {
    MatchMethod.ID: 1.0,
    MatchMethod.SKU: 1.0,
    MatchMethod.BARCODE: 0.95,
    MatchMethod.TITLE: 0.7,
}


@dataclass
class MatchResult:
    """Outcome of matching one row."""
    matched: bool = False
    matched_product_id: Optional[str] = None
    matched_variant_id: Optional[str] = None
    matched_by: Optional[MatchMethod] = None
    match_confidence: float = 0.0
    changes: list[FieldChange] = field(default_factory=list)
    is_conflict: bool = False

    @property
    def status(self) -> ImportItemStatus:
        if not self.matched:
            return ImportItemStatus.NEW
        return ImportItemStatus.CONFLICT if self.is_conflict else ImportItemStatus.MATCHED


@dataclass
class CatalogIndex:
    """In-memory lookups over a merchant's catalog."""
    by_id: dict[str, CatalogProduct] = field(default_factory=dict)
    by_sku: dict[str, tuple[CatalogProduct, CatalogVariant]] = field(default_factory=dict)
    by_barcode: dict[str, tuple[CatalogProduct, CatalogVariant]] = field(default_factory=dict)
    by_title: dict[str, CatalogProduct] = field(default_factory=dict)

    @classmethod
    def build(cls, products: Iterable[CatalogProduct]) -> "CatalogIndex":
        """
        Index products by id, variant SKU, variant barcode and title.

        Keys are lower-cased; on duplicate keys the last product wins.
        """
        index = cls()
        for product in products:
            index.by_id[product.id] = product

            title = normalize_key(product.title)
            if title:
                index.by_title[title] = product

            for variant in product.variants:
                sku = normalize_key(variant.sku)
                if sku:
                    index.by_sku[sku] = (product, variant)
                barcode = normalize_key(variant.barcode)
                if barcode:
                    index.by_barcode[barcode] = (product, variant)

        return index

    @property
    def product_count(self) -> int:
        return len(self.by_id)


# ===================
# CONFLICT POLICY
# ===================

def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


@dataclass
class ConflictPolicy:
    """
    When a change needs a human decision.

    - title change with token-set similarity below title_similarity
    - price (base or variant) dropping below old * price_drop_ratio
      or rising above old * price_raise_ratio
    """
    title_similarity: Decimal = Decimal("0.8")
    price_drop_ratio: Decimal = Decimal("0.8")
    price_raise_ratio: Decimal = Decimal("1.5")

    @classmethod
    def from_settings(cls) -> "ConflictPolicy":
        return cls(
            title_similarity=Decimal(str(settings.title_similarity_threshold)),
            price_drop_ratio=Decimal(str(settings.price_drop_ratio)),
            price_raise_ratio=Decimal(str(settings.price_raise_ratio)),
        )

    def is_significant(self, change: FieldChange) -> bool:
        if change.field == TITLE_FIELD:
            if not change.old_value or not change.new_value:
                return False
            similarity = Decimal(str(jaccard_similarity(str(change.old_value), str(change.new_value))))
            return similarity < self.title_similarity

        if change.field in PRICE_CHANGE_FIELDS:
            old_price = _to_decimal(change.old_value)
            new_price = _to_decimal(change.new_value)
            if old_price <= 0:
                return False
            return (
                new_price < old_price * self.price_drop_ratio
                or new_price > old_price * self.price_raise_ratio
            )

        return False

    def is_conflict(self, changes: list[FieldChange]) -> bool:
        return any(self.is_significant(change) for change in changes)


# ===================
# MATCHER
# ===================

def _field_value(value: Any):
    """Value as stored on a FieldChange."""
    if value is None:
        return None
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float, str)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    return json.dumps(value, ensure_ascii=False, default=str)


class ProductMatcherService:
    """
    Match projected rows against a catalog index.

    Priority: product id -> SKU -> barcode -> exact title.
    """

    def __init__(self, policy: Optional[ConflictPolicy] = None):
        self.policy = policy or ConflictPolicy.from_settings()

    def match(self, mapped_data: Optional[MappedData], index: CatalogIndex) -> MatchResult:
        if mapped_data is None:
            return MatchResult()

        product: Optional[CatalogProduct] = None
        variant: Optional[CatalogVariant] = None
        method: Optional[MatchMethod] = None

        product_id = mapped_data.product.id
        sku = normalize_key(mapped_data.variant.sku)
        barcode = normalize_key(mapped_data.variant.barcode)
        title = normalize_key(mapped_data.product.title)

        if product_id and product_id in index.by_id:
            product = index.by_id[product_id]
            variant = product.first_variant
            method = MatchMethod.ID
        elif sku and sku in index.by_sku:
            product, variant = index.by_sku[sku]
            method = MatchMethod.SKU
        elif barcode and barcode in index.by_barcode:
            product, variant = index.by_barcode[barcode]
            method = MatchMethod.BARCODE
        elif title and title in index.by_title:
            product = index.by_title[title]
            method = MatchMethod.TITLE

        if product is None:
            return MatchResult()

        changes = self.detect_changes(mapped_data, product, variant)
        return MatchResult(
            matched=True,
            matched_product_id=product.id,
            matched_variant_id=variant.id if variant else None,
            matched_by=method,
            match_confidence=CONFIDENCE_BY_METHOD[method],
            changes=changes,
            is_conflict=self.policy.is_conflict(changes),
        )

    def detect_changes(
        self,
        mapped_data: MappedData,
        product: CatalogProduct,
        variant: Optional[CatalogVariant],
    ) -> list[FieldChange]:
        """Fields whose projected value is present and differs from the catalog."""
        changes = []

        pairs = [(mapped_data.product, product, PRODUCT_CHANGE_FIELDS)]
        if variant is not None:
            pairs.append((mapped_data.variant, variant, VARIANT_CHANGE_FIELDS))

        for incoming, existing, fields in pairs:
            for attribute, change_field in fields:
                new_value = getattr(incoming, attribute, None)
                if new_value is None or new_value == "":
                    continue
                old_value = getattr(existing, attribute, None)
                if new_value != old_value:
                    changes.append(FieldChange(
                        field=change_field,
                        old_value=_field_value(old_value),
                        new_value=_field_value(new_value),
                    ))

        return changes


def compute_match_stats(statuses: Iterable[str]) -> MatchStats:
    """
    Count items per review bucket.

    approved and imported items count as matched; rejected items only
    count towards the total.
    """
    stats = MatchStats()
    for raw in statuses:
        stats.total += 1
        status = ImportItemStatus(raw)
        if status in (ImportItemStatus.MATCHED, ImportItemStatus.APPROVED, ImportItemStatus.IMPORTED):
            stats.matched += 1
        elif status == ImportItemStatus.NEW:
            stats.new += 1
        elif status == ImportItemStatus.CONFLICT:
            stats.conflicts += 1
        elif status == ImportItemStatus.ERROR:
            stats.errors += 1
        elif status == ImportItemStatus.PENDING:
            stats.pending += 1
    return stats


# Singleton instance
_product_matcher: Optional[ProductMatcherService] = None


def get_product_matcher_service() -> ProductMatcherService:
    """Get or create ProductMatcherService instance."""
    global _product_matcher
    if _product_matcher is None:
        _product_matcher = ProductMatcherService()
    return _product_matcher
