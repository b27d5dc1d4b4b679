"""
Import item schemas.

One item per source row: its raw values, projected product/variant payload,
match result and review decision.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any, Optional, Union
from enum import Enum

from models.base import BaseSchema, TimestampMixin


class ImportItemStatus(str, Enum):
    """Per-row review states."""
    PENDING = "pending"
    MATCHED = "matched"
    NEW = "new"
    CONFLICT = "conflict"
    APPROVED = "approved"
    REJECTED = "rejected"
    IMPORTED = "imported"
    ERROR = "error"


class ImportItemAction(str, Enum):
    """What execution does with an approved row."""
    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"


class MatchMethod(str, Enum):
    """Strategy that linked a row to a catalog entry."""
    ID = "id"
    SKU = "sku"
    BARCODE = "barcode"
    TITLE = "title"
    MANUAL = "manual"
    AI = "ai"


# Statuses approve-all picks up when the caller gives none
DEFAULT_APPROVE_STATUSES = (
    ImportItemStatus.PENDING,
    ImportItemStatus.MATCHED,
    ImportItemStatus.NEW,
)

FieldValue = Optional[Union[int, float, str]]


class FieldChange(BaseModel):
    """One field that differs between the file and the catalog."""

    field: str
    old_value: FieldValue = None
    new_value: FieldValue = None


# ===================
# MAPPED PAYLOAD
# ===================

class MappedProductData(BaseSchema):
    """
    Product fields projected from a row.

    Known fields are typed; anything else the mapping produces is kept as
    an extra attribute.
    """
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    title: Optional[str] = None
    short_description: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    base_price_minor: Optional[int] = None
    currency: Optional[str] = None
    image_url: Optional[str] = None
    images: Optional[Union[list[Any], str]] = None
    slug: Optional[str] = None
    category: Optional[Union[list[Any], str]] = None
    tags: Optional[Union[list[Any], str]] = None
    brand: Optional[str] = None
    weight: Optional[Union[float, str]] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    seo: Optional[dict[str, Any]] = None


class MappedVariantData(BaseSchema):
    """Variant fields projected from a row."""
    model_config = ConfigDict(extra="allow")

    sku: Optional[str] = None
    title: Optional[str] = None
    price_minor: Optional[int] = None
    compare_at_price_minor: Optional[int] = None
    inventory_quantity: Optional[int] = None
    inventory_policy: Optional[str] = None
    barcode: Optional[str] = None
    weight: Optional[Union[float, str]] = None
    requires_shipping: Optional[bool] = None
    taxable: Optional[bool] = None
    attrs: Optional[Union[dict[str, Any], list[Any], str]] = None


class MappedData(BaseSchema):
    """Projected {product, variant} payload of one row."""

    product: MappedProductData = Field(default_factory=MappedProductData)
    variant: MappedVariantData = Field(default_factory=MappedVariantData)

    @property
    def sku(self) -> Optional[str]:
        return self.variant.sku or None

    @property
    def title(self) -> Optional[str]:
        return self.product.title or None


# ===================
# ITEM SCHEMAS
# ===================

class ImportItem(BaseSchema, TimestampMixin):
    """Import item record."""

    id: str
    session_id: str
    row_number: int = Field(..., ge=1)
    raw_data: dict[str, str] = Field(default_factory=dict)
    status: ImportItemStatus = ImportItemStatus.PENDING
    action: ImportItemAction = ImportItemAction.INSERT
    mapped_data: Optional[MappedData] = None

    matched_product_id: Optional[str] = None
    matched_variant_id: Optional[str] = None
    matched_by: Optional[MatchMethod] = None
    match_confidence: Optional[float] = None
    changes: Optional[list[FieldChange]] = None

    validation_errors: Optional[list[str]] = None
    error_message: Optional[str] = None

    created_product_id: Optional[str] = None
    created_variant_id: Optional[str] = None

    @property
    def has_validation_errors(self) -> bool:
        return bool(self.validation_errors)


class ImportItemListResponse(BaseSchema):
    """Paginated items of a session."""

    data: list[ImportItem]
    total: int
    page: int
    page_size: int
    total_pages: int


# ===================
# REVIEW REQUESTS
# ===================

class ImportItemUpdate(BaseSchema):
    """
    Manual override of a single item.

    All fields optional - only provided fields are applied.
    """

    status: Optional[ImportItemStatus] = None
    action: Optional[ImportItemAction] = None
    matched_product_id: Optional[str] = Field(None, min_length=1)
    matched_variant_id: Optional[str] = Field(None, min_length=1)
    mapped_data: Optional[MappedData] = None

    @model_validator(mode="after")
    def insert_has_no_match(self):
        """An insert cannot point at an existing product."""
        if self.action == ImportItemAction.INSERT and self.matched_product_id:
            raise ValueError("action 'insert' cannot carry matched_product_id")
        return self


class ApproveAllRequest(BaseSchema):
    """Bulk approval filter."""

    statuses: Optional[list[ImportItemStatus]] = Field(
        None,
        description="Only approve items in these statuses (default: pending, matched, new)"
    )


class ApproveAllResponse(BaseSchema):
    approved: int


class ResolveConflictRequest(BaseSchema):
    """Reviewer decision for a single item."""

    action: ImportItemAction


class MatchStats(BaseSchema):
    """Item counts per review bucket."""

    total: int = 0
    matched: int = 0
    new: int = 0
    conflicts: int = 0
    errors: int = 0
    pending: int = 0
