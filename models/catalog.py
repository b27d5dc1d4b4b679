"""
Catalog product and variant schemas.

Only the fields the import pipeline reads or writes are modelled; rows
from the products / product_variants tables may carry more.
"""

from pydantic import ConfigDict, Field
from typing import Optional

from models.base import BaseSchema, TimestampMixin


class CatalogVariant(BaseSchema, TimestampMixin):
    """Row of product_variants."""
    model_config = ConfigDict(extra="ignore")

    id: str
    product_id: str
    sku: Optional[str] = None
    title: Optional[str] = None
    price_minor: Optional[int] = None
    compare_at_price_minor: Optional[int] = None
    inventory_quantity: Optional[int] = None
    inventory_policy: Optional[str] = None
    barcode: Optional[str] = None


class CatalogProduct(BaseSchema, TimestampMixin):
    """Row of products with its variants attached."""
    model_config = ConfigDict(extra="ignore")

    id: str
    merchant_id: Optional[str] = None
    title: Optional[str] = None
    short_description: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    base_price_minor: Optional[int] = None
    currency: Optional[str] = None
    image_url: Optional[str] = None
    variants: list[CatalogVariant] = Field(default_factory=list)

    @property
    def first_variant(self) -> Optional[CatalogVariant]:
        return self.variants[0] if self.variants else None
