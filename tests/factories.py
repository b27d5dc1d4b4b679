"""
Test data factories.

Build database rows (dicts) and model objects for catalog and import tests.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from models.catalog import CatalogProduct, CatalogVariant
from models.import_item import MappedData, MappedProductData, MappedVariantData


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CatalogFactory:
    """
    Factory for catalog products and variants.

    Usage:
        # Row dicts for the fake database
        product, variant = CatalogFactory.create_rows(sku="AB-1")

        # Model with variants, for matcher tests
        product = CatalogFactory.create_product(title="Red Widget", sku="AB-1")
    """

    _counter = 0

    @classmethod
    def _next_counter(cls) -> int:
        cls._counter += 1
        return cls._counter

    @classmethod
    def create_rows(
        cls,
        merchant_id: str = "merchant-1",
        title: Optional[str] = None,
        sku: Optional[str] = None,
        barcode: Optional[str] = None,
        base_price_minor: Optional[int] = 1000,
        price_minor: Optional[int] = 1000,
        inventory_quantity: int = 0,
    ) -> tuple[dict, dict]:
        """
        Create a product row and its single variant row.

        Returns:
            Tuple of (product row, variant row)
        """
        counter = cls._next_counter()
        now = _now()
        product_id = str(uuid4())

        product = {
            "id": product_id,
            "merchant_id": merchant_id,
            "title": title or f"Test Product {counter}",
            "type": "PHYSICAL",
            "status": "active",
            "base_price_minor": base_price_minor,
            "currency": "USD",
            "created_at": now,
            "updated_at": now,
        }
        variant = {
            "id": str(uuid4()),
            "product_id": product_id,
            "sku": sku or f"SKU-{counter}",
            "price_minor": price_minor,
            "inventory_quantity": inventory_quantity,
            "inventory_policy": "deny",
            "barcode": barcode,
            "created_at": now,
            "updated_at": now,
        }
        return product, variant

    @classmethod
    def create_product(cls, **overrides) -> CatalogProduct:
        """Create a CatalogProduct with one variant."""
        product, variant = cls.create_rows(**overrides)
        return CatalogProduct(**{**product, "variants": [variant]})

    @classmethod
    def reset_counter(cls):
        """Reset the counter (call in test setup if needed)."""
        cls._counter = 0


def mapped(
    title: Optional[str] = None,
    sku: Optional[str] = None,
    base_price_minor: Optional[int] = None,
    price_minor: Optional[int] = None,
    barcode: Optional[str] = None,
    product_id: Optional[str] = None,
    inventory_quantity: Optional[int] = None,
) -> MappedData:
    """Build a projected payload with the given fields."""
    return MappedData(
        product=MappedProductData(
            id=product_id,
            title=title,
            base_price_minor=base_price_minor,
        ),
        variant=MappedVariantData(
            sku=sku,
            price_minor=price_minor,
            barcode=barcode,
            inventory_quantity=inventory_quantity,
        ),
    )
