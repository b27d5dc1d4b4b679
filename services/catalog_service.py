"""
Catalog service.

Reads a merchant's products/variants for matching and writes the rows an
import execution creates or updates.

Tables: products, product_variants
"""

from typing import Any, Optional
import structlog

from config import get_supabase_client
from exceptions import (
    AppError,
    CatalogProductNotFoundError,
    CatalogVariantNotFoundError,
    DatabaseError,
)
from models.catalog import CatalogProduct, CatalogVariant
from models.import_item import MappedData

logger = structlog.get_logger(__name__)

# Supabase caps a select at 1000 rows
PAGE_SIZE = 1000
# Product ids per variants `in` filter (URL length)
ID_CHUNK_SIZE = 200

PRODUCT_TYPES = ("PHYSICAL", "DIGITAL", "SERVICE")

DEFAULT_PRODUCT_TITLE = "Untitled Product"
DEFAULT_PRODUCT_TYPE = "PHYSICAL"
DEFAULT_PRODUCT_STATUS = "draft"
DEFAULT_CURRENCY = "USD"
DEFAULT_INVENTORY_POLICY = "deny"

# Fields an update patches when present on the import row
PRODUCT_UPDATE_FIELDS = (
    "title",
    "short_description",
    "description",
    "base_price_minor",
    "image_url",
    "images",
)
VARIANT_UPDATE_FIELDS = (
    "title",
    "price_minor",
    "compare_at_price_minor",
    "inventory_quantity",
)


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


class CatalogService:
    """
    Catalog reads and writes for imports.

    Each write is a single PostgREST request; there is no multi-row
    transaction, so create_from_mapped removes the product it created when
    the variant insert fails.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.products_table = "products"
        self.variants_table = "product_variants"

    # ===================
    # READ OPERATIONS
    # ===================

    def get_products(self, merchant_id: str) -> list[CatalogProduct]:
        """
        Get all products of a merchant with their variants.

        Args:
            merchant_id: Merchant UUID

        Returns:
            Products, each with its variants ordered by creation
        """
        logger.info("loading_catalog", merchant_id=merchant_id)

        try:
            product_rows: list[dict] = []
            offset = 0
            while True:
                result = (
                    self.db.table(self.products_table)
                    .select("*")
                    .eq("merchant_id", merchant_id)
                    .order("created_at")
                    .order("id")
                    .range(offset, offset + PAGE_SIZE - 1)
                    .execute()
                )
                product_rows.extend(result.data or [])
                if len(result.data or []) < PAGE_SIZE:
                    break
                offset += PAGE_SIZE

            variants_by_product: dict[str, list[dict]] = {}
            product_ids = [row["id"] for row in product_rows]
            for start in range(0, len(product_ids), ID_CHUNK_SIZE):
                chunk = product_ids[start:start + ID_CHUNK_SIZE]
                offset = 0
                while True:
                    result = (
                        self.db.table(self.variants_table)
                        .select("*")
                        .in_("product_id", chunk)
                        .order("created_at")
                        .order("id")
                        .range(offset, offset + PAGE_SIZE - 1)
                        .execute()
                    )
                    for row in result.data or []:
                        variants_by_product.setdefault(row["product_id"], []).append(row)
                    if len(result.data or []) < PAGE_SIZE:
                        break
                    offset += PAGE_SIZE

        except Exception as e:
            logger.error("load_catalog_failed", merchant_id=merchant_id, error=str(e))
            raise DatabaseError("select", str(e))

        products = [
            CatalogProduct(**{
                **row,
                "variants": variants_by_product.get(row["id"], []),
            })
            for row in product_rows
        ]

        logger.info(
            "catalog_loaded",
            merchant_id=merchant_id,
            products=len(products),
            variants=sum(len(v) for v in variants_by_product.values())
        )
        return products

    def get_product(self, product_id: str, merchant_id: str) -> CatalogProduct:
        """
        Get a merchant's product with variants.

        Raises:
            CatalogProductNotFoundError: If the product doesn't exist
        """
        try:
            result = (
                self.db.table(self.products_table)
                .select("*")
                .eq("id", product_id)
                .eq("merchant_id", merchant_id)
                .execute()
            )
            if not result.data:
                raise CatalogProductNotFoundError(product_id)

            variants = (
                self.db.table(self.variants_table)
                .select("*")
                .eq("product_id", product_id)
                .order("created_at")
                .execute()
            )
        except AppError:
            raise
        except Exception as e:
            logger.error("get_catalog_product_failed", product_id=product_id, error=str(e))
            raise DatabaseError("select", str(e))

        return CatalogProduct(**{**result.data[0], "variants": variants.data or []})

    def get_variant(self, variant_id: str, product_id: str) -> CatalogVariant:
        """
        Raises:
            CatalogVariantNotFoundError: If the variant doesn't belong to the product
        """
        try:
            result = (
                self.db.table(self.variants_table)
                .select("*")
                .eq("id", variant_id)
                .eq("product_id", product_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_catalog_variant_failed", variant_id=variant_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise CatalogVariantNotFoundError(variant_id)
        return CatalogVariant(**result.data[0])

    # ===================
    # WRITE OPERATIONS
    # ===================

    def build_product_row(self, merchant_id: str, mapped_data: MappedData) -> dict[str, Any]:
        """Insert payload for a new product, with defaults for missing fields."""
        product = mapped_data.product

        product_type = (product.type or "").upper()
        if product_type not in PRODUCT_TYPES:
            product_type = DEFAULT_PRODUCT_TYPE

        attrs = _drop_none({
            "category": product.category,
            "tags": product.tags,
            "brand": product.brand,
            "weight": product.weight,
        })

        seo = dict(product.seo or {})
        if product.meta_title and "meta_title" not in seo:
            seo["meta_title"] = product.meta_title
        if product.meta_description and "meta_description" not in seo:
            seo["meta_description"] = product.meta_description

        return _drop_none({
            "merchant_id": merchant_id,
            "title": product.title or DEFAULT_PRODUCT_TITLE,
            "short_description": product.short_description,
            "description": product.description,
            "type": product_type,
            "status": product.status or DEFAULT_PRODUCT_STATUS,
            "base_price_minor": product.base_price_minor,
            "currency": product.currency or DEFAULT_CURRENCY,
            "image_url": product.image_url,
            "images": product.images,
            "slug": product.slug,
            "attrs": attrs or None,
            "seo": seo or None,
        })

    def build_variant_row(self, product_id: str, mapped_data: MappedData) -> dict[str, Any]:
        """Insert payload for the variant of a new product."""
        product = mapped_data.product
        variant = mapped_data.variant

        price = variant.price_minor
        if price is None:
            price = product.base_price_minor if product.base_price_minor is not None else 0

        return _drop_none({
            "product_id": product_id,
            "sku": variant.sku,
            "title": variant.title,
            "price_minor": price,
            "currency": product.currency or DEFAULT_CURRENCY,
            "compare_at_price_minor": variant.compare_at_price_minor,
            "inventory_quantity": variant.inventory_quantity or 0,
            "inventory_policy": variant.inventory_policy or DEFAULT_INVENTORY_POLICY,
            "barcode": variant.barcode,
            "weight": variant.weight,
            "requires_shipping": True if variant.requires_shipping is None else variant.requires_shipping,
            "taxable": True if variant.taxable is None else variant.taxable,
            "attrs": variant.attrs,
        })

    def create_from_mapped(
        self,
        merchant_id: str,
        mapped_data: MappedData
    ) -> tuple[str, Optional[str]]:
        """
        Create a product (and a variant when the row has a SKU).

        Args:
            merchant_id: Owner of the new product
            mapped_data: Projected import row

        Returns:
            Tuple of (product_id, variant_id or None)

        Raises:
            DatabaseError: If an insert fails. A product whose variant
                could not be written is deleted again.
        """
        try:
            result = (
                self.db.table(self.products_table)
                .insert(self.build_product_row(merchant_id, mapped_data))
                .execute()
            )
        except Exception as e:
            logger.error("create_catalog_product_failed", merchant_id=merchant_id, error=str(e))
            raise DatabaseError("insert", str(e))

        if not result.data:
            raise DatabaseError("insert", "No product returned from insert")

        product_id = result.data[0]["id"]

        if not mapped_data.sku:
            logger.debug("catalog_product_created", product_id=product_id, variant_id=None)
            return product_id, None

        try:
            variant_result = (
                self.db.table(self.variants_table)
                .insert(self.build_variant_row(product_id, mapped_data))
                .execute()
            )
            if not variant_result.data:
                raise DatabaseError("insert", "No variant returned from insert")
        except Exception as e:
            logger.error(
                "create_catalog_variant_failed",
                product_id=product_id,
                sku=mapped_data.sku,
                error=str(e)
            )
            self.delete_product(product_id)
            if isinstance(e, DatabaseError):
                raise
            raise DatabaseError("insert", str(e))

        variant_id = variant_result.data[0]["id"]
        logger.debug("catalog_product_created", product_id=product_id, variant_id=variant_id)
        return product_id, variant_id

    def update_from_mapped(
        self,
        merchant_id: str,
        product_id: str,
        variant_id: Optional[str],
        mapped_data: MappedData
    ) -> None:
        """
        Patch a matched product/variant with the fields present on the row.

        Raises:
            CatalogProductNotFoundError: Matched product no longer exists
            CatalogVariantNotFoundError: Matched variant no longer exists
        """
        product_patch = _drop_none({
            name: getattr(mapped_data.product, name) for name in PRODUCT_UPDATE_FIELDS
        })
        variant_patch = _drop_none({
            name: getattr(mapped_data.variant, name) for name in VARIANT_UPDATE_FIELDS
        })

        try:
            if product_patch:
                result = (
                    self.db.table(self.products_table)
                    .update(product_patch)
                    .eq("id", product_id)
                    .eq("merchant_id", merchant_id)
                    .execute()
                )
                if not result.data:
                    raise CatalogProductNotFoundError(product_id)
            else:
                # Still verify ownership before touching the variant
                self.get_product(product_id, merchant_id)

            if variant_id and variant_patch:
                result = (
                    self.db.table(self.variants_table)
                    .update(variant_patch)
                    .eq("id", variant_id)
                    .eq("product_id", product_id)
                    .execute()
                )
                if not result.data:
                    raise CatalogVariantNotFoundError(variant_id)

        except AppError:
            raise
        except Exception as e:
            logger.error("update_catalog_product_failed", product_id=product_id, error=str(e))
            raise DatabaseError("update", str(e))

        logger.debug(
            "catalog_product_updated",
            product_id=product_id,
            variant_id=variant_id,
            product_fields=list(product_patch),
            variant_fields=list(variant_patch)
        )

    def delete_product(self, product_id: str) -> None:
        """Delete a product created by a failed insert."""
        try:
            self.db.table(self.products_table).delete().eq("id", product_id).execute()
            logger.warning("catalog_product_rolled_back", product_id=product_id)
        except Exception as e:
            logger.error("catalog_product_rollback_failed", product_id=product_id, error=str(e))


# Singleton instance
_catalog_service: Optional[CatalogService] = None


def get_catalog_service() -> CatalogService:
    """Get or create CatalogService instance."""
    global _catalog_service
    if _catalog_service is None:
        _catalog_service = CatalogService()
    return _catalog_service
