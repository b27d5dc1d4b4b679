"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    TimestampMixin,
)
from models.import_session import (
    ImportSessionStatus,
    ImportFileFormat,
    TERMINAL_STATUSES,
    REVIEWABLE_STATUSES,
    SESSION_TRANSITIONS,
    sources_for,
    ColumnMapping,
    AnalysisResult,
    ColumnMappingUpdate,
    ImportSession,
    ImportSessionListResponse,
    UploadResponse,
    ExecutionResult,
)
from models.import_item import (
    ImportItemStatus,
    ImportItemAction,
    MatchMethod,
    DEFAULT_APPROVE_STATUSES,
    FieldChange,
    MappedProductData,
    MappedVariantData,
    MappedData,
    ImportItem,
    ImportItemListResponse,
    ImportItemUpdate,
    ApproveAllRequest,
    ApproveAllResponse,
    ResolveConflictRequest,
    MatchStats,
)
from models.catalog import (
    CatalogProduct,
    CatalogVariant,
)

__all__ = [
    # Base
    "BaseSchema",
    "TimestampMixin",

    # Import sessions
    "ImportSessionStatus",
    "ImportFileFormat",
    "TERMINAL_STATUSES",
    "REVIEWABLE_STATUSES",
    "SESSION_TRANSITIONS",
    "sources_for",
    "ColumnMapping",
    "AnalysisResult",
    "ColumnMappingUpdate",
    "ImportSession",
    "ImportSessionListResponse",
    "UploadResponse",
    "ExecutionResult",

    # Import items
    "ImportItemStatus",
    "ImportItemAction",
    "MatchMethod",
    "DEFAULT_APPROVE_STATUSES",
    "FieldChange",
    "MappedProductData",
    "MappedVariantData",
    "MappedData",
    "ImportItem",
    "ImportItemListResponse",
    "ImportItemUpdate",
    "ApproveAllRequest",
    "ApproveAllResponse",
    "ResolveConflictRequest",
    "MatchStats",

    # Catalog
    "CatalogProduct",
    "CatalogVariant",
]
