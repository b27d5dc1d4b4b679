"""
Business logic services.

Each service handles one step of a catalog import.
"""

from services.catalog_service import CatalogService, get_catalog_service
from services.column_mapper_service import (
    ColumnMapper,
    PatternColumnMapper,
    ClaudeColumnMapper,
    FallbackColumnMapper,
    get_column_mapper,
)
from services.import_store import ImportStore, get_import_store
from services.import_service import ImportService, get_import_service
from services.product_matcher_service import (
    CatalogIndex,
    ConflictPolicy,
    MatchResult,
    ProductMatcherService,
    get_product_matcher_service,
)
from services.row_projector import ProjectionResult, project_row

__all__ = [
    "CatalogService",
    "get_catalog_service",
    "ColumnMapper",
    "PatternColumnMapper",
    "ClaudeColumnMapper",
    "FallbackColumnMapper",
    "get_column_mapper",
    "ImportStore",
    "get_import_store",
    "ImportService",
    "get_import_service",
    "CatalogIndex",
    "ConflictPolicy",
    "MatchResult",
    "ProductMatcherService",
    "get_product_matcher_service",
    "ProjectionResult",
    "project_row",
]
