"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ExternalServiceError,
    DatabaseError,

    # File parsers
    UnsupportedFormatError,
    MalformedInputError,

    # Import sessions
    ImportSessionNotFoundError,
    ImportItemNotFoundError,
    InvalidStateTransitionError,

    # Catalog
    CatalogProductNotFoundError,
    CatalogVariantNotFoundError,

    # AI
    AIAnalysisError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",
    "DatabaseError",

    # File parsers
    "UnsupportedFormatError",
    "MalformedInputError",

    # Import sessions
    "ImportSessionNotFoundError",
    "ImportItemNotFoundError",
    "InvalidStateTransitionError",

    # Catalog
    "CatalogProductNotFoundError",
    "CatalogVariantNotFoundError",

    # AI
    "AIAnalysisError",
]
