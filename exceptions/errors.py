"""
Custom exception classes for the application.

Every error carries a code, a human-readable message, the HTTP status the
API layer should answer with, and a details dict.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "IMPORT_SESSION_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource state (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# FILE PARSER ERRORS
# ===================

class UnsupportedFormatError(ValidationError):
    """No registered parser claims the file."""

    SUPPORTED = ["CSV", "TSV", "XLSX", "XLS", "YML", "XML", "JSON"]

    def __init__(self, filename: str, extension: str = ""):
        shown = f".{extension}" if extension else "(no extension)"
        super().__init__(
            code="UNSUPPORTED_FORMAT",
            message=(
                f"Unsupported file format: {shown}. "
                f"Supported formats: {', '.join(self.SUPPORTED)}"
            ),
            details={"filename": filename, "extension": extension, "supported": self.SUPPORTED}
        )


class MalformedInputError(ValidationError):
    """A claiming parser could not decode the file."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="MALFORMED_INPUT",
            message=f"Failed to parse file: {message}",
            details=details
        )


# ===================
# IMPORT SESSION ERRORS
# ===================

class ImportSessionNotFoundError(NotFoundError):
    """Import session not found or not owned by the merchant."""

    def __init__(self, session_id: str):
        super().__init__(
            resource="Import session",
            identifier=session_id,
            code="IMPORT_SESSION_NOT_FOUND"
        )


class ImportItemNotFoundError(NotFoundError):
    """Import item not found in the session."""

    def __init__(self, item_id: str):
        super().__init__(
            resource="Import item",
            identifier=item_id,
            code="IMPORT_ITEM_NOT_FOUND"
        )


class InvalidStateTransitionError(ConflictError):
    """Operation not allowed in the session's current status."""

    def __init__(
        self,
        current_status: Optional[str],
        operation: str,
        allowed: Optional[list[str]] = None,
        reason: Optional[str] = None
    ):
        shown = current_status or "unknown"
        super().__init__(
            code="INVALID_STATE_TRANSITION",
            message=reason or f"Cannot {operation} import session in status: {shown}",
            details={
                "current_status": current_status,
                "operation": operation,
                "allowed_statuses": allowed or [],
            }
        )


# ===================
# CATALOG ERRORS
# ===================

class CatalogProductNotFoundError(NotFoundError):
    """Catalog product referenced by an import item does not exist."""

    def __init__(self, product_id: str):
        super().__init__(
            resource="Product",
            identifier=product_id,
            code="PRODUCT_NOT_FOUND"
        )


class CatalogVariantNotFoundError(NotFoundError):
    """Catalog variant referenced by an import item does not exist."""

    def __init__(self, variant_id: str):
        super().__init__(
            resource="Product variant",
            identifier=variant_id,
            code="PRODUCT_VARIANT_NOT_FOUND"
        )


# ===================
# AI ERRORS
# ===================

class AIAnalysisError(ExternalServiceError):
    """Claude column analysis failed or returned an unusable payload."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            service="anthropic",
            message=message,
            details=details
        )
