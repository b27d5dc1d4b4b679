"""
Import session schemas and lifecycle rules.

A session tracks one uploaded file through parsing, column analysis,
matching, review and execution.
"""

from pydantic import BaseModel, Field
from typing import Any, Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema, TimestampMixin


class ImportSessionStatus(str, Enum):
    """Import session lifecycle states."""
    PENDING = "pending"
    PARSING = "parsing"
    PARSED = "parsed"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    RECONCILING = "reconciling"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ImportFileFormat(str, Enum):
    """Detected upload formats."""
    CSV = "csv"
    XLSX = "xlsx"
    XLS = "xls"
    YML = "yml"
    XML = "xml"
    JSON = "json"


TERMINAL_STATUSES = frozenset({
    ImportSessionStatus.COMPLETED,
    ImportSessionStatus.FAILED,
    ImportSessionStatus.CANCELLED,
})

_S = ImportSessionStatus

# Allowed moves. FAILED is reachable from every non-terminal state and
# CANCELLED from every state before EXECUTING.
SESSION_TRANSITIONS: dict[ImportSessionStatus, frozenset[ImportSessionStatus]] = {
    _S.PENDING: frozenset({_S.PARSING, _S.FAILED, _S.CANCELLED}),
    _S.PARSING: frozenset({_S.PARSED, _S.FAILED, _S.CANCELLED}),
    _S.PARSED: frozenset({_S.ANALYZING, _S.FAILED, _S.CANCELLED}),
    _S.ANALYZING: frozenset({_S.ANALYZED, _S.FAILED, _S.CANCELLED}),
    _S.ANALYZED: frozenset({_S.RECONCILING, _S.EXECUTING, _S.FAILED, _S.CANCELLED}),
    # Back to ANALYZED when the column mapping is replaced during review
    _S.RECONCILING: frozenset({_S.ANALYZED, _S.EXECUTING, _S.FAILED, _S.CANCELLED}),
    _S.EXECUTING: frozenset({_S.COMPLETED, _S.FAILED}),
    _S.COMPLETED: frozenset(),
    _S.FAILED: frozenset(),
    _S.CANCELLED: frozenset(),
}

# Review operations (item edits, approvals, conflict resolution)
REVIEWABLE_STATUSES = frozenset({
    _S.PARSED,
    _S.ANALYZED,
    _S.RECONCILING,
})


def sources_for(target: ImportSessionStatus) -> list[ImportSessionStatus]:
    """All statuses a session may move to target from."""
    return [
        status for status, targets in SESSION_TRANSITIONS.items()
        if target in targets
    ]


# ===================
# ANALYSIS SCHEMAS
# ===================

class ColumnMapping(BaseModel):
    """One source column mapped onto a target schema field."""

    source_column: str = Field(..., min_length=1, description="Column in the uploaded file")
    target_field: str = Field(
        ...,
        min_length=3,
        description="Dot path into the target schema",
        examples=["product.title", "variant.sku"]
    )
    confidence: float = Field(0.0, ge=0, le=1, description="Mapping confidence")
    transformation: Optional[str] = Field(
        None,
        description="Value transform to apply",
        examples=["multiply_by_100"]
    )


class AnalysisResult(BaseModel):
    """Column analysis attached to a session."""

    detected_columns: list[str] = Field(default_factory=list)
    column_mapping: list[ColumnMapping] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    sample_data: list[dict[str, str]] = Field(default_factory=list)
    strategy: Optional[str] = Field(
        None,
        description="Mapper that produced the result: ai or pattern"
    )


class ColumnMappingUpdate(BaseSchema):
    """Replace a session's column mapping."""

    column_mapping: list[ColumnMapping] = Field(..., description="New mapping list")


# ===================
# SESSION SCHEMAS
# ===================

class ImportSession(BaseSchema, TimestampMixin):
    """Import session record."""

    id: str = Field(..., description="Session UUID")
    merchant_id: str
    user_id: str
    original_filename: str
    file_format: Optional[ImportFileFormat] = None
    status: ImportSessionStatus = ImportSessionStatus.PENDING

    total_rows: int = Field(0, ge=0)
    processed_rows: int = Field(0, ge=0)
    success_count: int = Field(0, ge=0)
    error_count: int = Field(0, ge=0)
    new_count: int = Field(0, ge=0)
    update_count: int = Field(0, ge=0)
    skip_count: int = Field(0, ge=0)

    analysis_result: Optional[AnalysisResult] = None
    error_message: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    completed_at: Optional[datetime] = None


class ImportSessionListResponse(BaseSchema):
    """List of sessions with pagination."""

    data: list[ImportSession]
    total: int
    page: int
    page_size: int
    total_pages: int


class UploadResponse(BaseSchema):
    """Returned to the uploader after parsing."""

    session_id: str
    status: ImportSessionStatus
    file_format: Optional[ImportFileFormat] = None
    total_rows: int
    analysis_result: Optional[AnalysisResult] = None


class ExecutionResult(BaseSchema):
    """Final counters of an execution run."""

    session_id: str
    status: ImportSessionStatus
    processed_rows: int
    success_count: int
    error_count: int
    new_count: int
    update_count: int
    skip_count: int
    completed_at: Optional[datetime] = None
