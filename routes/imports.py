"""
Catalog import API routes.

Merchant and user identity come from the X-Merchant-Id / X-User-Id headers
set by the upstream auth layer.
"""

from fastapi import APIRouter, Query, UploadFile, File, Form, Header
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.import_item import (
    ApproveAllRequest,
    ApproveAllResponse,
    ImportItem,
    ImportItemListResponse,
    ImportItemStatus,
    ImportItemUpdate,
    MatchStats,
    ResolveConflictRequest,
)
from models.import_session import (
    ColumnMappingUpdate,
    ExecutionResult,
    ImportSession,
    ImportSessionListResponse,
    ImportSessionStatus,
    UploadResponse,
)
from parsers import ParseOptions
from services.import_service import get_import_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# UPLOAD
# ===================

@router.post("/upload", response_model=UploadResponse, status_code=201)
async def upload_import_file(
    file: UploadFile = File(..., description="Catalog file (CSV, TSV, XLSX, XLS, YML, XML, JSON)"),
    delimiter: Optional[str] = Form(None, max_length=1, description="CSV delimiter (auto-detected)"),
    sheet: Optional[str] = Form(None, description="Excel sheet name or 0-based index"),
    x_merchant_id: str = Header(...),
    x_user_id: str = Header(...),
):
    """
    Upload a catalog file and parse it into import items.

    Raises:
        422: Unsupported, malformed or empty file
    """
    try:
        content = await file.read()

        options = ParseOptions(
            delimiter=delimiter or None,
            sheet=int(sheet) if sheet and sheet.isdigit() else sheet,
        )

        service = get_import_service()
        session = service.upload_and_parse(
            merchant_id=x_merchant_id,
            user_id=x_user_id,
            content=content,
            filename=file.filename or "",
            mime_type=file.content_type,
            options=options,
        )

        return UploadResponse(
            session_id=session.id,
            status=session.status,
            file_format=session.file_format,
            total_rows=session.total_rows,
            analysis_result=session.analysis_result,
        )

    except Exception as e:
        return handle_error(e)


# ===================
# SESSIONS
# ===================

@router.get("", response_model=ImportSessionListResponse)
async def list_import_sessions(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    status: Optional[ImportSessionStatus] = Query(None, description="Filter by status"),
    x_merchant_id: str = Header(...),
):
    """List the merchant's import sessions, newest first."""
    try:
        service = get_import_service()
        sessions, total = service.list_sessions(x_merchant_id, page, page_size, status)

        return ImportSessionListResponse(
            data=sessions,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=(total + page_size - 1) // page_size
        )

    except Exception as e:
        return handle_error(e)


@router.get("/{session_id}", response_model=ImportSession)
async def get_import_session(session_id: str, x_merchant_id: str = Header(...)):
    """
    Get an import session.

    Raises:
        404: Session not found
    """
    try:
        return get_import_service().get_session(session_id, x_merchant_id)
    except Exception as e:
        return handle_error(e)


@router.get("/{session_id}/items", response_model=ImportItemListResponse)
async def get_import_items(
    session_id: str,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=500, description="Items per page"),
    status: Optional[ImportItemStatus] = Query(None, description="Filter by item status"),
    x_merchant_id: str = Header(...),
):
    """Items of a session, ordered by row number."""
    try:
        service = get_import_service()
        items, total = service.get_items(session_id, x_merchant_id, page, page_size, status)

        return ImportItemListResponse(
            data=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=(total + page_size - 1) // page_size
        )

    except Exception as e:
        return handle_error(e)


@router.get("/{session_id}/stats", response_model=MatchStats)
async def get_import_stats(session_id: str, x_merchant_id: str = Header(...)):
    """Item counts per review bucket."""
    try:
        return get_import_service().get_match_stats(session_id, x_merchant_id)
    except Exception as e:
        return handle_error(e)


# ===================
# PIPELINE STEPS
# ===================

@router.post("/{session_id}/analyze", response_model=ImportSession)
async def analyze_import(session_id: str, x_merchant_id: str = Header(...)):
    """
    Infer the column mapping and project all items.

    Raises:
        409: Session is not parsed
    """
    try:
        return get_import_service().analyze(session_id, x_merchant_id)
    except Exception as e:
        return handle_error(e)


@router.post("/{session_id}/match", response_model=ImportSession)
async def match_import(session_id: str, x_merchant_id: str = Header(...)):
    """
    Match items against the merchant's catalog.

    Raises:
        409: Session is not analyzed
    """
    try:
        return get_import_service().match(session_id, x_merchant_id)
    except Exception as e:
        return handle_error(e)


@router.patch("/{session_id}/mapping", response_model=ImportSession)
async def update_import_mapping(
    session_id: str,
    data: ColumnMappingUpdate,
    x_merchant_id: str = Header(...),
):
    """
    Replace the column mapping and re-project all items.

    A reconciling session returns to analyzed; run matching again.
    """
    try:
        return get_import_service().update_column_mapping(
            session_id, x_merchant_id, data.column_mapping
        )
    except Exception as e:
        return handle_error(e)


@router.post("/{session_id}/execute", response_model=ExecutionResult)
async def execute_import(session_id: str, x_merchant_id: str = Header(...)):
    """
    Commit approved items to the catalog.

    Raises:
        409: Session is not analyzed/reconciling
    """
    try:
        return get_import_service().execute(session_id, x_merchant_id)
    except Exception as e:
        return handle_error(e)


@router.post("/{session_id}/cancel", response_model=ImportSession)
async def cancel_import(session_id: str, x_merchant_id: str = Header(...)):
    """
    Cancel an import session.

    Raises:
        409: Session is executing or already finished
    """
    try:
        return get_import_service().cancel(session_id, x_merchant_id)
    except Exception as e:
        return handle_error(e)


# ===================
# REVIEW
# ===================

@router.patch("/{session_id}/items/{item_id}", response_model=ImportItem)
async def update_import_item(
    session_id: str,
    item_id: str,
    data: ImportItemUpdate,
    x_merchant_id: str = Header(...),
):
    """
    Override one item (status, action, manual match, mapped data).

    Only provided fields are applied.
    """
    try:
        return get_import_service().update_item(session_id, x_merchant_id, item_id, data)
    except Exception as e:
        return handle_error(e)


@router.post("/{session_id}/approve-all", response_model=ApproveAllResponse)
async def approve_all_items(
    session_id: str,
    data: Optional[ApproveAllRequest] = None,
    x_merchant_id: str = Header(...),
):
    """
    Approve items in bulk (default: pending, matched, new).

    Items with validation errors are never approved.
    """
    try:
        approved = get_import_service().approve_all(
            session_id, x_merchant_id, data.statuses if data else None
        )
        return ApproveAllResponse(approved=approved)
    except Exception as e:
        return handle_error(e)


@router.post("/{session_id}/items/{item_id}/resolve", response_model=ImportItem)
async def resolve_import_item(
    session_id: str,
    item_id: str,
    data: ResolveConflictRequest,
    x_merchant_id: str = Header(...),
):
    """Resolve a conflict: update the match, insert as new, or skip."""
    try:
        return get_import_service().resolve_conflict(
            session_id, x_merchant_id, item_id, data.action
        )
    except Exception as e:
        return handle_error(e)
