"""
Import service.

Drives an import session through its lifecycle:

    upload_and_parse -> analyze -> match -> review -> execute

Every status change is a compare-and-set in ImportStore.transition, so two
requests can never run the same step of one session concurrently.
"""

from datetime import datetime, timezone
from typing import Any, Optional
import structlog

from config import settings
from config.column_patterns import TARGET_FIELDS
from exceptions import (
    AppError,
    InvalidStateTransitionError,
    ValidationError,
)
from models.import_item import (
    DEFAULT_APPROVE_STATUSES,
    ImportItem,
    ImportItemAction,
    ImportItemStatus,
    ImportItemUpdate,
    MatchMethod,
    MatchStats,
)
from models.import_session import (
    AnalysisResult,
    ColumnMapping,
    ExecutionResult,
    ImportSession,
    ImportSessionStatus,
    REVIEWABLE_STATUSES,
    TERMINAL_STATUSES,
)
from parsers import FileParserRegistry, ParseOptions, get_parser_registry
from services.catalog_service import CatalogService, get_catalog_service
from services.column_mapper_service import ColumnMapper, get_column_mapper
from services.import_store import ImportStore, get_import_store
from services.product_matcher_service import (
    CatalogIndex,
    ProductMatcherService,
    compute_match_stats,
    get_product_matcher_service,
)
from services.row_projector import dump_mapped_data, project_row, validate_mapped_data

logger = structlog.get_logger(__name__)

EMPTY_FILE_MESSAGE = "File contains no data rows"

# Item columns reset when the item stops pointing at a catalog product
CLEARED_MATCH = {
    "matched_product_id": None,
    "matched_variant_id": None,
    "matched_by": None,
    "match_confidence": None,
    "changes": None,
}

_S = ImportSessionStatus


def _with_session_id(error: Exception, session_id: str) -> AppError:
    """Attach the session id to an error re-raised after failing the session."""
    if isinstance(error, AppError):
        error.details = {**error.details, "session_id": session_id}
        return error
    return AppError(
        code="IMPORT_FAILED",
        message=str(error) or type(error).__name__,
        status_code=500,
        details={"session_id": session_id, "error_type": type(error).__name__},
    )


class ImportService:
    """
    Import session orchestration.

    Collaborators are injectable for tests; defaults are the shared
    singletons.
    """

    def __init__(
        self,
        store: Optional[ImportStore] = None,
        catalog: Optional[CatalogService] = None,
        parsers: Optional[FileParserRegistry] = None,
        column_mapper: Optional[ColumnMapper] = None,
        matcher: Optional[ProductMatcherService] = None,
    ):
        self.store = store or get_import_store()
        self.catalog = catalog or get_catalog_service()
        self.parsers = parsers or get_parser_registry()
        self.column_mapper = column_mapper or get_column_mapper()
        self.matcher = matcher or get_product_matcher_service()

    # ===================
    # UPLOAD
    # ===================

    def upload_and_parse(
        self,
        merchant_id: str,
        user_id: str,
        content: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        options: Optional[ParseOptions] = None,
    ) -> ImportSession:
        """
        Create a session for an uploaded file and parse it into items.

        Args:
            merchant_id: Owner of the import
            user_id: Uploading user
            content: Raw file bytes
            filename: Original filename
            mime_type: Upload MIME type
            options: Parser overrides

        Returns:
            Session in status parsed

        Raises:
            ValidationError: File larger than MAX_UPLOAD_MB (no session created)
            UnsupportedFormatError / MalformedInputError: Session is failed,
                error details carry session_id
        """
        if len(content) > settings.max_upload_bytes:
            raise ValidationError(
                f"File exceeds maximum upload size of {settings.max_upload_mb} MB",
                code="FILE_TOO_LARGE",
                details={"filename": filename, "size_bytes": len(content)}
            )

        logger.info(
            "import_upload_started",
            merchant_id=merchant_id,
            filename=filename,
            size_bytes=len(content)
        )

        file_format = self.parsers.detect_format(filename, mime_type)
        session = self.store.create_session(merchant_id, user_id, filename, file_format)
        session = self.store.transition(
            session.id, merchant_id, _S.PARSING, operation="parse", sources=[_S.PENDING]
        )

        try:
            result = self.parsers.parse(content, filename, options, mime_type)

            if not result.has_data:
                raise ValidationError(
                    EMPTY_FILE_MESSAGE,
                    code="EMPTY_FILE",
                    details={"filename": filename, "columns": result.columns}
                )

            self.store.insert_items(session.id, result.rows)

            preview = AnalysisResult(
                detected_columns=result.columns,
                sample_data=result.rows[:settings.preview_sample_rows],
            )
            session = self.store.transition(
                session.id,
                merchant_id,
                _S.PARSED,
                operation="parse",
                sources=[_S.PARSING],
                updates={
                    "total_rows": result.row_count,
                    "analysis_result": preview.model_dump(mode="json"),
                    "metadata": {
                        **(session.metadata or {}),
                        "parse": result.metadata,
                        "file_size": len(content),
                        "mime_type": mime_type,
                    },
                },
            )

        except Exception as e:
            logger.error(
                "import_upload_failed",
                session_id=session.id,
                filename=filename,
                error=str(e),
                error_type=type(e).__name__
            )
            self.store.fail_session(session.id, merchant_id, getattr(e, "message", str(e)))
            raise _with_session_id(e, session.id)

        logger.info(
            "import_upload_completed",
            session_id=session.id,
            total_rows=session.total_rows,
            file_format=file_format.value if file_format else None
        )
        return session

    # ===================
    # ANALYSIS
    # ===================

    def analyze(self, session_id: str, merchant_id: str) -> ImportSession:
        """
        Infer the column mapping and project every item.

        Requires status parsed. On failure the session is failed and the
        error re-raised.
        """
        session = self.store.transition(
            session_id, merchant_id, _S.ANALYZING, operation="analyze", sources=[_S.PARSED]
        )

        try:
            sample_items, _ = self.store.get_items(
                session_id, page=1, page_size=settings.analysis_sample_rows
            )
            if not sample_items:
                raise ValidationError("No items to analyze", code="NO_ITEMS")

            sample_rows = [item.raw_data for item in sample_items]
            columns = (
                session.analysis_result.detected_columns
                if session.analysis_result and session.analysis_result.detected_columns
                else list(sample_rows[0].keys())
            )

            logger.info(
                "import_analysis_started",
                session_id=session_id,
                columns=len(columns),
                sample_rows=len(sample_rows)
            )

            analysis = self.column_mapper.analyze(columns, sample_rows)

            self.store.update_session(
                session_id,
                merchant_id,
                {"analysis_result": analysis.model_dump(mode="json")},
                expected_status=_S.ANALYZING,
                operation="analyze",
            )

            projected = self._project_items(session_id, analysis.column_mapping)

            session = self.store.transition(
                session_id, merchant_id, _S.ANALYZED, operation="analyze", sources=[_S.ANALYZING]
            )

        except Exception as e:
            logger.error("import_analysis_failed", session_id=session_id, error=str(e))
            self.store.fail_session(session_id, merchant_id, getattr(e, "message", str(e)))
            raise _with_session_id(e, session_id)

        logger.info(
            "import_analysis_completed",
            session_id=session_id,
            strategy=analysis.strategy,
            mapped_columns=len(analysis.column_mapping),
            items=projected
        )
        return session

    def _project_items(self, session_id: str, mappings: list[ColumnMapping]) -> int:
        """Re-project all items with mappings. Match results are cleared."""
        count = 0
        for batch in self.store.iter_item_batches(session_id):
            rows = []
            for item in batch:
                projection = project_row(item.raw_data, mappings)
                rows.append({
                    **self._item_row(item),
                    **projection.to_item_update(),
                })
            count += self.store.save_items(rows)

        logger.info("import_items_projected", session_id=session_id, count=count)
        return count

    @staticmethod
    def _item_row(item: ImportItem) -> dict[str, Any]:
        return {
            "id": item.id,
            "session_id": item.session_id,
            "row_number": item.row_number,
            "raw_data": item.raw_data,
        }

    def update_column_mapping(
        self,
        session_id: str,
        merchant_id: str,
        mappings: list[ColumnMapping],
    ) -> ImportSession:
        """
        Replace the column mapping and re-project every item.

        Allowed in analyzed or reconciling; a reconciling session goes back
        to analyzed so matching runs again on the new payloads.

        Raises:
            ValidationError: A mapping targets an unknown field
            InvalidStateTransitionError: Session not analyzed/reconciling
        """
        unknown = sorted({m.target_field for m in mappings if m.target_field not in TARGET_FIELDS})
        if unknown:
            raise ValidationError(
                f"Unknown target fields: {', '.join(unknown)}",
                code="UNKNOWN_TARGET_FIELD",
                details={"target_fields": unknown}
            )

        session = self.store.get_session(session_id, merchant_id)
        if session.status not in (_S.ANALYZED, _S.RECONCILING):
            raise InvalidStateTransitionError(
                session.status.value,
                "update mapping for",
                allowed=[_S.ANALYZED.value, _S.RECONCILING.value]
            )

        analysis = session.analysis_result or AnalysisResult()
        analysis = analysis.model_copy(update={"column_mapping": mappings})
        metadata = {k: v for k, v in (session.metadata or {}).items() if k != "match_stats"}
        updates = {
            "analysis_result": analysis.model_dump(mode="json"),
            "metadata": metadata,
        }

        if session.status == _S.RECONCILING:
            session = self.store.transition(
                session_id,
                merchant_id,
                _S.ANALYZED,
                operation="update mapping for",
                sources=[_S.RECONCILING],
                updates=updates,
            )
        else:
            session = self.store.update_session(
                session_id,
                merchant_id,
                updates,
                expected_status=_S.ANALYZED,
                operation="update mapping for",
            )

        self._project_items(session_id, mappings)

        logger.info(
            "import_mapping_updated",
            session_id=session_id,
            mappings=len(mappings)
        )
        return session

    # ===================
    # MATCHING
    # ===================

    def match(self, session_id: str, merchant_id: str) -> ImportSession:
        """
        Match every eligible item against the merchant's catalog.

        Requires analyzed; the session stays in reconciling for review.
        Items with validation errors are left untouched.
        """
        session = self.store.transition(
            session_id, merchant_id, _S.RECONCILING, operation="match", sources=[_S.ANALYZED]
        )

        try:
            index = CatalogIndex.build(self.catalog.get_products(merchant_id))

            matched = 0
            for batch in self.store.iter_item_batches(session_id, eligible_only=True):
                rows = []
                for item in batch:
                    result = self.matcher.match(item.mapped_data, index)
                    if result.matched:
                        matched += 1
                        fields = {
                            "status": result.status.value,
                            "action": ImportItemAction.UPDATE.value,
                            "matched_product_id": result.matched_product_id,
                            "matched_variant_id": result.matched_variant_id,
                            "matched_by": result.matched_by.value,
                            "match_confidence": result.match_confidence,
                            "changes": [c.model_dump(mode="json") for c in result.changes],
                        }
                    else:
                        fields = {
                            **CLEARED_MATCH,
                            "status": ImportItemStatus.NEW.value,
                            "action": ImportItemAction.INSERT.value,
                        }
                    rows.append({**self._item_row(item), **fields})
                self.store.save_items(rows)

            stats = compute_match_stats(self.store.get_item_statuses(session_id))
            session = self.store.update_session(
                session_id,
                merchant_id,
                {"metadata": {**(session.metadata or {}), "match_stats": stats.model_dump()}},
                expected_status=_S.RECONCILING,
                operation="match",
            )

        except Exception as e:
            logger.error("import_matching_failed", session_id=session_id, error=str(e))
            self.store.fail_session(session_id, merchant_id, getattr(e, "message", str(e)))
            raise _with_session_id(e, session_id)

        logger.info(
            "import_matching_completed",
            session_id=session_id,
            catalog_products=index.product_count,
            matched=stats.matched,
            new=stats.new,
            conflicts=stats.conflicts
        )
        return session

    # ===================
    # READS
    # ===================

    def get_session(self, session_id: str, merchant_id: str) -> ImportSession:
        return self.store.get_session(session_id, merchant_id)

    def list_sessions(
        self,
        merchant_id: str,
        page: int = 1,
        page_size: int = 20,
        status: Optional[ImportSessionStatus] = None,
    ) -> tuple[list[ImportSession], int]:
        return self.store.list_sessions(merchant_id, page, page_size, status)

    def get_items(
        self,
        session_id: str,
        merchant_id: str,
        page: int = 1,
        page_size: int = 50,
        status: Optional[ImportItemStatus] = None,
    ) -> tuple[list[ImportItem], int]:
        """Items of a merchant's session, ordered by row number."""
        self.store.get_session(session_id, merchant_id)
        return self.store.get_items(session_id, page, page_size, status)

    def get_match_stats(self, session_id: str, merchant_id: str) -> MatchStats:
        self.store.get_session(session_id, merchant_id)
        return compute_match_stats(self.store.get_item_statuses(session_id))

    # ===================
    # REVIEW
    # ===================

    def _get_reviewable_session(
        self,
        session_id: str,
        merchant_id: str,
        operation: str,
    ) -> ImportSession:
        session = self.store.get_session(session_id, merchant_id)
        if session.status not in REVIEWABLE_STATUSES:
            raise InvalidStateTransitionError(
                session.status.value,
                operation,
                allowed=sorted(s.value for s in REVIEWABLE_STATUSES)
            )
        return session

    def update_item(
        self,
        session_id: str,
        merchant_id: str,
        item_id: str,
        update: ImportItemUpdate,
    ) -> ImportItem:
        """
        Manual override of one item.

        - matched_product_id: manual match (matched_by=manual, confidence 1.0,
          action update)
        - action=insert: clears the match
        - action=update: needs a matched product
        - mapped_data: replaces the payload and re-validates it

        Raises:
            ValidationError: Inconsistent override
            CatalogProductNotFoundError / CatalogVariantNotFoundError:
                Manual match points at a missing catalog entry
        """
        self._get_reviewable_session(session_id, merchant_id, "update items of")
        item = self.store.get_item(session_id, item_id)

        if update.status in (ImportItemStatus.IMPORTED, ImportItemStatus.ERROR):
            raise ValidationError(
                f"Status '{update.status.value}' is set by execution only",
                code="INVALID_ITEM_STATUS"
            )

        fields: dict[str, Any] = {}
        validation_errors = item.validation_errors

        if update.mapped_data is not None:
            validation_errors = validate_mapped_data(update.mapped_data) or None
            fields["mapped_data"] = dump_mapped_data(update.mapped_data)
            fields["validation_errors"] = validation_errors
            if validation_errors:
                fields["status"] = ImportItemStatus.PENDING.value
                fields["action"] = ImportItemAction.SKIP.value
            elif item.has_validation_errors:
                fields["status"] = ImportItemStatus.NEW.value
                fields["action"] = ImportItemAction.INSERT.value

        matched_product_id = item.matched_product_id
        if update.matched_product_id:
            product = self.catalog.get_product(update.matched_product_id, merchant_id)
            variant_id = update.matched_variant_id
            if variant_id:
                self.catalog.get_variant(variant_id, product.id)
            elif product.first_variant:
                variant_id = product.first_variant.id

            mapped_data = update.mapped_data or item.mapped_data
            variant = next((v for v in product.variants if v.id == variant_id), None)
            changes = (
                self.matcher.detect_changes(mapped_data, product, variant)
                if mapped_data else []
            )

            matched_product_id = product.id
            fields.update({
                "matched_product_id": product.id,
                "matched_variant_id": variant_id,
                "matched_by": MatchMethod.MANUAL.value,
                "match_confidence": 1.0,
                "action": ImportItemAction.UPDATE.value,
                "changes": [c.model_dump(mode="json") for c in changes],
            })
            if not validation_errors:
                fields["status"] = ImportItemStatus.MATCHED.value
        elif update.matched_variant_id:
            if not matched_product_id:
                raise ValidationError(
                    "matched_variant_id requires a matched product",
                    code="MATCH_REQUIRED"
                )
            self.catalog.get_variant(update.matched_variant_id, matched_product_id)
            fields["matched_variant_id"] = update.matched_variant_id

        if update.action == ImportItemAction.INSERT:
            fields.update(CLEARED_MATCH)
            fields["action"] = ImportItemAction.INSERT.value
        elif update.action == ImportItemAction.UPDATE:
            if not matched_product_id:
                raise ValidationError(
                    "Action 'update' requires a matched product",
                    code="MATCH_REQUIRED"
                )
            fields["action"] = ImportItemAction.UPDATE.value
        elif update.action == ImportItemAction.SKIP:
            fields["action"] = ImportItemAction.SKIP.value

        if update.status is not None:
            if update.status == ImportItemStatus.APPROVED and validation_errors:
                raise ValidationError(
                    "Cannot approve an item with validation errors",
                    code="ITEM_HAS_VALIDATION_ERRORS",
                    details={"validation_errors": validation_errors}
                )
            fields["status"] = update.status.value

        if not fields:
            return item

        updated = self.store.update_item(session_id, item_id, fields)
        logger.info(
            "import_item_updated",
            session_id=session_id,
            item_id=item_id,
            fields=sorted(fields)
        )
        return updated

    def approve_all(
        self,
        session_id: str,
        merchant_id: str,
        statuses: Optional[list[ImportItemStatus]] = None,
    ) -> int:
        """
        Approve items in bulk.

        Items with validation errors are never approved.

        Returns:
            Number of items approved
        """
        self._get_reviewable_session(session_id, merchant_id, "approve items of")

        statuses = list(statuses) if statuses else list(DEFAULT_APPROVE_STATUSES)
        approved = self.store.approve_items(session_id, statuses)

        logger.info(
            "import_items_approved",
            session_id=session_id,
            statuses=[s.value for s in statuses],
            approved=approved
        )
        return approved

    def resolve_conflict(
        self,
        session_id: str,
        merchant_id: str,
        item_id: str,
        action: ImportItemAction,
    ) -> ImportItem:
        """
        Record the reviewer's decision for an item.

        update -> approved (needs a matched product), skip -> rejected,
        insert -> approved as a new product (match cleared).
        """
        self._get_reviewable_session(session_id, merchant_id, "resolve items of")
        item = self.store.get_item(session_id, item_id)

        if action == ImportItemAction.SKIP:
            fields = {
                "status": ImportItemStatus.REJECTED.value,
                "action": ImportItemAction.SKIP.value,
            }
        else:
            if item.has_validation_errors:
                raise ValidationError(
                    "Cannot approve an item with validation errors",
                    code="ITEM_HAS_VALIDATION_ERRORS",
                    details={"validation_errors": item.validation_errors}
                )
            if action == ImportItemAction.UPDATE:
                if not item.matched_product_id:
                    raise ValidationError(
                        "Action 'update' requires a matched product",
                        code="MATCH_REQUIRED"
                    )
                fields = {
                    "status": ImportItemStatus.APPROVED.value,
                    "action": ImportItemAction.UPDATE.value,
                }
            else:
                fields = {
                    **CLEARED_MATCH,
                    "status": ImportItemStatus.APPROVED.value,
                    "action": ImportItemAction.INSERT.value,
                }

        updated = self.store.update_item(session_id, item_id, fields)
        logger.info(
            "import_item_resolved",
            session_id=session_id,
            item_id=item_id,
            action=action.value
        )
        return updated

    # ===================
    # EXECUTION
    # ===================

    def execute(self, session_id: str, merchant_id: str) -> ExecutionResult:
        """
        Commit approved items to the catalog.

        Each item is its own unit: catalog write first, then the item is
        marked imported. A failing item is marked error and the run goes on.
        Errors outside the per-item loop fail the session.
        """
        self.store.transition(
            session_id,
            merchant_id,
            _S.EXECUTING,
            operation="execute",
            sources=[_S.ANALYZED, _S.RECONCILING],
        )

        counts = {
            "processed_rows": 0,
            "success_count": 0,
            "error_count": 0,
            "new_count": 0,
            "update_count": 0,
            "skip_count": 0,
        }

        try:
            for batch in self.store.iter_item_batches(
                session_id, statuses=[ImportItemStatus.APPROVED]
            ):
                for item in batch:
                    self._execute_item(session_id, merchant_id, item, counts)

                self.store.update_session(
                    session_id,
                    merchant_id,
                    dict(counts),
                    expected_status=_S.EXECUTING,
                    operation="execute",
                )

            session = self.store.transition(
                session_id,
                merchant_id,
                _S.COMPLETED,
                operation="complete",
                sources=[_S.EXECUTING],
                updates={
                    **counts,
                    "completed_at": datetime.now(timezone.utc).isoformat(),
                },
            )

        except Exception as e:
            logger.error(
                "import_execution_failed",
                session_id=session_id,
                processed=counts["processed_rows"],
                error=str(e)
            )
            self.store.fail_session(session_id, merchant_id, getattr(e, "message", str(e)))
            raise _with_session_id(e, session_id)

        logger.info("import_execution_completed", session_id=session_id, **counts)

        return ExecutionResult(
            session_id=session.id,
            status=session.status,
            processed_rows=session.processed_rows,
            success_count=session.success_count,
            error_count=session.error_count,
            new_count=session.new_count,
            update_count=session.update_count,
            skip_count=session.skip_count,
            completed_at=session.completed_at,
        )

    def _execute_item(
        self,
        session_id: str,
        merchant_id: str,
        item: ImportItem,
        counts: dict[str, int],
    ) -> None:
        """Apply one approved item. Item-level failures are recorded on the item."""
        counts["processed_rows"] += 1

        try:
            if item.action == ImportItemAction.SKIP:
                fields = {"status": ImportItemStatus.IMPORTED.value, "error_message": None}
                outcome = "skip_count"

            elif item.action == ImportItemAction.INSERT:
                if item.mapped_data is None:
                    raise ValidationError("Mapped data is required")
                product_id, variant_id = self.catalog.create_from_mapped(
                    merchant_id, item.mapped_data
                )
                fields = {
                    "status": ImportItemStatus.IMPORTED.value,
                    "created_product_id": product_id,
                    "created_variant_id": variant_id,
                    "error_message": None,
                }
                outcome = "new_count"

            else:
                if item.mapped_data is None or not item.matched_product_id:
                    raise ValidationError("Mapped data and matched product ID are required")
                self.catalog.update_from_mapped(
                    merchant_id,
                    item.matched_product_id,
                    item.matched_variant_id,
                    item.mapped_data,
                )
                fields = {"status": ImportItemStatus.IMPORTED.value, "error_message": None}
                outcome = "update_count"

        except Exception as e:
            logger.warning(
                "import_item_failed",
                session_id=session_id,
                item_id=item.id,
                row_number=item.row_number,
                action=item.action.value,
                error=getattr(e, "message", str(e))
            )
            self.store.update_item(session_id, item.id, {
                "status": ImportItemStatus.ERROR.value,
                "error_message": getattr(e, "message", str(e)),
            })
            counts["error_count"] += 1
            return

        self.store.update_item(session_id, item.id, fields)
        counts[outcome] += 1
        if outcome != "skip_count":
            counts["success_count"] += 1

    # ===================
    # CANCEL
    # ===================

    def cancel(self, session_id: str, merchant_id: str) -> ImportSession:
        """
        Cancel a session.

        Raises:
            InvalidStateTransitionError: Session is executing or already
                completed/failed/cancelled
        """
        session = self.store.get_session(session_id, merchant_id)
        if session.status == _S.EXECUTING or session.status in TERMINAL_STATUSES:
            raise InvalidStateTransitionError(session.status.value, "cancel")

        return self.store.transition(
            session_id, merchant_id, _S.CANCELLED, operation="cancel"
        )


# Singleton instance
_import_service: Optional[ImportService] = None


def get_import_service() -> ImportService:
    """Get or create ImportService instance."""
    global _import_service
    if _import_service is None:
        _import_service = ImportService()
    return _import_service
