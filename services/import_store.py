"""
Persistence for import sessions and items.

Tables: import_sessions, import_items

Session status changes go through transition(), a compare-and-set
(UPDATE ... WHERE id = :id AND status IN (:sources)). An update that
touches no row means another request moved the session first.
"""

from datetime import datetime, timezone
from typing import Any, Iterator, Optional
import structlog

from config import get_supabase_client, settings
from exceptions import (
    AppError,
    DatabaseError,
    ImportItemNotFoundError,
    ImportSessionNotFoundError,
    InvalidStateTransitionError,
)
from models.import_item import ImportItem, ImportItemAction, ImportItemStatus
from models.import_session import (
    ImportFileFormat,
    ImportSession,
    ImportSessionStatus,
    sources_for,
)

logger = structlog.get_logger(__name__)

# Page size for whole-session reads (statuses, re-projection)
READ_PAGE_SIZE = 1000


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ImportStore:
    """Supabase access for import_sessions / import_items."""

    def __init__(self):
        self.db = get_supabase_client()
        self.sessions_table = "import_sessions"
        self.items_table = "import_items"

    # ===================
    # SESSIONS
    # ===================

    def create_session(
        self,
        merchant_id: str,
        user_id: str,
        original_filename: str,
        file_format: Optional[ImportFileFormat] = None,
        metadata: Optional[dict] = None,
    ) -> ImportSession:
        """Insert a new session in status pending."""
        data = {
            "merchant_id": merchant_id,
            "user_id": user_id,
            "original_filename": original_filename,
            "file_format": file_format.value if file_format else None,
            "status": ImportSessionStatus.PENDING.value,
            "total_rows": 0,
            "processed_rows": 0,
            "success_count": 0,
            "error_count": 0,
            "new_count": 0,
            "update_count": 0,
            "skip_count": 0,
            "metadata": metadata or {},
        }

        try:
            result = self.db.table(self.sessions_table).insert(data).execute()
        except Exception as e:
            logger.error("create_import_session_failed", merchant_id=merchant_id, error=str(e))
            raise DatabaseError("insert", str(e))

        if not result.data:
            raise DatabaseError("insert", "No data returned from insert")

        session = ImportSession(**result.data[0])
        logger.info(
            "import_session_created",
            session_id=session.id,
            merchant_id=merchant_id,
            filename=original_filename,
            file_format=data["file_format"]
        )
        return session

    def get_session(self, session_id: str, merchant_id: str) -> ImportSession:
        """
        Get a merchant's session.

        Raises:
            ImportSessionNotFoundError: Missing or owned by another merchant
        """
        try:
            result = (
                self.db.table(self.sessions_table)
                .select("*")
                .eq("id", session_id)
                .eq("merchant_id", merchant_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_import_session_failed", session_id=session_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ImportSessionNotFoundError(session_id)

        return ImportSession(**result.data[0])

    def list_sessions(
        self,
        merchant_id: str,
        page: int = 1,
        page_size: int = 20,
        status: Optional[ImportSessionStatus] = None,
    ) -> tuple[list[ImportSession], int]:
        """Merchant's sessions, newest first."""
        try:
            query = (
                self.db.table(self.sessions_table)
                .select("*", count="exact")
                .eq("merchant_id", merchant_id)
            )
            if status:
                query = query.eq("status", status.value)

            offset = (page - 1) * page_size
            result = (
                query.order("created_at", desc=True)
                .range(offset, offset + page_size - 1)
                .execute()
            )
        except Exception as e:
            logger.error("list_import_sessions_failed", merchant_id=merchant_id, error=str(e))
            raise DatabaseError("select", str(e))

        sessions = [ImportSession(**row) for row in result.data or []]
        return sessions, result.count or 0

    def transition(
        self,
        session_id: str,
        merchant_id: str,
        target: ImportSessionStatus,
        operation: str,
        sources: Optional[list[ImportSessionStatus]] = None,
        updates: Optional[dict[str, Any]] = None,
    ) -> ImportSession:
        """
        Move a session to target if its status is one of sources.

        Args:
            session_id: Session UUID
            merchant_id: Owner (sessions of other merchants are never touched)
            target: New status
            operation: Name used in the error message ("analyze", "execute", ...)
            sources: Allowed current statuses (default: all legal predecessors)
            updates: Extra columns written in the same update

        Returns:
            Updated session

        Raises:
            ImportSessionNotFoundError: Session doesn't exist
            InvalidStateTransitionError: Status is not one of sources
        """
        sources = sources if sources is not None else sources_for(target)
        data = {
            **(updates or {}),
            "status": target.value,
            "updated_at": utc_now(),
        }

        try:
            result = (
                self.db.table(self.sessions_table)
                .update(data)
                .eq("id", session_id)
                .eq("merchant_id", merchant_id)
                .in_("status", [s.value for s in sources])
                .execute()
            )
        except Exception as e:
            logger.error(
                "import_session_transition_failed",
                session_id=session_id,
                target=target.value,
                error=str(e)
            )
            raise DatabaseError("update", str(e))

        if not result.data:
            current = self.get_session(session_id, merchant_id)
            logger.warning(
                "import_session_transition_rejected",
                session_id=session_id,
                operation=operation,
                current_status=current.status.value,
                target=target.value
            )
            raise InvalidStateTransitionError(
                current.status.value,
                operation,
                allowed=[s.value for s in sources]
            )

        session = ImportSession(**result.data[0])
        logger.info(
            "import_session_transitioned",
            session_id=session_id,
            operation=operation,
            status=target.value
        )
        return session

    def update_session(
        self,
        session_id: str,
        merchant_id: str,
        updates: dict[str, Any],
        expected_status: Optional[ImportSessionStatus] = None,
        operation: str = "update",
    ) -> ImportSession:
        """
        Write session columns without changing status.

        With expected_status the write only happens while the session is
        still in that status.
        """
        data = {**updates, "updated_at": utc_now()}

        try:
            query = (
                self.db.table(self.sessions_table)
                .update(data)
                .eq("id", session_id)
                .eq("merchant_id", merchant_id)
            )
            if expected_status:
                query = query.eq("status", expected_status.value)
            result = query.execute()
        except Exception as e:
            logger.error("update_import_session_failed", session_id=session_id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            current = self.get_session(session_id, merchant_id)
            raise InvalidStateTransitionError(
                current.status.value,
                operation,
                allowed=[expected_status.value] if expected_status else None
            )

        return ImportSession(**result.data[0])

    def fail_session(self, session_id: str, merchant_id: str, message: str) -> None:
        """
        Mark a session failed after an unrecoverable error.

        Sessions already in a terminal status are left alone.
        """
        try:
            self.transition(
                session_id,
                merchant_id,
                ImportSessionStatus.FAILED,
                operation="fail",
                updates={"error_message": message[:2000]},
            )
        except InvalidStateTransitionError:
            logger.warning("import_session_already_terminal", session_id=session_id)
        except AppError as e:
            logger.error("import_session_fail_not_recorded", session_id=session_id, error=e.message)

    # ===================
    # ITEMS
    # ===================

    def insert_items(
        self,
        session_id: str,
        rows: list[dict[str, str]],
        batch_size: Optional[int] = None,
    ) -> int:
        """
        Create one pending item per row, numbered from 1.

        Returns:
            Number of items created
        """
        batch_size = batch_size or settings.import_batch_size
        created = 0

        for start in range(0, len(rows), batch_size):
            batch = [
                {
                    "session_id": session_id,
                    "row_number": start + offset + 1,
                    "raw_data": row,
                    "status": ImportItemStatus.PENDING.value,
                    "action": ImportItemAction.INSERT.value,
                }
                for offset, row in enumerate(rows[start:start + batch_size])
            ]

            try:
                result = self.db.table(self.items_table).insert(batch).execute()
            except Exception as e:
                logger.error(
                    "insert_import_items_failed",
                    session_id=session_id,
                    batch_start=start,
                    error=str(e)
                )
                raise DatabaseError("insert", str(e))

            created += len(result.data or [])

        logger.info("import_items_created", session_id=session_id, count=created)
        return created

    def get_items(
        self,
        session_id: str,
        page: int = 1,
        page_size: int = 50,
        status: Optional[ImportItemStatus] = None,
    ) -> tuple[list[ImportItem], int]:
        """Page of items ordered by row number."""
        try:
            query = (
                self.db.table(self.items_table)
                .select("*", count="exact")
                .eq("session_id", session_id)
            )
            if status:
                query = query.eq("status", status.value)

            offset = (page - 1) * page_size
            result = (
                query.order("row_number")
                .range(offset, offset + page_size - 1)
                .execute()
            )
        except Exception as e:
            logger.error("get_import_items_failed", session_id=session_id, error=str(e))
            raise DatabaseError("select", str(e))

        items = [ImportItem(**row) for row in result.data or []]
        return items, result.count or 0

    def iter_item_batches(
        self,
        session_id: str,
        statuses: Optional[list[ImportItemStatus]] = None,
        batch_size: Optional[int] = None,
        eligible_only: bool = False,
    ) -> Iterator[list[ImportItem]]:
        """
        Yield items in row order, one batch at a time.

        Pages by row_number rather than offset so items updated while
        iterating (and leaving the status filter) are not skipped.
        """
        batch_size = batch_size or settings.import_batch_size
        last_row = 0

        while True:
            try:
                query = (
                    self.db.table(self.items_table)
                    .select("*")
                    .eq("session_id", session_id)
                    .gt("row_number", last_row)
                )
                if statuses:
                    query = query.in_("status", [s.value for s in statuses])
                if eligible_only:
                    query = query.is_("validation_errors", "null")
                result = query.order("row_number").limit(batch_size).execute()
            except Exception as e:
                logger.error("iterate_import_items_failed", session_id=session_id, error=str(e))
                raise DatabaseError("select", str(e))

            rows = result.data or []
            if not rows:
                return

            yield [ImportItem(**row) for row in rows]

            if len(rows) < batch_size:
                return
            last_row = rows[-1]["row_number"]

    def get_item(self, session_id: str, item_id: str) -> ImportItem:
        """
        Raises:
            ImportItemNotFoundError: Item is not part of the session
        """
        try:
            result = (
                self.db.table(self.items_table)
                .select("*")
                .eq("id", item_id)
                .eq("session_id", session_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_import_item_failed", item_id=item_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ImportItemNotFoundError(item_id)

        return ImportItem(**result.data[0])

    def update_item(self, session_id: str, item_id: str, updates: dict[str, Any]) -> ImportItem:
        data = {**updates, "updated_at": utc_now()}
        try:
            result = (
                self.db.table(self.items_table)
                .update(data)
                .eq("id", item_id)
                .eq("session_id", session_id)
                .execute()
            )
        except Exception as e:
            logger.error("update_import_item_failed", item_id=item_id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            raise ImportItemNotFoundError(item_id)

        return ImportItem(**result.data[0])

    def save_items(self, items: list[dict[str, Any]]) -> int:
        """
        Write a batch of full item rows (upsert on id).

        Each dict must carry id, session_id, row_number and raw_data.
        """
        if not items:
            return 0

        now = utc_now()
        try:
            result = (
                self.db.table(self.items_table)
                .upsert([{**item, "updated_at": now} for item in items], on_conflict="id")
                .execute()
            )
        except Exception as e:
            logger.error("save_import_items_failed", count=len(items), error=str(e))
            raise DatabaseError("upsert", str(e))

        return len(result.data or [])

    def approve_items(
        self,
        session_id: str,
        statuses: list[ImportItemStatus],
    ) -> int:
        """
        Approve every item in one of statuses that has no validation errors.

        Returns:
            Number of items approved
        """
        try:
            result = (
                self.db.table(self.items_table)
                .update({"status": ImportItemStatus.APPROVED.value, "updated_at": utc_now()})
                .eq("session_id", session_id)
                .in_("status", [s.value for s in statuses])
                .is_("validation_errors", "null")
                .execute()
            )
        except Exception as e:
            logger.error("approve_import_items_failed", session_id=session_id, error=str(e))
            raise DatabaseError("update", str(e))

        return len(result.data or [])

    def get_item_statuses(self, session_id: str) -> list[str]:
        """Status of every item of a session."""
        statuses: list[str] = []
        offset = 0

        try:
            while True:
                result = (
                    self.db.table(self.items_table)
                    .select("status")
                    .eq("session_id", session_id)
                    .order("row_number")
                    .range(offset, offset + READ_PAGE_SIZE - 1)
                    .execute()
                )
                rows = result.data or []
                statuses.extend(row["status"] for row in rows)
                if len(rows) < READ_PAGE_SIZE:
                    return statuses
                offset += READ_PAGE_SIZE
        except Exception as e:
            logger.error("get_import_item_statuses_failed", session_id=session_id, error=str(e))
            raise DatabaseError("select", str(e))


# Singleton instance
_import_store: Optional[ImportStore] = None


def get_import_store() -> ImportStore:
    """Get or create ImportStore instance."""
    global _import_store
    if _import_store is None:
        _import_store = ImportStore()
    return _import_store
