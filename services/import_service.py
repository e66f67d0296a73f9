"""
Import registry service.

Owns the import batch records and their status state machine: upload with
compensating delete, analysis requests, status observation, cancellation,
rejection and expiry of stalled analyses.

Every status change is a compare-and-set update filtered on the statuses it
may leave, so two callers racing on the same import cannot both win.
"""

from typing import Optional
from datetime import datetime, timedelta, timezone
import structlog

from config import get_supabase_client, settings
from models.imports import (
    ImportResponse,
    ImportStatus,
    ImportStatusSnapshot,
    IMPORT_STATUS_TRANSITIONS,
)
from services.blob_store import BlobStore, BlobStoreError
from exceptions import (
    AppError,
    DatabaseError,
    ImportNotFoundError,
    BankNotFoundError,
    UploadFailedError,
    InvalidStatusTransitionError,
    AnalysisAlreadyRunningError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

CANCELLED_MESSAGE = "Analysis cancelled by operator"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sources_for(target: ImportStatus) -> list[str]:
    """Statuses from which `target` may be reached."""
    return [
        source.value
        for source, targets in IMPORT_STATUS_TRANSITIONS.items()
        if target in targets
    ]


class ImportService:
    """
    Service for the import registry.

    Handles:
    - Creating imports and storing their spreadsheet
    - Moving imports through the status state machine
    - Read-only status observation for polling clients
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "imports"
        self.blob_store = BlobStore()
        self.bucket = settings.imports_bucket

    # ===================
    # CREATE
    # ===================

    def create(
        self,
        bank_id: str,
        uploaded_by: Optional[str],
        file_name: str,
        content: bytes
    ) -> ImportResponse:
        """
        Register an import and store its spreadsheet.

        The registry record is inserted first so the storage path can carry
        its id. If storage rejects the file the record is deleted again; there
        is no transaction spanning the two systems.

        Args:
            bank_id: Bank every row of the file belongs to
            uploaded_by: User who uploaded the file
            file_name: Original file name
            content: Spreadsheet bytes

        Returns:
            ImportResponse with status uploaded

        Raises:
            ValidationError: If the file is empty or too large
            BankNotFoundError: If the bank does not exist
            UploadFailedError: If storage rejected the file
        """
        if not content:
            raise ValidationError(message="Uploaded file is empty", code="EMPTY_FILE")
        if len(content) > settings.max_upload_bytes:
            raise ValidationError(
                message=f"File exceeds {settings.max_upload_size_mb} MB",
                code="FILE_TOO_LARGE",
                details={"size_bytes": len(content)}
            )

        self.get_bank_name(bank_id)

        logger.info(
            "creating_import",
            bank_id=bank_id,
            file_name=file_name,
            size_bytes=len(content)
        )

        try:
            result = self.db.table(self.table).insert({
                "bank_id": bank_id,
                "uploaded_by": uploaded_by,
                "file_name": file_name,
                "file_path": "",
                "status": ImportStatus.UPLOADED.value,
            }).execute()
        except Exception as e:
            logger.error("import_create_failed", error=str(e))
            raise DatabaseError("insert", str(e))

        if not result.data:
            raise DatabaseError("insert", "No data returned from insert")

        import_id = result.data[0]["id"]
        file_path = f"{bank_id}/{import_id}.xlsx"

        try:
            self.blob_store.upload(self.bucket, file_path, content)
        except BlobStoreError as e:
            # Compensating action: no import without a file
            try:
                self.db.table(self.table).delete().eq("id", import_id).execute()
            except Exception as delete_error:
                logger.error(
                    "import_rollback_failed",
                    import_id=import_id,
                    file_name=file_name,
                    error=str(delete_error)
                )
            else:
                logger.warning(
                    "import_rolled_back_after_upload_failure",
                    import_id=import_id,
                    file_name=file_name
                )
            raise UploadFailedError(file_name, e.details.get("reason", e.message)) from e

        result = (
            self.db.table(self.table)
            .update({"file_path": file_path})
            .eq("id", import_id)
            .execute()
        )

        logger.info(
            "import_created",
            import_id=import_id,
            bank_id=bank_id,
            file_path=file_path
        )

        return self._row_to_response(result.data[0])

    # ===================
    # READ
    # ===================

    def get_by_id(self, import_id: str) -> ImportResponse:
        """
        Get an import by ID.

        Raises:
            ImportNotFoundError: If import not found
        """
        logger.debug("getting_import", import_id=import_id)

        try:
            result = self.db.table(self.table).select("*").eq("id", import_id).execute()
        except Exception as e:
            logger.error("import_get_failed", import_id=import_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ImportNotFoundError(import_id)

        return self._row_to_response(result.data[0])

    def get_all(
        self,
        page: int = 1,
        page_size: int = 20,
        status: Optional[ImportStatus] = None,
        bank_id: Optional[str] = None
    ) -> tuple[list[ImportResponse], int]:
        """
        Get imports, newest first.

        Returns:
            Tuple of (imports list, total count)
        """
        logger.debug(
            "getting_imports",
            page=page,
            page_size=page_size,
            status=status,
            bank_id=bank_id
        )

        try:
            query = self.db.table(self.table).select("*", count="exact")

            if status:
                query = query.eq("status", status.value)
            if bank_id:
                query = query.eq("bank_id", bank_id)

            offset = (page - 1) * page_size
            query = query.order("created_at", desc=True).range(offset, offset + page_size - 1)

            result = query.execute()
        except Exception as e:
            logger.error("imports_get_all_failed", error=str(e))
            raise DatabaseError("select", str(e))

        imports = [self._row_to_response(row) for row in result.data]
        return imports, result.count or 0

    def observe_status(self, import_id: str) -> ImportStatusSnapshot:
        """
        Read-only status observation.

        Polled by the review controller while the import is uploaded or
        processing. Each call is an independent read.
        """
        try:
            result = (
                self.db.table(self.table)
                .select("id, status, total_rows, valid_rows, warning_rows, error_rows, error_message")
                .eq("id", import_id)
                .execute()
            )
        except Exception as e:
            logger.error("import_status_read_failed", import_id=import_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ImportNotFoundError(import_id)

        row = result.data[0]
        return ImportStatusSnapshot(
            import_id=row["id"],
            status=ImportStatus(row["status"]),
            total_rows=row.get("total_rows") or 0,
            valid_rows=row.get("valid_rows") or 0,
            warning_rows=row.get("warning_rows") or 0,
            error_rows=row.get("error_rows") or 0,
            error_message=row.get("error_message"),
        )

    def get_bank_name(self, bank_id: str) -> str:
        """
        Name of a bank.

        Raises:
            BankNotFoundError: If the bank does not exist
        """
        result = self.db.table("banks").select("id, name").eq("id", bank_id).execute()
        if not result.data:
            raise BankNotFoundError(bank_id)
        return result.data[0].get("name") or ""

    def get_file_url(self, import_id: str) -> str:
        """Signed download URL of the uploaded spreadsheet."""
        record = self.get_by_id(import_id)
        return self.blob_store.url(self.bucket, record.file_path)

    # ===================
    # STATE MACHINE
    # ===================

    def request_analysis(self, import_id: str) -> ImportResponse:
        """
        Move an import to processing so the analyzer may run.

        Allowed from uploaded and failed. Rejected while already processing,
        so rows are never generated twice for the same import.

        Raises:
            AnalysisAlreadyRunningError: If the import is processing
            InvalidStatusTransitionError: From any other status
        """
        logger.info("requesting_analysis", import_id=import_id)

        row = self._transition(
            import_id,
            ImportStatus.PROCESSING,
            {"processing_started_at": _now(), "error_message": None}
        )
        if row is None:
            current = self.get_by_id(import_id)
            if current.status == ImportStatus.PROCESSING:
                raise AnalysisAlreadyRunningError(import_id)
            raise InvalidStatusTransitionError(current.status.value, ImportStatus.PROCESSING.value)

        logger.info("analysis_requested", import_id=import_id)
        return self._row_to_response(row)

    def cancel_analysis(self, import_id: str) -> ImportResponse:
        """
        Give up on an analysis that is still processing.

        The import becomes failed; rows written so far stay usable.

        Raises:
            InvalidStatusTransitionError: If the import is not processing
        """
        row = self._transition(
            import_id,
            ImportStatus.FAILED,
            {"error_message": CANCELLED_MESSAGE},
            from_statuses=[ImportStatus.PROCESSING.value]
        )
        if row is None:
            current = self.get_by_id(import_id)
            raise InvalidStatusTransitionError(current.status.value, ImportStatus.FAILED.value)

        logger.warning("analysis_cancelled", import_id=import_id)
        return self._row_to_response(row)

    def reject(self, import_id: str) -> ImportResponse:
        """
        Close an import without creating any case.

        Raises:
            InvalidStatusTransitionError: Unless ready_for_review or failed
        """
        row = self._transition(import_id, ImportStatus.REJECTED, {})
        if row is None:
            current = self.get_by_id(import_id)
            raise InvalidStatusTransitionError(current.status.value, ImportStatus.REJECTED.value)

        logger.info("import_rejected", import_id=import_id)
        return self._row_to_response(row)

    def expire_stalled_imports(self, now: Optional[datetime] = None) -> int:
        """
        Fail imports stuck in processing past the analysis timeout.

        Called periodically; nothing else bounds a stalled analyzer.

        Returns:
            Number of imports marked failed
        """
        now = now or datetime.now(timezone.utc)
        cutoff = (now - timedelta(seconds=settings.analysis_timeout_seconds)).isoformat()

        logger.info("expiring_stalled_imports", cutoff=cutoff)

        try:
            result = (
                self.db.table(self.table)
                .update({
                    "status": ImportStatus.FAILED.value,
                    "error_message": (
                        f"Analysis timed out after {settings.analysis_timeout_seconds} seconds"
                    ),
                })
                .eq("status", ImportStatus.PROCESSING.value)
                .lt("processing_started_at", cutoff)
                .execute()
            )
        except Exception as e:
            logger.error("stalled_imports_expire_failed", error=str(e))
            raise DatabaseError("update", str(e))

        count = len(result.data) if result.data else 0
        logger.info("stalled_imports_expired", count=count)
        return count

    def _transition(
        self,
        import_id: str,
        target: ImportStatus,
        extra: dict,
        from_statuses: Optional[list[str]] = None
    ) -> Optional[dict]:
        """
        Compare-and-set status update.

        Returns:
            Updated row, or None if the import was not in an allowed status
        """
        sources = from_statuses or _sources_for(target)
        try:
            result = (
                self.db.table(self.table)
                .update({"status": target.value, **extra})
                .eq("id", import_id)
                .in_("status", sources)
                .execute()
            )
        except AppError:
            raise
        except Exception as e:
            logger.error(
                "import_transition_failed",
                import_id=import_id,
                target=target.value,
                error=str(e)
            )
            raise DatabaseError("update", str(e))

        return result.data[0] if result.data else None

    def _row_to_response(self, row: dict) -> ImportResponse:
        """Convert database row to response model."""
        return ImportResponse(
            id=row["id"],
            bank_id=row["bank_id"],
            uploaded_by=row.get("uploaded_by"),
            file_name=row.get("file_name"),
            file_path=row.get("file_path"),
            status=ImportStatus(row["status"]),
            total_rows=row.get("total_rows") or 0,
            valid_rows=row.get("valid_rows") or 0,
            warning_rows=row.get("warning_rows") or 0,
            error_rows=row.get("error_rows") or 0,
            error_message=row.get("error_message"),
            created_at=row["created_at"],
            processing_started_at=row.get("processing_started_at"),
            processed_at=row.get("processed_at"),
            approved_at=row.get("approved_at"),
            approved_by=row.get("approved_by"),
        )


# Singleton instance
_import_service: Optional[ImportService] = None


def get_import_service() -> ImportService:
    """Get or create ImportService instance."""
    global _import_service
    if _import_service is None:
        _import_service = ImportService()
    return _import_service
