"""
Analysis service.

Turns an uploaded spreadsheet into import rows: download, parse, normalize,
validate, store. Runs as a background job after the registry moved the
import to processing.

The final status write is conditional on the import still being
processing, so an analysis that was cancelled or expired meanwhile never
flips the import back to ready_for_review.
"""

from typing import Optional
from datetime import datetime, timezone
import structlog

from config import get_worker_client, settings
from models.imports import ImportStatus
from parsers.case_sheet_parser import parse_case_sheet, CaseSheetParseResult
from services.blob_store import BlobStore
from exceptions import AppError, ImportNotFoundError

logger = structlog.get_logger(__name__)

INSERT_BATCH_SIZE = 500


class AnalysisService:
    """
    Service for analyzing uploaded imports.

    Handles:
    - Reading the stored spreadsheet
    - Replacing the import's rows with freshly validated ones
    - Recording counters and the outcome on the import
    """

    def __init__(self):
        self.db = get_worker_client()
        self.blob_store = BlobStore()
        self.bucket = settings.imports_bucket

    def run(self, import_id: str) -> ImportStatus:
        """
        Analyze one import.

        Any failure marks the import failed with the error message. Rows
        stored before the failure are kept.

        Args:
            import_id: Import UUID, expected in status processing

        Returns:
            Status of the import after the run
        """
        record = self._load_import(import_id)
        status = ImportStatus(record["status"])
        if status != ImportStatus.PROCESSING:
            logger.warning(
                "analysis_skipped",
                import_id=import_id,
                status=status.value
            )
            return status

        logger.info(
            "analysis_started",
            import_id=import_id,
            file_path=record.get("file_path")
        )

        try:
            content = self.blob_store.download(self.bucket, record["file_path"])
            parsed = parse_case_sheet(
                content,
                bank_name=self._bank_name(record["bank_id"]),
                phone_country_code=settings.phone_country_code,
                default_currency=settings.default_currency,
            )
            self._replace_rows(import_id, parsed)
        except Exception as e:
            message = e.message if isinstance(e, AppError) else str(e)
            logger.error(
                "analysis_failed",
                import_id=import_id,
                error=message,
                type=type(e).__name__
            )
            return self._finish(import_id, ImportStatus.FAILED, {"error_message": message})

        return self._finish(
            import_id,
            ImportStatus.READY_FOR_REVIEW,
            {
                "total_rows": parsed.total_rows,
                "valid_rows": parsed.valid_rows,
                "warning_rows": parsed.warning_rows,
                "error_rows": parsed.error_rows,
                "error_message": None,
            }
        )

    # ===================
    # HELPERS
    # ===================

    def _load_import(self, import_id: str) -> dict:
        result = self.db.table("imports").select("*").eq("id", import_id).execute()
        if not result.data:
            raise ImportNotFoundError(import_id)
        return result.data[0]

    def _bank_name(self, bank_id: str) -> Optional[str]:
        result = self.db.table("banks").select("id, name").eq("id", bank_id).execute()
        return result.data[0].get("name") if result.data else None

    def _replace_rows(self, import_id: str, parsed: CaseSheetParseResult) -> None:
        """Drop rows of an earlier run, then insert the new ones in batches."""
        self.db.table("import_rows").delete().eq("import_id", import_id).execute()

        records = [
            {
                "import_id": import_id,
                "row_number": row.row_number,
                "raw_record": row.raw_record,
                "proposed_record": row.proposed_record,
                "errors": row.errors,
                "warnings": row.warnings,
                "is_approved": False,
                "version": 1,
            }
            for row in parsed.rows
        ]

        for start in range(0, len(records), INSERT_BATCH_SIZE):
            batch = records[start:start + INSERT_BATCH_SIZE]
            self.db.table("import_rows").insert(batch).execute()
            logger.debug(
                "import_rows_inserted",
                import_id=import_id,
                count=len(batch)
            )

    def _finish(self, import_id: str, status: ImportStatus, changes: dict) -> ImportStatus:
        result = (
            self.db.table("imports")
            .update({
                **changes,
                "status": status.value,
                "processed_at": datetime.now(timezone.utc).isoformat(),
            })
            .eq("id", import_id)
            .eq("status", ImportStatus.PROCESSING.value)
            .execute()
        )

        if not result.data:
            # Cancelled or expired while running
            current = self._load_import(import_id)
            logger.warning(
                "analysis_result_discarded",
                import_id=import_id,
                status=current["status"]
            )
            return ImportStatus(current["status"])

        logger.info(
            "analysis_completed",
            import_id=import_id,
            status=status.value,
            total_rows=changes.get("total_rows"),
            error_rows=changes.get("error_rows")
        )
        return status


# Singleton instance
_analysis_service: Optional[AnalysisService] = None


def get_analysis_service() -> AnalysisService:
    """Get or create AnalysisService instance."""
    global _analysis_service
    if _analysis_service is None:
        _analysis_service = AnalysisService()
    return _analysis_service
