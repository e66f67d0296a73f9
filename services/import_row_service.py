"""
Import row service.

Reads and mutates the proposed rows of an import during review: listing,
approval, bulk approval and inline edits.

Invariant held by every write here: a row with errors is never approved.
Edits re-run the full row validation, so a row's findings always describe
its current proposed record.
"""

from typing import Any, Optional
import structlog

from config import get_supabase_client, settings
from models.imports import ImportStatus, is_editable_status
from models.import_row import (
    ImportRowResponse,
    ReviewSummary,
    RowStatus,
)
from models.proposed_record import AMOUNT_FIELDS, EDITABLE_FIELDS
from services.row_validation import (
    RowContext,
    earlier_contract_refs,
    extract_bank_value,
    validate_proposed_record,
)
from utils.normalizers import (
    clean_text,
    normalize_debtor_type,
    normalize_phone,
    parse_amount,
    parse_date,
)
from exceptions import (
    AppError,
    DatabaseError,
    ImportNotFoundError,
    ImportReadOnlyError,
    ImportRowNotFoundError,
    RowHasErrorsError,
    RowVersionConflictError,
    UnknownFieldError,
)

logger = structlog.get_logger(__name__)

PHONE_FIELDS = ("phone_1", "phone_2", "legal_rep_phone")
DATE_FIELDS = ("open_date", "default_date")


class ImportRowService:
    """
    Service for the rows of an import under review.

    Handles:
    - Listing rows with their derived status
    - Per-row and bulk approval
    - Inline edits with re-validation and version checks
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "import_rows"

    # ===================
    # READ
    # ===================

    def list_rows(
        self,
        import_id: str,
        status: Optional[RowStatus] = None
    ) -> list[ImportRowResponse]:
        """
        Rows of an import ordered by row_number.

        Args:
            import_id: Import UUID
            status: Optional filter on the derived row status
        """
        logger.debug("listing_import_rows", import_id=import_id, status=status)

        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("import_id", import_id)
                .order("row_number")
                .execute()
            )
        except Exception as e:
            logger.error("import_rows_list_failed", import_id=import_id, error=str(e))
            raise DatabaseError("select", str(e))

        rows = [self._row_to_response(row) for row in result.data]
        if status:
            rows = [row for row in rows if row.status == status]
        return rows

    def get_row(self, row_id: str) -> ImportRowResponse:
        """
        Get a row by ID.

        Raises:
            ImportRowNotFoundError: If row not found
        """
        try:
            result = self.db.table(self.table).select("*").eq("id", row_id).execute()
        except Exception as e:
            logger.error("import_row_get_failed", row_id=row_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ImportRowNotFoundError(row_id)

        return self._row_to_response(result.data[0])

    def summary(self, import_id: str) -> ReviewSummary:
        """Counters over the current row set. Never cached."""
        return ReviewSummary.from_rows(self.list_rows(import_id))

    def approved_row_ids(self, import_id: str) -> list[str]:
        """IDs of approved rows, in row order."""
        return [row.id for row in self.list_rows(import_id) if row.is_approved]

    # ===================
    # APPROVAL
    # ===================

    def toggle_approval(self, row_id: str, approved: bool) -> ImportRowResponse:
        """
        Approve or un-approve one row.

        Raises:
            RowHasErrorsError: If approving a row that has errors
            ImportReadOnlyError: If the import no longer accepts review changes
        """
        row = self.get_row(row_id)
        self._assert_editable(row.import_id)

        if approved and row.has_errors:
            raise RowHasErrorsError(row_id, [e.model_dump() for e in row.errors])

        if row.is_approved == approved:
            return row

        updated = self._write(row, {"is_approved": approved})

        logger.info(
            "import_row_approval_toggled",
            row_id=row_id,
            import_id=row.import_id,
            approved=approved
        )
        return updated

    def approve_all_valid(self, import_id: str) -> int:
        """
        Approve every error-free row of an import.

        Rows with errors and rows already approved are left untouched, so
        calling this twice approves nothing the second time. A row changed by
        a concurrent edit since it was listed is skipped, not approved.

        Returns:
            Number of rows newly approved
        """
        self._assert_editable(import_id)

        pending = [
            row for row in self.list_rows(import_id)
            if not row.has_errors and not row.is_approved
        ]

        approved_count = 0
        for row in pending:
            try:
                self._write(row, {"is_approved": True})
            except RowVersionConflictError as e:
                logger.info(
                    "import_row_approval_skipped",
                    row_id=row.id,
                    import_id=import_id,
                    current_version=e.details.get("current_version")
                )
                continue
            approved_count += 1

        logger.info(
            "import_rows_bulk_approved",
            import_id=import_id,
            approved_count=approved_count,
            skipped_count=len(pending) - approved_count
        )
        return approved_count

    # ===================
    # EDIT
    # ===================

    def edit_field(
        self,
        row_id: str,
        field: str,
        value: Any,
        expected_version: Optional[int] = None
    ) -> ImportRowResponse:
        """
        Change one field of a row's proposed record.

        The whole record is re-validated and its findings replaced. If the
        edit introduces an error on an approved row, the row is un-approved
        in the same write.

        Args:
            row_id: Row UUID
            field: Proposed-record key
            value: New value as typed by the reviewer
            expected_version: Row version the edit is based on; None skips the
                check (last write wins)

        Raises:
            UnknownFieldError: If the field is not part of the record schema
            ImportReadOnlyError: If the import no longer accepts review changes
            RowVersionConflictError: If the row changed since it was read
        """
        if field not in EDITABLE_FIELDS:
            raise UnknownFieldError(field)

        row = self.get_row(row_id)
        bank_id = self._assert_editable(row.import_id)

        if expected_version is not None and expected_version != row.version:
            raise RowVersionConflictError(row_id, expected_version, row.version)

        record = dict(row.proposed_record)
        record[field] = self._normalize_value(field, value)

        siblings = self._sibling_records(row.import_id)
        context = RowContext(
            earlier_contract_refs=earlier_contract_refs(siblings, row.row_number),
            bank_name=self._bank_name(bank_id),
            raw_bank_value=extract_bank_value(row.raw_record),
            default_currency=settings.default_currency,
        )
        validation = validate_proposed_record(record, context)

        is_approved = row.is_approved and not validation.errors
        if row.is_approved and not is_approved:
            logger.info(
                "import_row_unapproved_by_edit",
                row_id=row_id,
                field=field
            )

        updated = self._write(
            row,
            {
                "proposed_record": record,
                "errors": validation.errors,
                "warnings": validation.warnings,
                "is_approved": is_approved,
            },
            check_version=expected_version is not None
        )

        logger.info(
            "import_row_edited",
            row_id=row_id,
            import_id=row.import_id,
            field=field,
            version=updated.version,
            error_count=len(validation.errors)
        )
        return updated

    # ===================
    # HELPERS
    # ===================

    def _normalize_value(self, field: str, value: Any) -> Any:
        """Apply the analyzer's normalization to a typed value."""
        if isinstance(value, str):
            value = value.strip()
        if value == "" or value is None:
            return None

        if field == "debtor_type":
            return normalize_debtor_type(value) or clean_text(value)
        if field in AMOUNT_FIELDS:
            amount = parse_amount(value)
            return float(amount) if amount is not None else clean_text(value)
        if field in DATE_FIELDS:
            return parse_date(value) or clean_text(value)
        if field in PHONE_FIELDS:
            return normalize_phone(value, settings.phone_country_code)
        text = clean_text(value)
        if text and field in ("email", "agent_email"):
            return text.lower()
        if text and field == "currency":
            return text.upper()
        return text

    def _assert_editable(self, import_id: str) -> str:
        """
        Check the owning import still accepts review changes.

        Returns:
            The import's bank_id
        """
        result = (
            self.db.table("imports")
            .select("id, status, bank_id")
            .eq("id", import_id)
            .execute()
        )
        if not result.data:
            raise ImportNotFoundError(import_id)

        status = ImportStatus(result.data[0]["status"])
        if not is_editable_status(status):
            raise ImportReadOnlyError(import_id, status.value)
        return result.data[0]["bank_id"]

    def _bank_name(self, bank_id: str) -> Optional[str]:
        result = self.db.table("banks").select("id, name").eq("id", bank_id).execute()
        return result.data[0].get("name") if result.data else None

    def _sibling_records(self, import_id: str) -> list[dict]:
        result = (
            self.db.table(self.table)
            .select("row_number, proposed_record")
            .eq("import_id", import_id)
            .execute()
        )
        return result.data or []

    def _write(
        self,
        row: ImportRowResponse,
        changes: dict,
        check_version: bool = True
    ) -> ImportRowResponse:
        """
        Update a row and bump its version.

        With check_version the write only applies if nobody bumped the
        version since `row` was read.
        """
        try:
            query = (
                self.db.table(self.table)
                .update({**changes, "version": row.version + 1})
                .eq("id", row.id)
            )
            if check_version:
                query = query.eq("version", row.version)
            result = query.execute()
        except AppError:
            raise
        except Exception as e:
            logger.error("import_row_update_failed", row_id=row.id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            current = self.get_row(row.id)
            raise RowVersionConflictError(row.id, row.version, current.version)

        return self._row_to_response(result.data[0])

    def _row_to_response(self, row: dict) -> ImportRowResponse:
        """Convert database row to response model."""
        return ImportRowResponse(
            id=row["id"],
            import_id=row["import_id"],
            row_number=row["row_number"],
            proposed_record=row.get("proposed_record") or {},
            raw_record=row.get("raw_record"),
            errors=row.get("errors") or [],
            warnings=row.get("warnings") or [],
            is_approved=bool(row.get("is_approved")),
            version=row.get("version") or 1,
            case_id=row.get("case_id"),
            case_reference=row.get("case_reference"),
        )


# Singleton instance
_import_row_service: Optional[ImportRowService] = None


def get_import_row_service() -> ImportRowService:
    """Get or create ImportRowService instance."""
    global _import_row_service
    if _import_row_service is None:
        _import_row_service = ImportRowService()
    return _import_row_service
