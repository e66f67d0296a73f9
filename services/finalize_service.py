"""
Finalize service.

Materializes the approved rows of an import into debtors and cases, and
records where each case came from.

The import is claimed up front with a compare-and-set update to approved.
A second finalize of the same import finds nothing to claim and is rejected,
so entities are never created twice. The rows are read only once the claim
holds, so a late review edit cannot slip in; if a row is no longer eligible
the claim is released. Rows are then processed one by one; a failing row is
reported and the loop continues. An error that interrupts the run after the
claim is written to the import before it propagates.
"""

from typing import Optional, Union
from datetime import datetime, timezone
from decimal import Decimal
import random
import structlog

from config import get_worker_client
from models.imports import (
    EDITABLE_STATUSES,
    FinalizeResult,
    FinalizeRowError,
    ImportStatus,
)
from models.proposed_record import (
    CompanyRecord,
    IndividualRecord,
    parse_proposed_record,
)
from utils.normalizers import parse_amount, parse_date
from exceptions import (
    AppError,
    DatabaseError,
    ImportAlreadyFinalizedError,
    ImportNotFoundError,
    InvalidStatusTransitionError,
    NoApprovedRowsError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

PHASES = ("amicable", "pre_legal", "legal")


def generate_case_reference(now: Optional[datetime] = None) -> str:
    """Case reference in the form YYYY-NNNNNN."""
    year = (now or datetime.now(timezone.utc)).year
    return f"{year}-{random.randint(100000, 999999)}"


def _amount(value) -> Decimal:
    amount = parse_amount(value)
    return amount if amount is not None else Decimal("0")


class FinalizeService:
    """
    Service that turns approved import rows into cases.

    Handles:
    - Guarding the import against double finalize
    - Debtor reuse or creation per row
    - Case creation with provenance
    """

    def __init__(self):
        self.db = get_worker_client()

    def run(self, import_id: str, approved_row_ids: list[str]) -> FinalizeResult:
        """
        Finalize an import.

        Args:
            import_id: Import UUID
            approved_row_ids: Rows to materialize; each must be an approved,
                error-free row of this import

        Returns:
            FinalizeResult with created and failed counts

        Raises:
            NoApprovedRowsError: If no row ids were given
            ImportNotFoundError: If the import does not exist
            ImportAlreadyFinalizedError: If the import was already approved
            InvalidStatusTransitionError: If the import is not finalizable
            ValidationError: If the import has no bank or an id is not an
                approved error-free row of the import (the claim is released)
            DatabaseError: If a read or the final write fails
        """
        if not approved_row_ids:
            raise NoApprovedRowsError(import_id)

        logger.info(
            "finalize_started",
            import_id=import_id,
            row_count=len(approved_row_ids)
        )

        record = self._load_import(import_id)
        status = ImportStatus(record["status"])
        if status == ImportStatus.APPROVED:
            raise ImportAlreadyFinalizedError(import_id)
        if status not in EDITABLE_STATUSES:
            raise InvalidStatusTransitionError(status.value, ImportStatus.APPROVED.value)

        bank_id = record.get("bank_id")
        if not bank_id:
            raise ValidationError(
                message="Import has no bank",
                code="IMPORT_WITHOUT_BANK",
                details={"import_id": import_id}
            )

        agents = self._agent_map()

        self._claim(import_id)

        # Rows are read after the claim, when review edits are already refused
        try:
            rows = self._load_rows(import_id, approved_row_ids)
        except Exception:
            self._release(import_id, status)
            raise

        result = FinalizeResult(import_id=import_id)

        try:
            for row in rows:
                try:
                    reference = self._materialize(row, record, agents)
                except Exception as e:
                    message = e.message if isinstance(e, AppError) else str(e)
                    logger.error(
                        "finalize_row_failed",
                        import_id=import_id,
                        row_id=row["id"],
                        row_number=row["row_number"],
                        error=message
                    )
                    result.errors.append(FinalizeRowError(
                        row_id=row["id"],
                        row_number=row["row_number"],
                        error=message,
                    ))
                    continue

                result.created_references.append(reference)

            result.created_count = len(result.created_references)
            result.error_count = len(result.errors)

            self._complete(import_id, record.get("uploaded_by"), result)
        except Exception as e:
            self._record_failure(import_id, e, result)
            raise

        logger.info(
            "finalize_completed",
            import_id=import_id,
            created_count=result.created_count,
            error_count=result.error_count
        )
        return result

    # ===================
    # GUARDS
    # ===================

    def _load_import(self, import_id: str) -> dict:
        try:
            result = self.db.table("imports").select("*").eq("id", import_id).execute()
        except Exception as e:
            logger.error("finalize_import_load_failed", import_id=import_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ImportNotFoundError(import_id)
        return result.data[0]

    def _load_rows(self, import_id: str, row_ids: list[str]) -> list[dict]:
        """
        Load the requested rows, rejecting any that cannot be finalized.

        Raises:
            ValidationError: If an id is unknown, belongs to another import,
                is not approved or has errors
        """
        try:
            result = (
                self.db.table("import_rows")
                .select("*")
                .eq("import_id", import_id)
                .in_("id", row_ids)
                .order("row_number")
                .execute()
            )
        except Exception as e:
            logger.error("finalize_rows_load_failed", import_id=import_id, error=str(e))
            raise DatabaseError("select", str(e))
        rows = result.data or []
        eligible = {
            row["id"] for row in rows
            if row.get("is_approved") and not row.get("errors")
        }
        invalid = [row_id for row_id in dict.fromkeys(row_ids) if row_id not in eligible]
        if invalid:
            raise ValidationError(
                message="Some rows are not approved error-free rows of this import",
                code="INVALID_APPROVED_ROWS",
                details={"row_ids": invalid}
            )
        return rows

    def _claim(self, import_id: str) -> None:
        """Move the import to approved, failing if another finalize got there first."""
        try:
            result = (
                self.db.table("imports")
                .update({
                    "status": ImportStatus.APPROVED.value,
                    "approved_at": datetime.now(timezone.utc).isoformat(),
                })
                .eq("id", import_id)
                .in_("status", [s.value for s in EDITABLE_STATUSES])
                .execute()
            )
        except Exception as e:
            logger.error("finalize_claim_failed", import_id=import_id, error=str(e))
            raise DatabaseError("update", str(e))
        if not result.data:
            logger.warning("finalize_claim_lost", import_id=import_id)
            raise ImportAlreadyFinalizedError(import_id)

    def _release(self, import_id: str, previous: ImportStatus) -> None:
        """Undo a claim when nothing was materialized."""
        try:
            self.db.table("imports").update({
                "status": previous.value,
                "approved_at": None,
            }).eq("id", import_id).eq("status", ImportStatus.APPROVED.value).execute()
        except Exception as e:
            logger.error("finalize_release_failed", import_id=import_id, error=str(e))
        else:
            logger.info("finalize_claim_released", import_id=import_id, status=previous.value)

    def _record_failure(self, import_id: str, error: Exception, result: FinalizeResult) -> None:
        """Leave the interrupting error on the claimed import."""
        message = error.message if isinstance(error, AppError) else str(error)
        logger.error(
            "finalize_failed",
            import_id=import_id,
            created_count=len(result.created_references),
            error=message
        )
        try:
            self.db.table("imports").update({
                "error_message": (
                    f"Finalize interrupted after {len(result.created_references)} case(s): {message}"
                ),
            }).eq("id", import_id).execute()
        except Exception as e:
            logger.error("finalize_failure_not_recorded", import_id=import_id, error=str(e))

    def _complete(self, import_id: str, uploaded_by: Optional[str], result: FinalizeResult) -> None:
        error_message = None
        if result.errors:
            details = "; ".join(f"Row {e.row_number}: {e.error}" for e in result.errors)
            error_message = f"{result.error_count} row(s) failed: {details}"

        try:
            self.db.table("imports").update({
                "approved_at": datetime.now(timezone.utc).isoformat(),
                "approved_by": uploaded_by,
                "error_message": error_message,
            }).eq("id", import_id).execute()
        except Exception as e:
            raise DatabaseError("update", str(e))

    # ===================
    # PER ROW
    # ===================

    def _materialize(self, row: dict, record: dict, agents: dict[str, str]) -> str:
        """
        Create debtor, case and provenance for one row.

        Returns:
            Reference of the created case
        """
        data = parse_proposed_record(row.get("proposed_record") or {})

        debtor_pp_id = None
        debtor_pm_id = None
        if isinstance(data, CompanyRecord):
            debtor_pm_id = self._company_debtor(data)
        else:
            debtor_pp_id = self._individual_debtor(data)

        case = self._insert_case(data, record, debtor_pp_id, debtor_pm_id, agents)

        try:
            self.db.table("audit_logs").insert({
                "table_name": "cases",
                "record_id": case["id"],
                "operation": "INSERT",
                "new_data": {
                    "source": "import",
                    "import_id": record["id"],
                    "row_id": row["id"],
                    "row_number": row["row_number"],
                },
                "user_id": record.get("uploaded_by"),
                "user_type": "admin",
            }).execute()
        except Exception as e:
            # A case nobody can trace back to its import must not survive
            logger.error(
                "provenance_write_failed",
                import_id=record["id"],
                row_number=row["row_number"],
                case_id=case["id"],
                error=str(e)
            )
            try:
                self.db.table("cases").delete().eq("id", case["id"]).execute()
            except Exception as delete_error:
                logger.error("untraced_case_left", case_id=case["id"], error=str(delete_error))
            raise DatabaseError("insert", f"Provenance not recorded: {e}") from e

        self._link_row(row, case)

        logger.info(
            "case_created_from_import",
            import_id=record["id"],
            row_number=row["row_number"],
            reference=case["reference"]
        )
        return case["reference"]

    def _link_row(self, row: dict, case: dict) -> None:
        """Point the import row at the case it produced."""
        try:
            self.db.table("import_rows").update({
                "case_id": case["id"],
                "case_reference": case["reference"],
            }).eq("id", row["id"]).execute()
        except Exception as e:
            # Provenance still traces the case
            logger.warning(
                "import_row_case_link_failed",
                row_id=row["id"],
                case_id=case["id"],
                error=str(e)
            )

    def _individual_debtor(self, data: IndividualRecord) -> str:
        """Existing debtor by id number, then by phone + last name, else a new one."""
        last_name = data.debtor_name or "Unknown"

        existing = None
        if data.id_number:
            existing = self._find("debtors_pp", id_number=data.id_number)
        if not existing and data.phone_1:
            existing = self._find("debtors_pp", phone_primary=data.phone_1, last_name=last_name)
        if existing:
            return existing

        return self._insert("debtors_pp", {
            "first_name": data.debtor_first_name or "",
            "last_name": last_name,
            "id_type": data.id_type,
            "id_number": data.id_number,
            "phone_primary": data.phone_1,
            "phone_secondary": data.phone_2,
            "email": data.email,
            "address_street": data.address,
            "address_city": data.city,
            "address_region": data.sector or data.region,
            "employer": data.employer,
            "occupation": data.occupation,
            "notes": data.notes,
        })

    def _company_debtor(self, data: CompanyRecord) -> str:
        """Existing debtor by RC number, then by phone + company name, else a new one."""
        company_name = data.debtor_name or "Unknown company"

        existing = None
        if data.rc_number:
            existing = self._find("debtors_pm", rc_number=data.rc_number)
        if not existing and data.phone_1:
            existing = self._find("debtors_pm", phone_primary=data.phone_1, company_name=company_name)
        if existing:
            return existing

        legal_rep_name = data.legal_rep_name
        if legal_rep_name and data.legal_rep_title:
            legal_rep_name = f"{data.legal_rep_title} - {legal_rep_name}"

        return self._insert("debtors_pm", {
            "company_name": company_name,
            "rc_number": data.rc_number,
            "nif": data.nif,
            "legal_rep_name": legal_rep_name,
            "legal_rep_phone": data.legal_rep_phone,
            "phone_primary": data.phone_1,
            "phone_secondary": data.phone_2,
            "email": data.email,
            "address_street": data.address,
            "address_city": data.city,
            "address_region": data.sector or data.region,
            "sector_activity": data.sector_activity,
            "notes": data.notes,
        })

    def _insert_case(
        self,
        data: Union[IndividualRecord, CompanyRecord],
        record: dict,
        debtor_pp_id: Optional[str],
        debtor_pm_id: Optional[str],
        agents: dict[str, str]
    ) -> dict:
        principal = _amount(data.amount_principal)
        interest = _amount(data.amount_interest)
        penalties = _amount(data.amount_penalties)
        fees = _amount(data.amount_fees)
        total_due = _amount(data.total_due)

        if principal == interest == penalties == fees == 0 and total_due > 0:
            principal = total_due

        treatment = (data.treatment_type or "").lower()
        phase = treatment if treatment in PHASES else "amicable"

        agent_id = None
        if data.agent_email:
            agent_id = agents.get(data.agent_email.strip().lower())

        result = self.db.table("cases").insert({
            "reference": generate_case_reference(),
            "bank_reference": data.bank_reference,
            "bank_id": record["bank_id"],
            "debtor_pp_id": debtor_pp_id,
            "debtor_pm_id": debtor_pm_id,
            "assigned_agent_id": agent_id,
            "status": "new",
            "phase": phase,
            "priority": data.priority,
            "product_type": data.product_type,
            "contract_reference": data.contract_ref,
            "default_date": parse_date(data.default_date),
            "amount_principal": float(principal),
            "amount_interest": float(interest),
            "amount_penalties": float(penalties),
            "amount_fees": float(fees),
            "guarantee_type": data.guarantee_type,
            "guarantee_description": data.guarantee_description,
            "notes": data.notes,
            "created_by": record.get("uploaded_by"),
        }).execute()

        if not result.data:
            raise DatabaseError("insert", "No data returned from case insert")
        return result.data[0]

    # ===================
    # HELPERS
    # ===================

    def _agent_map(self) -> dict[str, str]:
        """Agent email (lowercase) → agent id."""
        try:
            result = self.db.table("agents").select("id, email").execute()
        except Exception as e:
            logger.error("finalize_agents_load_failed", error=str(e))
            raise DatabaseError("select", str(e))
        return {
            agent["email"].strip().lower(): agent["id"]
            for agent in result.data or []
            if agent.get("email")
        }

    def _find(self, table: str, **filters) -> Optional[str]:
        query = self.db.table(table).select("id")
        for column, value in filters.items():
            query = query.eq(column, value)
        result = query.limit(1).execute()
        return result.data[0]["id"] if result.data else None

    def _insert(self, table: str, data: dict) -> str:
        result = self.db.table(table).insert(data).execute()
        if not result.data:
            raise DatabaseError("insert", f"No data returned from {table} insert")
        return result.data[0]["id"]


# Singleton instance
_finalize_service: Optional[FinalizeService] = None


def get_finalize_service() -> FinalizeService:
    """Get or create FinalizeService instance."""
    global _finalize_service
    if _finalize_service is None:
        _finalize_service = FinalizeService()
    return _finalize_service
