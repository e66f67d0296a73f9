"""
Test data factories.

Uses factory pattern to generate consistent test data.
"""

from datetime import datetime, timezone
from io import BytesIO
from typing import Optional
from uuid import uuid4

import pandas as pd


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ImportFactory:
    """
    Factory for creating test import registry records.

    Usage:
        # Create with defaults
        record = ImportFactory.create()

        # Create with overrides
        record = ImportFactory.create(status="processing")
    """

    _counter = 0

    @classmethod
    def _next_counter(cls) -> int:
        cls._counter += 1
        return cls._counter

    @classmethod
    def create(
        cls,
        id: Optional[str] = None,
        bank_id: str = "bank-1",
        uploaded_by: Optional[str] = "user-1",
        status: str = "ready_for_review",
        created_at: Optional[str] = None,
        **overrides
    ) -> dict:
        """
        Create a single import dict.

        Args:
            id: Import UUID (auto-generated if not provided)
            bank_id: Bank the import belongs to
            uploaded_by: Uploading user
            status: uploaded, processing, ready_for_review, approved,
                rejected or failed
            created_at: Timestamp (auto-generated if not provided)

        Returns:
            Import dict matching database schema
        """
        counter = cls._next_counter()
        import_id = id or str(uuid4())

        record = {
            "id": import_id,
            "bank_id": bank_id,
            "uploaded_by": uploaded_by,
            "file_name": f"dossiers_{counter}.xlsx",
            "file_path": f"{bank_id}/{import_id}.xlsx",
            "status": status,
            "total_rows": 0,
            "valid_rows": 0,
            "warning_rows": 0,
            "error_rows": 0,
            "error_message": None,
            "created_at": created_at or _now(),
            "processing_started_at": None,
            "processed_at": None,
            "approved_at": None,
            "approved_by": None,
        }
        record.update(overrides)
        return record

    @classmethod
    def create_processing(cls, **overrides) -> dict:
        """Create an import whose analysis is running."""
        return cls.create(status="processing", processing_started_at=_now(), **overrides)

    @classmethod
    def reset_counter(cls):
        """Reset the counter (call in test setup if needed)."""
        cls._counter = 0


class ImportRowFactory:
    """
    Factory for creating test import rows.

    Usage:
        row = ImportRowFactory.create(import_id="imp-1")
        bad = ImportRowFactory.create_with_errors(import_id="imp-1", row_number=2)
    """

    @classmethod
    def proposed_individual(cls, **overrides) -> dict:
        """A valid individual-debtor proposed record."""
        record = {
            "debtor_type": "individual",
            "debtor_name": "Ould Ahmed",
            "debtor_first_name": "Mohamed",
            "id_number": "1234567890",
            "phone_1": "+22222334455",
            "email": "m.ahmed@example.mr",
            "contract_ref": "CTR-001",
            "default_date": "2024-03-15",
            "amount_principal": 150000.0,
            "amount_interest": 12000.0,
            "amount_penalties": 3000.0,
            "amount_fees": 500.0,
            "total_due": 165500.0,
            "remaining_balance": 165500.0,
            "currency": "MRU",
            "priority": "medium",
            "treatment_type": "amicable",
            "agent_email": "agent@recouvrement.mr",
        }
        record.update(overrides)
        return record

    @classmethod
    def proposed_company(cls, **overrides) -> dict:
        """A valid company-debtor proposed record."""
        record = {
            "debtor_type": "company",
            "debtor_name": "SNIM Services",
            "rc_number": "RC-2020-55",
            "nif": "NIF-778",
            "legal_rep_name": "Sidi Mahmoud",
            "legal_rep_title": "Gérant",
            "phone_1": "+22245678901",
            "contract_ref": "CTR-100",
            "default_date": "2024-06-01",
            "amount_principal": 2500000.0,
            "amount_interest": 0.0,
            "amount_penalties": 0.0,
            "amount_fees": 0.0,
            "total_due": 2500000.0,
            "remaining_balance": 2500000.0,
            "currency": "MRU",
            "priority": "high",
            "treatment_type": "legal",
        }
        record.update(overrides)
        return record

    @classmethod
    def create(
        cls,
        import_id: str,
        row_number: int = 1,
        id: Optional[str] = None,
        proposed_record: Optional[dict] = None,
        errors: Optional[list] = None,
        warnings: Optional[list] = None,
        is_approved: bool = False,
        version: int = 1,
        raw_record: Optional[dict] = None
    ) -> dict:
        """
        Create a single import row dict.

        Returns:
            Row dict matching database schema
        """
        return {
            "id": id or str(uuid4()),
            "import_id": import_id,
            "row_number": row_number,
            "proposed_record": proposed_record or cls.proposed_individual(
                contract_ref=f"CTR-{row_number:03d}"
            ),
            "raw_record": raw_record or {},
            "errors": errors or [],
            "warnings": warnings or [],
            "is_approved": is_approved,
            "version": version,
            "created_at": _now(),
        }

    @classmethod
    def create_with_errors(cls, import_id: str, row_number: int = 1, **overrides) -> dict:
        """Create a row whose principal amount is invalid."""
        return cls.create(
            import_id=import_id,
            row_number=row_number,
            proposed_record=cls.proposed_individual(
                contract_ref=f"CTR-{row_number:03d}",
                amount_principal="invalid"
            ),
            errors=[{"field": "amount_principal", "message": "invalid"}],
            **overrides
        )

    @classmethod
    def create_batch(cls, import_id: str, count: int, **overrides) -> list:
        """Create rows numbered 1..count."""
        return [
            cls.create(import_id=import_id, row_number=n, **overrides)
            for n in range(1, count + 1)
        ]


# ===================
# SPREADSHEETS
# ===================

def sheet_line(**overrides) -> dict:
    """One valid individual-debtor line of the case template."""
    line = {
        "Type débiteur*": "PP",
        "Nom / Raison sociale*": "Ould Ahmed",
        "Prénom": "Mohamed",
        "Téléphone 1*": "22 33 44 55",
        "Email": "m.ahmed@example.mr",
        "Numéro identification": "1234567890",
        "RC": None,
        "NIF": None,
        "Réf. contrat*": "CTR-001",
        "Date de défaut*": "15/03/2024",
        "Montant principal*": 150000,
        "Intérêts": 12000,
        "Pénalités": 3000,
        "Frais": 500,
        "Devise": "MRU",
        "Type de traitement": "Amiable",
        "Agent assigné (email)": "agent@recouvrement.mr",
    }
    line.update(overrides)
    return line


def build_workbook(lines: list[dict], sheet_name: str = "Dossiers", extra_sheets: Optional[dict] = None) -> bytes:
    """Write lines to an in-memory .xlsx and return its bytes."""
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, frame in (extra_sheets or {}).items():
            frame.to_excel(writer, sheet_name=name, index=False)
        pd.DataFrame(lines).to_excel(writer, sheet_name=sheet_name, index=False)
    return buffer.getvalue()

