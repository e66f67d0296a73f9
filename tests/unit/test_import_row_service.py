"""
Unit tests for ImportRowService.

Run: pytest tests/unit/test_import_row_service.py -v
"""

import pytest

from services.import_row_service import ImportRowService
from models.import_row import RowStatus
from exceptions import (
    ImportReadOnlyError,
    ImportRowNotFoundError,
    RowHasErrorsError,
    RowVersionConflictError,
    UnknownFieldError,
)
from tests.factories import ImportFactory, ImportRowFactory


@pytest.fixture
def review_import(mock_db):
    """An import in review with one clean row and one row with errors."""
    record = ImportFactory.create(id="imp-1", status="ready_for_review")
    rows = [
        ImportRowFactory.create(import_id="imp-1", row_number=1, id="row-1"),
        ImportRowFactory.create_with_errors(import_id="imp-1", row_number=2, id="row-2"),
    ]
    mock_db.set_table_data("imports", [record])
    mock_db.set_table_data("import_rows", rows)
    return record


def stored_row(mock_db, row_id: str) -> dict:
    return next(r for r in mock_db.get_table("import_rows") if r["id"] == row_id)


class TestImportRowServiceList:
    """Tests for list_rows() and summary()"""

    def test_rows_in_source_order(self, mock_db, review_import):
        mock_db.tables["import_rows"].reverse()

        rows = ImportRowService().list_rows("imp-1")

        assert [r.row_number for r in rows] == [1, 2]
        assert rows[1].status == RowStatus.ERRORS

    def test_filter_by_derived_status(self, mock_db, review_import):
        rows = ImportRowService().list_rows("imp-1", RowStatus.ERRORS)
        assert [r.id for r in rows] == ["row-2"]

    def test_summary_is_recomputed(self, mock_db, review_import):
        service = ImportRowService()
        assert service.summary("imp-1").approved == 0

        stored_row(mock_db, "row-1")["is_approved"] = True

        summary = service.summary("imp-1")
        assert summary.total == 2
        assert summary.ok == 1
        assert summary.errors == 1
        assert summary.approved == 1

    def test_get_row_not_found(self, mock_db, review_import):
        with pytest.raises(ImportRowNotFoundError):
            ImportRowService().get_row("missing")


class TestImportRowServiceApproval:
    """Tests for toggle_approval() and approve_all_valid()"""

    def test_approve_all_valid_skips_error_rows(self, mock_db, review_import):
        count = ImportRowService().approve_all_valid("imp-1")

        assert count == 1
        assert stored_row(mock_db, "row-1")["is_approved"] is True
        assert stored_row(mock_db, "row-2")["is_approved"] is False

    def test_approve_all_valid_is_idempotent(self, mock_db, review_import):
        service = ImportRowService()
        service.approve_all_valid("imp-1")

        assert service.approve_all_valid("imp-1") == 0
        assert stored_row(mock_db, "row-1")["version"] == 2

    def test_approve_all_includes_warning_rows(self, mock_db, review_import):
        mock_db.tables["import_rows"].append(ImportRowFactory.create(
            import_id="imp-1",
            row_number=3,
            id="row-3",
            warnings=[{"field": "currency", "message": "EUR"}]
        ))

        assert ImportRowService().approve_all_valid("imp-1") == 2

    def test_approve_all_skips_row_changed_meanwhile(self, mock_db, review_import, monkeypatch):
        mock_db.tables["import_rows"].append(
            ImportRowFactory.create(import_id="imp-1", row_number=3, id="row-3")
        )
        service = ImportRowService()
        original_list_rows = service.list_rows

        def list_then_concurrent_edit(import_id, status=None):
            rows = original_list_rows(import_id, status)
            stored_row(mock_db, "row-1")["version"] = 2
            return rows

        monkeypatch.setattr(service, "list_rows", list_then_concurrent_edit)

        assert service.approve_all_valid("imp-1") == 1
        assert stored_row(mock_db, "row-1")["is_approved"] is False
        assert stored_row(mock_db, "row-3")["is_approved"] is True

        assert ImportRowService().approve_all_valid("imp-1") == 1
        assert stored_row(mock_db, "row-1")["is_approved"] is True

    def test_toggle_rejects_row_with_errors(self, mock_db, review_import):
        with pytest.raises(RowHasErrorsError):
            ImportRowService().toggle_approval("row-2", True)

        assert stored_row(mock_db, "row-2")["is_approved"] is False

    def test_toggle_on_and_off(self, mock_db, review_import):
        service = ImportRowService()

        approved = service.toggle_approval("row-1", True)
        assert approved.is_approved is True
        assert approved.version == 2

        unapproved = service.toggle_approval("row-1", False)
        assert unapproved.is_approved is False

    def test_unapproving_row_with_errors_is_allowed(self, mock_db, review_import):
        result = ImportRowService().toggle_approval("row-2", False)
        assert result.is_approved is False

    def test_read_only_import_refuses_approval(self, mock_db, review_import):
        mock_db.tables["imports"][0]["status"] = "approved"

        with pytest.raises(ImportReadOnlyError):
            ImportRowService().toggle_approval("row-1", True)
        with pytest.raises(ImportReadOnlyError):
            ImportRowService().approve_all_valid("imp-1")


class TestImportRowServiceEdit:
    """Tests for edit_field()"""

    def test_edit_fixes_errors(self, mock_db, review_import):
        result = ImportRowService().edit_field("row-2", "amount_principal", "95 000", expected_version=1)

        assert result.errors == []
        assert result.status == RowStatus.OK
        assert result.proposed_record["amount_principal"] == 95000.0
        assert result.version == 2

    def test_edit_introducing_error_unapproves(self, mock_db, review_import):
        service = ImportRowService()
        service.toggle_approval("row-1", True)

        result = service.edit_field("row-1", "amount_principal", "not a number")

        assert result.is_approved is False
        assert [e.field for e in result.errors] == ["amount_principal"]
        assert stored_row(mock_db, "row-1")["is_approved"] is False

    def test_edit_keeping_row_valid_keeps_approval(self, mock_db, review_import):
        service = ImportRowService()
        service.toggle_approval("row-1", True)

        result = service.edit_field("row-1", "city", "Nouakchott")

        assert result.is_approved is True

    def test_stale_version_conflicts(self, mock_db, review_import):
        service = ImportRowService()
        service.edit_field("row-1", "city", "Nouakchott", expected_version=1)

        with pytest.raises(RowVersionConflictError) as exc_info:
            service.edit_field("row-1", "city", "Nouadhibou", expected_version=1)

        assert exc_info.value.status_code == 409
        assert stored_row(mock_db, "row-1")["proposed_record"]["city"] == "Nouakchott"

    def test_edit_without_version_overwrites(self, mock_db, review_import):
        service = ImportRowService()
        service.edit_field("row-1", "city", "Nouakchott")

        result = service.edit_field("row-1", "city", "Nouadhibou")

        assert result.proposed_record["city"] == "Nouadhibou"
        assert result.version == 3

    def test_unknown_field(self, mock_db, review_import):
        with pytest.raises(UnknownFieldError):
            ImportRowService().edit_field("row-1", "bank_id", "bank-2")

    def test_read_only_import_refuses_edit(self, mock_db, review_import):
        mock_db.tables["imports"][0]["status"] = "rejected"

        with pytest.raises(ImportReadOnlyError):
            ImportRowService().edit_field("row-1", "city", "Rosso")

    def test_switch_debtor_type(self, mock_db, review_import):
        result = ImportRowService().edit_field("row-1", "debtor_type", "PM")

        assert result.proposed_record["debtor_type"] == "company"
        assert [w.field for w in result.warnings] == ["nif"]

    def test_edit_detects_duplicate_contract(self, mock_db, review_import):
        result = ImportRowService().edit_field("row-2", "contract_ref", "CTR-001")

        assert any(
            w.field == "contract_ref" and "row 1" in w.message
            for w in result.warnings
        )

    def test_phone_edit_is_normalized(self, mock_db, review_import):
        result = ImportRowService().edit_field("row-1", "phone_2", "36 11 22 33")
        assert result.proposed_record["phone_2"] == "+22236112233"

    def test_numeric_text_edit_is_stored_as_text(self, mock_db, review_import):
        result = ImportRowService().edit_field("row-1", "contract_ref", 12345)

        assert result.proposed_record["contract_ref"] == "12345"
        assert result.errors == []

    def test_failed_import_is_editable(self, mock_db, review_import):
        mock_db.tables["imports"][0]["status"] = "failed"

        result = ImportRowService().edit_field("row-1", "city", "Kaédi")

        assert result.proposed_record["city"] == "Kaédi"
