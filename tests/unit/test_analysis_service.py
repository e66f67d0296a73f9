"""
Unit tests for AnalysisService.

Run: pytest tests/unit/test_analysis_service.py -v
"""

import pytest

from services.analysis_service import AnalysisService
from models.imports import ImportStatus
from exceptions import ImportNotFoundError
from tests.factories import ImportFactory, ImportRowFactory, build_workbook, sheet_line


def processing_import(mock_db, content: bytes, **overrides) -> dict:
    record = ImportFactory.create(**{"status": "processing", **overrides})
    mock_db.set_table_data("imports", [record])
    mock_db.storage.from_("imports").upload(record["file_path"], content)
    return record


def stored_import(mock_db) -> dict:
    return mock_db.get_table("imports")[0]


class TestAnalysisServiceRun:
    """Tests for AnalysisService.run()"""

    def test_analysis_populates_rows_and_counts(self, mock_db, sample_workbook):
        record = processing_import(mock_db, sample_workbook)

        status = AnalysisService().run(record["id"])

        assert status == ImportStatus.READY_FOR_REVIEW
        stored = stored_import(mock_db)
        assert stored["status"] == "ready_for_review"
        assert stored["total_rows"] == 3
        assert stored["valid_rows"] == 2
        assert stored["warning_rows"] == 1
        assert stored["error_rows"] == 1
        assert stored["processed_at"] is not None

        rows = sorted(mock_db.get_table("import_rows"), key=lambda r: r["row_number"])
        assert [r["row_number"] for r in rows] == [1, 2, 3]
        assert all(r["is_approved"] is False and r["version"] == 1 for r in rows)

    def test_rerun_replaces_previous_rows(self, mock_db, sample_workbook):
        record = processing_import(mock_db, sample_workbook)
        mock_db.set_table_data("import_rows", ImportRowFactory.create_batch(record["id"], 5))

        AnalysisService().run(record["id"])

        assert len(mock_db.get_table("import_rows")) == 3

    def test_bad_file_marks_failed(self, mock_db):
        record = processing_import(mock_db, build_workbook([{"Nom": "x"}]))

        status = AnalysisService().run(record["id"])

        assert status == ImportStatus.FAILED
        stored = stored_import(mock_db)
        assert stored["status"] == "failed"
        assert "Missing required columns" in stored["error_message"]

    def test_missing_blob_marks_failed(self, mock_db):
        record = ImportFactory.create_processing()
        mock_db.set_table_data("imports", [record])

        status = AnalysisService().run(record["id"])

        assert status == ImportStatus.FAILED
        assert stored_import(mock_db)["error_message"] == "Storage download failed"

    def test_crash_keeps_rows_already_written(self, mock_db, monkeypatch):
        lines = [sheet_line(**{"Réf. contrat*": f"CTR-{n}"}) for n in range(3)]
        record = processing_import(mock_db, build_workbook(lines))
        monkeypatch.setattr("services.analysis_service.INSERT_BATCH_SIZE", 2)

        original_insert = mock_db._insert
        calls = {"n": 0}

        def flaky_insert(table_name, payload):
            if table_name == "import_rows":
                calls["n"] += 1
                if calls["n"] == 2:
                    raise Exception("connection reset")
            return original_insert(table_name, payload)

        monkeypatch.setattr(mock_db, "_insert", flaky_insert)

        status = AnalysisService().run(record["id"])

        assert status == ImportStatus.FAILED
        assert stored_import(mock_db)["error_message"] == "connection reset"
        assert len(mock_db.get_table("import_rows")) == 2

    def test_cancelled_analysis_is_not_overwritten(self, mock_db, sample_workbook, monkeypatch):
        record = processing_import(mock_db, sample_workbook)
        service = AnalysisService()
        original_replace = service._replace_rows

        def replace_then_cancel(import_id, parsed):
            original_replace(import_id, parsed)
            stored_import(mock_db)["status"] = "failed"

        monkeypatch.setattr(service, "_replace_rows", replace_then_cancel)

        status = service.run(record["id"])

        assert status == ImportStatus.FAILED
        assert stored_import(mock_db)["status"] == "failed"

    def test_not_processing_is_skipped(self, mock_db, sample_workbook):
        record = processing_import(mock_db, sample_workbook, status="ready_for_review")

        status = AnalysisService().run(record["id"])

        assert status == ImportStatus.READY_FOR_REVIEW
        assert mock_db.get_table("import_rows") == []

    def test_unknown_import(self, mock_db):
        with pytest.raises(ImportNotFoundError):
            AnalysisService().run("missing")
