"""
Review controller.

Drives one reviewer session over an import: waits for analysis while the
import is uploaded or processing, exposes rows and counters, forwards
approvals and edits, and finalizes.

Mutations are refused locally once the import is read-only; the services
behind it enforce the same rules again.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional
import time
import structlog

from models.case import CaseResponse
from models.imports import (
    FinalizeResult,
    ImportResponse,
    ImportStatusSnapshot,
    is_polling_status,
)
from models.import_row import ImportRowResponse, ReviewSummary, RowStatus
from services.import_service import ImportService, get_import_service
from services.import_row_service import ImportRowService, get_import_row_service
from services.finalize_service import FinalizeService, get_finalize_service
from services.provenance_service import ProvenanceService, get_provenance_service
from services.status_poller import ImportStatusPoller
from exceptions import ImportReadOnlyError, NoApprovedRowsError

logger = structlog.get_logger(__name__)


@dataclass
class FinalizeOutcome:
    """Finalize counts plus the cases now traceable to the import."""
    result: FinalizeResult
    cases: list[CaseResponse] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return self.result.created_count

    @property
    def error_count(self) -> int:
        return self.result.error_count


class ReviewController:
    """
    One review session over one import.
    """

    def __init__(
        self,
        import_id: str,
        import_service: Optional[ImportService] = None,
        row_service: Optional[ImportRowService] = None,
        finalize_service: Optional[FinalizeService] = None,
        provenance_service: Optional[ProvenanceService] = None,
        poll_interval: Optional[float] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.import_id = import_id
        self.imports = import_service or get_import_service()
        self.rows_service = row_service or get_import_row_service()
        self.finalizer = finalize_service or get_finalize_service()
        self.provenance = provenance_service or get_provenance_service()
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        self._poller: Optional[ImportStatusPoller] = None
        self.record: ImportResponse = self.imports.get_by_id(import_id)

    # ===================
    # STATE
    # ===================

    def refresh(self) -> ImportResponse:
        self.record = self.imports.get_by_id(self.import_id)
        return self.record

    @property
    def is_read_only(self) -> bool:
        return self.record.is_read_only

    def rows(self, status: Optional[RowStatus] = None) -> list[ImportRowResponse]:
        return self.rows_service.list_rows(self.import_id, status)

    def summary(self) -> ReviewSummary:
        """Counters over the rows as they are now."""
        return self.rows_service.summary(self.import_id)

    # ===================
    # POLLING
    # ===================

    def watch(
        self,
        on_update: Optional[Callable[[ImportStatusSnapshot], None]] = None,
        max_wait_seconds: Optional[float] = None
    ) -> Optional[ImportStatusSnapshot]:
        """
        Block until the import leaves uploaded/processing.

        Returns immediately, without polling, if it already has.

        Raises:
            AnalysisTimeoutError: If max_wait_seconds elapses first
        """
        if not is_polling_status(self.record.status):
            return None

        self._poller = ImportStatusPoller(
            self.import_id,
            fetch=lambda: self.imports.observe_status(self.import_id),
            interval=self.poll_interval,
            max_wait_seconds=max_wait_seconds,
            sleep=self._sleep,
            clock=self._clock,
        )
        snapshot = self._poller.run(on_update)

        if snapshot is not None and not snapshot.keep_polling:
            self.refresh()
        return snapshot

    def close(self) -> None:
        """Stop any running poll."""
        if self._poller is not None:
            self._poller.cancel()

    # ===================
    # MUTATIONS
    # ===================

    def toggle_approval(self, row_id: str, approved: bool) -> ImportRowResponse:
        self._ensure_editable()
        return self.rows_service.toggle_approval(row_id, approved)

    def approve_all_valid(self) -> int:
        self._ensure_editable()
        return self.rows_service.approve_all_valid(self.import_id)

    def edit_field(
        self,
        row_id: str,
        field_name: str,
        value: Any,
        expected_version: Optional[int] = None
    ) -> ImportRowResponse:
        self._ensure_editable()
        return self.rows_service.edit_field(row_id, field_name, value, expected_version)

    def finalize(self) -> FinalizeOutcome:
        """
        Finalize every approved row of the import.

        Raises:
            ImportReadOnlyError: If the import is read-only
            NoApprovedRowsError: If no row is approved; the finalizer is not
                called
        """
        self._ensure_editable()

        approved_ids = self.rows_service.approved_row_ids(self.import_id)
        if not approved_ids:
            raise NoApprovedRowsError(self.import_id)

        result = self.finalizer.run(self.import_id, approved_ids)
        self.refresh()

        cases = self.provenance.cases_for_import(self.import_id)

        logger.info(
            "review_finalized",
            import_id=self.import_id,
            created_count=result.created_count,
            error_count=result.error_count,
            cases=len(cases)
        )
        return FinalizeOutcome(result=result, cases=cases)

    def _ensure_editable(self) -> None:
        if self.is_read_only:
            raise ImportReadOnlyError(self.import_id, self.record.status.value)
