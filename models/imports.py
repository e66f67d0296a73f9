"""
Import batch schemas and the import status state machine.
"""

from pydantic import Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema


class ImportStatus(str, Enum):
    """Lifecycle of one bulk-upload batch."""
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    READY_FOR_REVIEW = "ready_for_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    FAILED = "failed"


# Allowed forward moves. FAILED keeps its rows, so it may be re-analyzed or
# finalized directly.
IMPORT_STATUS_TRANSITIONS: dict[ImportStatus, frozenset[ImportStatus]] = {
    ImportStatus.UPLOADED: frozenset({ImportStatus.PROCESSING}),
    ImportStatus.PROCESSING: frozenset({ImportStatus.READY_FOR_REVIEW, ImportStatus.FAILED}),
    ImportStatus.READY_FOR_REVIEW: frozenset({ImportStatus.APPROVED, ImportStatus.REJECTED}),
    ImportStatus.FAILED: frozenset({
        ImportStatus.PROCESSING,
        ImportStatus.APPROVED,
        ImportStatus.REJECTED,
    }),
    ImportStatus.APPROVED: frozenset(),
    ImportStatus.REJECTED: frozenset(),
}

# Status values the review view keeps polling on
POLLING_STATUSES = frozenset({ImportStatus.UPLOADED, ImportStatus.PROCESSING})

# Status values in which rows may be edited, approved and finalized
EDITABLE_STATUSES = frozenset({ImportStatus.READY_FOR_REVIEW, ImportStatus.FAILED})


def is_valid_status_transition(current: ImportStatus, new: ImportStatus) -> bool:
    """
    Check if an import status transition is allowed.

    Rules:
    - uploaded → processing → ready_for_review → approved | rejected
    - processing → failed
    - failed → processing (re-analysis), approved (finalize retry), rejected
    - approved and rejected are terminal
    """
    return new in IMPORT_STATUS_TRANSITIONS[current]


def is_polling_status(status: ImportStatus) -> bool:
    return status in POLLING_STATUSES


def is_editable_status(status: ImportStatus) -> bool:
    return status in EDITABLE_STATUSES


# ===================
# IMPORT SCHEMAS
# ===================

class ImportResponse(BaseSchema):
    """Import registry record."""

    id: str = Field(description="Import UUID")
    bank_id: str
    uploaded_by: Optional[str] = None
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    status: ImportStatus = ImportStatus.UPLOADED

    total_rows: int = 0
    valid_rows: int = 0
    warning_rows: int = 0
    error_rows: int = 0

    error_message: Optional[str] = None
    created_at: datetime
    processing_started_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None

    @property
    def is_read_only(self) -> bool:
        return not is_editable_status(self.status)


class ImportListResponse(BaseSchema):
    """List of imports with pagination."""

    data: list[ImportResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ImportStatusSnapshot(BaseSchema):
    """
    One status observation, as returned to a polling client.

    `keep_polling` tells the caller whether another read is warranted.
    """

    import_id: str
    status: ImportStatus
    total_rows: int = 0
    valid_rows: int = 0
    warning_rows: int = 0
    error_rows: int = 0
    error_message: Optional[str] = None

    @property
    def keep_polling(self) -> bool:
        return is_polling_status(self.status)


# ===================
# FINALIZE SCHEMAS
# ===================

class FinalizeRequest(BaseSchema):
    """Rows the reviewer approved for materialization."""

    approved_row_ids: list[str] = Field(
        default_factory=list,
        description="IDs of approved, error-free rows of this import"
    )


class FinalizeRowError(BaseSchema):
    """One row that passed validation but failed at materialization."""

    row_id: str
    row_number: int
    error: str


class FinalizeResult(BaseSchema):
    """Outcome of one finalize call."""

    import_id: str
    created_count: int = 0
    error_count: int = 0
    created_references: list[str] = Field(default_factory=list)
    errors: list[FinalizeRowError] = Field(default_factory=list)


class AnalysisAccepted(BaseSchema):
    """Returned when an analysis job was accepted."""

    import_id: str
    status: ImportStatus
    poll_interval_seconds: float
