"""
Import row schemas and the row status rule.
"""

from pydantic import Field, computed_field
from typing import Any, Optional
from enum import Enum

from models.base import BaseSchema


class RowStatus(str, Enum):
    """Review status of a row, derived from its validation results."""
    OK = "ok"
    WARNINGS = "warnings"
    ERRORS = "errors"


class ValidationIssue(BaseSchema):
    """One validation finding on a row field."""

    field: str
    message: str


def derive_row_status(errors: list, warnings: list) -> RowStatus:
    """
    Row status as a pure function of its findings.

    errors present → ERRORS; otherwise warnings present → WARNINGS; else OK.
    """
    if errors:
        return RowStatus.ERRORS
    if warnings:
        return RowStatus.WARNINGS
    return RowStatus.OK


class ImportRowResponse(BaseSchema):
    """One spreadsheet line proposed as a future debtor + case."""

    id: str
    import_id: str
    row_number: int = Field(ge=1)
    proposed_record: dict[str, Any] = Field(default_factory=dict)
    raw_record: Optional[dict[str, Any]] = None
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    is_approved: bool = False
    version: int = 1
    # Set by finalize once the row produced a case
    case_id: Optional[str] = None
    case_reference: Optional[str] = None

    @computed_field
    @property
    def status(self) -> RowStatus:
        return derive_row_status(self.errors, self.warnings)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class ImportRowListResponse(BaseSchema):
    """Rows of one import, in source order."""

    data: list[ImportRowResponse]
    total: int


class EditFieldRequest(BaseSchema):
    """Inline edit of one proposed-record field."""

    field: str = Field(min_length=1)
    value: Any = None
    expected_version: Optional[int] = Field(
        None,
        ge=1,
        description="Row version the edit is based on; omit for last-write-wins"
    )


class ToggleApprovalRequest(BaseSchema):
    """Approve or un-approve one row."""

    approved: bool


class ApproveAllResponse(BaseSchema):
    """Result of approving every error-free row."""

    import_id: str
    approved_count: int = Field(description="Rows newly approved by this call")


class ReviewSummary(BaseSchema):
    """Counters recomputed over the current row set."""

    total: int = 0
    ok: int = 0
    warnings: int = 0
    errors: int = 0
    approved: int = 0

    @classmethod
    def from_rows(cls, rows: list[ImportRowResponse]) -> "ReviewSummary":
        summary = cls(total=len(rows))
        for row in rows:
            status = row.status
            if status == RowStatus.ERRORS:
                summary.errors += 1
            elif status == RowStatus.WARNINGS:
                summary.warnings += 1
            else:
                summary.ok += 1
            if row.is_approved:
                summary.approved += 1
        return summary
