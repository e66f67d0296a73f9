"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema
from models.imports import (
    ImportStatus,
    IMPORT_STATUS_TRANSITIONS,
    is_valid_status_transition,
    is_polling_status,
    is_editable_status,
    ImportResponse,
    ImportListResponse,
    ImportStatusSnapshot,
    FinalizeRequest,
    FinalizeRowError,
    FinalizeResult,
    AnalysisAccepted,
)
from models.import_row import (
    RowStatus,
    ValidationIssue,
    derive_row_status,
    ImportRowResponse,
    ImportRowListResponse,
    EditFieldRequest,
    ToggleApprovalRequest,
    ApproveAllResponse,
    ReviewSummary,
)
from models.proposed_record import (
    DebtorType,
    IndividualRecord,
    CompanyRecord,
    AMOUNT_FIELDS,
    EDITABLE_FIELDS,
    parse_proposed_record,
)
from models.case import CaseResponse, ImportCasesResponse

__all__ = [
    # Base
    "BaseSchema",
    # Imports
    "ImportStatus",
    "IMPORT_STATUS_TRANSITIONS",
    "is_valid_status_transition",
    "is_polling_status",
    "is_editable_status",
    "ImportResponse",
    "ImportListResponse",
    "ImportStatusSnapshot",
    "FinalizeRequest",
    "FinalizeRowError",
    "FinalizeResult",
    "AnalysisAccepted",
    # Import rows
    "RowStatus",
    "ValidationIssue",
    "derive_row_status",
    "ImportRowResponse",
    "ImportRowListResponse",
    "EditFieldRequest",
    "ToggleApprovalRequest",
    "ApproveAllResponse",
    "ReviewSummary",
    # Proposed records
    "DebtorType",
    "IndividualRecord",
    "CompanyRecord",
    "AMOUNT_FIELDS",
    "EDITABLE_FIELDS",
    "parse_proposed_record",
    # Cases
    "CaseResponse",
    "ImportCasesResponse",
]
