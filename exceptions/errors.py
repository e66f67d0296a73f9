"""
Custom exception classes for the application.

Every error carries a stable code, an HTTP status and a details dict so
routes can render it as {"error": {...}} without extra mapping.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "IMPORT_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# IMPORT REGISTRY ERRORS
# ===================

class ImportNotFoundError(NotFoundError):
    """Import batch not found."""

    def __init__(self, import_id: str):
        super().__init__(
            resource="Import",
            identifier=import_id,
            code="IMPORT_NOT_FOUND"
        )


class BankNotFoundError(NotFoundError):
    """Bank selected for an import does not exist."""

    def __init__(self, bank_id: str):
        super().__init__(
            resource="Bank",
            identifier=bank_id,
            code="BANK_NOT_FOUND"
        )


class UploadFailedError(ExternalServiceError):
    """Blob store rejected the spreadsheet; the import record was rolled back."""

    def __init__(self, file_name: str, reason: str):
        super().__init__(
            service="storage",
            message="Failed to upload spreadsheet",
            details={"file_name": file_name, "reason": reason}
        )
        self.code = "UPLOAD_FAILED"


class InvalidStatusTransitionError(ValidationError):
    """Import status cannot move from current to requested state."""

    def __init__(self, current_status: str, new_status: str):
        super().__init__(
            code="INVALID_STATUS_TRANSITION",
            message=f"Cannot transition import from {current_status} to {new_status}",
            details={
                "current_status": current_status,
                "new_status": new_status,
            }
        )


class AnalysisAlreadyRunningError(ConflictError):
    """Analysis requested while the import is already processing."""

    def __init__(self, import_id: str):
        super().__init__(
            code="ANALYSIS_ALREADY_RUNNING",
            message="Import is already being analyzed",
            details={"import_id": import_id}
        )


class AnalysisError(AppError):
    """Analyzer could not interpret the spreadsheet."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="ANALYSIS_FAILED",
            message=message,
            status_code=422,
            details=details
        )


class AnalysisTimeoutError(AppError):
    """Import stayed in processing longer than the caller was willing to wait."""

    def __init__(self, import_id: str, waited_seconds: float):
        super().__init__(
            code="ANALYSIS_TIMEOUT",
            message="Analysis did not finish in time",
            status_code=504,
            details={"import_id": import_id, "waited_seconds": waited_seconds}
        )


class ImportReadOnlyError(ConflictError):
    """Review mutation attempted on an import that no longer accepts edits."""

    def __init__(self, import_id: str, status: str):
        super().__init__(
            code="IMPORT_READ_ONLY",
            message=f"Import is {status} and can no longer be edited",
            details={"import_id": import_id, "status": status}
        )


class ImportAlreadyFinalizedError(ConflictError):
    """Finalize called for an import that was already finalized."""

    def __init__(self, import_id: str):
        super().__init__(
            code="IMPORT_ALREADY_FINALIZED",
            message="Import has already been finalized",
            details={"import_id": import_id}
        )


# ===================
# ROW STORE ERRORS
# ===================

class ImportRowNotFoundError(NotFoundError):
    """Import row not found."""

    def __init__(self, row_id: str):
        super().__init__(
            resource="Import row",
            identifier=row_id,
            code="IMPORT_ROW_NOT_FOUND"
        )


class RowHasErrorsError(ValidationError):
    """A row with blocking errors cannot be approved."""

    def __init__(self, row_id: str, errors: list[dict]):
        super().__init__(
            code="ROW_HAS_ERRORS",
            message="Rows with validation errors cannot be approved",
            details={"row_id": row_id, "errors": errors}
        )


class RowVersionConflictError(ConflictError):
    """Row was modified by someone else since the caller read it."""

    def __init__(self, row_id: str, expected_version: int, current_version: int):
        super().__init__(
            code="ROW_VERSION_CONFLICT",
            message="Row was modified by another reviewer",
            details={
                "row_id": row_id,
                "expected_version": expected_version,
                "current_version": current_version,
            }
        )


class UnknownFieldError(ValidationError):
    """Edit targets a field the proposed record does not declare."""

    def __init__(self, field: str):
        super().__init__(
            code="UNKNOWN_FIELD",
            message=f"Field {field} cannot be edited",
            details={"field": field}
        )


class NoApprovedRowsError(ValidationError):
    """Finalize requested without any approved row."""

    def __init__(self, import_id: str):
        super().__init__(
            code="NO_APPROVED_ROWS",
            message="At least one row must be approved before finalizing",
            details={"import_id": import_id}
        )
