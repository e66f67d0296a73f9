"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ExternalServiceError,
    DatabaseError,

    # Import registry
    ImportNotFoundError,
    BankNotFoundError,
    UploadFailedError,
    InvalidStatusTransitionError,
    AnalysisAlreadyRunningError,
    AnalysisError,
    AnalysisTimeoutError,
    ImportReadOnlyError,
    ImportAlreadyFinalizedError,

    # Row store
    ImportRowNotFoundError,
    RowHasErrorsError,
    RowVersionConflictError,
    UnknownFieldError,
    NoApprovedRowsError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",
    "DatabaseError",

    # Import registry
    "ImportNotFoundError",
    "BankNotFoundError",
    "UploadFailedError",
    "InvalidStatusTransitionError",
    "AnalysisAlreadyRunningError",
    "AnalysisError",
    "AnalysisTimeoutError",
    "ImportReadOnlyError",
    "ImportAlreadyFinalizedError",

    # Row store
    "ImportRowNotFoundError",
    "RowHasErrorsError",
    "RowVersionConflictError",
    "UnknownFieldError",
    "NoApprovedRowsError",
]
