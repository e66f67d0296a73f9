"""
Imports API routes.

Upload, analysis, review and finalize of case spreadsheets.
"""

from fastapi import APIRouter, BackgroundTasks, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from config import settings
from models.imports import (
    AnalysisAccepted,
    FinalizeRequest,
    FinalizeResult,
    ImportListResponse,
    ImportResponse,
    ImportStatus,
    ImportStatusSnapshot,
)
from models.import_row import (
    ApproveAllResponse,
    EditFieldRequest,
    ImportRowListResponse,
    ImportRowResponse,
    ReviewSummary,
    RowStatus,
    ToggleApprovalRequest,
)
from models.case import ImportCasesResponse
from services.import_service import get_import_service
from services.import_row_service import get_import_row_service
from services.analysis_service import get_analysis_service
from services.finalize_service import get_finalize_service
from services.provenance_service import get_provenance_service
from exceptions import AppError, ImportRowNotFoundError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/imports", tags=["Imports"])


def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


def run_analysis(import_id: str) -> None:
    """Background job body."""
    get_analysis_service().run(import_id)


# ===================
# IMPORT ROUTES
# ===================

@router.post("", response_model=ImportResponse, status_code=201)
async def upload_import(
    file: UploadFile = File(..., description="Case spreadsheet (.xlsx)"),
    bank_id: str = Form(..., description="Bank the cases belong to"),
    uploaded_by: Optional[str] = Form(None, description="Uploading user")
):
    """
    Upload a case spreadsheet.

    Stores the file and registers the import in status uploaded.
    """
    try:
        contents = await file.read()
        service = get_import_service()
        return service.create(
            bank_id=bank_id,
            uploaded_by=uploaded_by,
            file_name=file.filename or "import.xlsx",
            content=contents
        )
    except Exception as e:
        return handle_error(e)


@router.get("", response_model=ImportListResponse)
async def list_imports(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    status: Optional[ImportStatus] = Query(None, description="Filter by status"),
    bank_id: Optional[str] = Query(None, description="Filter by bank")
):
    """List imports, newest first."""
    try:
        service = get_import_service()
        imports, total = service.get_all(
            page=page,
            page_size=page_size,
            status=status,
            bank_id=bank_id
        )

        total_pages = (total + page_size - 1) // page_size

        return ImportListResponse(
            data=imports,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages
        )
    except Exception as e:
        return handle_error(e)


@router.get("/{import_id}", response_model=ImportResponse)
async def get_import(import_id: str):
    """Get a single import."""
    try:
        return get_import_service().get_by_id(import_id)
    except Exception as e:
        return handle_error(e)


@router.get("/{import_id}/status", response_model=ImportStatusSnapshot)
async def get_import_status(import_id: str):
    """
    Current status and counters.

    Clients poll this every few seconds while the status is uploaded or
    processing.
    """
    try:
        return get_import_service().observe_status(import_id)
    except Exception as e:
        return handle_error(e)


@router.get("/{import_id}/file-url")
async def get_import_file_url(import_id: str):
    """Signed download URL of the uploaded spreadsheet."""
    try:
        url = get_import_service().get_file_url(import_id)
        return {"url": url, "expires_in": settings.signed_url_expiry_seconds}
    except Exception as e:
        return handle_error(e)


# ===================
# STATUS ROUTES
# ===================

@router.post("/{import_id}/analyze", response_model=AnalysisAccepted, status_code=202)
async def analyze_import(import_id: str, background_tasks: BackgroundTasks):
    """
    Start analysis of an uploaded import.

    Returns as soon as the job is accepted; poll the status endpoint.
    """
    try:
        record = get_import_service().request_analysis(import_id)
        background_tasks.add_task(run_analysis, import_id)

        return AnalysisAccepted(
            import_id=import_id,
            status=record.status,
            poll_interval_seconds=settings.poll_interval_seconds
        )
    except Exception as e:
        return handle_error(e)


@router.post("/{import_id}/cancel", response_model=ImportResponse)
async def cancel_analysis(import_id: str):
    """Mark a processing import failed."""
    try:
        return get_import_service().cancel_analysis(import_id)
    except Exception as e:
        return handle_error(e)


@router.post("/{import_id}/reject", response_model=ImportResponse)
async def reject_import(import_id: str):
    """Close an import without creating cases."""
    try:
        return get_import_service().reject(import_id)
    except Exception as e:
        return handle_error(e)


# ===================
# ROW ROUTES
# ===================

@router.get("/{import_id}/rows", response_model=ImportRowListResponse)
async def list_import_rows(
    import_id: str,
    status: Optional[RowStatus] = Query(None, description="Filter by row status")
):
    """Rows of an import in source order."""
    try:
        get_import_service().get_by_id(import_id)
        rows = get_import_row_service().list_rows(import_id, status)
        return ImportRowListResponse(data=rows, total=len(rows))
    except Exception as e:
        return handle_error(e)


@router.get("/{import_id}/summary", response_model=ReviewSummary)
async def get_review_summary(import_id: str):
    """Row counters by status and approval."""
    try:
        get_import_service().get_by_id(import_id)
        return get_import_row_service().summary(import_id)
    except Exception as e:
        return handle_error(e)


@router.patch("/{import_id}/rows/{row_id}", response_model=ImportRowResponse)
async def edit_import_row(import_id: str, row_id: str, data: EditFieldRequest):
    """
    Edit one field of a row.

    The row is re-validated. Send expected_version to be told about
    concurrent edits instead of overwriting them.
    """
    try:
        service = get_import_row_service()
        _ensure_row_of_import(service, import_id, row_id)
        return service.edit_field(row_id, data.field, data.value, data.expected_version)
    except Exception as e:
        return handle_error(e)


@router.post("/{import_id}/rows/{row_id}/approval", response_model=ImportRowResponse)
async def toggle_row_approval(import_id: str, row_id: str, data: ToggleApprovalRequest):
    """Approve or un-approve a row. Rows with errors cannot be approved."""
    try:
        service = get_import_row_service()
        _ensure_row_of_import(service, import_id, row_id)
        return service.toggle_approval(row_id, data.approved)
    except Exception as e:
        return handle_error(e)


@router.post("/{import_id}/approve-all", response_model=ApproveAllResponse)
async def approve_all_rows(import_id: str):
    """Approve every row without errors."""
    try:
        count = get_import_row_service().approve_all_valid(import_id)
        return ApproveAllResponse(import_id=import_id, approved_count=count)
    except Exception as e:
        return handle_error(e)


# ===================
# FINALIZE ROUTES
# ===================

@router.post("/{import_id}/finalize", response_model=FinalizeResult)
async def finalize_import(import_id: str, data: Optional[FinalizeRequest] = None):
    """
    Create debtors and cases from approved rows.

    Without explicit row ids, every approved row of the import is used.
    """
    try:
        row_ids = data.approved_row_ids if data else []
        if not row_ids:
            row_ids = get_import_row_service().approved_row_ids(import_id)

        return get_finalize_service().run(import_id, row_ids)
    except Exception as e:
        return handle_error(e)


@router.get("/{import_id}/cases", response_model=ImportCasesResponse)
async def get_import_cases(import_id: str):
    """Cases created from an import."""
    try:
        get_import_service().get_by_id(import_id)
        cases = get_provenance_service().cases_for_import(import_id)
        return ImportCasesResponse(import_id=import_id, data=cases, total=len(cases))
    except Exception as e:
        return handle_error(e)


def _ensure_row_of_import(service, import_id: str, row_id: str) -> None:
    row = service.get_row(row_id)
    if row.import_id != import_id:
        raise ImportRowNotFoundError(row_id)
