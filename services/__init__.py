"""
Business logic services.

Each service handles one stage of the import pipeline. The analyzer lives in
services.analysis_service and is imported from there directly, since it
depends on the parsers package.
"""

from services.blob_store import BlobStore, BlobStoreError, get_blob_store
from services.import_service import ImportService, get_import_service
from services.import_row_service import ImportRowService, get_import_row_service
from services.finalize_service import FinalizeService, get_finalize_service
from services.provenance_service import ProvenanceService, get_provenance_service
from services.status_poller import ImportStatusPoller
from services.review_service import ReviewController

__all__ = [
    "BlobStore",
    "BlobStoreError",
    "get_blob_store",
    "ImportService",
    "get_import_service",
    "ImportRowService",
    "get_import_row_service",
    "FinalizeService",
    "get_finalize_service",
    "ProvenanceService",
    "get_provenance_service",
    "ImportStatusPoller",
    "ReviewController",
]
