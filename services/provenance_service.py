"""
Provenance lookup.

Cases carry no reference to the import that created them. The link lives in
audit_logs entries written at case creation, which are never pruned.
"""

from typing import Optional
import structlog

from config import get_supabase_client
from models.case import CaseResponse
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)


class ProvenanceService:
    """Service for tracing cases back to their import."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "audit_logs"

    def case_ids_for_import(self, import_id: str) -> list[str]:
        """IDs of cases created from an import, in creation order."""
        try:
            result = (
                self.db.table(self.table)
                .select("record_id, new_data, created_at")
                .eq("table_name", "cases")
                .eq("operation", "INSERT")
                .contains("new_data", {"source": "import", "import_id": import_id})
                .order("created_at")
                .execute()
            )
        except Exception as e:
            logger.error("provenance_lookup_failed", import_id=import_id, error=str(e))
            raise DatabaseError("select", str(e))

        return list(dict.fromkeys(entry["record_id"] for entry in result.data or []))

    def cases_for_import(self, import_id: str) -> list[CaseResponse]:
        """
        Cases created from an import, oldest first.

        Returns:
            Empty list for an import that created nothing
        """
        case_ids = self.case_ids_for_import(import_id)
        if not case_ids:
            return []

        try:
            result = (
                self.db.table("cases")
                .select("*")
                .in_("id", case_ids)
                .order("created_at")
                .execute()
            )
        except Exception as e:
            logger.error("provenance_cases_load_failed", import_id=import_id, error=str(e))
            raise DatabaseError("select", str(e))

        logger.debug("provenance_cases_loaded", import_id=import_id, count=len(result.data))
        return [CaseResponse.model_validate(row) for row in result.data]


# Singleton instance
_provenance_service: Optional[ProvenanceService] = None


def get_provenance_service() -> ProvenanceService:
    """Get or create ProvenanceService instance."""
    global _provenance_service
    if _provenance_service is None:
        _provenance_service = ProvenanceService()
    return _provenance_service
