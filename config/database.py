"""
Database connection management.

Provides Supabase client singletons for database and storage operations.
"""

from supabase import create_client, Client
from functools import lru_cache
from typing import Optional
import structlog

from config.settings import settings

logger = structlog.get_logger(__name__)


class DatabaseError(Exception):
    """Base exception for database errors."""
    pass


class ConnectionError(DatabaseError):
    """Failed to connect to database."""
    pass


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get cached Supabase client instance.

    Uses lru_cache to ensure only one client is created.
    Call get_supabase_client.cache_clear() to reconnect.

    Returns:
        Client: Supabase client

    Raises:
        ConnectionError: If connection fails
    """
    try:
        logger.info(
            "connecting_to_supabase",
            url=settings.supabase_url[:30] + "..."  # Log partial URL only
        )

        client = create_client(
            settings.supabase_url,
            settings.supabase_key
        )

        # Test connection with simple query
        client.table("imports").select("id").limit(1).execute()

        logger.info(
            "supabase_connected",
            status="success"
        )

        return client

    except Exception as e:
        logger.error(
            "supabase_connection_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        raise ConnectionError(f"Failed to connect to Supabase: {e}") from e


@lru_cache()
def get_admin_client() -> Optional[Client]:
    """
    Get Supabase client with service role key (admin access).

    Only available if SUPABASE_SERVICE_KEY is configured.
    The analysis and finalize workers use it to bypass row level security.

    Returns:
        Client: Admin Supabase client, or None if not configured
    """
    if not settings.supabase_service_key:
        logger.warning("admin_client_not_configured")
        return None

    try:
        return create_client(
            settings.supabase_url,
            settings.supabase_service_key
        )
    except Exception as e:
        logger.error(
            "admin_client_failed",
            error=str(e)
        )
        return None


def get_worker_client() -> Client:
    """Client for background workers: service role when configured, anon otherwise."""
    return get_admin_client() or get_supabase_client()


# ===================
# HELPER FUNCTIONS
# ===================

def check_connection() -> dict:
    """
    Check database connection health.

    Returns:
        dict: Connection status with details
    """
    try:
        client = get_supabase_client()

        imports = client.table("imports").select("id", count="exact").limit(1).execute()
        pending = (
            client.table("imports")
            .select("id", count="exact")
            .in_("status", ["uploaded", "processing", "ready_for_review"])
            .limit(1)
            .execute()
        )

        return {
            "status": "healthy",
            "imports_count": imports.count,
            "open_imports_count": pending.count
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }
