"""
Supabase client for the catalog tables.

Every service reads `suppliers`, `field_mappings`, `products` and
`import_logs` through the one cached client returned here.
"""

from supabase import create_client, Client
from functools import lru_cache
from typing import Optional
import structlog

from config.settings import settings
from exceptions.errors import DatabaseError

logger = structlog.get_logger(__name__)


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get the cached Supabase client.

    The first call probes the suppliers table so a wrong URL or key fails
    at startup rather than on the first import.

    Raises:
        DatabaseError: If the client cannot reach the catalog
    """
    try:
        logger.info(
            "connecting_to_supabase",
            url=settings.supabase_url[:30] + "..."  # Log partial URL only
        )
        client = create_client(settings.supabase_url, settings.supabase_key)
        client.table("suppliers").select("id").limit(1).execute()
        logger.info("supabase_connected")
        return client

    except Exception as e:
        logger.error(
            "supabase_connection_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        raise DatabaseError("connect", str(e)) from e


def get_admin_client() -> Optional[Client]:
    """
    Client with the service role key, or None if SUPABASE_SERVICE_KEY is unset.

    The stale-run sweep uses it so it sees runs written by every worker.
    """
    if not settings.supabase_service_key:
        logger.warning("admin_client_not_configured")
        return None

    try:
        return create_client(settings.supabase_url, settings.supabase_service_key)
    except Exception as e:
        logger.error("admin_client_failed", error=str(e))
        return None


# ===================
# HEALTH
# ===================

def check_connection() -> dict:
    """
    Row counts of the catalog, or the error that prevented reading them.

    Returns:
        {"status": "healthy", "<table>_count": int, ..., "imports_running": int}
        or {"status": "unhealthy", "error": str}
    """
    try:
        client = get_supabase_client()
        status = {"status": "healthy"}
        for table in ("suppliers", "products"):
            result = client.table(table).select("id", count="exact").execute()
            status[f"{table}_count"] = result.count

        running = (
            client.table("import_logs")
            .select("id", count="exact")
            .eq("status", "processing")
            .execute()
        )
        status["imports_running"] = running.count
        return status

    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }
