"""
Database connection management.

Provides the Supabase client used for both the catalog tables and the
storage bucket. The application opens it in the FastAPI lifespan and resets
it on shutdown; services take it as a constructor argument and only fall
back to the cached instance when none is injected.
"""

from supabase import create_client, Client, ClientOptions
from functools import lru_cache
import structlog

from config.settings import settings

logger = structlog.get_logger(__name__)


class DatabaseConnectionError(Exception):
    """Failed to connect to database."""
    pass


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get cached Supabase client instance.

    Uses lru_cache to ensure only one client is created.
    Call reset_connection() to reconnect.

    Returns:
        Client: Supabase client

    Raises:
        DatabaseConnectionError: If connection fails
    """
    try:
        logger.info(
            "connecting_to_supabase",
            url=settings.supabase_url[:30] + "..."  # Log partial URL only
        )

        client = create_client(
            settings.supabase_url,
            settings.supabase_service_key or settings.supabase_key,
            options=ClientOptions(
                storage_client_timeout=settings.storage_timeout_seconds
            ),
        )

        # Test connection with simple query
        client.table("stores").select("id").limit(1).execute()

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
        raise DatabaseConnectionError(f"Failed to connect to Supabase: {e}") from e


# Convenience alias
db = get_supabase_client


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

        stores = client.table("stores").select("id", count="exact").execute()
        imports = client.table("bulk_imports").select("id", count="exact").execute()

        return {
            "status": "healthy",
            "stores_count": stores.count,
            "imports_count": imports.count
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }


def reset_connection():
    """
    Reset the cached database connection.

    Called on shutdown, or when the connection becomes stale.
    """
    get_supabase_client.cache_clear()
    logger.info("database_connection_reset")
