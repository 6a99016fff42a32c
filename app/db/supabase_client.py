"""Shared Supabase client for database, storage and auth admin calls."""

from functools import lru_cache

from supabase import Client, create_client

from app.core.config import get_settings


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Return the process-wide Supabase client.

    The client authenticates with the service role key. Tenant isolation is
    applied by the db modules, which always filter on ``user_id``.

    Raises:
        RuntimeError: If the URL or key is missing or the client cannot be built
    """
    settings = get_settings()
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise RuntimeError(f"Could not create Supabase client: {e}") from e
