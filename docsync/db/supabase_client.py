"""Supabase client shared by every db module.

Service role key, PostgREST only, bounded request timeout.
"""

from functools import lru_cache

from supabase import Client, ClientOptions, create_client

from docsync.core.config import get_settings


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Get the cached Supabase client.

    Raises:
        RuntimeError: If the client cannot be created from settings
    """
    settings = get_settings()
    options = ClientOptions(postgrest_client_timeout=settings.SUPABASE_TIMEOUT_SECONDS)
    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, options)
    except Exception as e:
        raise RuntimeError(f"Supabase client for {settings.SUPABASE_URL} could not be created: {e}") from e
