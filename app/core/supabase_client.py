# app/core/supabase_client.py
from functools import lru_cache
from supabase import create_client, Client

from app.core.config import get_settings

settings = get_settings()


@lru_cache
def supabase_admin() -> Client:
    """
    Service-role Supabase client, used only for the private documents
    bucket (bank transfer receipts and carrier labels).

    Built lazily so the API boots without storage credentials; the first
    upload then fails with a clear error instead.

    Raises:
        RuntimeError: if SUPABASE_SERVICE_ROLE_KEY is not configured.
    """
    if not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY is required for document uploads")
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)


def documents_bucket():
    """Storage handle for ``settings.STORAGE_BUCKET``."""
    return supabase_admin().storage.from_(settings.STORAGE_BUCKET)
