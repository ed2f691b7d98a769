"""
Supabase connection used by the usage logger and the component catalog.
"""
from typing import Optional

from supabase import Client, create_client

from figbud.core.config import get_settings
from figbud.core.logging import get_logger

logger = get_logger(__name__)

_client: Optional[Client] = None
_client_attempted = False


def get_supabase_client() -> Optional[Client]:
    """
    Create (once) and return the Supabase client.

    Returns None when credentials are missing or invalid; callers treat that
    as "collaborator unavailable".
    """
    global _client, _client_attempted
    if _client_attempted:
        return _client
    _client_attempted = True

    settings = get_settings()
    supabase_url = settings.supabase_url
    supabase_key = settings.supabase_key

    if not supabase_url or not supabase_key:
        logger.warning(
            "supabase_credentials_missing",
            message="Check SUPABASE_URL and SUPABASE_SERVICE_KEY in .env",
        )
        return None

    if not supabase_url.startswith("http"):
        logger.error(
            "supabase_url_invalid",
            url=supabase_url,
            message="Should start with http:// or https://",
        )
        return None

    try:
        logger.info("supabase_client_creating", url_prefix=supabase_url[:30])
        _client = create_client(supabase_url, supabase_key)
        logger.info("supabase_client_created")
    except Exception as e:
        logger.error(
            "supabase_client_creation_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        _client = None
    return _client


def reset_supabase_client() -> None:
    global _client, _client_attempted
    _client = None
    _client_attempted = False
