import logging
from typing import Optional
from supabase import create_client, Client

from calmy.core.config import settings

logger = logging.getLogger(__name__)

# Global client instance with type hint
_supabase_client: Optional[Client] = None

def get_supabase_client() -> Client:
    """
    Get or create a Supabase client instance.
    Implements singleton pattern to reuse the same client.

    Returns:
        Client: The Supabase client instance

    Raises:
        RuntimeError: If Supabase credentials are missing or the client cannot be created
    """
    global _supabase_client
    if _supabase_client is None:
        url = settings.SUPABASE_URL
        key = settings.SUPABASE_KEY
        if not url or not key:
            logger.error("Supabase credentials missing in environment variables.")
            raise RuntimeError("Supabase credentials missing.")

        try:
            _supabase_client = create_client(url, key)
            logger.info("Supabase client created")
        except Exception as e:
            logger.error(f"Failed to create Supabase client: {e}")
            raise RuntimeError(f"Failed to create Supabase client: {e}") from e

    return _supabase_client
