import asyncio
import logging
from typing import Optional
from supabase import Client

from calmy.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

__all__ = ["SupabaseAuthVerifier", "parse_bearer"]


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Returns the token of an 'Authorization: Bearer <token>' header, or None."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class SupabaseAuthVerifier:
    """Resolves Supabase access tokens to user ids through Supabase Auth."""

    def __init__(self, client: Client):
        self.client = client

    async def verify(self, token: str) -> str:
        """
        Get the id of the user owning the access token.

        Args:
            token: The Supabase access token (JWT)

        Returns:
            str: The user's id

        Raises:
            AuthenticationError: If the token is invalid, expired or unknown
        """
        try:
            response = await asyncio.to_thread(self.client.auth.get_user, token)
        except Exception as e:
            logger.warning(f"Token validation failed: {e}")
            raise AuthenticationError("Could not validate credentials") from e

        user = getattr(response, "user", None)
        if user is None or not getattr(user, "id", None):
            logger.warning("Token validation returned no user")
            raise AuthenticationError("Could not validate credentials")
        return str(user.id)
