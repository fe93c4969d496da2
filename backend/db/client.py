"""
Supabase client factory with RLS enforcement.

Every chat request gets its own client carrying the caller's JWT, so Row
Level Security scopes all gateway statements to the authenticated user.
The service_role key is never used by this backend.
"""

import logging

from backend.config import settings
from supabase import Client, create_client

logger = logging.getLogger(__name__)


def get_supabase_client(access_token: str) -> Client:
    """
    Create an authenticated Supabase client for a specific user.

    Args:
        access_token: The user's JWT access token, already verified by
                      backend/auth/dependencies.py.

    Returns:
        A Supabase client whose queries are subject to RLS
        (user_id = auth.uid()).

    Example:
        >>> client = get_supabase_client(auth_user.access_token)
        >>> gateway = SupabaseGateway(client)
        >>> await gateway.find(Entity.INVOICE, {"user_id": auth_user.user_id})
    """
    client: Client = create_client(
        supabase_url=settings.SUPABASE_URL,
        supabase_key=settings.SUPABASE_PUBLISHABLE_KEY
    )

    # The token's 'sub' claim becomes auth.uid() inside RLS policies
    client.auth.set_session(access_token, access_token)

    logger.debug("Created authenticated Supabase client with user token (RLS enforced)")

    return client
