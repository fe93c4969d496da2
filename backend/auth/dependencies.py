"""
FastAPI dependency functions for authentication.

Verifies Supabase Auth bearer tokens (ES256, public keys from the project's
JWKS endpoint) and exposes the authenticated user to route handlers.
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Dict, NoReturn

from fastapi import Header, HTTPException, status
from jwt import PyJWKClient, decode
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError, PyJWKClientError

from backend.config import settings

logger = logging.getLogger(__name__)

_jwks_client: PyJWKClient | None = None


@dataclass
class AuthenticatedUser:
    """
    Represents an authenticated user with their token.

    Attributes:
        user_id: The user's UUID from the JWT token's 'sub' claim
        access_token: The raw JWT (used to build an RLS-scoped Supabase client)
    """
    user_id: str
    access_token: str


def get_jwks_client() -> PyJWKClient:
    """
    Get or lazily create the cached JWKS client.

    Raises:
        ValueError: If SUPABASE_URL is not configured
    """
    global _jwks_client

    if _jwks_client is None:
        jwks_url = settings.SUPABASE_JWKS_URL
        if not jwks_url:
            raise ValueError(
                "SUPABASE_URL is not configured. "
                "Cannot construct JWKS URL for JWT verification."
            )

        logger.info(f"Initializing JWKS client with URL: {jwks_url}")
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True, max_cached_keys=16)

    return _jwks_client


def _unauthorized(error: str, details: str) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "details": details}
    )


def _extract_bearer_token(authorization: str | None) -> str:
    if not authorization:
        logger.warning("Missing Authorization header")
        _unauthorized("unauthorized", "Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.warning("Invalid Authorization header format")
        _unauthorized("unauthorized", "Invalid Authorization header format")

    return parts[1]


def _decode_access_token(token: str) -> Dict[str, Any]:
    """Verify signature, expiry, audience and issuer; return the claims."""
    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)
        issuer = f"{settings.SUPABASE_URL.rstrip('/')}/auth/v1"

        return decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            audience="authenticated",
            issuer=issuer,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_aud": True,
                "verify_iss": True,
            }
        )

    except ExpiredSignatureError:
        logger.warning("Token has expired")
        _unauthorized("token_expired", "Authentication token has expired")

    except PyJWKClientError as e:
        logger.error(f"JWKS client error: {str(e)}")
        _unauthorized("jwks_error", "Unable to verify token signature")

    except InvalidTokenError as e:
        logger.warning(f"Invalid token: {str(e)}")
        _unauthorized("invalid_token", "Invalid authentication token")


async def get_authenticated_user(
    authorization: Annotated[str | None, Header()] = None
) -> AuthenticatedUser:
    """
    Verify the bearer token and return the authenticated user.

    The token is the only source of truth for user_id; a userId sent in a
    request body is checked against it by the route, never trusted alone.

    Raises:
        HTTPException: 401 if the token is missing, malformed, invalid or expired

    Usage:
        @router.post("/ai/chat")
        async def chat(
            auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
        ):
            gateway = SupabaseGateway(get_supabase_client(auth_user.access_token))
    """
    token = _extract_bearer_token(authorization)
    payload = _decode_access_token(token)

    user_id = payload.get("sub")
    if not user_id:
        logger.error("Token payload missing 'sub' claim")
        _unauthorized("unauthorized", "Invalid token: missing user ID")

    logger.info(f"Token verified for user_id={str(user_id)[:8]}...")
    return AuthenticatedUser(user_id=str(user_id), access_token=token)
