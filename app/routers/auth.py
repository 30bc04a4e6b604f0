"""
FastAPI router for authentication.
Verifies Supabase Auth tokens of form owners calling authenticated endpoints.
"""

from functools import lru_cache

import httpx
import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, status

from app.config import settings
from app.services.credential_store import CredentialStore

logger = structlog.get_logger()

router = APIRouter(prefix="/api/auth", tags=["auth"])


@lru_cache
def get_credential_store() -> CredentialStore:
    return CredentialStore()


async def verify_token(authorization: str | None = Header(None)) -> dict:
    """
    Verify Supabase JWT token from Authorization header.

    Args:
        authorization: Authorization header value (Bearer <token>)

    Returns:
        User data from token

    Raises:
        HTTPException: If token is invalid or missing
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header is required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = parts[1]

    # Supabase's user endpoint validates the JWT and returns the user
    auth_url = f"{settings.supabase_url}/auth/v1/user"
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": settings.supabase_service_key,
    }

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(auth_url, headers=headers, timeout=10.0)
    except httpx.HTTPError as http_error:
        logger.error("HTTP error during token verification", error=str(http_error))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token verification failed",
            headers={"WWW-Authenticate": "Bearer"},
        ) from http_error

    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_data = response.json()
    if not user_data or not user_data.get("id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return {
        "user_id": user_data["id"],
        "email": user_data.get("email"),
        "user": user_data,
    }


@router.get("/me")
async def get_me(
    user_data: dict = Depends(verify_token),
    credential_store: CredentialStore = Depends(get_credential_store),
):
    """Return the caller and whether an Airtable credential is stored (tokens never leave)."""
    credential = credential_store.get_for_owner(user_data["user_id"])
    return {
        "user_id": user_data["user_id"],
        "email": user_data.get("email"),
        "airtable_connected": bool(credential and credential.access_token),
        "airtable_token_expires_at": credential.expires_at if credential else None,
    }
