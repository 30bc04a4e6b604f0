"""
Airtable OAuth token refresh service.
Exchanges a refresh token for a new access/refresh token pair. Pure request/response:
persisting the result is the credential store's job.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx
import structlog

from app.config import settings

logger = structlog.get_logger()


class TokenRefreshError(Exception):
    """Raised when Airtable refuses or fails to refresh a token."""

    pass


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None = None


class AirtableTokenRefreshService:
    """Service for refreshing Airtable OAuth tokens."""

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._http_client = http_client

    def _client_auth(self) -> httpx.BasicAuth | None:
        # Confidential clients authenticate with HTTP Basic; public clients send client_id only
        if settings.airtable_client_secret:
            return httpx.BasicAuth(settings.airtable_client_id, settings.airtable_client_secret)
        return None

    async def refresh(self, refresh_token: str | None) -> TokenSet:
        """
        Refresh an Airtable OAuth token.

        Args:
            refresh_token: The current refresh token.

        Returns:
            TokenSet with the new access token. refresh_token keeps the old value when
            Airtable does not rotate it.

        Raises:
            TokenRefreshError: missing refresh token, non-200 response, timeout, or
                a response without access_token.
        """
        if not refresh_token:
            raise TokenRefreshError("No refresh token available")
        if not settings.airtable_client_id:
            raise TokenRefreshError("Airtable client_id not configured")

        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": settings.airtable_client_id,
        }

        client = self._http_client or httpx.AsyncClient()
        try:
            response = await client.post(
                settings.airtable_token_url,
                data=form,
                auth=self._client_auth(),
                timeout=settings.airtable_request_timeout_seconds,
            )
        except httpx.TimeoutException as e:
            logger.error("Timeout refreshing Airtable token")
            raise TokenRefreshError("Timeout refreshing Airtable token") from e
        except httpx.RequestError as e:
            logger.error("Error refreshing Airtable token", error=str(e))
            raise TokenRefreshError(f"Error refreshing Airtable token: {e}") from e
        finally:
            if self._http_client is None:
                await client.aclose()

        if response.status_code != 200:
            logger.error(
                "Airtable token refresh failed",
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise TokenRefreshError(
                f"Airtable token refresh failed with status {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TokenRefreshError("Airtable token refresh returned invalid JSON") from e

        access_token = data.get("access_token")
        if not access_token:
            logger.error("No access_token in Airtable refresh response")
            raise TokenRefreshError("No access_token in Airtable refresh response")

        expires_in = data.get("expires_in")
        expires_at = (
            datetime.now(UTC) + timedelta(seconds=int(expires_in)) if expires_in else None
        )

        logger.info("Airtable token refreshed", expires_in=expires_in)
        return TokenSet(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_at=expires_at,
        )
