"""
Airtable REST API client for webhooks and webhook payloads.
Every request is bounded by airtable_request_timeout_seconds.
HTTP 401 raises AuthError; timeouts, network errors and other non-2xx responses
raise TransientError (AirtableAPIError carries the status code).
"""

from typing import Any

import httpx
import structlog

from app.config import settings
from app.utils.retry import AuthError, TransientError

logger = structlog.get_logger()


class AirtableAPIError(TransientError):
    """Raised when Airtable API returns a non-2xx response other than 401."""

    def __init__(self, status_code: int, message: str, body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.body = body
        super().__init__(f"Airtable API error {status_code}: {message}")


class AirtableAPIClient:
    """Async client for the Airtable webhooks API."""

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the Airtable API client.

        Args:
            access_token: OAuth access token of the credential owner.
            base_url: Override base URL. If None, uses settings.airtable_api_base_url.
            http_client: Pre-built client (tests pass one with a mock transport).
        """
        self.access_token = access_token
        self.base_url = (base_url or settings.airtable_api_base_url).rstrip("/")
        self._client = http_client
        self._owns_client = http_client is None

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.airtable_request_timeout_seconds)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        client = await self._get_client()
        url = f"{self.base_url}{path}"
        try:
            response = await client.request(
                method,
                url,
                headers=self._headers(),
                params=params,
                json=json,
                timeout=settings.airtable_request_timeout_seconds,
            )
        except httpx.TimeoutException as e:
            logger.error("Airtable API request timed out", method=method, path=path)
            raise TransientError(f"Airtable {method} {path} timed out") from e
        except httpx.RequestError as e:
            logger.error(
                "Airtable API request failed",
                method=method,
                path=path,
                error=str(e),
            )
            raise TransientError(f"Airtable {method} {path} failed: {e}") from e

        if response.status_code == 401:
            logger.warning("Airtable rejected access token", method=method, path=path)
            raise AuthError(f"Airtable {method} {path} returned 401")

        if response.status_code >= 300:
            logger.error(
                "Airtable API error",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise AirtableAPIError(
                response.status_code,
                f"{method} {path} failed: {response.status_code}",
                body=response.text,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransientError(f"Airtable {method} {path} returned invalid JSON") from e

    async def list_webhooks(self, base_id: str) -> list[dict[str, Any]]:
        """
        GET /bases/{baseId}/webhooks

        Returns:
            List of webhook dicts (raw API shape).
        """
        data = await self._request("GET", f"/bases/{base_id}/webhooks")
        webhooks = data.get("webhooks") if isinstance(data, dict) else None
        if not isinstance(webhooks, list):
            raise TransientError("Unexpected Airtable list webhooks response shape")
        return webhooks

    async def delete_webhook(self, base_id: str, webhook_id: str) -> None:
        """DELETE /bases/{baseId}/webhooks/{webhookId}"""
        await self._request("DELETE", f"/bases/{base_id}/webhooks/{webhook_id}")

    async def create_webhook(
        self,
        base_id: str,
        notification_url: str,
        data_types: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        POST /bases/{baseId}/webhooks

        Args:
            base_id: Airtable base id.
            notification_url: Public URL Airtable pings on changes.
            data_types: Webhook filter data types (default: table data only).

        Returns:
            Created webhook: id, macSecretBase64, expirationTime.
        """
        body = {
            "notificationUrl": notification_url,
            "specification": {
                "options": {
                    "filters": {"dataTypes": data_types or ["tableData"]},
                }
            },
        }
        data = await self._request("POST", f"/bases/{base_id}/webhooks", json=body)
        if not isinstance(data, dict) or not data.get("id"):
            raise TransientError("Airtable create webhook response has no id")
        return data

    async def refresh_webhook(self, base_id: str, webhook_id: str) -> dict[str, Any]:
        """
        POST /bases/{baseId}/webhooks/{webhookId}/refresh

        Returns:
            Dict with the new expirationTime.
        """
        return await self._request("POST", f"/bases/{base_id}/webhooks/{webhook_id}/refresh")

    async def list_payloads(
        self,
        base_id: str,
        webhook_id: str,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """
        GET /bases/{baseId}/webhooks/{webhookId}/payloads?cursor=N

        Returns:
            Raw page: payloads, cursor, mightHaveMore.
        """
        params: dict[str, Any] = {}
        if cursor is not None:
            params["cursor"] = cursor
        if limit is not None:
            params["limit"] = limit
        data = await self._request(
            "GET",
            f"/bases/{base_id}/webhooks/{webhook_id}/payloads",
            params=params or None,
        )
        if not isinstance(data, dict):
            raise TransientError("Unexpected Airtable payloads response shape")
        return data
