"""
Fetches queued webhook payloads from Airtable, page by page, starting at a cursor.
"""

from collections.abc import AsyncIterator, Callable

import structlog
from pydantic import ValidationError

from app.config import settings
from app.integrations.airtable.api_client import AirtableAPIClient
from app.integrations.airtable.models import PayloadPage, WebhookPayload
from app.utils.retry import TransientError

logger = structlog.get_logger()


class PayloadFetcher:
    """
    Reads the change log of one webhook.

    Without a cursor Airtable starts from the oldest retained payload, so already
    processed payloads may come back; the reconciler is idempotent for them.
    """

    def __init__(
        self,
        client_factory: Callable[[str], AirtableAPIClient] = AirtableAPIClient,
        max_pages: int | None = None,
    ):
        self.client_factory = client_factory
        self.max_pages = max_pages or settings.airtable_max_payload_pages

    async def fetch_pages(
        self,
        base_id: str,
        webhook_id: str,
        access_token: str,
        cursor: int | None = None,
    ) -> AsyncIterator[PayloadPage]:
        """
        Yield payload pages until Airtable reports no more, the cursor stops
        advancing, or max_pages is reached.

        Raises:
            AuthError: Airtable returned 401.
            TransientError: network/timeout/non-2xx or unexpected response shape.
        """
        client = self.client_factory(access_token)
        try:
            pages = 0
            while pages < self.max_pages:
                raw = await client.list_payloads(base_id, webhook_id, cursor=cursor)
                try:
                    page = PayloadPage.model_validate(raw)
                except ValidationError as e:
                    raise TransientError(f"Unexpected Airtable payload page shape: {e}") from e
                pages += 1

                logger.info(
                    "Fetched Airtable payload page",
                    base_id=base_id,
                    webhook_id=webhook_id,
                    requested_cursor=cursor,
                    next_cursor=page.cursor,
                    payload_count=len(page.payloads),
                    might_have_more=page.mightHaveMore,
                )
                yield page

                if not page.mightHaveMore:
                    return
                if page.cursor is None or page.cursor == cursor:
                    logger.warning(
                        "Airtable payload cursor did not advance, stopping",
                        base_id=base_id,
                        webhook_id=webhook_id,
                        cursor=cursor,
                    )
                    return
                cursor = page.cursor

            logger.warning(
                "Reached payload page limit, remaining payloads wait for next notification",
                base_id=base_id,
                webhook_id=webhook_id,
                max_pages=self.max_pages,
                cursor=cursor,
            )
        finally:
            await client.close()

    async def fetch_payloads(
        self,
        base_id: str,
        webhook_id: str,
        access_token: str,
        cursor: int | None = None,
    ) -> AsyncIterator[WebhookPayload]:
        """Yield payloads in delivery order across pages."""
        async for page in self.fetch_pages(base_id, webhook_id, access_token, cursor):
            for payload in page.payloads:
                yield payload
