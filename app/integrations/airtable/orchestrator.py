"""
Handles one Airtable webhook notification end to end.

    FETCHING -> RECONCILING -> DONE
    FETCHING --AuthError--> REFRESHING --ok--> FETCHING (second and last attempt)
    REFRESHING --failure--> FAILED

A second AuthError, any TransientError, a timeout or an unexpected exception ends
in FAILED. Failures are logged and returned, never raised: Airtable disables
webhooks whose notifications keep failing.
"""

import asyncio
import base64
import hashlib
import hmac
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from app.config import settings
from app.integrations.airtable.models import AirtableWebhookNotification
from app.integrations.airtable.payload_fetcher import PayloadFetcher
from app.integrations.airtable.reconciler import ChangeReconciler, ReconciliationResult
from app.integrations.airtable.token_refresh import (
    AirtableTokenRefreshService,
    TokenRefreshError,
)
from app.models.database import Credential, WebhookSubscription
from app.services.credential_store import CredentialStore
from app.services.supabase_service import SupabaseService
from app.utils.retry import AuthError, TransientError

logger = structlog.get_logger()

MAC_PREFIX = "hmac-sha256="


class SyncState(str, Enum):
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    REFRESHING = "refreshing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncOutcome:
    base_id: str
    webhook_id: str
    states: list[SyncState] = field(default_factory=list)
    result: ReconciliationResult = field(default_factory=ReconciliationResult)
    cursor: int | None = None
    refreshed: bool = False
    error: str | None = None

    @property
    def state(self) -> SyncState | None:
        return self.states[-1] if self.states else None

    def enter(self, state: SyncState) -> None:
        self.states.append(state)

    def fail(self, error: str) -> None:
        self.error = error
        self.enter(SyncState.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_id": self.base_id,
            "webhook_id": self.webhook_id,
            "state": self.state.value if self.state else None,
            "cursor": self.cursor,
            "refreshed": self.refreshed,
            "error": self.error,
            **self.result.to_dict(),
        }


def verify_content_mac(mac_secret_base64: str, body: bytes, content_mac: str | None) -> bool:
    """Check X-Airtable-Content-MAC: hmac-sha256=<hex of HMAC-SHA256(body)>."""
    if not content_mac or not content_mac.startswith(MAC_PREFIX):
        return False
    secret = base64.b64decode(mac_secret_base64)
    expected = hmac.new(secret, body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, content_mac[len(MAC_PREFIX):])


class NotificationOrchestrator:
    """Fetch-and-reconcile with one token refresh and one retry on AuthError."""

    def __init__(
        self,
        supabase_service: SupabaseService | None = None,
        credential_store: CredentialStore | None = None,
        token_refresher: AirtableTokenRefreshService | None = None,
        fetcher: PayloadFetcher | None = None,
        reconciler_factory: Callable[[], ChangeReconciler] | None = None,
    ):
        self.supabase_service = supabase_service or SupabaseService()
        self.credential_store = credential_store or CredentialStore(self.supabase_service)
        self.token_refresher = token_refresher or AirtableTokenRefreshService()
        self.fetcher = fetcher or PayloadFetcher()
        self.reconciler_factory = reconciler_factory or (
            lambda: ChangeReconciler(self.supabase_service)
        )

    async def handle_notification(
        self,
        notification: AirtableWebhookNotification,
        raw_body: bytes = b"",
        content_mac: str | None = None,
    ) -> SyncOutcome:
        """Run the state machine under the notification timeout budget. Never raises."""
        outcome = SyncOutcome(
            base_id=notification.base_id or "",
            webhook_id=notification.webhook_id or "",
        )
        with structlog.contextvars.bound_contextvars(
            base_id=outcome.base_id, webhook_id=outcome.webhook_id
        ):
            try:
                await asyncio.wait_for(
                    self._run(notification, raw_body, content_mac, outcome),
                    timeout=settings.notification_timeout_seconds,
                )
            except TimeoutError:
                outcome.fail("Notification handling timed out")
            except Exception as e:
                logger.exception("Unexpected error handling Airtable notification")
                outcome.fail(f"{type(e).__name__}: {e}")

            if outcome.state == SyncState.FAILED:
                logger.error("Airtable webhook sync failed", **outcome.to_dict())
            else:
                logger.info("Airtable webhook sync completed", **outcome.to_dict())
        return outcome

    async def _run(
        self,
        notification: AirtableWebhookNotification,
        raw_body: bytes,
        content_mac: str | None,
        outcome: SyncOutcome,
    ) -> None:
        subscription = await asyncio.to_thread(
            self.supabase_service.get_webhook_subscription, outcome.webhook_id
        )

        if (
            subscription
            and subscription.mac_secret_base64
            and settings.airtable_verify_webhook_mac
            and not verify_content_mac(subscription.mac_secret_base64, raw_body, content_mac)
        ):
            outcome.fail("Invalid X-Airtable-Content-MAC")
            return

        credential = await asyncio.to_thread(
            self.credential_store.get_for_subscription, subscription
        )
        if not credential or not credential.access_token:
            logger.warning("No credential available for Airtable webhook")
            outcome.fail("No credential available")
            return

        if notification.cursor is not None:
            outcome.cursor = notification.cursor
        elif subscription:
            outcome.cursor = subscription.cursor

        # First attempt
        outcome.enter(SyncState.FETCHING)
        try:
            await self._fetch_and_reconcile(credential, subscription, outcome)
        except AuthError:
            logger.warning("Airtable access token rejected (401), refreshing")
        except TransientError as e:
            outcome.fail(f"Transient error: {e}")
            return
        else:
            outcome.enter(SyncState.DONE)
            return

        # Refresh, then second and last attempt
        outcome.enter(SyncState.REFRESHING)
        try:
            credential = await self._refresh_credential(credential)
        except (TokenRefreshError, ValueError) as e:
            outcome.fail(f"Token refresh failed: {e}")
            return
        outcome.refreshed = True

        outcome.enter(SyncState.FETCHING)
        try:
            await self._fetch_and_reconcile(credential, subscription, outcome)
        except AuthError as e:
            outcome.fail(f"Authorization failed after refresh: {e}")
            return
        except TransientError as e:
            outcome.fail(f"Transient error after refresh: {e}")
            return
        outcome.enter(SyncState.DONE)

    async def _refresh_credential(self, credential: Credential) -> Credential:
        token_set = await self.token_refresher.refresh(credential.refresh_token)
        return await asyncio.to_thread(self.credential_store.save_refreshed, credential, token_set)

    async def _fetch_and_reconcile(
        self,
        credential: Credential,
        subscription: WebhookSubscription | None,
        outcome: SyncOutcome,
    ) -> None:
        reconciler = self.reconciler_factory()
        reconciling = False
        pages = self.fetcher.fetch_pages(
            outcome.base_id,
            outcome.webhook_id,
            credential.access_token or "",
            cursor=outcome.cursor,
        )
        async with aclosing(pages):
            async for page in pages:
                if not reconciling:
                    outcome.enter(SyncState.RECONCILING)
                    reconciling = True
                for payload in page.payloads:
                    result = await asyncio.to_thread(reconciler.apply_payload, payload)
                    outcome.result.merge(result)

                if page.cursor is not None and page.cursor != outcome.cursor:
                    outcome.cursor = page.cursor
                    if subscription:
                        await asyncio.to_thread(
                            self.supabase_service.update_webhook_subscription,
                            outcome.webhook_id,
                            {"cursor": page.cursor},
                        )
