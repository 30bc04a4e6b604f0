"""
Scheduled job for refreshing Airtable webhooks before they expire.
Airtable disables a webhook 7 days after creation or its last refresh.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import structlog

from app.config import settings
from app.integrations.airtable.subscriptions import SubscriptionManager
from app.integrations.airtable.token_refresh import (
    AirtableTokenRefreshService,
    TokenRefreshError,
)
from app.models.database import WebhookSubscription
from app.services.credential_store import CredentialStore
from app.services.supabase_service import SupabaseService
from app.utils.retry import AuthError

logger = structlog.get_logger()


class WebhookRefreshScheduler:
    """
    Scheduler that checks stored Airtable webhooks and refreshes expiring ones.
    """

    def __init__(
        self,
        supabase_service: SupabaseService | None = None,
        subscription_manager: SubscriptionManager | None = None,
        credential_store: CredentialStore | None = None,
        token_refresher: AirtableTokenRefreshService | None = None,
    ):
        """Initialize webhook refresh scheduler."""
        self.supabase_service = supabase_service or SupabaseService()
        self.subscription_manager = subscription_manager or SubscriptionManager(
            self.supabase_service
        )
        self.credential_store = credential_store or CredentialStore(self.supabase_service)
        self.token_refresher = token_refresher or AirtableTokenRefreshService()
        self.running = False

    async def start(self):
        """Start the webhook refresh scheduler loop."""
        self.running = True
        logger.info("Webhook refresh scheduler started")

        while self.running:
            try:
                await self.check_and_refresh_webhooks()
            except Exception as e:
                logger.error("Error in webhook refresh scheduler loop", error=str(e))

            await asyncio.sleep(settings.webhook_refresh_interval_hours * 3600)

    async def stop(self):
        """Stop the webhook refresh scheduler."""
        self.running = False
        logger.info("Webhook refresh scheduler stopped")

    def _is_expiring_soon(self, subscription: WebhookSubscription) -> bool:
        if not subscription.expiration_time:
            return True
        expiration = subscription.expiration_time
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=UTC)
        threshold = timedelta(hours=settings.webhook_refresh_threshold_hours)
        return expiration - datetime.now(UTC) < threshold

    async def check_and_refresh_webhooks(self) -> dict[str, int]:
        """
        Refresh every stored webhook expiring within the threshold.

        Returns:
            Counts of refreshed, failed and skipped webhooks
        """
        subscriptions = await asyncio.to_thread(self.supabase_service.list_webhook_subscriptions)
        refreshed_count = 0
        failed_count = 0
        skipped_count = 0

        for subscription in subscriptions:
            if not self._is_expiring_soon(subscription):
                skipped_count += 1
                continue
            try:
                if await self._refresh_one(subscription):
                    refreshed_count += 1
                else:
                    failed_count += 1
            except Exception as e:
                failed_count += 1
                logger.error(
                    "Error refreshing Airtable webhook",
                    base_id=subscription.base_id,
                    webhook_id=subscription.webhook_id,
                    error=str(e),
                )

        logger.info(
            "Airtable webhook refresh completed",
            total=len(subscriptions),
            refreshed=refreshed_count,
            failed=failed_count,
            skipped=skipped_count,
        )
        return {"refreshed": refreshed_count, "failed": failed_count, "skipped": skipped_count}

    async def _refresh_one(self, subscription: WebhookSubscription) -> bool:
        credential = await asyncio.to_thread(
            self.credential_store.get_for_subscription, subscription
        )
        if not credential or not credential.access_token:
            logger.warning(
                "No credential to refresh Airtable webhook",
                base_id=subscription.base_id,
                webhook_id=subscription.webhook_id,
            )
            return False

        try:
            await self.subscription_manager.refresh_subscription(subscription, credential)
            return True
        except AuthError:
            logger.warning(
                "Airtable access token rejected during webhook refresh, refreshing token",
                webhook_id=subscription.webhook_id,
            )

        try:
            token_set = await self.token_refresher.refresh(credential.refresh_token)
        except TokenRefreshError as e:
            logger.error(
                "Token refresh failed, webhook not refreshed",
                webhook_id=subscription.webhook_id,
                error=str(e),
            )
            return False
        credential = await asyncio.to_thread(
            self.credential_store.save_refreshed, credential, token_set
        )
        await self.subscription_manager.refresh_subscription(subscription, credential)
        return True


async def run_webhook_refresh_scheduler():
    """
    Main entry point for running the webhook refresh scheduler.
    """
    scheduler = WebhookRefreshScheduler()
    try:
        await scheduler.start()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down webhook refresh scheduler")
    finally:
        await scheduler.stop()
