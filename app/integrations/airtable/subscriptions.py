"""
Airtable webhook subscription management.
Keeps exactly one live webhook per base: existing webhooks are removed before a new
one is created (Airtable caps webhooks per base).
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from app.config import settings
from app.integrations.airtable.api_client import AirtableAPIClient
from app.models.database import Credential, WebhookSubscription
from app.services.supabase_service import SupabaseService
from app.utils.retry import AuthError, TransientError, retry_with_backoff

logger = structlog.get_logger()

WEBHOOK_ROUTE = "/api/webhooks/airtable"


class RegistrationError(Exception):
    """Raised when a webhook could not be registered for a base."""

    pass


@dataclass
class SubscriptionHandle:
    base_id: str
    webhook_id: str
    notification_url: str
    expiration_time: datetime | None = None
    deleted_count: int = 0
    failed_deletes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_id": self.base_id,
            "webhook_id": self.webhook_id,
            "notification_url": self.notification_url,
            "expiration_time": self.expiration_time.isoformat() if self.expiration_time else None,
            "deleted_count": self.deleted_count,
            "failed_deletes": self.failed_deletes,
        }


def notification_url() -> str:
    """Public URL Airtable calls for this service."""
    base = (settings.public_base_url or "").strip().rstrip("/")
    if not base:
        raise RegistrationError("public_base_url not configured")
    return f"{base}{WEBHOOK_ROUTE}"


class SubscriptionManager:
    """Registers and refreshes Airtable webhooks."""

    def __init__(
        self,
        supabase_service: SupabaseService | None = None,
        client_factory: Callable[[str], AirtableAPIClient] = AirtableAPIClient,
    ):
        self.supabase_service = supabase_service or SupabaseService()
        self.client_factory = client_factory

    @retry_with_backoff()
    async def _list_existing(self, client: AirtableAPIClient, base_id: str) -> list[dict[str, Any]]:
        return await client.list_webhooks(base_id)

    async def register_subscription(
        self, base_id: str, credential: Credential
    ) -> SubscriptionHandle:
        """
        Replace every webhook of a base with a single new one.

        Individual delete failures are logged and skipped. If create fails after
        cleanup the base is left without webhooks and the caller has to retry.

        Raises:
            RegistrationError: credential rejected, listing failed, or create failed.
        """
        if not credential.access_token:
            raise RegistrationError("Credential has no access token")

        target_url = notification_url()
        client = self.client_factory(credential.access_token)
        try:
            try:
                existing = await self._list_existing(client, base_id)
            except AuthError as e:
                raise RegistrationError("Airtable rejected the credential (refresh first)") from e
            except TransientError as e:
                raise RegistrationError(f"Could not list existing webhooks: {e}") from e

            logger.info(
                "Cleaning up existing Airtable webhooks",
                base_id=base_id,
                existing_count=len(existing),
            )

            deleted = 0
            failed: list[str] = []
            for hook in existing:
                hook_id = hook.get("id")
                if not hook_id:
                    continue
                try:
                    await client.delete_webhook(base_id, hook_id)
                    deleted += 1
                    logger.info("Deleted old Airtable webhook", base_id=base_id, webhook_id=hook_id)
                except Exception as e:
                    failed.append(hook_id)
                    logger.warning(
                        "Failed to delete old Airtable webhook, continuing",
                        base_id=base_id,
                        webhook_id=hook_id,
                        error=str(e),
                    )

            try:
                created = await client.create_webhook(base_id, target_url)
            except AuthError as e:
                raise RegistrationError("Airtable rejected the credential on create") from e
            except TransientError as e:
                logger.error(
                    "Airtable webhook create failed after cleanup, base has no webhook",
                    base_id=base_id,
                    deleted_count=deleted,
                    error=str(e),
                )
                raise RegistrationError(f"Failed to create webhook: {e}") from e
        finally:
            await client.close()

        subscription = WebhookSubscription(
            owner_id=credential.owner_id,
            base_id=base_id,
            webhook_id=created["id"],
            notification_url=target_url,
            cursor=1,
            mac_secret_base64=created.get("macSecretBase64"),
            expiration_time=created.get("expirationTime"),
        )
        try:
            stored = await asyncio.to_thread(
                self.supabase_service.replace_webhook_subscription, subscription
            )
        except Exception as e:
            raise RegistrationError(f"Webhook created but not stored: {e}") from e

        logger.info(
            "New Airtable webhook registered",
            base_id=base_id,
            webhook_id=stored.webhook_id,
            deleted_count=deleted,
            failed_deletes=len(failed),
        )
        return SubscriptionHandle(
            base_id=base_id,
            webhook_id=stored.webhook_id,
            notification_url=target_url,
            expiration_time=stored.expiration_time,
            deleted_count=deleted,
            failed_deletes=failed,
        )

    async def refresh_subscription(
        self, subscription: WebhookSubscription, credential: Credential
    ) -> WebhookSubscription | None:
        """
        Extend a webhook's expiration and store the new expiration time.

        Raises:
            AuthError: Airtable rejected the credential.
            TransientError: any other API failure.
        """
        client = self.client_factory(credential.access_token or "")
        try:
            data = await client.refresh_webhook(subscription.base_id, subscription.webhook_id)
        finally:
            await client.close()

        expiration_time = data.get("expirationTime") if isinstance(data, dict) else None
        logger.info(
            "Airtable webhook refreshed",
            base_id=subscription.base_id,
            webhook_id=subscription.webhook_id,
            expiration_time=expiration_time,
        )
        return await asyncio.to_thread(
            self.supabase_service.update_webhook_subscription,
            subscription.webhook_id,
            {"expiration_time": expiration_time},
        )
