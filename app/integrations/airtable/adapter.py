"""
Airtable webhook provider.
Implements BaseWebhookProvider: parses notification pings, dispatches them to the
orchestrator and registers the single webhook of a base.
"""

import asyncio
import json
from typing import Any

import structlog
from pydantic import ValidationError

from app.config import settings
from app.integrations.airtable.models import AirtableWebhookNotification
from app.integrations.airtable.orchestrator import NotificationOrchestrator
from app.integrations.airtable.subscriptions import RegistrationError, SubscriptionManager
from app.integrations.airtable.token_refresh import (
    AirtableTokenRefreshService,
    TokenRefreshError,
)
from app.integrations.base import BaseWebhookProvider
from app.models.database import Credential
from app.services.credential_store import CredentialStore
from app.services.supabase_service import SupabaseService

logger = structlog.get_logger()

CONTENT_MAC_HEADER = "x-airtable-content-mac"


class MissingCredentialError(RegistrationError):
    """Raised when the caller has no stored Airtable credential."""

    pass


class AirtableWebhookProvider(BaseWebhookProvider):
    """
    Airtable provider. Services are built on first use so importing the registry
    does not open a Supabase client.
    """

    def __init__(
        self,
        orchestrator: NotificationOrchestrator | None = None,
        subscription_manager: SubscriptionManager | None = None,
        credential_store: CredentialStore | None = None,
        token_refresher: AirtableTokenRefreshService | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._subscription_manager = subscription_manager
        self._credential_store = credential_store
        self._token_refresher = token_refresher
        self._supabase_service: SupabaseService | None = None

    def _supabase(self) -> SupabaseService:
        if self._supabase_service is None:
            self._supabase_service = SupabaseService()
        return self._supabase_service

    @property
    def orchestrator(self) -> NotificationOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = NotificationOrchestrator(self._supabase())
        return self._orchestrator

    @property
    def subscription_manager(self) -> SubscriptionManager:
        if self._subscription_manager is None:
            self._subscription_manager = SubscriptionManager(self._supabase())
        return self._subscription_manager

    @property
    def credential_store(self) -> CredentialStore:
        if self._credential_store is None:
            self._credential_store = CredentialStore(self._supabase())
        return self._credential_store

    @property
    def token_refresher(self) -> AirtableTokenRefreshService:
        if self._token_refresher is None:
            self._token_refresher = AirtableTokenRefreshService()
        return self._token_refresher

    def get_name(self) -> str:
        return "airtable"

    def parse_notification(self, body: bytes) -> AirtableWebhookNotification | None:
        """Parse the ping body; anything that is not a JSON object yields None."""
        if not body:
            return None
        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(data, dict):
            return None
        try:
            return AirtableWebhookNotification.model_validate(data)
        except ValidationError as e:
            logger.debug("Unrecognized Airtable notification body", error=str(e))
            return None

    def is_ping(self, notification: AirtableWebhookNotification | None) -> bool:
        if notification is None:
            return True
        return notification.is_ping(require_cursor=settings.webhook_require_cursor)

    async def handle_notification(
        self,
        notification: AirtableWebhookNotification,
        raw_body: bytes,
        headers: dict[str, str],
    ) -> dict[str, Any]:
        content_mac = next(
            (value for key, value in headers.items() if key.lower() == CONTENT_MAC_HEADER),
            None,
        )
        outcome = await self.orchestrator.handle_notification(
            notification, raw_body=raw_body, content_mac=content_mac
        )
        return outcome.to_dict()

    async def register_subscription(self, container_id: str, owner_id: str) -> dict[str, Any]:
        """
        Register the webhook of a base with the owner's credential.

        Raises:
            MissingCredentialError: the owner never authorized Airtable.
            RegistrationError: refresh or registration failed.
        """
        credential = await asyncio.to_thread(self.credential_store.get_for_owner, owner_id)
        if not credential or not credential.access_token:
            raise MissingCredentialError(f"No Airtable credential for user {owner_id}")
        return await self.register_with_credential(container_id, credential)

    async def register_with_credential(
        self, container_id: str, credential: Credential
    ) -> dict[str, Any]:
        """
        Register the webhook of a base with an already loaded credential,
        refreshing it first when it has expired or is about to.
        """
        if self.credential_store.is_expiring_soon(credential):
            logger.info(
                "Refreshing Airtable credential before webhook registration",
                owner_id=credential.owner_id,
                base_id=container_id,
            )
            try:
                token_set = await self.token_refresher.refresh(credential.refresh_token)
                credential = await asyncio.to_thread(
                    self.credential_store.save_refreshed, credential, token_set
                )
            except (TokenRefreshError, ValueError) as e:
                raise RegistrationError(f"Could not refresh Airtable credential: {e}") from e

        handle = await self.subscription_manager.register_subscription(container_id, credential)
        return handle.to_dict()
