"""
Credential store for Airtable OAuth tokens.
Resolves which credential services a webhook and persists refreshed tokens.
"""

from datetime import UTC, datetime, timedelta

import structlog

from app.config import settings
from app.integrations.airtable.token_refresh import TokenSet
from app.models.database import Credential, WebhookSubscription
from app.services.supabase_service import SupabaseService

logger = structlog.get_logger()


class CredentialStore:
    """Get/update access for per-owner Airtable credentials."""

    def __init__(self, supabase_service: SupabaseService | None = None):
        self.supabase_service = supabase_service or SupabaseService()

    def get_for_owner(self, owner_id: str) -> Credential | None:
        return self.supabase_service.get_credential_by_owner(owner_id)

    def get_system_credential(self) -> Credential | None:
        """Any credential holding an access token (single-tenant shortcut)."""
        return self.supabase_service.get_any_credential_with_access_token()

    def get_for_subscription(
        self, subscription: WebhookSubscription | None
    ) -> Credential | None:
        """
        Resolve the credential that services a webhook.

        Prefers the owner recorded on the subscription. Falls back to any credential
        with an access token when the webhook is unknown locally or has no owner,
        unless allow_system_credential_fallback is disabled.
        """
        if subscription and subscription.owner_id:
            credential = self.get_for_owner(subscription.owner_id)
            if credential and credential.access_token:
                return credential
            logger.warning(
                "Subscription owner has no usable credential",
                webhook_id=subscription.webhook_id,
                owner_id=subscription.owner_id,
            )

        if not settings.allow_system_credential_fallback:
            return None

        credential = self.get_system_credential()
        if credential:
            logger.info(
                "Using system credential for webhook",
                owner_id=credential.owner_id,
                webhook_id=subscription.webhook_id if subscription else None,
            )
        return credential

    def save_refreshed(self, credential: Credential, token_set: TokenSet) -> Credential:
        """
        Persist a refreshed token pair (read-modify-write, last write wins).

        Re-reads the row so concurrent changes to other columns are kept; only the
        token columns are overwritten.
        """
        if not credential.id:
            raise ValueError("Credential has no id, cannot persist tokens")

        current = self.supabase_service.get_credential_by_id(credential.id) or credential
        token_updates = {
            "access_token": token_set.access_token,
            "refresh_token": token_set.refresh_token or current.refresh_token,
            "expires_at": token_set.expires_at,
        }
        updated = self.supabase_service.update_credential_tokens(credential.id, token_updates)
        if not updated:
            raise ValueError(f"Credential {credential.id} disappeared during refresh")

        logger.info(
            "Airtable credential refreshed and saved",
            credential_id=str(credential.id),
            owner_id=credential.owner_id,
            expires_at=token_set.expires_at.isoformat() if token_set.expires_at else None,
        )
        return updated

    def is_expiring_soon(
        self, credential: Credential, threshold_seconds: int | None = None
    ) -> bool:
        """True if the access token expires within threshold (or expiry is unknown)."""
        if not credential.expires_at:
            return True
        threshold = (
            threshold_seconds
            if threshold_seconds is not None
            else settings.token_refresh_threshold_seconds
        )
        expires_at = credential.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return expires_at - datetime.now(UTC) < timedelta(seconds=threshold)
