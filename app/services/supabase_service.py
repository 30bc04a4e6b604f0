"""
Supabase service layer for database operations.
Handles CRUD operations for airtable_credentials, forms, responses and airtable_webhooks.
"""

from datetime import UTC, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from supabase import Client, create_client

from app.config import settings
from app.models.database import (
    Credential,
    FormResponse,
    FormSchema,
    WebhookSubscription,
)
from app.utils.token_encryption import credential_from_row, seal_token_updates

logger = structlog.get_logger()

CREDENTIALS_TABLE = "airtable_credentials"
FORMS_TABLE = "forms"
RESPONSES_TABLE = "responses"
WEBHOOKS_TABLE = "airtable_webhooks"


class SupabaseService:
    """Service for interacting with Supabase database."""

    def __init__(self):
        """Initialize Supabase client."""
        self.client: Client = create_client(
            settings.supabase_url, settings.supabase_service_key
        )

    def _serialize_datetimes(self, data: Any) -> Any:
        """
        Recursively convert datetime objects to ISO format strings.
        Also converts UUID objects to strings.
        """
        if isinstance(data, dict):
            return {k: self._serialize_datetimes(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [self._serialize_datetimes(item) for item in data]
        elif isinstance(data, datetime):
            return data.isoformat()
        elif isinstance(data, UUID):
            return str(data)
        else:
            return data

    # Credentials

    def _to_credential(self, row: Dict[str, Any]) -> Credential:
        return credential_from_row(row)

    def get_credential_by_id(self, credential_id: UUID) -> Optional[Credential]:
        """Get credential by UUID."""
        result = (
            self.client.table(CREDENTIALS_TABLE)
            .select("*")
            .eq("id", str(credential_id))
            .limit(1)
            .execute()
        )
        if result.data:
            return self._to_credential(result.data[0])
        return None

    def get_credential_by_owner(self, owner_id: str) -> Optional[Credential]:
        """
        Get the Airtable credential of an application user.

        Args:
            owner_id: Application user id

        Returns:
            Credential if found, None otherwise
        """
        result = (
            self.client.table(CREDENTIALS_TABLE)
            .select("*")
            .eq("owner_id", owner_id)
            .limit(1)
            .execute()
        )
        if result.data:
            return self._to_credential(result.data[0])
        return None

    def get_any_credential_with_access_token(self) -> Optional[Credential]:
        """Get the first credential that holds an access token (single-tenant lookup)."""
        result = (
            self.client.table(CREDENTIALS_TABLE)
            .select("*")
            .not_.is_("access_token", "null")
            .order("updated_at", desc=True)
            .limit(1)
            .execute()
        )
        if result.data:
            return self._to_credential(result.data[0])
        return None

    def update_credential_tokens(
        self, credential_id: UUID, token_updates: Dict[str, Any]
    ) -> Optional[Credential]:
        """
        Write new token fields onto a credential row.

        Args:
            credential_id: Credential UUID
            token_updates: access_token / refresh_token / expires_at values

        Returns:
            Updated Credential or None if the row no longer exists
        """
        update_data = seal_token_updates(self._serialize_datetimes(token_updates))
        update_data["updated_at"] = datetime.now(UTC).isoformat()
        try:
            result = (
                self.client.table(CREDENTIALS_TABLE)
                .update(update_data)
                .eq("id", str(credential_id))
                .execute()
            )
        except Exception as e:
            logger.error(
                "Failed to update credential tokens",
                credential_id=str(credential_id),
                error=str(e),
            )
            raise

        if result.data:
            return self._to_credential(result.data[0])
        return None

    # Forms

    def get_form(self, form_id: UUID) -> Optional[FormSchema]:
        """Get form schema by UUID."""
        result = (
            self.client.table(FORMS_TABLE)
            .select("*")
            .eq("id", str(form_id))
            .limit(1)
            .execute()
        )
        if result.data:
            return FormSchema(**result.data[0])
        return None

    # Responses

    def get_response_by_airtable_record_id(self, record_id: str) -> Optional[FormResponse]:
        """Get the local response mirrored from an Airtable record."""
        result = (
            self.client.table(RESPONSES_TABLE)
            .select("*")
            .eq("airtable_record_id", record_id)
            .limit(1)
            .execute()
        )
        if result.data:
            return FormResponse(**result.data[0])
        return None

    def mark_responses_deleted(self, record_ids: List[str]) -> int:
        """
        Soft delete every response whose airtable_record_id is in record_ids.
        Rows already flagged are matched again, so replays report the same count.

        Returns:
            Number of matched rows
        """
        if not record_ids:
            return 0
        try:
            result = (
                self.client.table(RESPONSES_TABLE)
                .update(
                    {
                        "is_deleted_in_airtable": True,
                        "updated_at": datetime.now(UTC).isoformat(),
                    }
                )
                .in_("airtable_record_id", record_ids)
                .execute()
            )
        except Exception as e:
            logger.error(
                "Failed to mark responses deleted",
                record_count=len(record_ids),
                error=str(e),
            )
            raise
        return len(result.data or [])

    def update_response_answers(
        self, response_id: UUID, answers: Dict[str, Any]
    ) -> Optional[FormResponse]:
        """Replace the answers map of a response."""
        try:
            result = (
                self.client.table(RESPONSES_TABLE)
                .update(
                    {
                        "answers": self._serialize_datetimes(answers),
                        "updated_at": datetime.now(UTC).isoformat(),
                    }
                )
                .eq("id", str(response_id))
                .execute()
            )
        except Exception as e:
            logger.error(
                "Failed to update response answers",
                response_id=str(response_id),
                error=str(e),
            )
            raise
        if result.data:
            return FormResponse(**result.data[0])
        return None

    # Webhook subscriptions

    def get_webhook_subscription(self, webhook_id: str) -> Optional[WebhookSubscription]:
        """Get the stored subscription for an Airtable webhook id."""
        result = (
            self.client.table(WEBHOOKS_TABLE)
            .select("*")
            .eq("webhook_id", webhook_id)
            .limit(1)
            .execute()
        )
        if result.data:
            return WebhookSubscription(**result.data[0])
        return None

    def list_webhook_subscriptions(self) -> List[WebhookSubscription]:
        """Get all stored subscriptions."""
        try:
            result = self.client.table(WEBHOOKS_TABLE).select("*").execute()
        except Exception as e:
            logger.error("Failed to list webhook subscriptions", error=str(e))
            return []

        subscriptions = []
        for row in result.data or []:
            try:
                subscriptions.append(WebhookSubscription(**row))
            except Exception as e:
                logger.warning(
                    "Failed to parse webhook subscription",
                    row_id=row.get("id"),
                    error=str(e),
                )
        return subscriptions

    def replace_webhook_subscription(
        self, subscription: WebhookSubscription
    ) -> WebhookSubscription:
        """
        Store a new subscription as the only one for its base.
        Older rows for the base are removed first.
        """
        try:
            self.client.table(WEBHOOKS_TABLE).delete().eq(
                "base_id", subscription.base_id
            ).execute()
            insert_data = self._serialize_datetimes(
                subscription.model_dump(exclude_none=True, exclude={"id"})
            )
            result = self.client.table(WEBHOOKS_TABLE).insert(insert_data).execute()
        except Exception as e:
            logger.error(
                "Failed to store webhook subscription",
                base_id=subscription.base_id,
                webhook_id=subscription.webhook_id,
                error=str(e),
            )
            raise

        if result.data:
            return WebhookSubscription(**result.data[0])
        raise Exception("No data returned from insert")

    def update_webhook_subscription(
        self, webhook_id: str, updates: Dict[str, Any]
    ) -> Optional[WebhookSubscription]:
        """Update cursor / expiration_time of a stored subscription."""
        update_data = self._serialize_datetimes(updates)
        update_data["updated_at"] = datetime.now(UTC).isoformat()
        try:
            result = (
                self.client.table(WEBHOOKS_TABLE)
                .update(update_data)
                .eq("webhook_id", webhook_id)
                .execute()
            )
        except Exception as e:
            logger.error(
                "Failed to update webhook subscription",
                webhook_id=webhook_id,
                error=str(e),
            )
            raise
        if result.data:
            return WebhookSubscription(**result.data[0])
        return None
