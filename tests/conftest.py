"""Shared fixtures for the form sync test suite.

Settings are instantiated at import time, so required environment variables are
set here before any app module is imported.
"""

import os

os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("PUBLIC_BASE_URL", "https://forms.example.com")
os.environ.setdefault("AIRTABLE_CLIENT_ID", "test-client-id")

from datetime import UTC, datetime, timedelta  # noqa: E402
from typing import Any  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402

from app.config import settings  # noqa: E402
from app.models.database import (  # noqa: E402
    Credential,
    FormResponse,
    FormSchema,
    Question,
    WebhookSubscription,
)


class FakeSupabaseService:
    """In-memory stand-in for SupabaseService with the same method surface."""

    def __init__(self):
        self.credentials: dict[UUID, Credential] = {}
        self.forms: dict[UUID, FormSchema] = {}
        self.responses: dict[UUID, FormResponse] = {}
        self.subscriptions: dict[str, WebhookSubscription] = {}
        self.answer_writes: list[tuple[UUID, dict[str, Any]]] = []
        self.subscription_updates: list[tuple[str, dict[str, Any]]] = []

    # Credentials

    def get_credential_by_id(self, credential_id: UUID) -> Credential | None:
        return self.credentials.get(credential_id)

    def get_credential_by_owner(self, owner_id: str) -> Credential | None:
        return next((c for c in self.credentials.values() if c.owner_id == owner_id), None)

    def get_any_credential_with_access_token(self) -> Credential | None:
        return next((c for c in self.credentials.values() if c.access_token), None)

    def update_credential_tokens(
        self, credential_id: UUID, token_updates: dict[str, Any]
    ) -> Credential | None:
        current = self.credentials.get(credential_id)
        if not current:
            return None
        updated = current.model_copy(update=token_updates)
        self.credentials[credential_id] = updated
        return updated

    # Forms / responses

    def get_form(self, form_id: UUID) -> FormSchema | None:
        return self.forms.get(form_id)

    def get_response_by_airtable_record_id(self, record_id: str) -> FormResponse | None:
        return next(
            (r for r in self.responses.values() if r.airtable_record_id == record_id),
            None,
        )

    def mark_responses_deleted(self, record_ids: list[str]) -> int:
        matched = 0
        for response_id, response in list(self.responses.items()):
            if response.airtable_record_id in record_ids:
                self.responses[response_id] = response.model_copy(
                    update={"is_deleted_in_airtable": True}
                )
                matched += 1
        return matched

    def update_response_answers(
        self, response_id: UUID, answers: dict[str, Any]
    ) -> FormResponse | None:
        self.answer_writes.append((response_id, answers))
        response = self.responses.get(response_id)
        if not response:
            return None
        updated = response.model_copy(update={"answers": dict(answers)})
        self.responses[response_id] = updated
        return updated

    # Webhook subscriptions

    def get_webhook_subscription(self, webhook_id: str) -> WebhookSubscription | None:
        return self.subscriptions.get(webhook_id)

    def list_webhook_subscriptions(self) -> list[WebhookSubscription]:
        return list(self.subscriptions.values())

    def replace_webhook_subscription(
        self, subscription: WebhookSubscription
    ) -> WebhookSubscription:
        self.subscriptions = {
            webhook_id: sub
            for webhook_id, sub in self.subscriptions.items()
            if sub.base_id != subscription.base_id
        }
        self.subscriptions[subscription.webhook_id] = subscription
        return subscription

    def update_webhook_subscription(
        self, webhook_id: str, updates: dict[str, Any]
    ) -> WebhookSubscription | None:
        self.subscription_updates.append((webhook_id, updates))
        current = self.subscriptions.get(webhook_id)
        if not current:
            return None
        updated = WebhookSubscription.model_validate({**current.model_dump(), **updates})
        self.subscriptions[webhook_id] = updated
        return updated


@pytest.fixture
def fake_supabase() -> FakeSupabaseService:
    return FakeSupabaseService()


@pytest.fixture
def form(fake_supabase) -> FormSchema:
    """Form with text, single select and attachment questions bound to Airtable fields."""
    schema = FormSchema(
        id=uuid4(),
        owner_id="user-1",
        title="Event signup",
        airtable_base_id="appBase1",
        airtable_table_id="tblSignups",
        questions=[
            Question(
                question_key="q1",
                airtable_field_id="fldName",
                label="Name",
                type="singleLineText",
            ),
            Question(
                question_key="q_color",
                airtable_field_id="fldColor",
                label="Favourite color",
                type="singleSelect",
                options=["Red", "Blue"],
            ),
            Question(
                question_key="q_file",
                airtable_field_id="fldFile",
                label="CV",
                type="multipleAttachments",
            ),
        ],
    )
    fake_supabase.forms[schema.id] = schema
    return schema


@pytest.fixture
def make_response(fake_supabase, form):
    """Factory that stores a mirrored response for an Airtable record."""

    def _make(record_id: str, answers: dict[str, Any] | None = None, deleted: bool = False):
        response = FormResponse(
            id=uuid4(),
            form_id=form.id,
            airtable_record_id=record_id,
            answers=answers if answers is not None else {},
            is_deleted_in_airtable=deleted,
            submitted_at=datetime.now(UTC),
        )
        fake_supabase.responses[response.id] = response
        return response

    return _make


@pytest.fixture
def credential(fake_supabase) -> Credential:
    stored = Credential(
        id=uuid4(),
        owner_id="user-1",
        access_token="access-old",
        refresh_token="refresh-old",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )
    fake_supabase.credentials[stored.id] = stored
    return stored


@pytest.fixture
def subscription(fake_supabase) -> WebhookSubscription:
    stored = WebhookSubscription(
        owner_id="user-1",
        base_id="appBase1",
        webhook_id="achHook1",
        notification_url="https://forms.example.com/api/webhooks/airtable",
        cursor=5,
        expiration_time=datetime.now(UTC) + timedelta(days=6),
    )
    fake_supabase.subscriptions[stored.webhook_id] = stored
    return stored


@pytest.fixture
def fast_retries(monkeypatch):
    """Make retry backoff effectively instant."""
    monkeypatch.setattr(settings, "retry_initial_delay_seconds", 0)
    monkeypatch.setattr(settings, "retry_backoff_multiplier", 0.001)
