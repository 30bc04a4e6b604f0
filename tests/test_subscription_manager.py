"""Tests for Airtable webhook registration and refresh."""

import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.config import settings
from app.integrations.airtable.api_client import AirtableAPIError
from app.integrations.airtable.subscriptions import (
    RegistrationError,
    SubscriptionManager,
    notification_url,
)
from app.utils.retry import AuthError, TransientError


@pytest.fixture
def api_client():
    client = MagicMock()
    client.list_webhooks = AsyncMock(return_value=[])
    client.delete_webhook = AsyncMock(return_value=None)
    client.create_webhook = AsyncMock(
        return_value={
            "id": "achNew",
            "macSecretBase64": "c2VjcmV0",
            "expirationTime": "2030-01-08T00:00:00.000Z",
        }
    )
    client.refresh_webhook = AsyncMock(
        return_value={"expirationTime": "2030-01-15T00:00:00.000Z"}
    )
    client.close = AsyncMock()
    return client


@pytest.fixture
def manager(fake_supabase, api_client):
    return SubscriptionManager(fake_supabase, client_factory=lambda token: api_client)


class TestRegisterSubscription:
    @pytest.mark.asyncio
    async def test_deletes_all_existing_even_when_one_fails(self, manager, api_client, credential):
        api_client.list_webhooks.return_value = [{"id": "ach1"}, {"id": "ach2"}, {"id": "ach3"}]
        api_client.delete_webhook.side_effect = [
            None,
            AirtableAPIError(500, "delete failed"),
            None,
        ]

        handle = await manager.register_subscription("baseA", credential)

        deleted_ids = [call.args[1] for call in api_client.delete_webhook.call_args_list]
        assert deleted_ids == ["ach1", "ach2", "ach3"]
        api_client.create_webhook.assert_awaited_once_with(
            "baseA", "https://forms.example.com/api/webhooks/airtable"
        )
        assert handle.webhook_id == "achNew"
        assert handle.deleted_count == 2
        assert handle.failed_deletes == ["ach2"]
        api_client.close.assert_awaited()

    @pytest.mark.asyncio
    async def test_stores_single_subscription_for_base(
        self, manager, fake_supabase, credential, subscription
    ):
        await manager.register_subscription("appBase1", credential)

        assert list(fake_supabase.subscriptions) == ["achNew"]
        stored = fake_supabase.subscriptions["achNew"]
        assert stored.owner_id == credential.owner_id
        assert stored.cursor == 1
        assert stored.mac_secret_base64 == "c2VjcmV0"
        assert stored.expiration_time is not None

    @pytest.mark.asyncio
    async def test_rejected_credential_raises_registration_error(self, manager, api_client, credential):
        api_client.list_webhooks.side_effect = AuthError("401")

        with pytest.raises(RegistrationError):
            await manager.register_subscription("baseA", credential)

        api_client.list_webhooks.assert_awaited_once()
        api_client.create_webhook.assert_not_called()

    @pytest.mark.asyncio
    async def test_listing_is_retried_on_transient_errors(
        self, manager, api_client, credential, fast_retries
    ):
        api_client.list_webhooks.side_effect = [TransientError("boom"), [{"id": "ach1"}]]

        handle = await manager.register_subscription("baseA", credential)

        assert api_client.list_webhooks.await_count == 2
        assert handle.deleted_count == 1

    @pytest.mark.asyncio
    async def test_listing_gives_up_after_max_attempts(
        self, manager, api_client, credential, fast_retries
    ):
        api_client.list_webhooks.side_effect = TransientError("boom")

        with pytest.raises(RegistrationError):
            await manager.register_subscription("baseA", credential)

        assert api_client.list_webhooks.await_count == settings.max_retry_attempts

    @pytest.mark.asyncio
    async def test_create_failure_leaves_base_without_webhook(
        self, manager, api_client, fake_supabase, credential
    ):
        api_client.list_webhooks.return_value = [{"id": "ach1"}]
        api_client.create_webhook.side_effect = AirtableAPIError(422, "invalid")

        with pytest.raises(RegistrationError):
            await manager.register_subscription("baseA", credential)

        api_client.delete_webhook.assert_awaited_once_with("baseA", "ach1")
        assert fake_supabase.subscriptions == {}

    @pytest.mark.asyncio
    async def test_subscription_is_stored_off_the_event_loop(
        self, manager, fake_supabase, credential, monkeypatch
    ):
        store_threads = []
        replace = fake_supabase.replace_webhook_subscription

        def recording_replace(subscription):
            store_threads.append(threading.get_ident())
            return replace(subscription)

        monkeypatch.setattr(fake_supabase, "replace_webhook_subscription", recording_replace)

        await manager.register_subscription("baseA", credential)

        assert store_threads and store_threads[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_store_failure_raises_registration_error(
        self, manager, fake_supabase, credential, monkeypatch
    ):
        monkeypatch.setattr(
            fake_supabase,
            "replace_webhook_subscription",
            MagicMock(side_effect=RuntimeError("connection reset")),
        )

        with pytest.raises(RegistrationError, match="not stored"):
            await manager.register_subscription("baseA", credential)

    @pytest.mark.asyncio
    async def test_missing_public_base_url(self, manager, credential, monkeypatch):
        monkeypatch.setattr(settings, "public_base_url", "")

        with pytest.raises(RegistrationError):
            await manager.register_subscription("baseA", credential)


class TestRefreshSubscription:
    @pytest.mark.asyncio
    async def test_refresh_stores_new_expiration(
        self, manager, api_client, fake_supabase, credential, subscription
    ):
        updated = await manager.refresh_subscription(subscription, credential)

        api_client.refresh_webhook.assert_awaited_once_with("appBase1", "achHook1")
        assert updated.expiration_time.year == 2030
        assert fake_supabase.subscriptions["achHook1"].expiration_time.year == 2030

    @pytest.mark.asyncio
    async def test_expiration_is_stored_off_the_event_loop(
        self, manager, fake_supabase, credential, subscription, monkeypatch
    ):
        store_threads = []
        update = fake_supabase.update_webhook_subscription

        def recording_update(webhook_id, updates):
            store_threads.append(threading.get_ident())
            return update(webhook_id, updates)

        monkeypatch.setattr(fake_supabase, "update_webhook_subscription", recording_update)

        await manager.refresh_subscription(subscription, credential)

        assert store_threads and store_threads[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_refresh_propagates_auth_error(self, manager, api_client, credential, subscription):
        api_client.refresh_webhook.side_effect = AuthError("401")

        with pytest.raises(AuthError):
            await manager.refresh_subscription(subscription, credential)

        api_client.close.assert_awaited()


def test_notification_url_strips_trailing_slash(monkeypatch):
    monkeypatch.setattr(settings, "public_base_url", "https://forms.example.com/")

    assert notification_url() == "https://forms.example.com/api/webhooks/airtable"
