"""Tests for credential lookup, refresh persistence and token encryption."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from cryptography.fernet import Fernet

from app.config import settings
from app.integrations.airtable.token_refresh import TokenSet
from app.models.database import Credential
from app.services.credential_store import CredentialStore
from app.utils.token_encryption import credential_from_row, seal_token_updates


@pytest.fixture
def store(fake_supabase):
    return CredentialStore(fake_supabase)


class TestCredentialLookup:
    def test_prefers_subscription_owner(self, store, fake_supabase, credential, subscription):
        other = Credential(id=uuid4(), owner_id="user-2", access_token="other-token")
        fake_supabase.credentials = {other.id: other, credential.id: credential}

        assert store.get_for_subscription(subscription).owner_id == "user-1"

    def test_falls_back_to_system_credential(self, store, fake_supabase, subscription):
        other = Credential(id=uuid4(), owner_id="user-2", access_token="other-token")
        fake_supabase.credentials[other.id] = other

        assert store.get_for_subscription(subscription).owner_id == "user-2"
        assert store.get_for_subscription(None).owner_id == "user-2"

    def test_fallback_can_be_disabled(self, store, fake_supabase, subscription, monkeypatch):
        monkeypatch.setattr(settings, "allow_system_credential_fallback", False)
        other = Credential(id=uuid4(), owner_id="user-2", access_token="other-token")
        fake_supabase.credentials[other.id] = other

        assert store.get_for_subscription(subscription) is None


class TestSaveRefreshed:
    def test_overwrites_token_columns(self, store, fake_supabase, credential):
        expires_at = datetime.now(UTC) + timedelta(hours=2)

        updated = store.save_refreshed(
            credential, TokenSet("access-new", "refresh-new", expires_at)
        )

        assert updated.access_token == "access-new"
        assert updated.refresh_token == "refresh-new"
        assert fake_supabase.credentials[credential.id].expires_at == expires_at
        assert fake_supabase.credentials[credential.id].owner_id == "user-1"

    def test_keeps_stored_refresh_token_when_not_returned(self, store, fake_supabase, credential):
        updated = store.save_refreshed(credential, TokenSet("access-new", None))

        assert updated.refresh_token == "refresh-old"

    def test_credential_without_id(self, store):
        with pytest.raises(ValueError):
            store.save_refreshed(
                Credential(owner_id="user-1", access_token="a"), TokenSet("b", "c")
            )

    def test_credential_removed_during_refresh(self, store, fake_supabase, credential):
        fake_supabase.credentials.clear()

        with pytest.raises(ValueError):
            store.save_refreshed(credential, TokenSet("access-new", "refresh-new"))


class TestExpiry:
    def test_expiring_soon(self, store):
        soon = Credential(owner_id="u", expires_at=datetime.now(UTC) + timedelta(minutes=5))
        later = Credential(owner_id="u", expires_at=datetime.now(UTC) + timedelta(hours=5))

        assert store.is_expiring_soon(soon)
        assert not store.is_expiring_soon(later)
        assert store.is_expiring_soon(Credential(owner_id="u"))


class TestTokenEncryption:
    def test_sealed_row_reads_as_plaintext_credential(self, monkeypatch):
        monkeypatch.setattr(settings, "token_encryption_key", Fernet.generate_key().decode())
        credential_id = uuid4()
        sealed = seal_token_updates(
            {"access_token": "plain-access", "refresh_token": "plain-refresh"}
        )

        credential = credential_from_row({"id": str(credential_id), "owner_id": "u", **sealed})

        assert sealed["access_token"] != "plain-access"
        assert isinstance(credential, Credential)
        assert credential.id == credential_id
        assert credential.access_token == "plain-access"
        assert credential.refresh_token == "plain-refresh"

    def test_plaintext_rows_are_read_as_is(self, monkeypatch):
        monkeypatch.setattr(settings, "token_encryption_key", Fernet.generate_key().decode())

        credential = credential_from_row({"owner_id": "u", "access_token": "legacy"})

        assert credential.access_token == "legacy"

    def test_token_sealed_with_old_key_is_kept(self, monkeypatch):
        monkeypatch.setattr(settings, "token_encryption_key", Fernet.generate_key().decode())
        sealed = seal_token_updates({"access_token": "plain-access"})
        monkeypatch.setattr(settings, "token_encryption_key", Fernet.generate_key().decode())

        credential = credential_from_row({"owner_id": "u", **sealed})

        assert credential.access_token == sealed["access_token"]

    def test_already_sealed_values_are_not_sealed_twice(self, monkeypatch):
        monkeypatch.setattr(settings, "token_encryption_key", Fernet.generate_key().decode())
        once = seal_token_updates({"access_token": "plain-access"})

        assert seal_token_updates(once) == once

    def test_disabled_without_key(self, monkeypatch):
        monkeypatch.setattr(settings, "token_encryption_key", "")
        updates = {"access_token": "plain", "expires_at": None}

        assert seal_token_updates(updates) == updates
        assert credential_from_row({"owner_id": "u", "access_token": "plain"}).access_token == "plain"

    def test_invalid_key_disables_encryption(self, monkeypatch):
        monkeypatch.setattr(settings, "token_encryption_key", "not-a-fernet-key")

        assert seal_token_updates({"access_token": "plain"}) == {"access_token": "plain"}
