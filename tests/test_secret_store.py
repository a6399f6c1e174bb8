"""
Tests for keychain access and the Graph authenticator's use of it.
"""

import pytest
from keyring.errors import KeyringError

from coffeechat.adapters.graph_authenticator import KEYRING_SERVICE_NAME, GraphAuthenticator
from coffeechat.adapters.secret_store import KeyringSecretStore
from coffeechat.domain.exceptions import AuthenticationError, SecretStoreError
from coffeechat.domain.models import CredentialHandle


class TestKeyringSecretStore:
    """Tests for KeyringSecretStore."""

    def test_set_get_delete(self, memory_keyring):
        store = KeyringSecretStore()

        store.set("coffeechat-smtp", "bob@smtp.example.com", "s3cret")

        assert store.get("coffeechat-smtp", "bob@smtp.example.com") == "s3cret"
        assert store.resolve(CredentialHandle("coffeechat-smtp", "bob@smtp.example.com")) == "s3cret"

        store.delete("coffeechat-smtp", "bob@smtp.example.com")
        assert store.get("coffeechat-smtp", "bob@smtp.example.com") is None

    def test_delete_missing_entry_is_ignored(self, memory_keyring):
        KeyringSecretStore().delete("coffeechat", "nobody")

    def test_backend_errors_are_wrapped(self, memory_keyring, monkeypatch):
        def locked(*args):
            raise KeyringError("keychain is locked")

        monkeypatch.setattr(memory_keyring, "get_password", locked)

        with pytest.raises(SecretStoreError, match="keychain is locked"):
            KeyringSecretStore().get("coffeechat", "client:tenant")


class TestGraphAuthenticator:
    """Tests for the parts of GraphAuthenticator that don't talk to Azure."""

    def test_missing_client_id_only_fails_when_signing_in(self, secret_store):
        auth = GraphAuthenticator(client_id="", tenant_id="common", secret_store=secret_store)

        assert auth.cached_credential() is None
        with pytest.raises(AuthenticationError, match="client_id"):
            auth.authorize()
        with pytest.raises(AuthenticationError, match="client_id"):
            auth.access_token(auth.handle)

    def test_handle_points_at_keychain(self, secret_store):
        auth = GraphAuthenticator(client_id="abc", tenant_id="contoso", secret_store=secret_store)

        assert auth.handle == CredentialHandle(KEYRING_SERVICE_NAME, "abc:contoso")
        assert auth.authority == "https://login.microsoftonline.com/contoso"

    def test_cached_credential(self, secret_store):
        auth = GraphAuthenticator(client_id="abc", tenant_id="contoso", secret_store=secret_store)
        assert auth.cached_credential() is None

        secret_store.set(KEYRING_SERVICE_NAME, "abc:contoso", "{}")

        assert auth.cached_credential() == auth.handle

    def test_clear_cache(self, secret_store):
        auth = GraphAuthenticator(client_id="abc", tenant_id="contoso", secret_store=secret_store)
        secret_store.set(KEYRING_SERVICE_NAME, "abc:contoso", "{}")

        auth.clear_cache()

        assert auth.cached_credential() is None
