"""
Shared fixtures.
"""

from typing import Dict, Optional, Tuple

import keyring
import pendulum
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError


class MemoryKeyring(KeyringBackend):
    """Keyring backend that keeps everything in a dict."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.entries: Dict[Tuple[str, str], str] = {}

    def get_password(self, service, username):
        return self.entries.get((service, username))

    def set_password(self, service, username, password):
        self.entries[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.entries[(service, username)]
        except KeyError:
            raise PasswordDeleteError(f"No entry for {service}/{username}")


class DictSecretStore:
    """SecretStore stub that never touches the OS keychain."""

    def __init__(self, entries: Optional[Dict[Tuple[str, str], str]] = None):
        self.entries = dict(entries or {})

    def get(self, service_id, account_id):
        return self.entries.get((service_id, account_id))

    def set(self, service_id, account_id, secret):
        self.entries[(service_id, account_id)] = secret

    def delete(self, service_id, account_id):
        self.entries.pop((service_id, account_id), None)


@pytest.fixture
def memory_keyring():
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture
def secret_store():
    return DictSecretStore()


@pytest.fixture
def monday():
    """Midnight at the start of Monday, 25 Nov 2024, in Berlin."""
    return pendulum.datetime(2024, 11, 25, tz="Europe/Berlin")
