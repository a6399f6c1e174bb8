"""
OS keychain access through the ``keyring`` library.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from ..domain.exceptions import SecretStoreError
from ..domain.models import CredentialHandle

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    """Get/set/delete-by-key capability for secrets."""

    def get(self, service_id: str, account_id: str) -> Optional[str]:
        """Return the stored secret or None."""

    def set(self, service_id: str, account_id: str, secret: str) -> None:
        """Store or replace a secret."""

    def delete(self, service_id: str, account_id: str) -> None:
        """Remove a secret; missing entries are ignored."""


class KeyringSecretStore:
    """Secret store backed by the active ``keyring`` backend."""

    def get(self, service_id: str, account_id: str) -> Optional[str]:
        try:
            return keyring.get_password(service_id, account_id)
        except KeyringError as exc:
            raise SecretStoreError(f"Reading {service_id}/{account_id} from keychain failed: {exc}") from exc

    def set(self, service_id: str, account_id: str, secret: str) -> None:
        try:
            keyring.set_password(service_id, account_id, secret)
        except KeyringError as exc:
            raise SecretStoreError(f"Writing {service_id}/{account_id} to keychain failed: {exc}") from exc

    def delete(self, service_id: str, account_id: str) -> None:
        try:
            keyring.delete_password(service_id, account_id)
        except PasswordDeleteError:
            logger.debug("No keychain entry for %s/%s to delete", service_id, account_id)
        except KeyringError as exc:
            raise SecretStoreError(f"Removing {service_id}/{account_id} from keychain failed: {exc}") from exc

    def resolve(self, handle: CredentialHandle) -> Optional[str]:
        return self.get(handle.service_id, handle.account_id)
