"""
Microsoft Graph API authentication using MSAL.

The serialized MSAL token cache lives in the OS keychain only; callers get a
``CredentialHandle`` that points at it.
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

import msal
from rich.console import Console

from ..domain.exceptions import AuthenticationError
from ..domain.models import CredentialHandle
from .secret_store import SecretStore

logger = logging.getLogger(__name__)

console = Console()


KEYRING_SERVICE_NAME = "coffeechat"


class GraphAuthenticator:
    """
    Handles authentication with Microsoft Graph API.

    Two flows are supported:
    - interactive: opens the system browser for consent (default)
    - device_code: prints a code and URL to enter on any device
    """

    # Required scopes for calendar access
    SCOPES = ["Calendars.Read", "User.Read"]

    def __init__(
        self,
        client_id: str,
        tenant_id: str,
        secret_store: SecretStore,
        authority_url: str | None = None,
        flow: Literal["interactive", "device_code"] = "interactive",
    ):
        """
        Initialize the authenticator.

        Args:
            client_id: Azure AD application (client) ID
            tenant_id: Azure AD tenant ID
            secret_store: Keychain used to persist the token cache
            authority_url: Optional custom authority URL
            flow: Consent flow used when no cached token is usable
        """
        self.client_id = client_id
        self.tenant_id = tenant_id
        self.authority = authority_url or f"https://login.microsoftonline.com/{tenant_id}"
        self.flow = flow
        self._store = secret_store

    @property
    def handle(self) -> CredentialHandle:
        """Keychain location of this app registration's token cache."""
        return CredentialHandle(
            service_id=KEYRING_SERVICE_NAME,
            account_id=f"{self.client_id}:{self.tenant_id}",
        )

    def cached_credential(self) -> Optional[CredentialHandle]:
        """Return the handle if a token cache was persisted by an earlier session."""
        if not self.client_id:
            return None
        handle = self.handle
        if self._store.get(handle.service_id, handle.account_id):
            return handle
        return None

    def authorize(self) -> CredentialHandle:
        """
        Obtain consent (or reuse a cached token) and persist the token cache.

        Returns:
            Handle to the stored token cache

        Raises:
            AuthenticationError: If authentication fails
        """
        self._require_client_id()
        handle = self.handle
        app, cache = self._build_app(handle)

        result = self._acquire_silent(app)
        if result is None:
            if self.flow == "device_code":
                result = self._authenticate_device_code_flow(app)
            else:
                result = self._authenticate_interactive(app)

        if "access_token" not in result:
            error = result.get("error_description", "Unknown error")
            raise AuthenticationError(f"Authentication failed: {error}")

        self._save_cache(handle, cache)
        logger.info("Calendar access authorized for %s", handle)
        return handle

    def access_token(self, credential: CredentialHandle) -> str:
        """
        Resolve a handle to a short-lived access token.

        Raises:
            AuthenticationError: If no usable token is cached
        """
        self._require_client_id()
        app, cache = self._build_app(credential)
        result = self._acquire_silent(app)
        if not result or "access_token" not in result:
            raise AuthenticationError(
                "No valid calendar token available. Run 'coffeechat connect' again."
            )
        self._save_cache(credential, cache)
        return result["access_token"]

    def clear_cache(self) -> None:
        """Clear the token cache (force re-authentication next time)."""
        handle = self.handle
        self._store.delete(handle.service_id, handle.account_id)
        logger.info("Token cache %s cleared", handle)

    def _require_client_id(self) -> None:
        if not self.client_id:
            raise AuthenticationError(
                "client_id is not configured. Add your Azure app registration to config.yaml."
            )

    def _build_app(self, handle: CredentialHandle):
        cache = msal.SerializableTokenCache()
        serialized = self._store.get(handle.service_id, handle.account_id)
        if serialized:
            try:
                cache.deserialize(serialized)
            except ValueError as exc:
                logger.warning("Could not deserialize token cache: %s", exc)

        app = msal.PublicClientApplication(
            client_id=self.client_id,
            authority=self.authority,
            token_cache=cache,
        )
        return app, cache

    def _acquire_silent(self, app: msal.PublicClientApplication) -> Optional[dict]:
        accounts = app.get_accounts()
        if not accounts:
            return None
        result = app.acquire_token_silent(scopes=self.SCOPES, account=accounts[0])
        if result and "access_token" in result:
            return result
        return None

    def _save_cache(self, handle: CredentialHandle, cache: msal.SerializableTokenCache) -> None:
        if cache.has_state_changed:
            self._store.set(handle.service_id, handle.account_id, cache.serialize())

    def _authenticate_interactive(self, app: msal.PublicClientApplication) -> dict:
        """Open the system browser and wait for the redirect."""
        logger.info("Opening browser for Microsoft consent")
        try:
            return app.acquire_token_interactive(scopes=self.SCOPES, prompt="select_account")
        except Exception as exc:  # MSAL raises bare exceptions for browser/redirect failures
            raise AuthenticationError(f"Interactive sign-in failed: {exc}") from exc

    def _authenticate_device_code_flow(self, app: msal.PublicClientApplication) -> dict:
        """
        Perform device code flow authentication.

        Raises:
            AuthenticationError: If the flow cannot be started
        """
        try:
            flow = app.initiate_device_flow(scopes=self.SCOPES)
        except Exception as exc:  # pragma: no cover - MSAL internal failure
            raise AuthenticationError(f"Failed to initiate device flow: {exc}") from exc

        if "user_code" not in flow:
            raise AuthenticationError(
                f"Failed to initiate device flow: {flow.get('error_description', 'Unknown error')}"
            )

        console.print("\n[bold cyan]🔐 Calendar consent needed[/bold cyan]")
        console.print(f"Visit [bold cyan]{flow['verification_uri']}[/bold cyan] and enter [bold yellow]{flow['user_code']}[/bold yellow].")
        console.print("coffeechat only asks to read your calendar.\n")

        return app.acquire_token_by_device_flow(flow)
