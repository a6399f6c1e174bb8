"""
Adapters layer - External integrations (Microsoft Graph, SMTP, OS keychain).
"""

from .graph_authenticator import GraphAuthenticator
from .graph_client import GraphCalendarClient
from .mock_graph_client import MockAuthenticator, MockCalendarClient
from .secret_store import KeyringSecretStore, SecretStore
from .smtp_mailer import SmtpMailer

__all__ = [
    "GraphAuthenticator",
    "GraphCalendarClient",
    "KeyringSecretStore",
    "MockAuthenticator",
    "MockCalendarClient",
    "SecretStore",
    "SmtpMailer",
]
