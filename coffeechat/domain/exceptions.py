"""
Domain-specific exception hierarchy for the coffeechat application.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


class CoffeeChatError(Exception):
    """Base class for all application-level errors."""


class InvalidInputError(CoffeeChatError, ValueError):
    """Raised when a query, window or message is malformed."""


class TemplateError(InvalidInputError):
    """Raised when an email template cannot be parsed or rendered."""


class NotConnectedError(CoffeeChatError):
    """Raised when a calendar operation needs a credential that is missing."""


class BusyError(CoffeeChatError):
    """Raised when an operation is requested while another one is in flight."""


class NetworkError(CoffeeChatError):
    """Raised when a remote collaborator (calendar, OAuth, SMTP) fails."""


class CalendarAPIError(NetworkError):
    """Raised when calendar data cannot be fetched or parsed."""


class AuthenticationError(NetworkError):
    """Raised when authentication or token handling fails."""


class MailDeliveryError(NetworkError):
    """Raised when a single message could not be handed to the SMTP server."""


class SecretStoreError(CoffeeChatError):
    """Raised when the OS keychain cannot be read or written."""


@dataclass(frozen=True)
class RecipientFailure:
    """One recipient that could not be reached, and why."""
    name: str
    email: str
    reason: str

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>: {self.reason}"


class PartialSendFailure(CoffeeChatError):
    """Raised when some recipients of a batch could not be reached."""

    def __init__(self, failures: Sequence[RecipientFailure], total: int):
        self.failures = tuple(failures)
        self.total = total
        super().__init__(
            f"{len(self.failures)} of {total} invitation(s) failed: "
            + "; ".join(str(f) for f in self.failures)
        )
