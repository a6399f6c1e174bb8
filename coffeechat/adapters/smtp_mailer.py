"""
SMTP delivery of invitation emails.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage

from ..config import SmtpSettings
from ..domain.exceptions import MailDeliveryError
from ..domain.models import CredentialHandle
from .secret_store import SecretStore

logger = logging.getLogger(__name__)

SMTP_SERVICE_NAME = "coffeechat-smtp"


def password_handle(smtp: SmtpSettings) -> CredentialHandle:
    """Keychain location of the SMTP password for these settings."""
    return CredentialHandle(service_id=SMTP_SERVICE_NAME, account_id=f"{smtp.username}@{smtp.host}")


class SmtpMailer:
    """
    Sends one message per call through an authenticated SMTP session.

    The password is read from the keychain inside each call and not kept.
    """

    def __init__(self, secret_store: SecretStore):
        self._store = secret_store

    def has_password(self, smtp: SmtpSettings) -> bool:
        handle = password_handle(smtp)
        return bool(self._store.get(handle.service_id, handle.account_id))

    def store_password(self, smtp: SmtpSettings, password: str) -> None:
        handle = password_handle(smtp)
        self._store.set(handle.service_id, handle.account_id, password)

    def send(
        self,
        smtp: SmtpSettings,
        from_addr: str,
        to_addr: str,
        subject: str,
        body: str,
    ) -> None:
        """
        Deliver a single plain-text message.

        Raises:
            MailDeliveryError: If the password is missing or the server rejects the message
        """
        handle = password_handle(smtp)
        password = self._store.get(handle.service_id, handle.account_id)
        if not password:
            raise MailDeliveryError(
                f"No SMTP password stored for {handle.account_id}. Run 'coffeechat set-password'."
            )

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = from_addr
        message["To"] = to_addr
        message.set_content(body)

        context = ssl.create_default_context()
        try:
            if smtp.implicit_tls:
                server = smtplib.SMTP_SSL(smtp.host, smtp.port, timeout=smtp.timeout_seconds, context=context)
            else:
                server = smtplib.SMTP(smtp.host, smtp.port, timeout=smtp.timeout_seconds)

            with server:
                if not smtp.implicit_tls:
                    server.starttls(context=context)
                server.login(smtp.username, password)
                server.send_message(message)
        except smtplib.SMTPAuthenticationError as exc:
            raise MailDeliveryError(f"SMTP authentication failed: {exc}") from exc
        except smtplib.SMTPException as exc:
            raise MailDeliveryError(f"SMTP send failed: {exc}") from exc
        except OSError as exc:
            raise MailDeliveryError(f"Could not reach {smtp.host}:{smtp.port}: {exc}") from exc

        logger.info("Invitation sent to %s", to_addr)
