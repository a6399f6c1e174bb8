"""
Session snapshot persisted between runs.

Holds the message, recipients, SMTP settings (never the password) and
calendar settings. Written on shutdown, read on startup.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..config import AppConfig, CalendarSettings, RecipientConfig, SmtpSettings
from ..domain.exceptions import TemplateError
from ..domain.models import Recipient
from ..domain.template import EmailTemplate

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = EmailTemplate(
    subject_template="Coffee chat, {recipient_name}?",
    body_template=(
        "Hi {recipient_name},\n\n"
        "Would you be up for a quick coffee chat? I'm free at these times:\n\n"
        "{availabilities}\n\n"
        "Let me know what works for you.\n\n"
        "Best,\n"
        "{sender_name}\n"
    ),
)


class SessionSnapshot(BaseModel):
    """Everything the user edited that should survive a restart."""
    subject: str = DEFAULT_TEMPLATE.subject_template
    body: str = DEFAULT_TEMPLATE.body_template
    sender_name: str = ""
    recipients: List[RecipientConfig] = Field(default_factory=list)
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    calendar: CalendarSettings = Field(default_factory=CalendarSettings)

    @classmethod
    def from_config(cls, config: AppConfig) -> "SessionSnapshot":
        """Seed a first session from the config file and its template."""
        template = DEFAULT_TEMPLATE
        if config.sender.template_path:
            try:
                template = EmailTemplate.load(config.sender.template_path)
            except TemplateError as exc:
                logger.warning("Falling back to default template: %s", exc)

        return cls(
            subject=template.subject_template,
            body=template.body_template,
            sender_name=config.sender.name,
            recipients=list(config.recipients),
            smtp=config.smtp,
            calendar=config.calendar,
        )

    def template(self) -> EmailTemplate:
        return EmailTemplate(subject_template=self.subject, body_template=self.body)

    def recipient_list(self) -> List[Recipient]:
        return [r.to_recipient() for r in self.recipients]

    def add_recipient(self, name: str, email: str) -> RecipientConfig:
        entry = RecipientConfig(name=name, email=email)
        self.recipients.append(entry)
        return entry

    def remove_recipient(self, email: str) -> bool:
        """Remove every entry with ``email`` (case-insensitive)."""
        before = len(self.recipients)
        self.recipients = [r for r in self.recipients if r.email.lower() != email.lower()]
        return len(self.recipients) != before


def load_snapshot(path: Path) -> Optional[SessionSnapshot]:
    """Read a snapshot; a missing or corrupted file yields None."""
    if not path.exists():
        return None

    try:
        return SessionSnapshot.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValidationError) as exc:
        # Corrupted state shouldn't brick the app; start from config.
        logger.warning("Ignoring unreadable session file %s: %s", path, exc)
        return None


def save_snapshot(path: Path, snapshot: SessionSnapshot) -> None:
    """Write the snapshot atomically."""
    folder = path.resolve().parent
    folder.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        "w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp"
    ) as tf:
        tf.write(snapshot.model_dump_json(indent=2))
        tmp_name = tf.name

    os.replace(tmp_name, path)
    logger.debug("Session saved to %s", path)
