"""
Invitation email templates.

A template file looks like::

    Subject: Coffee chat, {recipient_name}?
    ---
    Hi {recipient_name},

    I'm free at:
    {availabilities}

    Cheers,
    {sender_name}
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Sequence, Tuple

from .exceptions import TemplateError

SUBJECT_PREFIX = "Subject:"
SEPARATOR = "---"
NO_AVAILABILITY_TEXT = "(no free slots found - reply with a time that suits you)"


@dataclass(frozen=True)
class EmailTemplate:
    """Subject and body templates with ``{placeholder}`` variables."""
    subject_template: str
    body_template: str

    def __post_init__(self):
        if not self.subject_template.strip():
            raise TemplateError("Template subject must not be empty")
        if not self.body_template.strip():
            raise TemplateError("Template body must not be empty")

    @classmethod
    def load(cls, template_path: Path) -> "EmailTemplate":
        """
        Load and parse a template file.

        Raises:
            TemplateError: If the file is unreadable or not in the expected format
        """
        try:
            content = Path(template_path).read_text(encoding="utf-8")
        except OSError as exc:
            raise TemplateError(f"Failed to read template file '{template_path}': {exc}") from exc

        return cls.parse(content)

    @classmethod
    def parse(cls, content: str) -> "EmailTemplate":
        """Parse ``Subject: ...`` / ``---`` / body text."""
        lines = content.splitlines()
        if len(lines) < 2:
            raise TemplateError("Template format error: missing 'Subject:' line or '---' separator")

        subject_line, separator = lines[0], lines[1]
        if not subject_line.startswith(SUBJECT_PREFIX) or separator.strip() != SEPARATOR:
            raise TemplateError("Template format error: missing 'Subject:' line or '---' separator")

        subject = subject_line[len(SUBJECT_PREFIX):].strip()
        body = "\n".join(lines[2:])
        return cls(subject_template=subject, body_template=body)

    def to_text(self) -> str:
        return f"{SUBJECT_PREFIX} {self.subject_template}\n{SEPARATOR}\n{self.body_template}"

    def render(
        self,
        recipient_name: str,
        sender_name: str,
        availabilities: Sequence[str],
    ) -> Tuple[str, str]:
        """
        Render the subject and body for one recipient.

        Returns:
            Tuple of (subject, body)
        """
        variables = build_variables(recipient_name, sender_name, availabilities)
        subject = render_text(self.subject_template, variables)
        body = render_text(self.body_template, variables)
        # Header values must stay on one line
        return " ".join(subject.split()), body


def build_variables(
    recipient_name: str,
    sender_name: str,
    availabilities: Sequence[str],
) -> Dict[str, str]:
    if availabilities:
        slots_text = "\n".join(f"- {line}" for line in availabilities)
    else:
        slots_text = NO_AVAILABILITY_TEXT
    return {
        "recipient_name": recipient_name,
        "sender_name": sender_name,
        "availabilities": slots_text,
    }


def render_text(template_text: str, variables: Dict[str, str]) -> str:
    """Replace each ``{name}`` placeholder; unknown braces are left untouched."""
    rendered = template_text
    for var_name, var_value in variables.items():
        placeholder = "{" + var_name + "}"
        rendered = rendered.replace(placeholder, var_value)
    return rendered
