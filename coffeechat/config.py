"""
Configuration management using Pydantic models loaded from YAML.
"""

from datetime import timedelta
from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.models import MAX_BUFFER_MINUTES, DailyWindow, Recipient, SlotQuery


class CalendarSettings(BaseModel):
    """Settings that shape the slot search."""
    buffer_minutes: int = 15
    day_start_hour: int = 9
    day_end_hour: int = 17
    lookahead_days: int = 14
    min_duration_minutes: int = 30
    exclude_days: List[int] = Field(default_factory=list)  # 0=Monday, 6=Sunday

    @field_validator("buffer_minutes")
    @classmethod
    def validate_buffer(cls, value: int) -> int:
        """Validate buffer is between 0 and the allowed maximum."""
        if not 0 <= value <= MAX_BUFFER_MINUTES:
            raise ValueError(f"buffer_minutes must be between 0 and {MAX_BUFFER_MINUTES}, got {value}")
        return value

    @field_validator("day_start_hour", "day_end_hour")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        """Validate hour is between 0 and 24."""
        if not 0 <= v <= 24:
            raise ValueError(f"Hour must be between 0 and 24, got {v}")
        return v

    @field_validator("lookahead_days", "min_duration_minutes")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("value must be greater than zero")
        return value

    @field_validator("exclude_days")
    @classmethod
    def validate_exclude_days(cls, value: List[int]) -> List[int]:
        """Ensure weekdays are in valid range and deduplicated."""
        invalid_days = [day for day in value if day not in range(7)]
        if invalid_days:
            raise ValueError(f"exclude_days must be between 0 and 6, got {invalid_days}")
        return list(dict.fromkeys(value))

    @model_validator(mode="after")
    def validate_hours_order(self) -> "CalendarSettings":
        """Ensure the configured window opens before it closes."""
        if self.day_end_hour <= self.day_start_hour:
            raise ValueError("day_end_hour must be later than day_start_hour")
        return self

    def daily_window(self) -> DailyWindow:
        return DailyWindow.from_hours(
            self.day_start_hour,
            self.day_end_hour,
            exclude_weekdays=self.exclude_days,
        )

    def build_query(self, timezone: str, now=None) -> SlotQuery:
        """Fresh query from now until the lookahead horizon."""
        return SlotQuery.upcoming(
            self.daily_window(),
            days=self.lookahead_days,
            buffer_minutes=self.buffer_minutes,
            min_duration_minutes=self.min_duration_minutes,
            timezone=timezone,
            now=now,
        )

    @property
    def min_duration(self) -> timedelta:
        return timedelta(minutes=self.min_duration_minutes)


class SmtpSettings(BaseModel):
    """
    SMTP server settings.

    The password is never part of the configuration; it lives in the OS keychain.
    """
    host: str = ""
    port: int = 587
    username: str = ""
    from_email: str = ""
    use_ssl: Optional[bool] = None
    timeout_seconds: float = 30.0

    @field_validator("port")
    @classmethod
    def validate_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError(f"port must be between 1 and 65535, got {value}")
        return value

    @property
    def implicit_tls(self) -> bool:
        """Use SMTPS instead of STARTTLS (defaults to on for port 465)."""
        if self.use_ssl is None:
            return self.port == 465
        return self.use_ssl

    def missing_fields(self) -> List[str]:
        return [
            name for name in ("host", "username", "from_email")
            if not getattr(self, name).strip()
        ]


class SenderSettings(BaseModel):
    """Who the invitations come from."""
    name: str = ""
    template_path: Optional[Path] = None


class RecipientConfig(BaseModel):
    """Recipient configuration."""
    name: str
    email: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        value = value.strip()
        if "@" not in value:
            raise ValueError(f"Invalid email address: '{value}'")
        return value

    def to_recipient(self) -> Recipient:
        return Recipient(name=self.name, email=self.email)


class AppConfig(BaseModel):
    """Application configuration."""
    client_id: str = ""
    tenant_id: str = "common"
    timezone: str = "Europe/Berlin"
    auth_flow: Literal["interactive", "device_code"] = "interactive"
    calendar: CalendarSettings = Field(default_factory=CalendarSettings)
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    sender: SenderSettings = Field(default_factory=SenderSettings)
    recipients: List[RecipientConfig] = Field(default_factory=list)
    session_file: Optional[Path] = None

    def get_authority_url(self) -> str:
        """Get the formatted authority URL."""
        return f"https://login.microsoftonline.com/{self.tenant_id}"

    def get_session_path(self) -> Path:
        if self.session_file:
            return self.session_file.expanduser()
        return Path.home() / ".coffeechat_session.json"

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
