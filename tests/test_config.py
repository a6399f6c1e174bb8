"""
Tests for YAML configuration.
"""

from datetime import timedelta
from pathlib import Path

import pendulum
import pytest
from pydantic import ValidationError

from coffeechat.config import AppConfig, CalendarSettings, SmtpSettings

CONFIG_YAML = """
client_id: "abc-123"
tenant_id: "contoso"
timezone: "Europe/Berlin"
auth_flow: device_code
calendar:
  buffer_minutes: 10
  day_start_hour: 8
  day_end_hour: 18
  lookahead_days: 7
  exclude_days: [5, 6]
smtp:
  host: smtp.example.com
  port: 465
  username: me
  from_email: me@example.com
sender:
  name: Bob
recipients:
  - name: Ann
    email: ann@example.com
session_file: session.json
"""


class TestAppConfig:
    """Tests for AppConfig loading."""

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML, encoding="utf-8")

        config = AppConfig.load_from_yaml(path)

        assert config.client_id == "abc-123"
        assert config.auth_flow == "device_code"
        assert config.get_authority_url() == "https://login.microsoftonline.com/contoso"
        assert config.calendar.buffer_minutes == 10
        assert config.calendar.exclude_days == [5, 6]
        assert config.smtp.implicit_tls
        assert config.sender.name == "Bob"
        assert config.recipients[0].to_recipient().email == "ann@example.com"
        assert config.get_session_path() == Path("session.json")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")

        config = AppConfig.load_from_yaml(path)

        assert config.tenant_id == "common"
        assert config.calendar == CalendarSettings()
        assert config.get_session_path().name == ".coffeechat_session.json"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.example.yaml"):
            AppConfig.load_from_yaml(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("client_id: [unclosed", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid YAML"):
            AppConfig.load_from_yaml(path)

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ValueError, match="mapping"):
            AppConfig.load_from_yaml(path)

    def test_unknown_auth_flow(self):
        with pytest.raises(ValidationError):
            AppConfig(auth_flow="password")


class TestCalendarSettings:
    """Tests for CalendarSettings validation."""

    def test_defaults(self):
        settings = CalendarSettings()

        assert settings.buffer_minutes == 15
        assert settings.lookahead_days == 14
        assert settings.min_duration == timedelta(minutes=30)

    @pytest.mark.parametrize("buffer_minutes", [-5, 121])
    def test_buffer_range(self, buffer_minutes):
        with pytest.raises(ValidationError, match="buffer_minutes"):
            CalendarSettings(buffer_minutes=buffer_minutes)

    def test_hours_must_be_ordered(self):
        with pytest.raises(ValidationError, match="day_end_hour"):
            CalendarSettings(day_start_hour=17, day_end_hour=9)

    def test_hour_range(self):
        with pytest.raises(ValidationError, match="between 0 and 24"):
            CalendarSettings(day_end_hour=25)

    def test_exclude_days(self):
        assert CalendarSettings(exclude_days=[6, 6, 5]).exclude_days == [6, 5]
        with pytest.raises(ValidationError):
            CalendarSettings(exclude_days=[7])

    def test_build_query(self):
        now = pendulum.datetime(2024, 11, 25, 8, 30, tz="UTC")
        settings = CalendarSettings(buffer_minutes=20, day_end_hour=24, lookahead_days=3)

        query = settings.build_query("Europe/Berlin", now=now)

        assert query.query_range.start == now
        assert query.query_range.end == now.add(days=3)
        assert query.query_range.start.timezone_name == "Europe/Berlin"
        assert query.buffer_minutes == 20
        assert str(query.daily_window) == "09:00-24:00"


class TestSmtpSettings:
    def test_starttls_by_default(self):
        assert not SmtpSettings(host="smtp.example.com").implicit_tls

    def test_explicit_ssl_flag_wins(self):
        assert not SmtpSettings(port=465, use_ssl=False).implicit_tls
        assert SmtpSettings(port=2525, use_ssl=True).implicit_tls

    def test_missing_fields(self):
        assert SmtpSettings().missing_fields() == ["host", "username", "from_email"]
        assert SmtpSettings(host="h", username="u", from_email="f@x").missing_fields() == []

    def test_invalid_port(self):
        with pytest.raises(ValidationError):
            SmtpSettings(port=0)
