"""
Mock calendar collaborators for running without Azure authentication.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

import pendulum

from ..domain.models import CredentialHandle, TimeRange

logger = logging.getLogger(__name__)

MOCK_HANDLE = CredentialHandle(service_id="coffeechat-mock", account_id="mock")


class MockCalendarClient:
    """
    Mock client that simulates the Graph calendarView.

    Events come from a JSON file of ``{"start": ..., "end": ...}`` objects when
    one is given; otherwise every weekday gets a standup and a focus block.
    """

    def __init__(self, data_file: Optional[Path] = None, timezone: str = "Europe/Berlin"):
        """
        Initialize the mock client.

        Args:
            data_file: Optional JSON file with events
            timezone: Timezone used for generated and naive events
        """
        self.timezone = timezone
        self.calendar_events = self._load_calendar_data(data_file)

    def _load_calendar_data(self, data_file: Optional[Path]) -> list:
        """Load mock calendar data from JSON file."""
        if data_file is None or not data_file.exists():
            return []
        with open(data_file, "r", encoding="utf-8") as f:
            return json.load(f)

    def list_busy_events(
        self,
        credential: CredentialHandle,
        time_range: TimeRange,
    ) -> List[TimeRange]:
        """
        Busy ranges overlapping ``time_range``.

        Returns:
            List of busy TimeRange objects
        """
        if self.calendar_events:
            candidates = self._events_from_file()
        else:
            candidates = self._generated_events(time_range)

        return [busy for busy in candidates if busy.overlaps(time_range)]

    def _events_from_file(self) -> List[TimeRange]:
        busy_times: List[TimeRange] = []
        for event in self.calendar_events:
            try:
                busy_times.append(
                    TimeRange(
                        start=pendulum.parse(event["start"], tz=self.timezone),
                        end=pendulum.parse(event["end"], tz=self.timezone),
                    )
                )
            except (KeyError, ValueError) as e:
                logger.warning("Skipping invalid mock event %r: %s", event, e)
        return busy_times

    def _generated_events(self, time_range: TimeRange) -> List[TimeRange]:
        busy_times: List[TimeRange] = []
        day = time_range.start.in_timezone(self.timezone).start_of("day")

        while day < time_range.end:
            if day.weekday() < 5:
                busy_times.append(TimeRange(start=day.set(hour=9), end=day.set(hour=9, minute=30)))
                busy_times.append(TimeRange(start=day.set(hour=13), end=day.set(hour=15)))
            day = day.add(days=1)

        return busy_times


class MockAuthenticator:
    """
    Mock authenticator that bypasses actual Microsoft authentication.
    """

    def authorize(self) -> CredentialHandle:
        return MOCK_HANDLE

    def cached_credential(self) -> Optional[CredentialHandle]:
        return MOCK_HANDLE

    def access_token(self, credential: CredentialHandle) -> str:
        return "mock_access_token_12345"

    def clear_cache(self) -> None:
        """Mock cache clear (does nothing)."""
