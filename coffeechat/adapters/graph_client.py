"""
Microsoft Graph API client for fetching calendar data.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

import pendulum
import requests
from pendulum import DateTime

from ..domain.exceptions import CalendarAPIError, InvalidInputError
from ..domain.models import CredentialHandle, TimeRange

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    def access_token(self, credential: CredentialHandle) -> str:
        """Resolve a credential handle to a bearer token."""


class GraphCalendarClient:
    """
    Client for Microsoft Graph API calendar operations.

    Uses the /me/calendarView endpoint, which expands recurring events into
    concrete instances for the requested window.
    """

    GRAPH_API_ENDPOINT = "https://graph.microsoft.com/v1.0"
    PAGE_SIZE = 100

    # showAs values that leave the time available
    FREE_STATUSES = {"free"}

    def __init__(
        self,
        token_provider: TokenProvider,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
        timezone: str = "UTC",
    ):
        """
        Initialize the Graph API client.

        Args:
            token_provider: Resolves credential handles to access tokens
            timeout: Per-request timeout in seconds
            session: Optional requests session (for connection reuse)
            timezone: Zone that all-day events are anchored to
        """
        self._token_provider = token_provider
        self.timeout = timeout
        self.timezone = timezone
        self._session = session or requests.Session()

    def list_busy_events(
        self,
        credential: CredentialHandle,
        time_range: TimeRange,
    ) -> List[TimeRange]:
        """
        Get busy time ranges from the signed-in user's calendar.

        Args:
            credential: Handle to the stored token cache
            time_range: Window to list events for

        Returns:
            Busy TimeRange objects (unordered, may overlap)

        Raises:
            CalendarAPIError: If the API call fails
            AuthenticationError: If no valid token is available
        """
        token = self._token_provider.access_token(credential)
        headers = {
            "Authorization": f"Bearer {token}",
            "Prefer": 'outlook.timezone="UTC"',
        }

        url: Optional[str] = f"{self.GRAPH_API_ENDPOINT}/me/calendarView"
        params: Optional[Dict[str, Any]] = {
            "startDateTime": time_range.start.in_timezone("UTC").to_iso8601_string(),
            "endDateTime": time_range.end.in_timezone("UTC").to_iso8601_string(),
            "$select": "subject,start,end,showAs,isCancelled,isAllDay",
            "$orderby": "start/dateTime",
            "$top": self.PAGE_SIZE,
        }

        events: List[Dict[str, Any]] = []
        while url:
            try:
                response = self._session.get(url, headers=headers, params=params, timeout=self.timeout)
                response.raise_for_status()
                data = response.json()
            except requests.exceptions.RequestException as e:
                raise CalendarAPIError(f"Failed to fetch events from Microsoft Graph: {e}") from e
            except ValueError as e:
                raise CalendarAPIError(f"Microsoft Graph returned invalid JSON: {e}") from e

            events.extend(data.get("value", []))
            # nextLink already carries the query string
            url = data.get("@odata.nextLink")
            params = None

        busy = self._parse_events(events)
        logger.debug("Fetched %d event(s), %d busy, for %s", len(events), len(busy), time_range)
        return busy

    def _parse_events(self, events: List[Dict[str, Any]]) -> List[TimeRange]:
        """
        Parse calendarView items into busy ranges.

        Item format:
        {
            "showAs": "busy",
            "isCancelled": false,
            "start": {"dateTime": "2024-11-25T09:00:00.0000000", "timeZone": "UTC"},
            "end": {"dateTime": "2024-11-25T10:00:00.0000000", "timeZone": "UTC"}
        }
        """
        busy_ranges: List[TimeRange] = []

        for item in events:
            if item.get("isCancelled"):
                continue
            status = (item.get("showAs") or "busy").lower()
            if status in self.FREE_STATUSES:
                continue

            try:
                if item.get("isAllDay"):
                    start = self._parse_all_day(item["start"])
                    end = self._parse_all_day(item["end"])
                else:
                    start = self._parse_datetime(item["start"])
                    end = self._parse_datetime(item["end"])
                busy_ranges.append(TimeRange(start=start, end=end))
            except (KeyError, TypeError, ValueError, InvalidInputError) as e:
                logger.warning("Skipping unparseable calendar item %r: %s", item.get("subject"), e)
                continue

        return busy_ranges

    def _parse_datetime(self, value: Dict[str, str]) -> DateTime:
        """
        Parse a Graph dateTimeTimeZone object to a pendulum DateTime.

        Graph sends seven fractional digits, which are dropped.
        """
        raw = value["dateTime"].split(".")[0]
        dt = pendulum.parse(raw, tz=value.get("timeZone") or "UTC")

        if isinstance(dt, DateTime):
            return dt

        raise ValueError(f"Could not parse datetime: {value['dateTime']}")

    def _parse_all_day(self, value: Dict[str, str]) -> DateTime:
        """
        All-day events are floating dates; Graph reports them as midnight in the
        Prefer zone. Anchor them to midnight in the user's own timezone instead.
        """
        day = pendulum.parse(value["dateTime"].split("T")[0], exact=True)
        if not isinstance(day, pendulum.Date):
            raise ValueError(f"Could not parse date: {value['dateTime']}")
        return pendulum.datetime(day.year, day.month, day.day, tz=self.timezone)
