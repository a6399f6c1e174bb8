"""
Domain models for time ranges, availability windows and slot queries.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Iterable, Optional, Tuple

import pendulum
from pendulum import DateTime

from .exceptions import InvalidInputError

MINUTES_PER_DAY = 24 * 60
MAX_BUFFER_MINUTES = 120


def _as_pendulum(value: datetime, field: str) -> DateTime:
    """Coerce an aware datetime into a pendulum DateTime."""
    if not isinstance(value, datetime):
        raise InvalidInputError(f"{field} must be a datetime, got {type(value).__name__}")
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidInputError(f"{field} must be timezone-aware, got naive {value!r}")
    if isinstance(value, DateTime):
        return value
    return pendulum.instance(value)


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable time range with start and end datetime.

    Invariant: start must be before end, and both carry a timezone.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        object.__setattr__(self, "start", _as_pendulum(self.start, "start"))
        object.__setattr__(self, "end", _as_pendulum(self.end, "end"))
        if self.start >= self.end:
            raise InvalidInputError(
                f"Start time {self.start} must be before end time {self.end}"
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int(self.duration.total_seconds() / 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another."""
        return self.start < other.end and self.end > other.start

    def intersect(self, other: "TimeRange") -> "TimeRange | None":
        """
        Calculate the intersection of two time ranges.
        Returns None if there is no overlap.
        """
        if not self.overlaps(other):
            return None

        start = max(self.start, other.start)
        end = min(self.end, other.end)

        return TimeRange(start=start, end=end)

    def in_timezone(self, tz) -> "TimeRange":
        return TimeRange(start=self.start.in_timezone(tz), end=self.end.in_timezone(tz))

    def __str__(self) -> str:
        return f"{self.start.format('DD.MM.YYYY HH:mm')} - {self.end.format('HH:mm')}"


@dataclass(frozen=True)
class DailyWindow:
    """
    Recurring time-of-day availability, applied to every calendar day.

    Stored as minutes after local midnight so the window may close at 24:00.
    """
    start_minute: int
    end_minute: int
    exclude_weekdays: Tuple[int, ...] = ()  # 0=Monday, 6=Sunday

    def __post_init__(self):
        if not 0 <= self.start_minute < self.end_minute <= MINUTES_PER_DAY:
            raise InvalidInputError(
                "Daily window must satisfy 00:00 <= from < to <= 24:00, "
                f"got {self._label(self.start_minute)}-{self._label(self.end_minute)}"
            )
        excluded = tuple(dict.fromkeys(self.exclude_weekdays))
        invalid_days = [day for day in excluded if day not in range(7)]
        if invalid_days:
            raise InvalidInputError(f"Weekdays must be between 0 and 6, got {invalid_days}")
        object.__setattr__(self, "exclude_weekdays", excluded)

    @classmethod
    def from_hours(
        cls,
        start_hour: int,
        end_hour: int,
        exclude_weekdays: Iterable[int] = (),
    ) -> "DailyWindow":
        """Build a window on whole hours, e.g. ``from_hours(9, 17)``."""
        return cls(
            start_minute=start_hour * 60,
            end_minute=end_hour * 60,
            exclude_weekdays=tuple(exclude_weekdays),
        )

    @classmethod
    def from_times(
        cls,
        start: time,
        end: Optional[time],
        exclude_weekdays: Iterable[int] = (),
    ) -> "DailyWindow":
        """Build a window from time objects; ``end=None`` means midnight at day end."""
        end_minute = MINUTES_PER_DAY if end is None else end.hour * 60 + end.minute
        return cls(
            start_minute=start.hour * 60 + start.minute,
            end_minute=end_minute,
            exclude_weekdays=tuple(exclude_weekdays),
        )

    def is_available_day(self, day: DateTime) -> bool:
        """Check if a given datetime falls on a day the window applies to."""
        return day.weekday() not in self.exclude_weekdays

    def bounds_for(self, day: DateTime) -> TimeRange | None:
        """
        Get the window for the calendar day containing ``day``, in its timezone.
        Returns None on an excluded weekday.
        """
        if not self.is_available_day(day):
            return None

        midnight = day.start_of("day")
        start = midnight.set(
            hour=self.start_minute // 60,
            minute=self.start_minute % 60,
        )
        if self.end_minute == MINUTES_PER_DAY:
            end = midnight.add(days=1)
        else:
            end = midnight.set(
                hour=self.end_minute // 60,
                minute=self.end_minute % 60,
            )

        return TimeRange(start=start, end=end)

    @staticmethod
    def _label(minutes: int) -> str:
        return f"{minutes // 60:02d}:{minutes % 60:02d}"

    def __str__(self) -> str:
        return f"{self._label(self.start_minute)}-{self._label(self.end_minute)}"


@dataclass(frozen=True)
class SlotQuery:
    """Everything needed to turn busy events into proposable slots."""
    query_range: TimeRange
    daily_window: DailyWindow
    buffer_minutes: int = 0
    min_duration: timedelta = timedelta(minutes=30)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Re-check the query invariants.

        Raises:
            InvalidInputError: If any field is out of range
        """
        if not isinstance(self.query_range, TimeRange):
            raise InvalidInputError("query_range must be a TimeRange")
        if not isinstance(self.daily_window, DailyWindow):
            raise InvalidInputError("daily_window must be a DailyWindow")
        if isinstance(self.buffer_minutes, bool) or not isinstance(self.buffer_minutes, int):
            raise InvalidInputError("buffer_minutes must be an integer")
        if not 0 <= self.buffer_minutes <= MAX_BUFFER_MINUTES:
            raise InvalidInputError(
                f"buffer_minutes must be between 0 and {MAX_BUFFER_MINUTES}, "
                f"got {self.buffer_minutes}"
            )
        if not isinstance(self.min_duration, timedelta) or self.min_duration < timedelta(0):
            raise InvalidInputError("min_duration must be a non-negative timedelta")

    @property
    def buffer(self) -> timedelta:
        return timedelta(minutes=self.buffer_minutes)

    @property
    def timezone(self):
        """Timezone in which day boundaries and the daily window are evaluated."""
        return self.query_range.start.timezone

    @classmethod
    def upcoming(
        cls,
        daily_window: DailyWindow,
        *,
        days: int = 14,
        buffer_minutes: int = 15,
        min_duration_minutes: int = 30,
        timezone: str = "UTC",
        now: Optional[DateTime] = None,
    ) -> "SlotQuery":
        """Query from now until ``days`` ahead, evaluated in ``timezone``."""
        if days <= 0:
            raise InvalidInputError(f"days must be greater than zero, got {days}")
        start = (now or pendulum.now(timezone)).in_timezone(timezone)
        return cls(
            query_range=TimeRange(start=start, end=start.add(days=days)),
            daily_window=daily_window,
            buffer_minutes=buffer_minutes,
            min_duration=timedelta(minutes=min_duration_minutes),
        )


@dataclass(frozen=True)
class Recipient:
    """Someone to invite."""
    name: str
    email: str

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True)
class CredentialHandle:
    """
    Opaque pointer to a secret held by the secret store.

    Never carries the secret itself.
    """
    service_id: str
    account_id: str

    def __str__(self) -> str:
        return f"{self.service_id}/{self.account_id}"
