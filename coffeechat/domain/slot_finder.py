"""
Core business logic for calculating free meeting slots.

Pure domain logic without any external dependencies (no API calls,
no database, no I/O).
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import timedelta
from typing import Iterable, List

from pendulum import DateTime

from .exceptions import InvalidInputError
from .models import SlotQuery, TimeRange

logger = logging.getLogger(__name__)


class SlotFinder:
    """
    Calculates free meeting slots from busy intervals and a slot query.

    Algorithm:
    1. Expand every busy interval by the buffer, clamp to the query range and merge
    2. Subtract the merged busy set from the query range
    3. Split the remaining candidates at local midnight and clip to the daily window
    4. Filter by minimum duration
    5. Return complete blocks in chronological order
    """

    def find_free_slots(
        self,
        busy: Iterable[TimeRange],
        query: SlotQuery,
    ) -> List[TimeRange]:
        """
        Find all free slots for a query.

        Args:
            busy: Busy time ranges in any order
            query: Query range, daily window, buffer and minimum duration

        Returns:
            Free time ranges, disjoint and ordered by start

        Raises:
            InvalidInputError: If the query or a busy entry is malformed
        """
        validate_query(query)
        busy_ranges = list(busy)
        for entry in busy_ranges:
            if not isinstance(entry, TimeRange):
                raise InvalidInputError(f"Busy entries must be TimeRange, got {entry!r}")

        merged_busy = self._merge_busy(busy_ranges, query.query_range, query.buffer)
        candidates = self._subtract_busy_from_block(query.query_range, merged_busy)
        day_pieces = self._split_at_midnight(candidates, query.timezone)
        clipped = self._clip_to_daily_window(day_pieces, query)

        slots = [slot for slot in clipped if slot.duration >= query.min_duration]

        logger.debug(
            "Computed %d free slot(s) from %d busy interval(s) (%d merged, %d candidates)",
            len(slots),
            len(busy_ranges),
            len(merged_busy),
            len(candidates),
        )
        return slots

    def _merge_busy(
        self,
        busy_ranges: List[TimeRange],
        bounds: TimeRange,
        buffer: timedelta,
    ) -> List[TimeRange]:
        """
        Expand each busy range by the buffer, clamp it to bounds and merge.

        Ranges that land completely outside the bounds are dropped.
        """
        expanded: List[TimeRange] = []

        for busy in busy_ranges:
            padded = TimeRange(start=busy.start - buffer, end=busy.end + buffer)
            clipped = self._clip_range_to_bounds(padded, bounds.start, bounds.end)
            if clipped:
                expanded.append(clipped)

        return self._merge_adjacent_ranges(expanded)

    def _clip_range_to_bounds(
        self,
        time_range: TimeRange,
        min_bound: DateTime,
        max_bound: DateTime,
    ) -> TimeRange | None:
        """
        Clip a time range to fit within bounds.
        Returns None if the range is completely outside bounds.
        """
        if time_range.end <= min_bound or time_range.start >= max_bound:
            return None

        clipped_start = max(time_range.start, min_bound)
        clipped_end = min(time_range.end, max_bound)

        return TimeRange(start=clipped_start, end=clipped_end)

    def _merge_adjacent_ranges(self, ranges: List[TimeRange]) -> List[TimeRange]:
        """
        Merge overlapping or adjacent time ranges.

        Example: [09:00-10:00, 10:00-11:00] -> [09:00-11:00]
        """
        if not ranges:
            return []

        sorted_ranges = sorted(ranges, key=lambda r: r.start)
        merged: List[TimeRange] = [sorted_ranges[0]]

        for current in sorted_ranges[1:]:
            last = merged[-1]

            if current.start <= last.end:
                merged[-1] = TimeRange(
                    start=last.start,
                    end=max(last.end, current.end),
                )
            else:
                merged.append(current)

        return merged

    def _subtract_busy_from_block(
        self,
        block: TimeRange,
        merged_busy: List[TimeRange],
    ) -> List[TimeRange]:
        """
        Subtract sorted, disjoint busy times from a block, yielding free ranges.

        Example:
        Block: 09:00 - 17:00
        Busy: [10:00-11:00, 14:00-15:00]
        Result: [09:00-10:00, 11:00-14:00, 15:00-17:00]
        """
        free_ranges: List[TimeRange] = []
        cursor = block.start

        for busy in merged_busy:
            if cursor < busy.start:
                free_ranges.append(TimeRange(start=cursor, end=busy.start))
            cursor = max(cursor, busy.end)

        if cursor < block.end:
            free_ranges.append(TimeRange(start=cursor, end=block.end))

        return free_ranges

    def _split_at_midnight(self, ranges: List[TimeRange], tz) -> List[TimeRange]:
        """Split ranges at local midnight so each piece stays on one date."""
        pieces: List[TimeRange] = []

        for time_range in ranges:
            piece_start = time_range.start.in_timezone(tz)
            end = time_range.end.in_timezone(tz)

            while piece_start < end:
                next_midnight = piece_start.start_of("day").add(days=1)
                piece_end = min(next_midnight, end)
                pieces.append(TimeRange(start=piece_start, end=piece_end))
                piece_start = piece_end

        return pieces

    def _clip_to_daily_window(
        self,
        pieces: List[TimeRange],
        query: SlotQuery,
    ) -> List[TimeRange]:
        """Intersect each single-day piece with that day's window."""
        clipped: List[TimeRange] = []

        for piece in pieces:
            window = query.daily_window.bounds_for(piece.start)
            if window is None:
                continue
            intersection = piece.intersect(window)
            if intersection:
                clipped.append(intersection)

        return clipped


def validate_query(query: SlotQuery) -> None:
    """
    Reject a malformed query before any computation.

    Raises:
        InvalidInputError: If the query is not a valid SlotQuery
    """
    if not isinstance(query, SlotQuery):
        raise InvalidInputError(f"Expected a SlotQuery, got {type(query).__name__}")
    query.validate()


def compute_free_slots(busy: Iterable[TimeRange], query: SlotQuery) -> List[TimeRange]:
    """Free slots for ``query`` given ``busy`` ranges. See :class:`SlotFinder`."""
    return SlotFinder().find_free_slots(busy, query)


def _format_clock(dt: DateTime) -> str:
    if dt.minute == 0:
        return dt.format("hA", locale="en").lower()
    return dt.format("h:mmA", locale="en").lower()


def format_availabilities(slots: Iterable[TimeRange], tz) -> List[str]:
    """
    Collapse contiguous same-day slots and format them for humans.

    Format: ``Monday Nov 3: 9am–5pm``
    """
    by_day: "OrderedDict[str, List[TimeRange]]" = OrderedDict()
    for slot in sorted(slots, key=lambda s: s.start):
        local = slot.in_timezone(tz)
        by_day.setdefault(local.start.to_date_string(), []).append(local)

    lines: List[str] = []

    for day_slots in by_day.values():
        merged: List[TimeRange] = [day_slots[0]]
        for current in day_slots[1:]:
            if current.start == merged[-1].end:
                merged[-1] = TimeRange(start=merged[-1].start, end=current.end)
            else:
                merged.append(current)

        for slot in merged:
            start, end = slot.start, slot.end
            head = start.format("dddd MMM D", locale="en")
            if start.date() != end.date() and end != end.start_of("day"):
                tail = f"{end.format('dddd MMM D', locale='en')}: {_format_clock(end)}"
                lines.append(f"{head}: {_format_clock(start)}–{tail}")
            else:
                lines.append(f"{head}: {_format_clock(start)}–{_format_clock(end)}")

    return lines
