"""
Tests for the slot finder.
"""

from datetime import time, timedelta

import pendulum
import pytest

from coffeechat.domain.exceptions import InvalidInputError
from coffeechat.domain.models import DailyWindow, SlotQuery, TimeRange
from coffeechat.domain.slot_finder import SlotFinder, compute_free_slots, format_availabilities, validate_query


def at(day, hour, minute=0):
    return day.set(hour=hour, minute=minute)


def busy(day, start, end):
    """Busy range on ``day`` from (h, m) to (h, m)."""
    return TimeRange(start=at(day, *start), end=at(day, *end))


def one_day_query(day, buffer_minutes=0, min_minutes=30, window=None):
    return SlotQuery(
        query_range=TimeRange(start=day, end=day.add(days=1)),
        daily_window=window or DailyWindow.from_hours(9, 17),
        buffer_minutes=buffer_minutes,
        min_duration=timedelta(minutes=min_minutes),
    )


def total_minutes(slots):
    return sum(slot.duration_minutes() for slot in slots)


class TestSlotFinder:
    """Tests for SlotFinder."""

    def test_single_busy_block(self, monday):
        """Busy 09:00-10:00 leaves 10:00-17:00."""
        slots = SlotFinder().find_free_slots([busy(monday, (9, 0), (10, 0))], one_day_query(monday))

        assert slots == [TimeRange(start=at(monday, 10), end=at(monday, 17))]

    def test_buffer_merges_neighbouring_busy_blocks(self, monday):
        """Buffer expands to 08:45-11:15, which is clipped to the 09:00 window start."""
        busy_list = [
            busy(monday, (9, 0), (10, 0)),
            busy(monday, (10, 15), (11, 0)),
        ]

        slots = compute_free_slots(busy_list, one_day_query(monday, buffer_minutes=15))

        assert slots == [TimeRange(start=at(monday, 11, 15), end=at(monday, 17))]

    def test_without_buffer_the_gap_is_too_short(self, monday):
        busy_list = [
            busy(monday, (9, 0), (10, 0)),
            busy(monday, (10, 15), (11, 0)),
        ]

        slots = compute_free_slots(busy_list, one_day_query(monday))

        assert slots == [TimeRange(start=at(monday, 11), end=at(monday, 17))]

    def test_no_busy_times_yields_one_slot_per_day(self, monday):
        query = SlotQuery(
            query_range=TimeRange(start=monday, end=monday.add(days=3)),
            daily_window=DailyWindow.from_hours(9, 17),
        )

        slots = compute_free_slots([], query)

        assert len(slots) == 3
        for offset, slot in enumerate(slots):
            day = monday.add(days=offset)
            assert slot.start == at(day, 9)
            assert slot.end == at(day, 17)

    def test_busy_covering_whole_day(self, monday):
        query = SlotQuery(
            query_range=TimeRange(start=monday, end=monday.add(days=2)),
            daily_window=DailyWindow.from_hours(9, 17),
        )
        full_day = TimeRange(start=monday, end=monday.add(days=1))

        slots = compute_free_slots([full_day], query)

        tuesday = monday.add(days=1)
        assert slots == [TimeRange(start=at(tuesday, 9), end=at(tuesday, 17))]

    def test_buffer_is_clamped_to_query_range(self, monday):
        """An event just before the range pushes into it by its buffer only."""
        around_midnight = TimeRange(start=monday.subtract(minutes=10), end=monday.add(minutes=10))
        window = DailyWindow.from_times(time(0, 0), None)

        slots = compute_free_slots([around_midnight], one_day_query(monday, buffer_minutes=30, window=window))

        assert slots == [TimeRange(start=at(monday, 0, 40), end=monday.add(days=1))]

    def test_busy_outside_query_range_is_ignored(self, monday):
        yesterday = monday.subtract(days=1)

        slots = compute_free_slots([busy(yesterday, (9, 0), (17, 0))], one_day_query(monday, buffer_minutes=120))

        assert slots == [TimeRange(start=at(monday, 9), end=at(monday, 17))]

    def test_min_duration_filters_short_gaps(self, monday):
        busy_list = [
            busy(monday, (9, 0), (10, 0)),
            busy(monday, (10, 20), (17, 0)),
        ]

        assert compute_free_slots(busy_list, one_day_query(monday, min_minutes=30)) == []
        assert compute_free_slots(busy_list, one_day_query(monday, min_minutes=15)) == [
            TimeRange(start=at(monday, 10), end=at(monday, 10, 20)),
        ]

    def test_unordered_overlapping_busy_input(self, monday):
        busy_list = [
            busy(monday, (14, 0), (15, 0)),
            busy(monday, (9, 30), (11, 0)),
            busy(monday, (10, 0), (10, 30)),
            busy(monday, (14, 30), (16, 0)),
        ]

        slots = compute_free_slots(busy_list, one_day_query(monday))

        assert slots == [
            TimeRange(start=at(monday, 9), end=at(monday, 9, 30)),
            TimeRange(start=at(monday, 11), end=at(monday, 14)),
            TimeRange(start=at(monday, 16), end=at(monday, 17)),
        ]

    def test_excluded_weekdays(self, monday):
        friday = monday.add(days=4)
        query = SlotQuery(
            query_range=TimeRange(start=friday, end=friday.add(days=4)),
            daily_window=DailyWindow.from_hours(9, 17, exclude_weekdays=[5, 6]),
        )

        slots = compute_free_slots([], query)

        assert [slot.start.weekday() for slot in slots] == [4, 0]

    def test_slot_spanning_midnight_is_split(self, monday):
        query = SlotQuery(
            query_range=TimeRange(start=at(monday, 20), end=at(monday.add(days=1), 4)),
            daily_window=DailyWindow.from_times(time(0, 0), None),
        )

        slots = compute_free_slots([], query)

        assert slots == [
            TimeRange(start=at(monday, 20), end=monday.add(days=1)),
            TimeRange(start=monday.add(days=1), end=at(monday.add(days=1), 4)),
        ]

    def test_daylight_saving_day(self):
        """The day the clocks go back has 25 hours."""
        day = pendulum.datetime(2024, 10, 27, tz="Europe/Berlin")
        query = SlotQuery(
            query_range=TimeRange(start=day, end=day.add(days=1)),
            daily_window=DailyWindow.from_times(time(0, 0), None),
        )

        slots = compute_free_slots([], query)

        assert len(slots) == 1
        assert slots[0].duration == timedelta(hours=25)

    def test_utc_busy_input_in_local_query(self, monday):
        """Busy ranges may come in UTC; the window applies in the query's zone."""
        utc_busy = TimeRange(
            start=pendulum.datetime(2024, 11, 25, 8, tz="UTC"),  # 09:00 Berlin
            end=pendulum.datetime(2024, 11, 25, 9, tz="UTC"),
        )

        slots = compute_free_slots([utc_busy], one_day_query(monday))

        assert slots == [TimeRange(start=at(monday, 10), end=at(monday, 17))]

    def test_non_timerange_busy_is_rejected(self, monday):
        with pytest.raises(InvalidInputError, match="TimeRange"):
            compute_free_slots([(at(monday, 9), at(monday, 10))], one_day_query(monday))

    def test_non_query_is_rejected(self):
        with pytest.raises(InvalidInputError, match="SlotQuery"):
            validate_query({"buffer": 15})


class TestSlotFinderProperties:
    """Invariants that hold for any well-formed input."""

    BUSY = [
        ((8, 0), (9, 30)),
        ((10, 0), (10, 45)),
        ((12, 0), (13, 0)),
        ((15, 10), (15, 40)),
        ((16, 50), (18, 0)),
    ]

    def _busy(self, day):
        return [busy(day, start, end) for start, end in self.BUSY]

    def test_idempotent(self, monday):
        query = one_day_query(monday, buffer_minutes=15)

        assert compute_free_slots(self._busy(monday), query) == compute_free_slots(self._busy(monday), query)

    def test_free_and_busy_cover_the_window(self, monday):
        """Free minutes plus padded busy minutes equal the window, without overlap."""
        buffer_minutes = 10
        query = one_day_query(monday, buffer_minutes=buffer_minutes, min_minutes=0)

        slots = compute_free_slots(self._busy(monday), query)

        def minutes_of(time_range):
            start = int((time_range.start - monday).total_seconds() // 60)
            end = int((time_range.end - monday).total_seconds() // 60)
            return set(range(start, end))

        window = set(range(9 * 60, 17 * 60))
        padded_busy = set()
        for entry in self._busy(monday):
            padded_busy |= set(range(
                (entry.start.hour * 60 + entry.start.minute) - buffer_minutes,
                (entry.end.hour * 60 + entry.end.minute) + buffer_minutes,
            ))

        free = set()
        for slot in slots:
            slot_minutes = minutes_of(slot)
            assert not (free & slot_minutes), "free slots overlap"
            free |= slot_minutes

        assert not (free & padded_busy)
        assert free == window - padded_busy

    def test_slots_are_ordered_and_disjoint(self, monday):
        query = SlotQuery(
            query_range=TimeRange(start=monday, end=monday.add(days=5)),
            daily_window=DailyWindow.from_hours(8, 18),
            buffer_minutes=5,
        )
        busy_list = [b for offset in range(5) for b in self._busy(monday.add(days=offset))]

        slots = compute_free_slots(busy_list, query)

        for previous, current in zip(slots, slots[1:]):
            assert previous.end <= current.start

    def test_more_buffer_never_adds_free_time(self, monday):
        totals = [
            total_minutes(compute_free_slots(self._busy(monday), one_day_query(monday, buffer_minutes=b, min_minutes=0)))
            for b in (0, 5, 15, 30, 60, 120)
        ]

        assert totals == sorted(totals, reverse=True)

    def test_longer_min_duration_never_adds_slots(self, monday):
        counts = [
            len(compute_free_slots(self._busy(monday), one_day_query(monday, min_minutes=m)))
            for m in (0, 15, 30, 60, 90, 240)
        ]

        assert counts == sorted(counts, reverse=True)


class TestFormatAvailabilities:
    """Tests for human-readable availability lines."""

    def test_one_line_per_slot(self, monday):
        slots = [
            TimeRange(start=at(monday, 10), end=at(monday, 12)),
            TimeRange(start=at(monday, 14, 30), end=at(monday, 17)),
        ]

        assert format_availabilities(slots, "Europe/Berlin") == [
            "Monday Nov 25: 10am–12pm",
            "Monday Nov 25: 2:30pm–5pm",
        ]

    def test_contiguous_slots_are_merged(self, monday):
        slots = [
            TimeRange(start=at(monday, 11), end=at(monday, 12)),
            TimeRange(start=at(monday, 9), end=at(monday, 11)),
        ]

        assert format_availabilities(slots, "Europe/Berlin") == ["Monday Nov 25: 9am–12pm"]

    def test_slot_ending_at_midnight(self, monday):
        slots = [TimeRange(start=at(monday, 21), end=monday.add(days=1))]

        assert format_availabilities(slots, "Europe/Berlin") == ["Monday Nov 25: 9pm–12am"]

    def test_rendered_in_requested_timezone(self, monday):
        slots = [TimeRange(start=at(monday, 10), end=at(monday, 11))]

        assert format_availabilities(slots, "UTC") == ["Monday Nov 25: 9am–10am"]

    def test_meridiem_is_spelled_out(self, monday):
        slots = [
            TimeRange(start=at(monday, 9, 30), end=at(monday, 11, 45)),
            TimeRange(start=at(monday, 12), end=at(monday, 13, 15)),
        ]

        assert format_availabilities(slots, "Europe/Berlin") == [
            "Monday Nov 25: 9:30am–11:45am",
            "Monday Nov 25: 12pm–1:15pm",
        ]

    def test_empty(self):
        assert format_availabilities([], "UTC") == []
