"""Tests for candidate slot generation."""

from datetime import timedelta

import pytest
import pytz

from appointments.models.booking import BusyRange
from appointments.models.settings import CalendarLinkSettings, TimeSourceMode
from appointments.models.template import SlotDefinition, WeeklyTemplate
from appointments.services.slot_generator import booking_window, find_candidate, generate
from appointments.utils.exceptions import ConfigError

from conftest import CALENDAR, NEW_YORK, PAGE, USER, ny


@pytest.fixture
def cls() -> CalendarLinkSettings:
    return CalendarLinkSettings(destination_calendar_id="cal", timezone="America/New_York")


def definition(hour, minute=0, dur=(30, 30), title="Visit") -> SlotDefinition:
    return SlotDefinition(start=hour * 3600 + minute * 60, duration=dur, title=title)


class TestGenerate:
    """Tests for the pure generate function."""

    def test_busy_monday_excluded_free_tuesday_included(self, cls):
        """A busy range at the Monday slot removes it; Tuesday's twin stays."""
        template = (
            WeeklyTemplate()
            .replace_day(0, [definition(9, dur=(15, 45), title="Consult")])
            .replace_day(1, [definition(9, dur=(15, 45), title="Consult")])
        )
        busy = [BusyRange(ny(2025, 6, 2, 9), ny(2025, 6, 2, 9, 30))]

        slots = generate(template, cls, ny(2025, 6, 2), ny(2025, 6, 4), busy)

        assert len(slots) == 1
        assert slots[0].start == ny(2025, 6, 3, 9)
        assert slots[0].title == "Consult"
        assert slots[0].duration_minutes == 15
        assert slots[0].max_duration_minutes == 45

    def test_busy_range_touching_slot_end_does_not_block(self, cls):
        """Intervals are half-open, so a range starting at the slot end is fine."""
        template = WeeklyTemplate().replace_day(0, [definition(9, dur=(15, 45))])
        busy = [BusyRange(ny(2025, 6, 2, 9, 15), ny(2025, 6, 2, 10))]

        slots = generate(template, cls, ny(2025, 6, 2), ny(2025, 6, 3), busy)

        assert [s.start for s in slots] == [ny(2025, 6, 2, 9)]

    def test_count_is_instances_minus_overlapping(self, cls):
        """Disjoint definitions over two weeks, one busy range on the first Monday."""
        template = WeeklyTemplate().replace_day(0, [definition(9), definition(10), definition(11)])
        busy = [BusyRange(ny(2025, 6, 2, 10, 15), ny(2025, 6, 2, 10, 45))]

        slots = generate(template, cls, ny(2025, 6, 2), ny(2025, 6, 16), busy)

        assert len(slots) == 6 - 1
        assert ny(2025, 6, 2, 10) not in [s.start for s in slots]
        assert ny(2025, 6, 9, 10) in [s.start for s in slots]

    def test_window_start_is_inclusive_and_end_exclusive(self, cls):
        """Only starts in [window_start, window_end) are produced."""
        template = WeeklyTemplate().replace_day(0, [definition(9), definition(10)])

        assert [s.start for s in generate(template, cls, ny(2025, 6, 2, 9), ny(2025, 6, 2, 10), [])] == [
            ny(2025, 6, 2, 9)
        ]
        assert generate(template, cls, ny(2025, 6, 2, 9, 1), ny(2025, 6, 2, 10), []) == []

    def test_empty_window_returns_nothing(self, cls):
        """A window whose end is not after its start is empty."""
        template = WeeklyTemplate().replace_day(0, [definition(9)])
        assert generate(template, cls, ny(2025, 6, 3), ny(2025, 6, 2), []) == []

    def test_overlapping_definitions_each_yield_a_candidate(self, cls):
        """Equal starts keep template order; output is chronological."""
        template = WeeklyTemplate().replace_day(0, [
            definition(9, title="A"),
            definition(9, dur=(60, 60), title="B"),
            definition(8, title="C"),
        ])

        slots = generate(template, cls, ny(2025, 6, 2), ny(2025, 6, 3), [])

        assert [s.title for s in slots] == ["C", "A", "B"]

    def test_fixed_time_source_mode_is_rejected(self, cls):
        """Only template mode generates slots."""
        fixed = cls.merged({"time_source_mode": "fixed"})
        assert fixed.time_source_mode is TimeSourceMode.FIXED
        with pytest.raises(ConfigError):
            generate(WeeklyTemplate(), fixed, ny(2025, 6, 2), ny(2025, 6, 3), [])

    def test_wall_clock_kept_across_dst_change(self, cls):
        """09:00 on the day clocks go forward is still 09:00 local."""
        template = WeeklyTemplate().replace_day(6, [definition(9)])

        slots = generate(template, cls, ny(2025, 3, 9), ny(2025, 3, 10), [])

        assert len(slots) == 1
        local = slots[0].start.astimezone(NEW_YORK)
        assert local.hour == 9
        assert local.utcoffset() == timedelta(hours=-4)


class TestBookingWindow:
    """Tests for the booking page window."""

    def test_window_runs_to_local_midnight(self, cls):
        """Window starts at now + prep and ends at midnight `days` later."""
        start, end = booking_window(cls.merged({"prep_time_minutes": 60}), ny(2025, 6, 2, 6), 2)

        assert start == ny(2025, 6, 2, 7)
        assert end == ny(2025, 6, 4)

    def test_find_candidate_matches_instant(self, cls):
        """Lookup compares instants, not wall-clock representations."""
        template = WeeklyTemplate().replace_day(0, [definition(9)])
        slots = generate(template, cls, ny(2025, 6, 2), ny(2025, 6, 3), [])

        utc_start = ny(2025, 6, 2, 9).astimezone(pytz.UTC)
        assert find_candidate(slots, utc_start) is slots[0]
        assert find_candidate(slots, ny(2025, 6, 2, 9, 30)) is None


class TestSlotGenerator:
    """Tests for SlotGenerator bound to settings and the calendar."""

    def test_page_slots_follow_template_and_days(self, booking):
        """Two days of listing include Monday and Tuesday; one day only Monday."""
        two_days = booking.list_slots(USER, PAGE, 2)
        one_day = booking.list_slots(USER, PAGE, 1)

        assert [(s.title, s.start) for s in two_days] == [
            ("Consult", ny(2025, 6, 2, 9)),
            ("Checkup", ny(2025, 6, 3, 10)),
        ]
        assert [s.title for s in one_day] == ["Consult"]

    def test_calendar_busy_ranges_block_slots(self, booking, calendar):
        """External events on the destination calendar hide overlapping slots."""
        calendar.add_busy_range(CALENDAR, ny(2025, 6, 2, 8, 30), ny(2025, 6, 2, 9, 5))

        assert [s.title for s in booking.list_slots(USER, PAGE, 2)] == ["Checkup"]

    def test_prep_time_hides_near_slots(self, engine):
        """Slots starting inside the prep time are not offered."""
        cls = engine.settings.get_cls(USER, PAGE).merged({"prep_time_minutes": 240})
        engine.settings.set_cls(USER, PAGE, cls)

        assert [s.title for s in engine.booking.list_slots(USER, PAGE, 2)] == ["Checkup"]

    def test_other_page_has_no_template(self, booking):
        """Templates are scoped per booking page."""
        assert booking.list_slots(USER, "other", 7) == []
