# slot_generator.py
"""
Turns a weekly availability template and the destination calendar's busy
ranges into the list of bookable candidate slots for a booking page.
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from appointments.models.booking import BusyRange, CandidateSlot
from appointments.models.settings import CalendarLinkSettings, TimeSourceMode
from appointments.models.template import WeeklyTemplate
from appointments.utils.exceptions import ConfigError
from appointments.utils.timeutils import local_instant, local_midnight

logger = logging.getLogger(__name__)


def generate(template: WeeklyTemplate, cls: CalendarLinkSettings, window_start: datetime,
             window_end: datetime, busy_ranges: Sequence[BusyRange]) -> List[CandidateSlot]:
    """Candidate slots starting in [window_start, window_end), free of busy ranges.

    Every slot definition yields its own candidate on each matching day, even
    when definitions overlap. The result is chronological; candidates sharing a
    start keep the template's definition order.
    """
    if cls.time_source_mode is not TimeSourceMode.TEMPLATE:
        raise ConfigError(f"Time source mode '{cls.time_source_mode.value}' is not supported")

    if window_end <= window_start:
        return []

    tz = cls.tz
    day = window_start.astimezone(tz).date()
    last_day = window_end.astimezone(tz).date()

    candidates = []
    while day <= last_day:
        for definition in template.for_weekday(day.weekday()):
            start = local_instant(tz, day, definition.start)
            if start < window_start or start >= window_end:
                continue

            end = start + timedelta(minutes=definition.min_duration)
            if any(busy.overlaps(start, end) for busy in busy_ranges):
                logger.debug(f"  ✗ {definition.title} at {start.isoformat()} overlaps a busy range")
                continue

            candidates.append(CandidateSlot(
                start=start,
                duration_minutes=definition.min_duration,
                title=definition.title,
                max_duration_minutes=definition.max_duration
            ))
        day += timedelta(days=1)

    # sort is stable, so equal starts keep template order
    candidates.sort(key=lambda c: c.start)
    return candidates


def booking_window(cls: CalendarLinkSettings, now: datetime, days: int) -> Tuple[datetime, datetime]:
    """Window a booking page shows: from now + prep time to midnight `days` later"""
    tz = cls.tz
    start = (now + timedelta(minutes=cls.prep_time_minutes)).astimezone(tz)
    end_day = (start + timedelta(days=days)).date()
    return start, local_midnight(tz, end_day)


def find_candidate(candidates: Iterable[CandidateSlot], start: datetime) -> Optional[CandidateSlot]:
    for candidate in candidates:
        if candidate.start == start:
            return candidate
    return None


class SlotGenerator:
    """Binds slot generation to the settings store and the calendar backend"""

    def __init__(self, settings_store, calendar_backend):
        self.settings = settings_store
        self.calendar = calendar_backend

    def available_slots(self, user_id: str, page_id: str, window_start: datetime,
                        window_end: datetime, extra_busy: Sequence[BusyRange] = ()) -> List[CandidateSlot]:
        cls = self.settings.get_cls(user_id, page_id)
        template = self.settings.templates.get(user_id, page_id)

        busy = list(self.calendar.query_busy_ranges(
            cls.destination_calendar_id, window_start, window_end
        ))
        busy.extend(extra_busy)

        slots = generate(template, cls, window_start, window_end, busy)
        logger.info(
            f"Generated {len(slots)} candidate slots for {user_id}/{page_id} "
            f"between {window_start.isoformat()} and {window_end.isoformat()}"
        )
        return slots

    def page_slots(self, user_id: str, page_id: str, now: datetime, days: int,
                   extra_busy: Sequence[BusyRange] = ()) -> List[CandidateSlot]:
        """Candidate slots for the booking page, clamped by the page's prep time"""
        cls = self.settings.get_cls(user_id, page_id)
        window_start, window_end = booking_window(cls, now, days)
        return self.available_slots(user_id, page_id, window_start, window_end, extra_busy)

    def slots_on_day(self, user_id: str, page_id: str, start: datetime, not_before: datetime,
                     extra_busy: Sequence[BusyRange] = ()) -> List[CandidateSlot]:
        """Live candidates on the local day containing `start`"""
        cls = self.settings.get_cls(user_id, page_id)
        tz = cls.tz
        day = start.astimezone(tz).date()
        window_start = max(local_midnight(tz, day), not_before)
        window_end = local_midnight(tz, day + timedelta(days=1))
        return self.available_slots(user_id, page_id, window_start, window_end, extra_busy)
