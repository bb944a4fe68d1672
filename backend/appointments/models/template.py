# appointments/models/template.py
"""
Weekly availability template models
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from appointments.utils.exceptions import ConfigError

DAYS_IN_WEEK = 7
SECONDS_IN_DAY = 86400
MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 480
MAX_TITLE_LENGTH = 64

DAY_NAMES = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']

_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')


@dataclass(frozen=True)
class SlotDefinition:
    """A recurring weekly slot: time-of-day offset, allowed durations and a title"""
    start: int  # seconds after local midnight
    duration: Tuple[int, int]  # (min_minutes, max_minutes)
    title: str

    @property
    def min_duration(self) -> int:
        return self.duration[0]

    @property
    def max_duration(self) -> int:
        return self.duration[1]

    def allows(self, minutes: int) -> bool:
        return self.duration[0] <= minutes <= self.duration[1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': self.start,
            'dur': [self.duration[0], self.duration[1]],
            'title': self.title
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SlotDefinition':
        """Build a definition from its JSON form, rejecting anything out of range"""
        if not isinstance(data, dict):
            raise ConfigError("Slot definition must be an object")

        start = data.get('start')
        if isinstance(start, bool) or not isinstance(start, int):
            raise ConfigError("Slot start must be an integer number of seconds")
        if not (0 <= start < SECONDS_IN_DAY):
            raise ConfigError(f"Slot start {start} is outside of the day")

        dur = data.get('dur')
        if not isinstance(dur, (list, tuple)) or len(dur) not in (1, 2):
            raise ConfigError("Slot duration must be [min, max] minutes")
        if any(isinstance(d, bool) or not isinstance(d, int) for d in dur):
            raise ConfigError("Slot durations must be whole minutes")
        low, high = (dur[0], dur[-1])
        if not (MIN_DURATION_MINUTES <= low <= high <= MAX_DURATION_MINUTES):
            raise ConfigError(
                f"Slot duration [{low}, {high}] must satisfy "
                f"{MIN_DURATION_MINUTES} <= min <= max <= {MAX_DURATION_MINUTES}"
            )

        title = data.get('title', '')
        if not isinstance(title, str) or not title.strip():
            raise ConfigError("Slot title is required")
        title = title.strip()
        if len(title) > MAX_TITLE_LENGTH:
            raise ConfigError(f"Slot title is too long (max {MAX_TITLE_LENGTH} characters)")
        if _CONTROL_CHARS.search(title):
            raise ConfigError("Slot title contains control characters")

        return cls(start=start, duration=(low, high), title=title)


@dataclass(frozen=True)
class WeeklyTemplate:
    """Seven day buckets, Monday=0 through Sunday=6"""
    days: Tuple[Tuple[SlotDefinition, ...], ...] = field(
        default_factory=lambda: tuple(() for _ in range(DAYS_IN_WEEK))
    )

    def __post_init__(self):
        if len(self.days) != DAYS_IN_WEEK:
            raise ConfigError(f"Weekly template must have {DAYS_IN_WEEK} days")

    def for_weekday(self, weekday: int) -> Tuple[SlotDefinition, ...]:
        return self.days[weekday]

    def replace_day(self, weekday: int, definitions: List[SlotDefinition]) -> 'WeeklyTemplate':
        """Return a copy with one whole day replaced"""
        if not (0 <= weekday < DAYS_IN_WEEK):
            raise ConfigError(f"Invalid weekday {weekday}")
        days = list(self.days)
        days[weekday] = tuple(definitions)
        return WeeklyTemplate(days=tuple(days))

    def is_empty(self) -> bool:
        return not any(self.days)

    def to_json(self) -> List[List[Dict[str, Any]]]:
        return [[d.to_dict() for d in day] for day in self.days]

    @classmethod
    def from_json(cls, data: Any) -> 'WeeklyTemplate':
        if not isinstance(data, list) or len(data) != DAYS_IN_WEEK:
            raise ConfigError(f"Weekly template must be a list of {DAYS_IN_WEEK} days")

        days = []
        for index, day in enumerate(data):
            if not isinstance(day, list):
                raise ConfigError(f"Template day {DAY_NAMES[index]} must be a list")
            days.append(tuple(SlotDefinition.from_dict(item) for item in day))
        return cls(days=tuple(days))
