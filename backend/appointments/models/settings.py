# appointments/models/settings.py
"""
Organizer and booking page settings
"""
from dataclasses import dataclass, asdict, replace
from enum import Enum
from typing import Any, Dict

import pytz

from appointments.utils.exceptions import ConfigError


class TimeSourceMode(str, Enum):
    TEMPLATE = 'template'
    FIXED = 'fixed'


@dataclass(frozen=True)
class CalendarLinkSettings:
    """Per page settings threaded into slot generation and booking"""
    destination_calendar_id: str
    prep_time_minutes: int = 0
    time_source_mode: TimeSourceMode = TimeSourceMode.TEMPLATE
    timezone: str = 'UTC'

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'destination_calendar_id': self.destination_calendar_id,
            'prep_time_minutes': self.prep_time_minutes,
            'time_source_mode': self.time_source_mode.value,
            'timezone': self.timezone
        }

    def merged(self, data: Dict[str, Any]) -> 'CalendarLinkSettings':
        """Apply a partial JSON update, validating every field"""
        if not isinstance(data, dict):
            raise ConfigError("Calendar link settings must be an object")

        unknown = set(data) - set(self.to_dict())
        if unknown:
            raise ConfigError(f"Unknown calendar link settings: {sorted(unknown)}")

        changes = {}
        if 'destination_calendar_id' in data:
            calendar_id = data['destination_calendar_id']
            if not isinstance(calendar_id, str) or not calendar_id.strip():
                raise ConfigError("Destination calendar is required")
            changes['destination_calendar_id'] = calendar_id.strip()

        if 'prep_time_minutes' in data:
            prep = data['prep_time_minutes']
            if isinstance(prep, bool) or not isinstance(prep, int) or prep < 0:
                raise ConfigError("Prep time must be a non-negative number of minutes")
            changes['prep_time_minutes'] = prep

        if 'time_source_mode' in data:
            try:
                changes['time_source_mode'] = TimeSourceMode(data['time_source_mode'])
            except ValueError:
                raise ConfigError(f"Unknown time source mode: {data['time_source_mode']}")

        if 'timezone' in data:
            try:
                pytz.timezone(data['timezone'])
            except (pytz.UnknownTimeZoneError, AttributeError):
                raise ConfigError(f"Unknown timezone: {data['timezone']}")
            changes['timezone'] = data['timezone']

        return replace(self, **changes)


@dataclass(frozen=True)
class OrganizerInfo:
    """Organization contact details shown to visitors"""
    name: str = ''
    email: str = ''
    address: str = ''
    phone: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EmailSettings:
    skip_email_validation: bool = True
    attendee_cancel: bool = True
    confirmation_email: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def merged(self, data: Dict[str, Any]) -> 'EmailSettings':
        if not isinstance(data, dict):
            raise ConfigError("Email settings must be an object")
        unknown = set(data) - set(self.to_dict())
        if unknown:
            raise ConfigError(f"Unknown email settings: {sorted(unknown)}")
        for key, value in data.items():
            if not isinstance(value, bool):
                raise ConfigError(f"Email setting '{key}' must be true or false")
        return replace(self, **data)
