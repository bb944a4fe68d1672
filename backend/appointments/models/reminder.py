# appointments/models/reminder.py
"""
Reminder specification and dispatch records
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from appointments.utils.exceptions import InvalidReminderOffset

ALLOWED_REMINDER_SECONDS = (
    3600,     # 1 hour
    7200,     # 2 hours
    14400,    # 4 hours
    28800,    # 8 hours
    86400,    # 1 day
    172800,   # 2 days
    259200,   # 3 days
    345600,   # 4 days
    432000,   # 5 days
    518400,   # 6 days
    604800,   # 7 days
)
MAX_REMINDERS = 3
MAX_MORE_TEXT_LENGTH = 512


@dataclass(frozen=True)
class ReminderOffset:
    lead_seconds: int
    include_actions: bool = True


@dataclass(frozen=True)
class ReminderSpec:
    """Lead times at which reminders fire, plus organizer supplied text"""
    offsets: Tuple[ReminderOffset, ...] = ()
    more_text: str = ''

    def validate(self) -> 'ReminderSpec':
        if len(self.offsets) > MAX_REMINDERS:
            raise InvalidReminderOffset(f"At most {MAX_REMINDERS} reminders are allowed")

        seen = set()
        for offset in self.offsets:
            if offset.lead_seconds not in ALLOWED_REMINDER_SECONDS:
                raise InvalidReminderOffset(f"Reminder offset {offset.lead_seconds}s is not allowed")
            if offset.lead_seconds in seen:
                raise InvalidReminderOffset(f"Duplicate reminder offset {offset.lead_seconds}s")
            seen.add(offset.lead_seconds)

        if len(self.more_text) > MAX_MORE_TEXT_LENGTH:
            raise InvalidReminderOffset(f"Reminder text is too long (max {MAX_MORE_TEXT_LENGTH} characters)")
        return self

    def to_json(self) -> Dict[str, Any]:
        return {
            'data': [
                {'seconds': str(o.lead_seconds), 'actions': o.include_actions}
                for o in self.offsets
            ],
            'moreText': self.more_text
        }

    @classmethod
    def from_json(cls, data: Any) -> 'ReminderSpec':
        """Parse and validate the settings payload; lead times may be strings or ints"""
        if not isinstance(data, dict):
            raise InvalidReminderOffset("Reminder settings must be an object")

        items = data.get('data', [])
        if not isinstance(items, list):
            raise InvalidReminderOffset("Reminder data must be a list")

        offsets: List[ReminderOffset] = []
        for item in items:
            if not isinstance(item, dict):
                raise InvalidReminderOffset("Reminder entry must be an object")
            raw = item.get('seconds')
            if isinstance(raw, bool):
                raise InvalidReminderOffset(f"Invalid reminder offset: {raw!r}")
            try:
                seconds = int(raw)
            except (TypeError, ValueError):
                raise InvalidReminderOffset(f"Invalid reminder offset: {raw!r}")
            offsets.append(ReminderOffset(seconds, bool(item.get('actions', False))))

        more_text = data.get('moreText', '')
        if not isinstance(more_text, str):
            raise InvalidReminderOffset("Reminder text must be a string")

        return cls(offsets=tuple(offsets), more_text=more_text.strip()).validate()


class DispatchStatus(str, Enum):
    PENDING = 'pending'
    SENT = 'sent'
    ELAPSED = 'elapsed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


@dataclass
class ReminderDispatch:
    """One reminder for one appointment at one lead time"""
    appointment_id: str
    lead_seconds: int
    include_actions: bool
    fire_at: datetime
    generation: int
    status: DispatchStatus = DispatchStatus.PENDING
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def key(self) -> Tuple[str, int]:
        return (self.appointment_id, self.lead_seconds)

    @property
    def sent(self) -> bool:
        return self.status is DispatchStatus.SENT

    def is_due(self, now: datetime) -> bool:
        if self.status is not DispatchStatus.PENDING or self.fire_at > now:
            return False
        return self.next_attempt_at is None or self.next_attempt_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            'appointment_id': self.appointment_id,
            'lead_seconds': self.lead_seconds,
            'include_actions': self.include_actions,
            'fire_at': self.fire_at.isoformat(),
            'status': self.status.value,
            'attempts': self.attempts,
            'last_error': self.last_error
        }


@dataclass
class ReminderRegistration:
    """Reminder bookkeeping for one appointment"""
    appointment: Any
    spec: ReminderSpec
    generation: int = 0
    dispatches: List[ReminderDispatch] = field(default_factory=list)
