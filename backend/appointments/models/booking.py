# appointments/models/booking.py
"""
Booking-related data models
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class BusyRange:
    """Half-open [start, end) interval that blocks booking"""
    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


@dataclass(frozen=True)
class CalendarInfo:
    """A calendar the organizer can pick as destination"""
    id: str
    name: str
    color: str = ''


@dataclass(frozen=True)
class CandidateSlot:
    """A date-bound, still free instance of a slot definition"""
    start: datetime
    duration_minutes: int
    title: str
    max_duration_minutes: Optional[int] = None

    def __post_init__(self):
        if self.max_duration_minutes is None:
            object.__setattr__(self, 'max_duration_minutes', self.duration_minutes)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    def end_for(self, minutes: int) -> datetime:
        return self.start + timedelta(minutes=minutes)

    def allows(self, minutes: int) -> bool:
        return self.duration_minutes <= minutes <= self.max_duration_minutes

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': self.start.isoformat(),
            'duration': [self.duration_minutes, self.max_duration_minutes],
            'title': self.title
        }


class BookingState(str, Enum):
    RESERVED = 'reserved'
    CONFIRMED = 'confirmed'
    EXPIRED = 'expired'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool:
        return self is not BookingState.RESERVED


@dataclass
class BookingAttempt:
    """A time-boxed hold on a candidate slot, bound to one confirmation token"""
    token: str
    user_id: str
    page_id: str
    slot: CandidateSlot
    duration_minutes: int
    visitor_fields: Dict[str, str]
    created_at: datetime
    expires_at: datetime
    state: BookingState = BookingState.RESERVED
    appointment_id: Optional[str] = None

    @property
    def start(self) -> datetime:
        return self.slot.start

    @property
    def end(self) -> datetime:
        return self.slot.end_for(self.duration_minutes)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_live(self, now: datetime) -> bool:
        return self.state is BookingState.RESERVED and not self.is_expired(now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'page_id': self.page_id,
            'state': self.state.value,
            'start': self.start.isoformat(),
            'duration': self.duration_minutes,
            'title': self.slot.title,
            'created_at': self.created_at.isoformat(),
            'expires_at': self.expires_at.isoformat(),
            'appointment_id': self.appointment_id
        }


@dataclass
class Appointment:
    """A confirmed booking committed to the destination calendar"""
    id: Optional[str]
    start: datetime
    duration_minutes: int
    attendee_email: str
    attendee_phone: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def title(self) -> str:
        return self.metadata.get('title', '')

    @property
    def attendee_name(self) -> str:
        return self.metadata.get('name', '')

    def to_calendar_event(self) -> Dict[str, Any]:
        """Convert to Google Calendar event format"""
        description_parts = [f"Attendee: {self.attendee_name}"]

        if self.attendee_email:
            description_parts.append(f"Email: {self.attendee_email}")

        if self.attendee_phone:
            description_parts.append(f"Phone: {self.attendee_phone}")

        description_parts.append('\nBooked via Appointments')

        timezone = self.metadata.get('timezone', 'UTC')
        event = {
            'summary': f"{self.title} - {self.attendee_name}" if self.attendee_name else self.title,
            'description': '\n'.join(description_parts),
            'start': {'dateTime': self.start.isoformat(), 'timeZone': timezone},
            'end': {'dateTime': self.end.isoformat(), 'timeZone': timezone},
            'extendedProperties': {
                'private': {k: str(v) for k, v in self.metadata.items() if k in ('page_id', 'user_id')}
            }
        }
        if self.attendee_email:
            event['attendees'] = [{
                'email': self.attendee_email,
                'displayName': self.attendee_name,
                'responseStatus': 'accepted'
            }]
        return event

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'duration': self.duration_minutes,
            'title': self.title,
            'attendee_name': self.attendee_name,
            'attendee_email': self.attendee_email,
            'attendee_phone': self.attendee_phone
        }
