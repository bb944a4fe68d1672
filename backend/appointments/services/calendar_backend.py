# calendar_backend.py
"""
Destination calendar access: busy range queries and appointment writes.

The engine only sees the CalendarBackend interface. InMemoryCalendarBackend
keeps events in process; GoogleCalendarBackend talks to Google Calendar.
"""
import logging
import os
import socket
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

import httplib2
from dateutil import parser
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from appointments.models.booking import Appointment, BusyRange, CalendarInfo
from appointments.utils.exceptions import (
    ConflictError, PermanentError, TransientError
)

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/calendar']

TRANSIENT_HTTP_STATUSES = {429, 500, 502, 503, 504}


class CalendarBackend(ABC):
    """Capability the booking engine consumes from the destination calendar"""

    @abstractmethod
    def query_busy_ranges(self, calendar_id: str, window_start: datetime,
                          window_end: datetime) -> List[BusyRange]:
        ...

    @abstractmethod
    def write_appointment(self, calendar_id: str, appointment: Appointment) -> str:
        """Commit the appointment and return its id; raise ConflictError on overlap"""
        ...

    @abstractmethod
    def delete_appointment(self, calendar_id: str, appointment_id: str) -> None:
        ...

    @abstractmethod
    def list_calendars(self) -> List[CalendarInfo]:
        """Calendars the organizer can write appointments to"""
        ...


class InMemoryCalendarBackend(CalendarBackend):
    """Process-local calendar used for development and tests"""

    def __init__(self):
        self._lock = threading.Lock()
        self._events: Dict[str, Dict[str, Dict]] = {}
        self._calendars: Dict[str, CalendarInfo] = {}

    def add_calendar(self, calendar_id: str, name: str, color: str = '') -> CalendarInfo:
        info = CalendarInfo(id=calendar_id, name=name, color=color)
        with self._lock:
            self._calendars[calendar_id] = info
            self._events.setdefault(calendar_id, {})
        return info

    def add_busy_range(self, calendar_id: str, start: datetime, end: datetime,
                       summary: str = 'Busy') -> str:
        """Record an event that was created outside of the booking engine"""
        event_id = uuid.uuid4().hex
        with self._lock:
            self._events.setdefault(calendar_id, {})[event_id] = {
                'start': start, 'end': end, 'summary': summary, 'appointment': None
            }
        return event_id

    def get_appointment(self, calendar_id: str, appointment_id: str) -> Optional[Appointment]:
        with self._lock:
            event = self._events.get(calendar_id, {}).get(appointment_id)
        return event['appointment'] if event else None

    def list_appointments(self, calendar_id: str) -> List[Appointment]:
        with self._lock:
            events = list(self._events.get(calendar_id, {}).values())
        return [e['appointment'] for e in events if e['appointment'] is not None]

    def query_busy_ranges(self, calendar_id, window_start, window_end):
        with self._lock:
            events = list(self._events.get(calendar_id, {}).values())

        busy = [
            BusyRange(e['start'], e['end'])
            for e in events
            if e['start'] < window_end and e['end'] > window_start
        ]
        busy.sort(key=lambda b: b.start)
        return busy

    def write_appointment(self, calendar_id, appointment):
        with self._lock:
            events = self._events.setdefault(calendar_id, {})
            for event in events.values():
                if event['start'] < appointment.end and event['end'] > appointment.start:
                    raise ConflictError(
                        f"{appointment.start.isoformat()} overlaps '{event['summary']}'"
                    )

            event_id = appointment.id or uuid.uuid4().hex
            appointment.id = event_id
            events[event_id] = {
                'start': appointment.start,
                'end': appointment.end,
                'summary': appointment.title,
                'appointment': appointment
            }

        logger.info(f"✅ Appointment {event_id} written to calendar {calendar_id}")
        return event_id

    def delete_appointment(self, calendar_id, appointment_id):
        with self._lock:
            removed = self._events.get(calendar_id, {}).pop(appointment_id, None)

        if removed is None:
            logger.warning(f"Appointment {appointment_id} not found in calendar {calendar_id}")
        else:
            logger.info(f"🗑️ Appointment {appointment_id} deleted from calendar {calendar_id}")

    def list_calendars(self):
        with self._lock:
            # calendars that only ever received events are listed under their id
            calendars = [self._calendars.get(cid) or CalendarInfo(id=cid, name=cid) for cid in self._events]
        return sorted(calendars, key=lambda c: (c.name.lower(), c.id))


def get_calendar_service(token_path: str, timeout: int):
    """Initialize Google Calendar service with a bounded HTTP timeout"""
    if not token_path:
        raise PermanentError("GOOGLE_CALENDAR_TOKEN_PATH not set in environment")

    if not os.path.exists(token_path):
        raise PermanentError(f"Token file not found at: {token_path}")

    creds = Credentials.from_authorized_user_file(token_path, SCOPES)

    if creds.expired and creds.refresh_token:
        logger.info("Refreshing expired credentials...")
        creds.refresh(Request())

    if not creds.valid:
        raise PermanentError("Invalid Google Calendar credentials")

    http = AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))
    service = build('calendar', 'v3', http=http, cache_discovery=False)
    logger.info("Google Calendar service initialized successfully")
    return service


def _parse_event_time(value: Dict) -> Optional[datetime]:
    raw = value.get('dateTime')
    if not raw:
        return None  # all-day events carry only 'date'
    return parser.isoparse(raw)


class GoogleCalendarBackend(CalendarBackend):
    """Google Calendar implementation, one events() resource per call site"""

    def __init__(self, token_path: str, timeout: int = 10, service=None):
        self.token_path = token_path
        self.timeout = timeout
        self._service = service

    @property
    def service(self):
        if self._service is None:
            self._service = get_calendar_service(self.token_path, self.timeout)
        return self._service

    def _execute(self, request, action: str):
        try:
            return request.execute()
        except HttpError as e:
            status = getattr(e.resp, 'status', None)
            logger.error(f"❌ Google Calendar {action} failed with HTTP {status}: {e}")
            if status in TRANSIENT_HTTP_STATUSES:
                raise TransientError(f"Calendar {action} failed: HTTP {status}") from e
            if status == 409:
                raise ConflictError(f"Calendar {action} conflict") from e
            raise PermanentError(f"Calendar {action} failed: HTTP {status}") from e
        except (socket.timeout, TimeoutError, ConnectionError) as e:
            logger.error(f"❌ Google Calendar {action} timed out: {e}")
            raise TransientError(f"Calendar {action} timed out") from e

    def query_busy_ranges(self, calendar_id, window_start, window_end):
        busy = []
        page_token = None

        while True:
            result = self._execute(self.service.events().list(
                calendarId=calendar_id,
                timeMin=window_start.isoformat(),
                timeMax=window_end.isoformat(),
                singleEvents=True,
                orderBy='startTime',
                pageToken=page_token
            ), 'list')

            for event in result.get('items', []):
                if event.get('status') == 'cancelled' or event.get('transparency') == 'transparent':
                    continue
                start = _parse_event_time(event.get('start', {}))
                end = _parse_event_time(event.get('end', {}))
                if start is None or end is None:
                    continue
                busy.append(BusyRange(start, end))

            page_token = result.get('nextPageToken')
            if not page_token:
                break

        logger.info(f"Found {len(busy)} busy ranges in {calendar_id} between {window_start} and {window_end}")
        return busy

    def write_appointment(self, calendar_id, appointment):
        created = self._execute(self.service.events().insert(
            calendarId=calendar_id, body=appointment.to_calendar_event()
        ), 'insert')

        appointment.id = created.get('id')
        logger.info(f"✅ Google Calendar event {appointment.id} created: {created.get('htmlLink')}")
        return appointment.id

    def delete_appointment(self, calendar_id, appointment_id):
        self._execute(self.service.events().delete(
            calendarId=calendar_id, eventId=appointment_id
        ), 'delete')
        logger.info(f"🗑️ Google Calendar event {appointment_id} deleted")

    def list_calendars(self):
        calendars = []
        page_token = None

        while True:
            result = self._execute(self.service.calendarList().list(pageToken=page_token), 'calendar list')

            for entry in result.get('items', []):
                if entry.get('deleted'):
                    continue
                calendars.append(CalendarInfo(
                    id=entry['id'],
                    name=entry.get('summaryOverride') or entry.get('summary', entry['id']),
                    color=entry.get('backgroundColor', '')
                ))

            page_token = result.get('nextPageToken')
            if not page_token:
                break

        logger.info(f"Found {len(calendars)} calendars")
        return calendars


def create_calendar_backend(config) -> CalendarBackend:
    """Pick the backend named by CALENDAR_BACKEND"""
    if config.CALENDAR_BACKEND == 'google':
        return GoogleCalendarBackend(
            token_path=config.GOOGLE_CALENDAR_TOKEN_PATH,
            timeout=config.CALENDAR_TIMEOUT_SECONDS
        )
    return InMemoryCalendarBackend()
