"""
Boundary encodings: the delimited slot and calendar listings consumed by the
page renderers, and the signed visitor-data blob carried in confirmation links.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from dateutil import parser
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from appointments.models.booking import CalendarInfo, CandidateSlot
from appointments.utils.exceptions import TokenExpired, ValidationError

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = chr(31)
FIELD_SEPARATOR = chr(30)

VISITOR_BLOB_SALT = 'visitor-data'


def encode_duration(slot: CandidateSlot) -> str:
    return f"{slot.duration_minutes}-{slot.max_duration_minutes}"


def decode_duration(token: str) -> Tuple[int, int]:
    low, _, high = token.partition('-')
    try:
        low_minutes = int(low)
        high_minutes = int(high) if high else low_minutes
    except ValueError:
        raise ValidationError(f"Invalid duration token: {token!r}")
    return low_minutes, high_minutes


def encode_slot_listing(slots: Iterable[CandidateSlot], tz=None) -> str:
    """Fields joined by FIELD_SEPARATOR, records by RECORD_SEPARATOR"""
    records = []
    for slot in slots:
        start = slot.start.astimezone(tz) if tz is not None else slot.start
        records.append(FIELD_SEPARATOR.join([
            slot.title,
            encode_duration(slot),
            start.isoformat()
        ]))
    return RECORD_SEPARATOR.join(records)


def decode_slot_listing(data: str) -> List[CandidateSlot]:
    if not data:
        return []

    slots = []
    for record in data.split(RECORD_SEPARATOR):
        fields = record.split(FIELD_SEPARATOR)
        if len(fields) != 3:
            raise ValidationError(f"Malformed slot record: {record!r}")
        title, duration, start = fields
        low, high = decode_duration(duration)
        slots.append(CandidateSlot(
            start=parser.isoparse(start),
            duration_minutes=low,
            title=title,
            max_duration_minutes=high
        ))
    return slots


def encode_calendar_listing(calendars: Iterable[CalendarInfo]) -> str:
    """name, color, id per record, in the same layout as the slot listing"""
    return RECORD_SEPARATOR.join(
        FIELD_SEPARATOR.join([c.name, c.color, c.id]) for c in calendars
    )


def decode_calendar_listing(data: str) -> List[CalendarInfo]:
    if not data:
        return []

    calendars = []
    for record in data.split(RECORD_SEPARATOR):
        fields = record.split(FIELD_SEPARATOR)
        if len(fields) != 3:
            raise ValidationError(f"Malformed calendar record: {record!r}")
        name, color, calendar_id = fields
        calendars.append(CalendarInfo(id=calendar_id, name=name, color=color))
    return calendars


class VisitorBlobSigner:
    """Signs the visitor data attached to a confirmation link.

    The confirmation token stays opaque; the blob only lets the confirmation
    page show who is booking and ties the link to that token.
    """

    def __init__(self, secret_key: str, max_age: Optional[int] = None):
        self.serializer = URLSafeTimedSerializer(secret_key, salt=VISITOR_BLOB_SALT)
        self.max_age = max_age

    def dumps(self, token: str, visitor_fields: Dict[str, str]) -> str:
        return self.serializer.dumps({
            't': token,
            'n': visitor_fields.get('name', ''),
            'e': visitor_fields.get('email', ''),
        })

    def loads(self, blob: str, token: str) -> Dict[str, Any]:
        try:
            data = self.serializer.loads(blob, max_age=self.max_age)
        except SignatureExpired:
            logger.warning("Expired visitor data blob")
            raise TokenExpired("Confirmation link has expired")
        except BadSignature:
            logger.warning("Invalid visitor data blob signature")
            raise ValidationError("Invalid confirmation link")

        if data.get('t') != token:
            logger.warning("Visitor data blob does not belong to this token")
            raise ValidationError("Invalid confirmation link")

        return {'name': data.get('n', ''), 'email': data.get('e', '')}
