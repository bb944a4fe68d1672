# appointments/utils/validators.py
"""
Input validation utilities
"""
import re
from datetime import datetime
from typing import Dict, Optional

import pytz
from dateutil import parser

from appointments.utils.exceptions import ValidationError


class InputValidator:
    """Validates visitor form inputs and API parameters"""

    @staticmethod
    def validate_identifier(value: str, label: str = 'Identifier') -> str:
        """Validate user and page ids used in URLs"""
        if not value or not isinstance(value, str):
            raise ValidationError(f"{label} is required and must be a string")

        if len(value) > 100:
            raise ValidationError(f"{label} is too long")

        if not re.match(r'^[a-zA-Z0-9_-]+$', value):
            raise ValidationError(f"{label} contains invalid characters")

        return value.strip()

    @staticmethod
    def validate_attendee_name(name: str) -> str:
        """Validate attendee name"""
        if not name or not isinstance(name, str):
            raise ValidationError("Name is required")

        name = name.strip()

        if len(name) < 2:
            raise ValidationError("Name is too short")

        if len(name) > 100:
            raise ValidationError("Name is too long")

        if re.search(r'[\x00-\x1f\x7f<>]', name):
            raise ValidationError("Name contains invalid characters")

        return name

    @staticmethod
    def validate_email(email: Optional[str]) -> str:
        """Validate email address, which is required for bookings"""
        if not email or not isinstance(email, str):
            raise ValidationError("Email is required")

        email = email.strip().lower()

        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

        if not re.match(email_pattern, email):
            raise ValidationError("Invalid email format")

        return email

    @staticmethod
    def validate_phone_number(phone: Optional[str]) -> Optional[str]:
        """Validate phone number, keeping a leading + and the digits"""
        if not phone:
            return None

        clean_phone = re.sub(r'[\s\-\(\)\.]+', '', str(phone))

        if not re.match(r'^\+?[0-9]{7,15}$', clean_phone):
            raise ValidationError("Invalid phone number format")

        return clean_phone

    @staticmethod
    def validate_slot_datetime(value: str) -> datetime:
        """Parse the slot date-time sent back by the booking form"""
        if not value or not isinstance(value, str):
            raise ValidationError("Appointment date and time are required")

        try:
            parsed = parser.isoparse(value.strip())
        except (ValueError, OverflowError):
            raise ValidationError("Invalid appointment date-time")

        if parsed.tzinfo is None:
            raise ValidationError("Appointment date-time must include a UTC offset")

        return parsed

    @staticmethod
    def validate_duration(value) -> Optional[int]:
        """Requested duration in minutes; empty or 0 means the slot's minimum"""
        if value in (None, ''):
            return None

        try:
            minutes = int(value)
        except (TypeError, ValueError):
            raise ValidationError("Invalid appointment duration")

        if minutes < 0:
            raise ValidationError("Invalid appointment duration")

        return minutes or None

    @staticmethod
    def validate_timezone_info(value: Optional[str]) -> Optional[str]:
        """Attendee timezone as sent by the form, e.g. 'TAmerica/New_York'"""
        if not value:
            return None

        name = value[1:] if value.startswith('T') else value
        if name not in pytz.all_timezones_set:
            raise ValidationError("Unknown timezone")

        return name

    @classmethod
    def validate_visitor_fields(cls, form: Dict[str, str]) -> Dict[str, str]:
        """Validate the booking form and return normalized visitor fields"""
        fields = {
            'name': cls.validate_attendee_name(form.get('name', '')),
            'email': cls.validate_email(form.get('email')),
        }

        phone = cls.validate_phone_number(form.get('phone'))
        if phone:
            fields['phone'] = phone

        tz_name = cls.validate_timezone_info(form.get('tzi'))
        if tz_name:
            fields['timezone'] = tz_name

        return fields
