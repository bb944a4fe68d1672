# appointments/utils/exceptions.py
"""
Custom exceptions for the booking engine
"""


class AppointmentsError(Exception):
    """Base exception for the application"""
    pass


class ConfigError(AppointmentsError):
    """Raised when organizer settings are invalid or missing"""
    pass


class ValidationError(AppointmentsError):
    """Raised when input validation fails"""
    pass


class InvalidReminderOffset(ConfigError):
    """Raised when a reminder lead time is not one of the allowed offsets"""
    pass


class SlotUnavailable(AppointmentsError):
    """Raised when a slot was taken by someone else"""
    pass


class TokenError(AppointmentsError):
    """Base class for confirmation token failures"""
    user_message = 'This link is no longer valid'


class TokenNotFound(TokenError):
    pass


class TokenExpired(TokenError):
    pass


class TokenAlreadyUsed(TokenError):
    pass


class TransientError(AppointmentsError):
    """Recoverable I/O failure (timeouts, 5xx, dropped connections)"""
    pass


class PermanentError(AppointmentsError):
    """Non-recoverable failure, retrying will not help"""
    pass


class CalendarServiceError(AppointmentsError):
    """Raised when calendar operations fail"""
    pass


class ConflictError(CalendarServiceError):
    """Raised by a calendar backend when a write overlaps an existing event"""
    pass


class NotificationError(AppointmentsError):
    """Raised when a notification can not be built or sent"""
    pass
