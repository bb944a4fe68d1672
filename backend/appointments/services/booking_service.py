# booking_service.py
"""
Two-phase booking: reserve a candidate slot against a one-time confirmation
token, then confirm the token to commit the appointment to the destination
calendar and register its reminders.
"""
import logging
import secrets
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

from appointments.models.booking import (
    Appointment, BookingAttempt, BookingState, BusyRange, CandidateSlot
)
from appointments.services.slot_generator import find_candidate
from appointments.utils.exceptions import (
    ConflictError, PermanentError, SlotUnavailable, TokenAlreadyUsed, TokenExpired, TokenNotFound,
    TransientError, ValidationError
)
from appointments.utils.timeutils import utc_now

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def bind_duration(slot: CandidateSlot, requested: Optional[int]) -> int:
    """Pick the booked duration: visitor's choice inside the slot's range, minimum by default"""
    if requested is None:
        return slot.duration_minutes
    if not slot.allows(requested):
        raise ValidationError(
            f"Duration must be between {slot.duration_minutes} and {slot.max_duration_minutes} minutes"
        )
    return requested


class BookingStateMachine:
    """Owns the reserve -> confirm / expire / cancel lifecycle of booking attempts"""

    def __init__(self, settings_store, slot_generator, calendar_backend, reminder_scheduler,
                 reservation_ttl: timedelta = timedelta(minutes=30),
                 hold_reservations: bool = True,
                 clock: Callable[[], datetime] = utc_now,
                 notifier=None,
                 duration_policy: Callable[[CandidateSlot, Optional[int]], int] = bind_duration):
        self.settings = settings_store
        self.slots = slot_generator
        self.calendar = calendar_backend
        self.reminders = reminder_scheduler
        self.reservation_ttl = reservation_ttl
        self.hold_reservations = hold_reservations
        self.clock = clock
        self.notifier = notifier
        self.duration_policy = duration_policy

        self._lock = threading.RLock()
        self._attempts: Dict[str, BookingAttempt] = {}
        self._by_appointment: Dict[str, str] = {}
        self._appointments: Dict[str, Appointment] = {}
        self._commit_locks: Dict[str, threading.Lock] = {}
        self._pending_registrations: Dict[str, Appointment] = {}
        self._pending_deletions: Dict[str, str] = {}
        self._cancelling: Set[str] = set()

    # -- helpers ---------------------------------------------------------

    def _commit_lock(self, calendar_id: str) -> threading.Lock:
        with self._lock:
            return self._commit_locks.setdefault(calendar_id, threading.Lock())

    def _held_ranges(self, now: datetime) -> List[BusyRange]:
        """Live reservations, which block overlapping reservations while holds are on"""
        if not self.hold_reservations:
            return []
        with self._lock:
            return [
                BusyRange(a.start, a.end)
                for a in self._attempts.values()
                if a.is_live(now)
            ]

    def _expire(self, attempt: BookingAttempt) -> None:
        attempt.state = BookingState.EXPIRED
        logger.info(f"⌛ Reservation for {attempt.start.isoformat()} on {attempt.page_id} expired")

    def _rollback_write(self, calendar_id: str, appointment_id: str) -> None:
        """Remove an event written for a reservation that was lost mid-commit"""
        try:
            self.calendar.delete_appointment(calendar_id, appointment_id)
        except TransientError as e:
            logger.error(f"❌ Rollback delete of {appointment_id} failed, will retry: {e}")
            with self._lock:
                self._pending_deletions[appointment_id] = calendar_id

    def get_attempt(self, token: str) -> Optional[BookingAttempt]:
        with self._lock:
            return self._attempts.get(token)

    def list_slots(self, user_id: str, page_id: str, days: int,
                   now: Optional[datetime] = None) -> List[CandidateSlot]:
        """Slots to show on the booking page"""
        now = now or self.clock()
        self.sweep_expired(now)
        return self.slots.page_slots(user_id, page_id, now, days, self._held_ranges(now))

    # -- lifecycle -------------------------------------------------------

    def reserve(self, user_id: str, page_id: str, start: datetime, visitor_fields: Dict[str, str],
                duration_minutes: Optional[int] = None) -> BookingAttempt:
        """Hold a still-free candidate slot and mint its confirmation token"""
        now = self.clock()
        self.sweep_expired(now)

        cls = self.settings.get_cls(user_id, page_id)
        not_before = now + timedelta(minutes=cls.prep_time_minutes)

        held = self._held_ranges(now)
        candidates = self.slots.slots_on_day(user_id, page_id, start, not_before, held)
        slot = find_candidate(candidates, start)
        if slot is None:
            logger.warning(f"🚫 Slot {start.isoformat()} on {user_id}/{page_id} is no longer available")
            raise SlotUnavailable("This time slot is no longer available. Please pick another slot.")

        duration = self.duration_policy(slot, duration_minutes)
        end = slot.end_for(duration)
        if duration != slot.duration_minutes:
            busy = self.calendar.query_busy_ranges(cls.destination_calendar_id, slot.start, end)
            if any(b.overlaps(slot.start, end) for b in list(busy) + held):
                logger.warning(f"🚫 {duration} minutes at {start.isoformat()} overlaps a busy range")
                raise SlotUnavailable("This time slot is no longer available. Please pick another slot.")

        with self._lock:
            # re-check holds under the lock so two reservations can't both win
            if self.hold_reservations and any(
                a.is_live(now) and a.start < end and a.end > slot.start
                for a in self._attempts.values()
            ):
                raise SlotUnavailable("This time slot is no longer available. Please pick another slot.")

            token = secrets.token_urlsafe(TOKEN_BYTES)
            attempt = BookingAttempt(
                token=token,
                user_id=user_id,
                page_id=page_id,
                slot=slot,
                duration_minutes=duration,
                visitor_fields=dict(visitor_fields),
                created_at=now,
                expires_at=now + self.reservation_ttl
            )
            self._attempts[token] = attempt

        logger.info(
            f"📝 Reserved {slot.title} at {slot.start.isoformat()} ({duration} min) on "
            f"{user_id}/{page_id}, expires {attempt.expires_at.isoformat()}"
        )
        return attempt

    def request_verification(self, token: str, confirm_url: str) -> None:
        """Email the confirmation link to the visitor instead of handing it back.

        A reservation whose link can't be delivered is released at once,
        then the send failure is raised to the caller.
        """
        with self._lock:
            attempt = self._attempts.get(token)
            if attempt is None:
                raise TokenNotFound("This link is no longer valid")
            if attempt.state is not BookingState.RESERVED:
                raise TokenAlreadyUsed("This link is no longer valid")

        fields = attempt.visitor_fields
        payload = {
            'start': attempt.start.isoformat(),
            'duration': attempt.duration_minutes,
            'title': attempt.slot.title,
            'attendee_name': fields.get('name', ''),
            'user_id': attempt.user_id,
            'confirm_url': confirm_url,
        }
        try:
            if self.notifier is None:
                raise PermanentError("No notification sender configured")
            self.notifier.send(fields.get('email', ''), 'verification', payload)
        except Exception as e:
            logger.error(f"❌ Verification email for {attempt.start.isoformat()} failed, releasing slot: {e}")
            with self._lock:
                if attempt.state is BookingState.RESERVED:
                    attempt.state = BookingState.CANCELLED
            raise

        logger.info(f"📧 Verification link sent for {attempt.slot.title} at {attempt.start.isoformat()}")

    def confirm(self, token: str) -> Appointment:
        """Commit a reservation; at most one attempt wins a given time range"""
        now = self.clock()

        with self._lock:
            attempt = self._attempts.get(token)
            if attempt is None:
                raise TokenNotFound("This link is no longer valid")
            if attempt.state is BookingState.RESERVED and attempt.is_expired(now):
                self._expire(attempt)
                raise TokenExpired("This link is no longer valid")
            if attempt.state is BookingState.EXPIRED:
                raise TokenExpired("This link is no longer valid")
            if attempt.state is not BookingState.RESERVED:
                raise TokenAlreadyUsed("This link is no longer valid")

        cls = self.settings.get_cls(attempt.user_id, attempt.page_id)
        calendar_id = cls.destination_calendar_id

        with self._commit_lock(calendar_id):
            with self._lock:
                # another confirm for the same token may have won while we waited
                if attempt.state is BookingState.EXPIRED:
                    raise TokenExpired("This link is no longer valid")
                if attempt.state is not BookingState.RESERVED:
                    raise TokenAlreadyUsed("This link is no longer valid")

            busy = self.calendar.query_busy_ranges(calendar_id, attempt.start, attempt.end)
            if any(b.overlaps(attempt.start, attempt.end) for b in busy):
                logger.warning(f"🚫 {attempt.start.isoformat()} was booked before confirmation")
                raise SlotUnavailable("This time slot is no longer available. Please pick another slot.")

            fields = attempt.visitor_fields
            appointment = Appointment(
                id=None,
                start=attempt.start,
                duration_minutes=attempt.duration_minutes,
                attendee_email=fields.get('email', ''),
                attendee_phone=fields.get('phone'),
                metadata={
                    'title': attempt.slot.title,
                    'name': fields.get('name', ''),
                    'timezone': cls.timezone,
                    'attendee_timezone': fields.get('timezone', cls.timezone),
                    'user_id': attempt.user_id,
                    'page_id': attempt.page_id,
                    'calendar_id': calendar_id,
                    'token': token
                }
            )

            try:
                self.calendar.write_appointment(calendar_id, appointment)
            except ConflictError as e:
                logger.warning(f"🚫 Calendar rejected {attempt.start.isoformat()}: {e}")
                raise SlotUnavailable("This time slot is no longer available. Please pick another slot.") from e

            with self._lock:
                # a cancel or expiry sweep may have landed during the write
                lost_to = attempt.state
                if lost_to is BookingState.RESERVED:
                    attempt.state = BookingState.CONFIRMED
                    attempt.appointment_id = appointment.id
                    self._by_appointment[appointment.id] = token
                    self._appointments[appointment.id] = appointment

            if lost_to is not BookingState.RESERVED:
                logger.warning(
                    f"🚫 Reservation {attempt.start.isoformat()} became {lost_to.value} while committing, "
                    f"rolling back {appointment.id}"
                )
                self._rollback_write(calendar_id, appointment.id)
                if lost_to is BookingState.EXPIRED:
                    raise TokenExpired("This link is no longer valid")
                raise TokenAlreadyUsed("This link is no longer valid")

        logger.info(f"✅ Booking confirmed: {appointment.title} at {appointment.start.isoformat()} ({appointment.id})")

        self._register_reminders(appointment)
        with self._lock:
            still_confirmed = attempt.state is BookingState.CONFIRMED
        if still_confirmed:
            self._notify(appointment, 'confirmation')
        return appointment

    def cancel(self, token_or_appointment_id: str) -> BookingAttempt:
        """Cancel a reservation or a confirmed appointment"""
        now = self.clock()

        with self._lock:
            token = self._by_appointment.get(token_or_appointment_id, token_or_appointment_id)
            attempt = self._attempts.get(token)
            if attempt is None:
                raise TokenNotFound("This link is no longer valid")

            if attempt.state is BookingState.RESERVED:
                if attempt.is_expired(now):
                    self._expire(attempt)
                    raise TokenExpired("This link is no longer valid")
                attempt.state = BookingState.CANCELLED
                logger.info(f"❎ Reservation for {attempt.start.isoformat()} on {attempt.page_id} cancelled")
                return attempt

            if attempt.state is BookingState.EXPIRED:
                raise TokenExpired("This link is no longer valid")
            if attempt.state is not BookingState.CONFIRMED or token in self._cancelling:
                raise TokenAlreadyUsed("This link is no longer valid")

            self._cancelling.add(token)
            appointment_id = attempt.appointment_id

        # the event goes first; a permanent failure leaves the booking confirmed
        cls = self.settings.get_cls(attempt.user_id, attempt.page_id)
        calendar_id = cls.destination_calendar_id
        delete_queued = False
        try:
            self.calendar.delete_appointment(calendar_id, appointment_id)
        except TransientError as e:
            logger.error(f"❌ Calendar delete of {appointment_id} failed, will retry: {e}")
            delete_queued = True
        except Exception as e:
            logger.error(f"❌ Calendar delete of {appointment_id} failed, appointment kept: {e}")
            with self._lock:
                self._cancelling.discard(token)
            raise

        with self._lock:
            self._cancelling.discard(token)
            attempt.state = BookingState.CANCELLED
            appointment = self._appointments.pop(appointment_id, None)
            self._pending_registrations.pop(appointment_id, None)
            if delete_queued:
                self._pending_deletions[appointment_id] = calendar_id

        self.reminders.on_appointment_cancelled(appointment_id)
        logger.info(f"❎ Appointment {appointment_id} cancelled")

        if appointment is not None:
            self._notify(appointment, 'cancellation')
        return attempt

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Move stale reservations to EXPIRED, releasing their slots"""
        now = now or self.clock()
        expired = 0
        with self._lock:
            for attempt in self._attempts.values():
                if attempt.state is BookingState.RESERVED and attempt.is_expired(now):
                    self._expire(attempt)
                    expired += 1
        return expired

    # -- reminders -------------------------------------------------------

    def _register_reminders(self, appointment: Appointment) -> bool:
        with self._lock:
            attempt = self._attempts.get(self._by_appointment.get(appointment.id, ''))
            if attempt is None or attempt.state is not BookingState.CONFIRMED:
                self._pending_registrations.pop(appointment.id, None)
                logger.info(f"Skipping reminders for {appointment.id}, no longer confirmed")
                return False

        user_id = appointment.metadata.get('user_id')
        try:
            spec = self.settings.get_reminder_spec(user_id)
            self.reminders.on_appointment_confirmed(appointment, spec)
        except Exception as e:
            # the appointment stays valid; the worker retries registration
            logger.error(f"❌ Reminder registration failed for {appointment.id}, will retry: {e}")
            with self._lock:
                self._pending_registrations[appointment.id] = appointment
            return False

        with self._lock:
            self._pending_registrations.pop(appointment.id, None)
        return True

    def retry_pending_registrations(self) -> int:
        with self._lock:
            pending = list(self._pending_registrations.values())

        registered = 0
        for appointment in pending:
            if self._register_reminders(appointment):
                registered += 1
        if pending:
            logger.info(f"Retried reminder registration: {registered}/{len(pending)} succeeded")
        return registered

    def retry_pending_deletions(self) -> int:
        """Remove cancelled appointments whose calendar delete failed transiently"""
        with self._lock:
            pending = list(self._pending_deletions.items())

        deleted = 0
        for appointment_id, calendar_id in pending:
            try:
                self.calendar.delete_appointment(calendar_id, appointment_id)
            except TransientError as e:
                logger.warning(f"⚠️ Calendar delete of {appointment_id} still failing: {e}")
                continue
            with self._lock:
                self._pending_deletions.pop(appointment_id, None)
            deleted += 1
        return deleted

    def _notify(self, appointment: Appointment, kind: str) -> None:
        if self.notifier is None:
            return

        user_id = appointment.metadata.get('user_id')
        if not self.settings.get_email_settings(user_id).confirmation_email:
            return

        payload = {
            'appointment_id': appointment.id,
            'start': appointment.start.isoformat(),
            'duration': appointment.duration_minutes,
            'title': appointment.title,
            'attendee_name': appointment.attendee_name,
            'user_id': appointment.metadata.get('user_id'),
        }
        try:
            self.notifier.send(appointment.attendee_email, kind, payload)
        except Exception as e:
            logger.error(f"❌ Failed to send {kind} notification for {appointment.id}: {e}")

    def resolve(self, token_or_appointment_id: str) -> Optional[BookingAttempt]:
        with self._lock:
            token = self._by_appointment.get(token_or_appointment_id, token_or_appointment_id)
            return self._attempts.get(token)
