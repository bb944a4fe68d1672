# reminder_scheduler.py
"""
Reminder bookkeeping for confirmed appointments.

One dispatch per (appointment, lead time). `tick` sends whatever is due,
at most once per dispatch; transient send failures are retried with
exponential backoff until the attempt budget runs out.
"""
import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from appointments.models.booking import Appointment
from appointments.models.reminder import (
    DispatchStatus, ReminderDispatch, ReminderRegistration, ReminderSpec
)
from appointments.utils.exceptions import PermanentError, TransientError
from appointments.utils.timeutils import utc_now

logger = logging.getLogger(__name__)

CANCELLED_RETENTION = timedelta(days=1)


class ReminderScheduler:
    """Tracks and fires reminder dispatches"""

    def __init__(self, sender, max_attempts: int = 5, retry_base_seconds: int = 60,
                 clock: Callable[[], datetime] = utc_now,
                 action_url_builder: Optional[Callable[[Appointment], Optional[str]]] = None):
        self.sender = sender
        self.max_attempts = max_attempts
        self.retry_base = timedelta(seconds=retry_base_seconds)
        self.clock = clock
        self.action_url_builder = action_url_builder

        self._lock = threading.Lock()
        self._registrations: Dict[str, ReminderRegistration] = {}
        # held across a send so cancellation waits for in-flight dispatches
        self._appointment_locks: Dict[str, threading.Lock] = {}
        # cancelled appointment ids and when, so a late registration is refused
        self._cancelled: Dict[str, datetime] = {}

    @staticmethod
    def validate_spec(spec: ReminderSpec) -> ReminderSpec:
        return spec.validate()

    def _appointment_lock(self, appointment_id: str) -> threading.Lock:
        with self._lock:
            return self._appointment_locks.setdefault(appointment_id, threading.Lock())

    def _build_dispatches(self, registration: ReminderRegistration, now: datetime) -> None:
        appointment = registration.appointment
        registration.dispatches = []

        for offset in registration.spec.offsets:
            fire_at = appointment.start - timedelta(seconds=offset.lead_seconds)
            dispatch = ReminderDispatch(
                appointment_id=appointment.id,
                lead_seconds=offset.lead_seconds,
                include_actions=offset.include_actions,
                fire_at=fire_at,
                generation=registration.generation
            )
            if fire_at <= now:
                dispatch.status = DispatchStatus.ELAPSED
                logger.info(
                    f"⏭️ Reminder {offset.lead_seconds}s for {appointment.id} already elapsed, skipping"
                )
            registration.dispatches.append(dispatch)

    def on_appointment_confirmed(self, appointment: Appointment, spec: ReminderSpec,
                                 now: Optional[datetime] = None) -> List[ReminderDispatch]:
        """Register reminders for a confirmed appointment.

        Registering the same appointment again is a no-op unless its start
        changed, in which case pending reminders are replaced.
        """
        if not appointment.id:
            raise ValueError("Appointment must be committed before reminders are registered")

        spec = self.validate_spec(spec)
        now = now or self.clock()
        # snapshot, so a caller mutating its appointment still reads as a move
        appointment = replace(appointment)

        with self._appointment_lock(appointment.id):
            with self._lock:
                if appointment.id in self._cancelled:
                    logger.info(f"Appointment {appointment.id} was cancelled, not registering reminders")
                    return []

                registration = self._registrations.get(appointment.id)

                if registration is not None and registration.appointment.start == appointment.start:
                    return list(registration.dispatches)

                if registration is None:
                    registration = ReminderRegistration(appointment=appointment, spec=spec)
                    self._registrations[appointment.id] = registration
                else:
                    logger.info(f"🔁 Appointment {appointment.id} moved, replacing pending reminders")
                    self._invalidate(registration)
                    registration.appointment = appointment
                    registration.spec = spec

                self._build_dispatches(registration, now)
                pending = sum(1 for d in registration.dispatches if d.status is DispatchStatus.PENDING)

        logger.info(f"🔔 Registered {pending} pending reminders for appointment {appointment.id}")
        return list(registration.dispatches)

    def on_appointment_rescheduled(self, appointment: Appointment,
                                   now: Optional[datetime] = None) -> List[ReminderDispatch]:
        with self._lock:
            registration = self._registrations.get(appointment.id)
        spec = registration.spec if registration else ReminderSpec()
        return self.on_appointment_confirmed(appointment, spec, now)

    def _invalidate(self, registration: ReminderRegistration) -> int:
        registration.generation += 1
        cancelled = 0
        for dispatch in registration.dispatches:
            if dispatch.status is DispatchStatus.PENDING:
                dispatch.status = DispatchStatus.CANCELLED
                cancelled += 1
        return cancelled

    def on_appointment_cancelled(self, appointment_id: str) -> int:
        """Discard every unsent reminder; returns how many were cancelled"""
        # waits for a send in flight for this appointment
        with self._appointment_lock(appointment_id):
            with self._lock:
                self._cancelled[appointment_id] = self.clock()
                registration = self._registrations.get(appointment_id)
                if registration is None:
                    return 0
                cancelled = self._invalidate(registration)

        logger.info(f"🔕 Cancelled {cancelled} pending reminders for appointment {appointment_id}")
        return cancelled

    def dispatches(self, appointment_id: str) -> List[ReminderDispatch]:
        with self._lock:
            registration = self._registrations.get(appointment_id)
            return list(registration.dispatches) if registration else []

    def _payload(self, registration: ReminderRegistration, dispatch: ReminderDispatch) -> Dict[str, Any]:
        appointment = registration.appointment
        payload = {
            'appointment_id': appointment.id,
            'start': appointment.start.isoformat(),
            'duration': appointment.duration_minutes,
            'title': appointment.title,
            'attendee_name': appointment.attendee_name,
            'user_id': appointment.metadata.get('user_id'),
            'lead_seconds': dispatch.lead_seconds,
            'include_actions': dispatch.include_actions,
            'more_text': registration.spec.more_text,
        }
        if dispatch.include_actions and self.action_url_builder is not None:
            payload['cancel_url'] = self.action_url_builder(appointment)
        return payload

    def _send(self, registration: ReminderRegistration, dispatch: ReminderDispatch,
              now: datetime) -> bool:
        appointment = registration.appointment
        payload = self._payload(registration, dispatch)
        dispatch.attempts += 1

        try:
            self.sender.send(appointment.attendee_email, 'reminder', payload)
        except PermanentError as e:
            dispatch.status = DispatchStatus.FAILED
            dispatch.last_error = str(e)
            logger.error(f"❌ Reminder {dispatch.key} failed permanently: {e}")
            return False
        except TransientError as e:
            dispatch.last_error = str(e)
            if dispatch.attempts >= self.max_attempts:
                dispatch.status = DispatchStatus.FAILED
                logger.error(
                    f"❌ Reminder {dispatch.key} abandoned after {dispatch.attempts} attempts: {e}"
                )
            else:
                delay = self.retry_base * (2 ** (dispatch.attempts - 1))
                dispatch.next_attempt_at = now + delay
                logger.warning(
                    f"⚠️ Reminder {dispatch.key} attempt {dispatch.attempts} failed, "
                    f"retrying after {dispatch.next_attempt_at.isoformat()}: {e}"
                )
            return False

        dispatch.status = DispatchStatus.SENT
        dispatch.last_error = None
        logger.info(f"✅ Reminder {dispatch.lead_seconds}s sent for appointment {appointment.id}")
        return True

    def tick(self, now: Optional[datetime] = None) -> int:
        """Send every due reminder; returns the number sent"""
        now = now or self.clock()

        with self._lock:
            due = []
            for registration in self._registrations.values():
                started = registration.appointment.start <= now
                for dispatch in registration.dispatches:
                    if started and dispatch.status is DispatchStatus.PENDING:
                        # never remind about an appointment that already began
                        dispatch.status = DispatchStatus.ELAPSED
                    elif dispatch.is_due(now):
                        due.append((registration, dispatch))

        sent = 0
        for registration, dispatch in due:
            with self._appointment_lock(dispatch.appointment_id):
                with self._lock:
                    still_due = (
                        dispatch.is_due(now)
                        and dispatch.generation == registration.generation
                    )
                if not still_due:
                    continue
                if self._send(registration, dispatch, now):
                    sent += 1

        if due:
            logger.info(f"Reminder tick at {now.isoformat()}: {sent}/{len(due)} sent")
        self._prune(now)
        return sent

    def _prune(self, now: datetime) -> None:
        """Forget appointments that have started and have nothing left to send"""
        with self._lock:
            finished = [
                appointment_id
                for appointment_id, registration in self._registrations.items()
                if registration.appointment.start <= now
                and not any(d.status is DispatchStatus.PENDING for d in registration.dispatches)
            ]
            for appointment_id in finished:
                del self._registrations[appointment_id]
                self._appointment_locks.pop(appointment_id, None)

            forgotten = [
                appointment_id
                for appointment_id, cancelled_at in self._cancelled.items()
                if cancelled_at + CANCELLED_RETENTION <= now
            ]
            for appointment_id in forgotten:
                del self._cancelled[appointment_id]
