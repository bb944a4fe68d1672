# engine.py
"""
Wires the booking engine components together from a Config class
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from appointments.models.booking import Appointment
from appointments.services.booking_service import BookingStateMachine
from appointments.services.calendar_backend import CalendarBackend, create_calendar_backend
from appointments.services.email_service import EmailService
from appointments.services.reminder_scheduler import ReminderScheduler
from appointments.services.reminder_worker import ReminderWorker
from appointments.services.settings_actions import SettingsActions
from appointments.services.settings_store import SettingsStore
from appointments.services.slot_generator import SlotGenerator
from appointments.utils.encoding import VisitorBlobSigner
from appointments.utils.timeutils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    config: type
    settings: SettingsStore
    calendar: CalendarBackend
    sender: object
    scheduler: ReminderScheduler
    slots: SlotGenerator
    booking: BookingStateMachine
    actions: SettingsActions
    signer: VisitorBlobSigner
    worker: ReminderWorker


def cancel_url_builder(base_url: str) -> Callable[[Appointment], Optional[str]]:
    """Attendee cancel link for reminder actions"""
    base_url = base_url.rstrip('/')

    def build(appointment: Appointment) -> Optional[str]:
        meta = appointment.metadata
        if not all(meta.get(k) for k in ('user_id', 'page_id', 'token')):
            return None
        return f"{base_url}/api/pub/{meta['user_id']}/{meta['page_id']}/{meta['token']}/cancel"

    return build


def build_engine(config, calendar_backend: Optional[CalendarBackend] = None, sender=None,
                 clock: Callable[[], datetime] = utc_now) -> Engine:
    """Build every component; tests pass their own backend, sender and clock"""
    settings = SettingsStore(config)
    calendar = calendar_backend or create_calendar_backend(config)
    if sender is None:
        sender = EmailService(config, organizer_lookup=settings.get_organizer)

    scheduler = ReminderScheduler(
        sender,
        max_attempts=config.REMINDER_MAX_ATTEMPTS,
        retry_base_seconds=config.REMINDER_RETRY_BASE_SECONDS,
        clock=clock,
        action_url_builder=cancel_url_builder(config.PUBLIC_BASE_URL)
    )
    slots = SlotGenerator(settings, calendar)
    booking = BookingStateMachine(
        settings, slots, calendar, scheduler,
        reservation_ttl=config.RESERVATION_TTL,
        hold_reservations=config.HOLD_RESERVED_SLOTS,
        clock=clock,
        notifier=sender
    )

    engine = Engine(
        config=config,
        settings=settings,
        calendar=calendar,
        sender=sender,
        scheduler=scheduler,
        slots=slots,
        booking=booking,
        actions=SettingsActions(settings, scheduler),
        signer=VisitorBlobSigner(config.SECRET_KEY, max_age=int(config.RESERVATION_TTL.total_seconds())),
        worker=ReminderWorker(booking, scheduler, config.REMINDER_TICK_SECONDS)
    )
    logger.info(f"Booking engine ready (calendar backend: {type(calendar).__name__})")
    return engine
