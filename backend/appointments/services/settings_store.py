# settings_store.py
"""
In-process store for organizer settings: weekly templates and calendar link
settings per booking page, plus reminder spec, organizer info and email
settings per organizer.
"""
import logging
import threading
from typing import Dict, List, Tuple

from appointments.models.reminder import ReminderSpec
from appointments.models.settings import CalendarLinkSettings, EmailSettings, OrganizerInfo
from appointments.models.template import SlotDefinition, WeeklyTemplate

logger = logging.getLogger(__name__)

PageKey = Tuple[str, str]

# page used when a settings call names none
DEFAULT_PAGE_ID = 'p0'


class TemplateStore:
    """Weekly availability templates keyed by (user_id, page_id)"""

    def __init__(self):
        self._lock = threading.Lock()
        self._templates: Dict[PageKey, WeeklyTemplate] = {}

    def get(self, user_id: str, page_id: str) -> WeeklyTemplate:
        with self._lock:
            return self._templates.get((user_id, page_id), WeeklyTemplate())

    def replace(self, user_id: str, page_id: str, template: WeeklyTemplate) -> None:
        with self._lock:
            self._templates[(user_id, page_id)] = template
        count = sum(len(day) for day in template.days)
        logger.info(f"📅 Template for {user_id}/{page_id} replaced ({count} slot definitions)")

    def replace_day(self, user_id: str, page_id: str, weekday: int,
                    definitions: List[SlotDefinition]) -> WeeklyTemplate:
        with self._lock:
            current = self._templates.get((user_id, page_id), WeeklyTemplate())
            updated = current.replace_day(weekday, definitions)
            self._templates[(user_id, page_id)] = updated
        logger.info(f"📅 Template day {weekday} for {user_id}/{page_id} replaced")
        return updated


class SettingsStore:
    """Organizer and page settings, seeded with defaults from Config"""

    def __init__(self, config):
        self.config = config
        self.templates = TemplateStore()
        self._lock = threading.Lock()
        self._cls: Dict[PageKey, CalendarLinkSettings] = {}
        self._reminders: Dict[str, ReminderSpec] = {}
        self._organizers: Dict[str, OrganizerInfo] = {}
        self._email: Dict[str, EmailSettings] = {}

    def default_cls(self) -> CalendarLinkSettings:
        return CalendarLinkSettings(
            destination_calendar_id=self.config.CALENDAR_ID,
            prep_time_minutes=self.config.PREP_TIME_MINUTES,
            timezone=self.config.TIMEZONE
        )

    def get_cls(self, user_id: str, page_id: str) -> CalendarLinkSettings:
        with self._lock:
            return self._cls.get((user_id, page_id)) or self.default_cls()

    def set_cls(self, user_id: str, page_id: str, cls: CalendarLinkSettings) -> None:
        with self._lock:
            self._cls[(user_id, page_id)] = cls
        logger.info(f"⚙️ Calendar link settings for {user_id}/{page_id} updated")

    def get_reminder_spec(self, user_id: str) -> ReminderSpec:
        with self._lock:
            return self._reminders.get(user_id, ReminderSpec())

    def set_reminder_spec(self, user_id: str, spec: ReminderSpec) -> None:
        with self._lock:
            self._reminders[user_id] = spec
        logger.info(f"🔔 Reminder settings for {user_id} updated ({len(spec.offsets)} reminders)")

    def get_organizer(self, user_id: str) -> OrganizerInfo:
        with self._lock:
            info = self._organizers.get(user_id)
        if info is not None:
            return info
        return OrganizerInfo(
            name=self.config.BUSINESS_NAME,
            email=self.config.BUSINESS_EMAIL,
            address=self.config.BUSINESS_ADDRESS,
            phone=self.config.BUSINESS_PHONE
        )

    def set_organizer(self, user_id: str, info: OrganizerInfo) -> None:
        with self._lock:
            self._organizers[user_id] = info

    def get_email_settings(self, user_id: str) -> EmailSettings:
        with self._lock:
            return self._email.get(user_id, EmailSettings())

    def set_email_settings(self, user_id: str, settings: EmailSettings) -> None:
        with self._lock:
            self._email[user_id] = settings
