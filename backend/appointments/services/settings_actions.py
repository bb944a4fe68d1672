# settings_actions.py
"""
Named JSON actions behind the organizer settings endpoint.

Each action takes the organizer id, an optional page id (`p`) and an
optional JSON payload (`d`), and returns `(status_code, body)`.
"""
import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from appointments.models.reminder import ReminderSpec
from appointments.models.settings import OrganizerInfo
from appointments.models.template import SlotDefinition, WeeklyTemplate
from appointments.services.settings_store import DEFAULT_PAGE_ID
from appointments.utils.exceptions import ConfigError, ValidationError
from appointments.utils.validators import InputValidator

logger = logging.getLogger(__name__)

ActionResult = Tuple[int, Any]

UCI_FIELDS = ('name', 'email', 'address', 'phone')


def _error(message: str, status: int = 400) -> ActionResult:
    return status, {'error': message}


class SettingsActions:
    """Dispatches organizer settings actions onto the settings store"""

    def __init__(self, settings_store, reminder_scheduler):
        self.store = settings_store
        self.scheduler = reminder_scheduler

        self._actions: Dict[str, Callable[[str, str, Any], ActionResult]] = {
            'get_uci': self.get_uci,
            'set_uci': self.set_uci,
            'get_cls': self.get_cls,
            'set_cls': self.set_cls,
            'get_eml': self.get_eml,
            'set_eml': self.set_eml,
            'get_t_data': self.get_t_data,
            'set_t_data': self.set_t_data,
            'get_reminder': self.get_reminder,
            'set_reminder': self.set_reminder,
        }

    def dispatch(self, user_id: str, action: str, page_id: Optional[str] = None,
                 data_json: Optional[str] = None) -> ActionResult:
        handler = self._actions.get(action)
        if handler is None:
            logger.warning(f"Unknown settings action '{action}' for {user_id}")
            return _error(f"Unknown action: {action}")

        try:
            page_id = InputValidator.validate_identifier(page_id, 'Page id') if page_id else DEFAULT_PAGE_ID
            data = json.loads(data_json) if data_json else None
        except ValidationError as e:
            return _error(str(e))
        except ValueError:
            logger.warning(f"Invalid JSON payload for '{action}' from {user_id}")
            return _error("Invalid JSON data")

        if action.startswith('set_') and data is None:
            return _error("Missing data")

        try:
            result = handler(user_id, page_id, data)
        except (ConfigError, ValidationError) as e:
            logger.warning(f"Rejected '{action}' for {user_id}/{page_id}: {e}")
            return _error(str(e))

        logger.debug(f"Settings action '{action}' for {user_id}/{page_id} -> {result[0]}")
        return result

    # -- organizer contact info -------------------------------------------

    def get_uci(self, user_id, page_id, data) -> ActionResult:
        return 200, self.store.get_organizer(user_id).to_dict()

    def set_uci(self, user_id, page_id, data) -> ActionResult:
        if not isinstance(data, dict):
            raise ConfigError("Contact info must be an object")
        unknown = set(data) - set(UCI_FIELDS)
        if unknown:
            raise ConfigError(f"Unknown contact info fields: {sorted(unknown)}")

        current = self.store.get_organizer(user_id).to_dict()
        for key, value in data.items():
            if not isinstance(value, str):
                raise ConfigError(f"Contact info '{key}' must be a string")
            current[key] = value.strip()

        if current['email']:
            current['email'] = InputValidator.validate_email(current['email'])

        info = OrganizerInfo(**current)
        self.store.set_organizer(user_id, info)
        return 200, info.to_dict()

    # -- calendar link settings -------------------------------------------

    def get_cls(self, user_id, page_id, data) -> ActionResult:
        return 200, self.store.get_cls(user_id, page_id).to_dict()

    def set_cls(self, user_id, page_id, data) -> ActionResult:
        cls = self.store.get_cls(user_id, page_id).merged(data)
        self.store.set_cls(user_id, page_id, cls)
        return 200, cls.to_dict()

    # -- email settings ---------------------------------------------------

    def get_eml(self, user_id, page_id, data) -> ActionResult:
        return 200, self.store.get_email_settings(user_id).to_dict()

    def set_eml(self, user_id, page_id, data) -> ActionResult:
        settings = self.store.get_email_settings(user_id).merged(data)
        self.store.set_email_settings(user_id, settings)
        return 200, settings.to_dict()

    # -- weekly template --------------------------------------------------

    def get_t_data(self, user_id, page_id, data) -> ActionResult:
        return 200, self.store.templates.get(user_id, page_id).to_json()

    def set_t_data(self, user_id, page_id, data) -> ActionResult:
        """Replace the whole week, or one day with {"day": n, "slots": [...]}"""
        if isinstance(data, dict):
            weekday = data.get('day')
            if isinstance(weekday, bool) or not isinstance(weekday, int):
                raise ConfigError("Template day must be a weekday number")
            slots = data.get('slots', [])
            if not isinstance(slots, list):
                raise ConfigError("Template day slots must be a list")
            definitions = [SlotDefinition.from_dict(item) for item in slots]
            # read-modify-write happens under the store lock
            template = self.store.templates.replace_day(user_id, page_id, weekday, definitions)
            return 200, template.to_json()

        template = WeeklyTemplate.from_json(data)
        self.store.templates.replace(user_id, page_id, template)
        return 200, template.to_json()

    # -- reminders --------------------------------------------------------

    def get_reminder(self, user_id, page_id, data) -> ActionResult:
        return 200, self.store.get_reminder_spec(user_id).to_json()

    def set_reminder(self, user_id, page_id, data) -> ActionResult:
        spec = self.scheduler.validate_spec(ReminderSpec.from_json(data))
        self.store.set_reminder_spec(user_id, spec)
        return 200, spec.to_json()
