"""Shared test fixtures for the appointments booking service."""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Tuple

import pytest
import pytz

from appointments import create_app
from appointments.config import TestingConfig
from appointments.models.template import SlotDefinition, WeeklyTemplate
from appointments.services.calendar_backend import InMemoryCalendarBackend
from appointments.services.engine import build_engine

NEW_YORK = pytz.timezone("America/New_York")
USER = "alice"
PAGE = "p0"
CALENDAR = TestingConfig.CALENDAR_ID


def ny(year, month, day, hour=0, minute=0) -> datetime:
    """Aware New York wall-clock time."""
    return NEW_YORK.localize(datetime(year, month, day, hour, minute))


class FakeClock:
    """Settable clock handed to every engine component."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSender:
    """Notification sender that records sends and can fail on demand."""

    def __init__(self):
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []
        self.failures: List[Exception] = []

    def send(self, contact, template_kind, payload):
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append((contact, template_kind, payload))

    def of_kind(self, kind: str):
        return [s for s in self.sent if s[1] == kind]


@pytest.fixture
def clock() -> FakeClock:
    """Monday 2 June 2025, 06:00 in New York."""
    return FakeClock(ny(2025, 6, 2, 6, 0))


@pytest.fixture
def calendar() -> InMemoryCalendarBackend:
    return InMemoryCalendarBackend()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def weekly_template() -> WeeklyTemplate:
    """Monday 09:00 consult [15, 45] and Tuesday 10:00 checkup [30]."""
    return (
        WeeklyTemplate()
        .replace_day(0, [SlotDefinition(start=9 * 3600, duration=(15, 45), title="Consult")])
        .replace_day(1, [SlotDefinition(start=10 * 3600, duration=(30, 30), title="Checkup")])
    )


@pytest.fixture
def engine(calendar, sender, clock, weekly_template):
    """Booking engine with the sample template installed for alice/p0."""
    eng = build_engine(TestingConfig, calendar_backend=calendar, sender=sender, clock=clock)
    eng.settings.templates.replace(USER, PAGE, weekly_template)
    return eng


@pytest.fixture
def booking(engine):
    return engine.booking


@pytest.fixture
def scheduler(engine):
    return engine.scheduler


@pytest.fixture
def visitor() -> Dict[str, str]:
    return {"name": "Bob Visitor", "email": "bob@example.com"}


@pytest.fixture
def app(engine):
    return create_app(TestingConfig, engine=engine)


@pytest.fixture
def client(app):
    return app.test_client()
