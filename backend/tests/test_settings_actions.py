"""Tests for the organizer settings actions."""

import json
import threading

import pytest

from conftest import PAGE, USER


@pytest.fixture
def actions(engine):
    return engine.actions


def week(**days):
    data = [[] for _ in range(7)]
    for index, slots in days.items():
        data[int(index.lstrip("d"))] = slots
    return data


class TestReadActions:
    """Read actions return the current settings as JSON bodies."""

    def test_get_uci_has_organization_email(self, actions):
        status, body = actions.dispatch(USER, "get_uci")
        assert status == 200
        assert body["email"] == "organizer@example.com"

    def test_get_cls_uses_template_mode(self, actions):
        status, body = actions.dispatch(USER, "get_cls", PAGE)
        assert status == 200
        assert body["destination_calendar_id"] == "test-calendar"
        assert body["time_source_mode"] == "template"
        assert body["timezone"] == "America/New_York"

    def test_get_eml_defaults(self, actions):
        status, body = actions.dispatch(USER, "get_eml")
        assert status == 200
        assert body["skip_email_validation"] is True
        assert body["attendee_cancel"] is True

    def test_get_t_data_returns_installed_template(self, actions):
        status, body = actions.dispatch(USER, "get_t_data", PAGE)
        assert status == 200
        assert body[0] == [{"start": 32400, "dur": [15, 45], "title": "Consult"}]
        assert body[1] == [{"start": 36000, "dur": [30, 30], "title": "Checkup"}]

    def test_unknown_action(self, actions):
        status, body = actions.dispatch(USER, "drop_everything")
        assert status == 400
        assert "Unknown action" in body["error"]


class TestWriteActions:
    """Write actions validate at the boundary."""

    def test_set_t_data_replaces_week(self, actions, engine):
        data = week(d0=[{"start": 28800, "dur": [15, 45], "title": "Morning"}])

        status, _ = actions.dispatch(USER, "set_t_data", PAGE, json.dumps(data))

        assert status == 200
        assert actions.dispatch(USER, "get_t_data", PAGE) == (200, data)
        assert engine.settings.templates.get(USER, PAGE).for_weekday(0)[0].title == "Morning"

    def test_set_t_data_single_day(self, actions):
        payload = {"day": 4, "slots": [{"start": 50400, "dur": [60], "title": "Friday review"}]}

        status, body = actions.dispatch(USER, "set_t_data", PAGE, json.dumps(payload))

        assert status == 200
        assert body[4] == [{"start": 50400, "dur": [60, 60], "title": "Friday review"}]
        assert body[0][0]["title"] == "Consult"

    def test_concurrent_single_day_updates_all_persist(self, actions, engine):
        """Updates to different days never overwrite each other."""
        barrier = threading.Barrier(7)
        results = []

        def set_day(weekday):
            payload = {"day": weekday, "slots": [{"start": 3600 * (8 + weekday), "dur": [30], "title": f"Day {weekday}"}]}
            barrier.wait()
            results.append(actions.dispatch(USER, "set_t_data", PAGE, json.dumps(payload))[0])

        threads = [threading.Thread(target=set_day, args=(weekday,)) for weekday in range(7)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == [200] * 7
        template = engine.settings.templates.get(USER, PAGE)
        assert [[d.title for d in template.for_weekday(w)] for w in range(7)] == [[f"Day {w}"] for w in range(7)]

    def test_single_day_slots_must_be_a_list(self, actions):
        status, body = actions.dispatch(USER, "set_t_data", PAGE, json.dumps({"day": 1, "slots": {}}))
        assert status == 400
        assert body == {"error": "Template day slots must be a list"}

    @pytest.mark.parametrize(
        "payload",
        [
            week(d0=[{"start": 28800, "dur": [0], "title": "Nothing"}]),
            week(d0=[{"start": 90000, "dur": [30], "title": "Tomorrow"}]),
            [[]] * 3,
            {"day": 9, "slots": []},
        ],
    )
    def test_set_t_data_rejects_invalid(self, actions, payload):
        status, body = actions.dispatch(USER, "set_t_data", PAGE, json.dumps(payload))
        assert status == 400
        assert "error" in body
        assert actions.dispatch(USER, "get_t_data", PAGE)[1][0][0]["title"] == "Consult"

    def test_invalid_json(self, actions):
        status, body = actions.dispatch(USER, "set_t_data", PAGE, "{not json")
        assert status == 400
        assert body == {"error": "Invalid JSON data"}

    def test_set_requires_data(self, actions):
        assert actions.dispatch(USER, "set_cls", PAGE)[0] == 400

    def test_set_reminder_round_trip(self, actions, engine):
        payload = {"data": [{"seconds": "3600", "actions": True}], "moreText": "Park in the back"}

        status, _ = actions.dispatch(USER, "set_reminder", None, json.dumps(payload))

        assert status == 200
        assert actions.dispatch(USER, "get_reminder") == (200, payload)
        assert engine.settings.get_reminder_spec(USER).offsets[0].lead_seconds == 3600

    def test_set_reminder_rejects_unknown_offset(self, actions):
        payload = {"data": [{"seconds": "1234", "actions": True}]}
        status, body = actions.dispatch(USER, "set_reminder", None, json.dumps(payload))
        assert status == 400
        assert "1234" in body["error"]

    def test_set_cls_partial_update(self, actions):
        status, body = actions.dispatch(USER, "set_cls", PAGE, json.dumps({"prep_time_minutes": 120}))
        assert status == 200
        assert body["prep_time_minutes"] == 120
        assert body["destination_calendar_id"] == "test-calendar"

    def test_set_eml_and_uci(self, actions):
        assert actions.dispatch(USER, "set_eml", None, json.dumps({"attendee_cancel": False}))[1][
            "attendee_cancel"
        ] is False

        status, body = actions.dispatch(USER, "set_uci", None, json.dumps({"name": "Smile Clinic"}))
        assert status == 200
        assert body["name"] == "Smile Clinic"
        assert body["email"] == "organizer@example.com"

        status, _ = actions.dispatch(USER, "set_uci", None, json.dumps({"email": "nope"}))
        assert status == 400

    def test_bad_page_id(self, actions):
        assert actions.dispatch(USER, "get_cls", "../p0")[0] == 400
