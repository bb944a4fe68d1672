"""Tests for the HTTP layer through the Flask test client."""

import json
from urllib.parse import parse_qs, urlsplit

import pytest

from appointments.models.settings import EmailSettings
from appointments.utils.encoding import decode_slot_listing
from appointments.utils.exceptions import PermanentError, TransientError

from conftest import CALENDAR, PAGE, USER, ny

MONDAY_NINE = "2025-06-02T09:00:00-04:00"


def post_form(client, **overrides):
    form = {
        "adatetime": MONDAY_NINE,
        "appt_dur": "30",
        "name": "Bob Visitor",
        "email": "bob@example.com",
    }
    form.update(overrides)
    return client.post(f"/api/pub/{USER}/{PAGE}/form", data=form)


def confirmation_link(response) -> str:
    """Path and query of the redirect target, usable with the test client."""
    assert response.status_code == 303
    location = urlsplit(response.headers["Location"])
    return f"{location.path}?{location.query}"


def token_of(link: str) -> str:
    return urlsplit(link).path.rstrip("/").split("/")[-2]


@pytest.fixture
def link(client) -> str:
    return confirmation_link(post_form(client))


class TestHealth:
    """Tests for the health endpoints."""

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"

    def test_detailed_health(self, client):
        body = client.get("/api/health/detailed").get_json()
        assert body["dependencies"]["calendar_backend"] == "InMemoryCalendarBackend"
        assert body["dependencies"]["reminder_worker"] == "stopped"
        assert body["config"]["reservation_ttl_minutes"] == 30

    def test_unknown_endpoint_is_json(self, client):
        response = client.get("/api/nowhere")
        assert response.status_code == 404
        assert response.get_json() == {"error": "Endpoint not found"}


class TestSlotListing:
    """Tests for GET .../slots."""

    def test_lists_template_slots(self, client):
        response = client.get(f"/api/pub/{USER}/{PAGE}/slots?days=2")

        assert response.status_code == 200
        assert response.mimetype == "text/plain"
        slots = decode_slot_listing(response.get_data(as_text=True))
        assert [(s.title, s.start) for s in slots] == [
            ("Consult", ny(2025, 6, 2, 9)),
            ("Checkup", ny(2025, 6, 3, 10)),
        ]

    def test_busy_slot_is_left_out(self, client, calendar):
        calendar.add_busy_range(CALENDAR, ny(2025, 6, 2, 9), ny(2025, 6, 2, 9, 15))

        slots = decode_slot_listing(client.get(f"/api/pub/{USER}/{PAGE}/slots?days=2").get_data(as_text=True))

        assert [s.title for s in slots] == ["Checkup"]

    @pytest.mark.parametrize("days", ["0", "8", "-1"])
    def test_days_out_of_range(self, client, days):
        assert client.get(f"/api/pub/{USER}/{PAGE}/slots?days={days}").status_code == 400

    def test_bad_page_id(self, client):
        assert client.get(f"/api/pub/{USER}/bad.page/slots").status_code == 400


class TestBookingFlow:
    """Tests for the form post, confirmation link and attendee cancellation."""

    def test_form_redirects_to_confirmation(self, client, booking):
        response = post_form(client)

        link = confirmation_link(response)
        assert f"/api/pub/{USER}/{PAGE}/" in link
        assert link.split("?")[0].endswith("/cncf")
        assert "d" in parse_qs(urlsplit(link).query)
        assert booking.get_attempt(token_of(link)).duration_minutes == 30

    def test_confirm_commits_once(self, client, link, calendar, sender):
        response = client.get(link)

        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["visitor"] == {"name": "Bob Visitor", "email": "bob@example.com"}
        assert body["appointment"]["duration"] == 30
        assert calendar.list_appointments(CALENDAR)
        assert len(sender.of_kind("confirmation")) == 1

        assert client.get(link).status_code == 409

    def test_confirm_by_post(self, client, link):
        assert client.post(link).status_code == 200

    def test_bad_input_redirects_with_status(self, client):
        response = post_form(client, email="not-an-email")
        assert response.status_code == 303
        assert response.headers["Location"].endswith("/form?sts=1")

    def test_taken_slot_redirects_with_status(self, client, calendar):
        calendar.add_busy_range(CALENDAR, ny(2025, 6, 2, 9), ny(2025, 6, 2, 10))

        response = post_form(client)

        assert response.status_code == 303
        assert response.headers["Location"].endswith("/form?sts=2")

    def test_tampered_blob_rejected(self, client, link):
        assert client.get(link + "x").status_code == 400

    def test_link_for_other_page_is_unknown(self, client, link):
        token = token_of(link)
        query = urlsplit(link).query
        assert client.get(f"/api/pub/{USER}/p1/{token}/cncf?{query}").status_code == 404

    def test_expired_reservation(self, client, link, clock):
        clock.advance(minutes=31)
        assert client.get(link).status_code == 410

    def test_attendee_cancel(self, client, link, calendar, sender):
        client.get(link)
        token = token_of(link)

        response = client.post(f"/api/pub/{USER}/{PAGE}/{token}/cancel")

        assert response.status_code == 200
        assert response.get_json()["booking"]["state"] == "cancelled"
        assert calendar.list_appointments(CALENDAR) == []
        assert len(sender.of_kind("cancellation")) == 1
        assert client.post(f"/api/pub/{USER}/{PAGE}/{token}/cancel").status_code == 409

    def test_attendee_cancel_disabled(self, client, link, engine):
        engine.settings.set_email_settings(USER, EmailSettings(attendee_cancel=False))
        client.get(link)

        response = client.post(f"/api/pub/{USER}/{PAGE}/{token_of(link)}/cancel")

        assert response.status_code == 403

    def test_cancel_unknown_token(self, client):
        assert client.post(f"/api/pub/{USER}/{PAGE}/nope/cancel").status_code == 404


class TestSettingsRoutes:
    """Tests for the organizer endpoints."""

    def test_state_action_form_encoded(self, client):
        response = client.post(f"/api/state/{USER}", data={"a": "get_cls", "p": PAGE})

        assert response.status_code == 200
        assert response.get_json()["destination_calendar_id"] == CALENDAR

    def test_state_action_json_body(self, client):
        response = client.post(
            f"/api/state/{USER}",
            json={"a": "set_eml", "d": {"attendee_cancel": False}},
        )

        assert response.status_code == 200
        assert response.get_json()["attendee_cancel"] is False

    def test_state_action_errors(self, client):
        assert client.post(f"/api/state/{USER}", data={"a": "bogus"}).status_code == 400
        response = client.post(f"/api/state/{USER}", data={"a": "set_cls", "p": PAGE, "d": "{"})
        assert response.get_json() == {"error": "Invalid JSON data"}

    def test_organizer_cancel(self, client, link, calendar):
        appointment = client.get(link).get_json()["appointment"]

        response = client.delete(f"/api/state/{USER}/appointments/{appointment['id']}")

        assert response.status_code == 200
        assert calendar.list_appointments(CALENDAR) == []
        assert client.delete(f"/api/state/{USER}/appointments/{appointment['id']}").status_code == 409

    def test_organizer_cancel_other_user(self, client, link):
        appointment = client.get(link).get_json()["appointment"]
        assert client.delete(f"/api/state/mallory/appointments/{appointment['id']}").status_code == 404

    def test_organizer_cannot_cancel_by_token(self, client, link):
        client.get(link)
        assert client.delete(f"/api/state/{USER}/appointments/{token_of(link)}").status_code == 404

    def test_set_template_then_list(self, client):
        week = [[] for _ in range(7)]
        week[0] = [{"start": 14 * 3600, "dur": [30], "title": "Afternoon"}]

        assert client.post(
            f"/api/state/{USER}", data={"a": "set_t_data", "p": PAGE, "d": json.dumps(week)}
        ).status_code == 200

        slots = decode_slot_listing(client.get(f"/api/pub/{USER}/{PAGE}/slots?days=1").get_data(as_text=True))
        assert [(s.title, s.start) for s in slots] == [("Afternoon", ny(2025, 6, 2, 14))]


class TestFormPage:
    """Tests for GET .../form, where the form post redirects back to."""

    def test_bad_input_redirect_lands_on_page(self, client):
        location = post_form(client, email="not-an-email").headers["Location"]

        response = client.get(location)

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == 1
        assert body["slots_url"] == f"/api/pub/{USER}/{PAGE}/slots"

    def test_taken_slot_redirect_lands_on_page(self, client, calendar):
        calendar.add_busy_range(CALENDAR, ny(2025, 6, 2, 9), ny(2025, 6, 2, 10))

        response = client.get(post_form(client).headers["Location"])

        assert response.status_code == 200
        assert response.get_json()["status"] == 2

    def test_unknown_status_falls_back(self, client):
        assert client.get(f"/api/pub/{USER}/{PAGE}/form?sts=99").get_json()["status"] == 0

    def test_bad_page_id(self, client):
        assert client.get(f"/api/pub/{USER}/bad.page/form").status_code == 400


class TestEmailVerification:
    """With email validation on, the confirmation link only goes out by email."""

    @pytest.fixture(autouse=True)
    def validate_emails(self, engine):
        engine.settings.set_email_settings(USER, EmailSettings(skip_email_validation=False))

    def test_form_emails_link_instead_of_redirecting(self, client, sender, booking):
        response = post_form(client)

        assert response.status_code == 303
        assert response.headers["Location"].endswith("/form?sts=3")
        assert client.get(response.headers["Location"]).get_json()["status"] == 3

        [(contact, _, payload)] = sender.of_kind("verification")
        assert contact == "bob@example.com"
        assert payload["confirm_url"].startswith("http://localhost:5000/api/pub/")
        confirm_url = urlsplit(payload["confirm_url"])
        link = f"{confirm_url.path}?{confirm_url.query}"
        assert booking.get_attempt(token_of(link)).state.value == "reserved"

    def test_emailed_link_confirms(self, client, sender, calendar):
        post_form(client)
        confirm_url = urlsplit(sender.of_kind("verification")[0][2]["confirm_url"])

        response = client.get(f"{confirm_url.path}?{confirm_url.query}")

        assert response.status_code == 200
        assert calendar.list_appointments(CALENDAR)

    def test_mail_outage_releases_slot(self, client, sender):
        sender.failures.append(TransientError("smtp timeout"))

        assert post_form(client).status_code == 503

        slots = decode_slot_listing(client.get(f"/api/pub/{USER}/{PAGE}/slots?days=1").get_data(as_text=True))
        assert [s.start for s in slots] == [ny(2025, 6, 2, 9)]

    def test_rejected_mail_is_bad_gateway(self, client, sender):
        sender.failures.append(PermanentError("recipient refused"))
        assert post_form(client).status_code == 502


class TestCancelFailures:
    """Calendar failures while cancelling leave the booking in place."""

    def test_organizer_cancel_permanent_failure(self, client, link, calendar, monkeypatch):
        appointment = client.get(link).get_json()["appointment"]

        def delete_forbidden(calendar_id, appointment_id):
            raise PermanentError("calendar access revoked")

        monkeypatch.setattr(calendar, "delete_appointment", delete_forbidden)

        response = client.delete(f"/api/state/{USER}/appointments/{appointment['id']}")

        assert response.status_code == 502
        assert calendar.get_appointment(CALENDAR, appointment["id"]) is not None
        assert client.get(link).status_code == 409


class TestCalendarListing:
    """Tests for GET /api/state/<user>/calendars."""

    def test_lists_calendars(self, client, calendar):
        calendar.add_calendar(CALENDAR, "Front desk", "#9fe1e7")

        response = client.get(f"/api/state/{USER}/calendars")

        assert response.status_code == 200
        assert response.mimetype == "text/plain"
        records = [r.split(chr(30)) for r in response.get_data(as_text=True).split(chr(31))]
        assert [(r[0], r[2]) for r in records] == [("Front desk", CALENDAR)]

    def test_calendar_outage(self, client, calendar, monkeypatch):
        def list_down():
            raise TransientError("calendar timed out")

        monkeypatch.setattr(calendar, "list_calendars", list_down)
        assert client.get(f"/api/state/{USER}/calendars").status_code == 503

    def test_bad_user_id(self, client):
        assert client.get("/api/state/bad.user/calendars").status_code == 400
