from unittest.mock import patch

from fastapi.testclient import TestClient

from devevent.config import Settings
from devevent.main import create_app

from conftest import create_event, sqlite_url


def test_booking_is_stored_and_confirmation_queued(client):
    event = create_event(client, title="Booked Talk").json()["event"]

    with patch("devevent.routes.bookings.send_email", return_value=True) as send:
        response = client.post("/bookings", json={"eventId": event["id"], "email": " Ada@Example.com "})

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Booking created successfully"
    assert body["booking"]["email"] == "ada@example.com"
    assert body["booking"]["event_id"] == event["id"]

    send.assert_called_once()
    to_email, subject, html, text = send.call_args.args
    assert to_email == "ada@example.com"
    assert "Booked Talk" in subject
    assert "/events/booked-talk" in text

    count = client.get(f"/events/id/{event['id']}/bookings").json()
    assert count == {"message": "Bookings counted successfully", "count": 1}


def test_duplicate_booking_conflicts(client):
    event = create_event(client).json()["event"]
    payload = {"eventId": event["id"], "email": "grace@example.com"}

    with patch("devevent.routes.bookings.send_email", return_value=True) as send:
        assert client.post("/bookings", json=payload).status_code == 201
        again = client.post("/bookings", json=payload)

    assert again.status_code == 409
    assert again.json()["code"] == "ALREADY_BOOKED"
    assert send.call_count == 1


def test_booking_input_errors(client):
    event = create_event(client).json()["event"]

    bad_email = client.post("/bookings", json={"eventId": event["id"], "email": "not-an-email"})
    bad_id = client.post("/bookings", json={"eventId": "123", "email": "a@example.com"})
    missing = client.post("/bookings", json={"eventId": "b" * 32, "email": "a@example.com"})

    assert bad_email.status_code == 400
    assert bad_email.json()["code"] == "INVALID_INPUT"
    assert bad_id.status_code == 400
    assert bad_id.json()["code"] == "INVALID_ID"
    assert missing.status_code == 404


def test_deleting_event_removes_its_bookings(client):
    event = create_event(client).json()["event"]
    with patch("devevent.routes.bookings.send_email", return_value=True):
        client.post("/bookings", json={"eventId": event["id"], "email": "a@example.com"})

    assert client.delete(f"/events/{event['id']}").status_code == 200
    assert client.get(f"/events/id/{event['id']}/bookings").status_code == 404


def test_booking_rate_limit(tmp_path, storage):
    settings = Settings(database_url=sqlite_url(tmp_path), booking_rate_limit=1, booking_rate_window=60)
    app = create_app(settings, image_storage=storage)

    with TestClient(app) as client, patch("devevent.routes.bookings.send_email", return_value=True):
        first = create_event(client, title="One").json()["event"]
        second = create_event(client, title="Two").json()["event"]

        assert client.post("/bookings", json={"eventId": first["id"], "email": "a@example.com"}).status_code == 201
        limited = client.post("/bookings", json={"eventId": second["id"], "email": "a@example.com"})

    assert limited.status_code == 429
    assert limited.json()["code"] == "RATE_LIMITED"
