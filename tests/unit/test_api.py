"""
Unit tests for the HTTP API.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp.test_utils import TestClient, TestServer

from api import create_app
from db.realtime import RealtimeFeed, Subscription
from models.appointment import Appointment
from models.events import ChangeType, EventFilter
from models.patient import Patient
from models.recurrence import RecurrencePattern, RecurrenceType, RecurringSeries
from utils.exceptions import DatabaseError

HEADERS = {"X-User-Id": "user-1"}

APPOINTMENT = {
    "title": "Adjustment",
    "patient_id": "patient-1",
    "provider_id": "provider-1",
    "start_time": "2024-01-01T09:00:00Z",
    "end_time": "2024-01-01T09:30:00Z",
}


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def feed():
    return RealtimeFeed(client=MagicMock())


@pytest.fixture
def app(mock_db, feed):
    return create_app(db=mock_db, feed=feed)


class TestHealthAndAuth:
    """Health endpoint, session header and bearer token."""

    @pytest.mark.asyncio
    async def test_health_check(self, app):
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/health")
            data = await resp.json()

        assert resp.status == 200
        assert data["status"] == "ok"
        assert data["service"] == "practice-scheduling"
        assert resp.headers["X-Frame-Options"] == "DENY"

    @pytest.mark.asyncio
    async def test_missing_user_header(self, app):
        async with TestClient(TestServer(app)) as client:
            resp = await client.post(
                "/series", json={"appointment": APPOINTMENT, "pattern": {"type": "daily"}}
            )
            data = await resp.json()

        assert resp.status == 401
        assert data["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_token_required_when_configured(self, app):
        with patch("api.settings.api_token", "secret"):
            async with TestClient(TestServer(app)) as client:
                denied = await client.post("/appointments/check", json={}, headers=HEADERS)
                health = await client.get("/health")
                allowed = await client.post(
                    "/appointments/check",
                    json={
                        "start_time": "2024-01-01T10:00:00Z",
                        "end_time": "2024-01-01T11:00:00Z",
                    },
                    headers={**HEADERS, "Authorization": "Bearer secret"},
                )

        assert denied.status == 401
        assert health.status == 200
        assert allowed.status == 200


class TestSeriesRoutes:
    """Recurring series endpoints."""

    @pytest.mark.asyncio
    async def test_create_series(self, app, mock_db):
        body = {
            "appointment": APPOINTMENT,
            "pattern": {"type": "weekly", "days_of_week": [1, 3]},
            "generate_count": 4,
        }

        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/series", json=body, headers=HEADERS)
            data = await resp.json()

        assert resp.status == 201
        assert data["series"]["id"] == "series-1"
        assert len(data["accepted"]) == 4
        assert data["rejected"] == []

    @pytest.mark.asyncio
    async def test_create_series_invalid_pattern(self, app, mock_db):
        body = {"appointment": APPOINTMENT, "pattern": {"type": "daily", "interval": 0}}

        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/series", json=body, headers=HEADERS)
            data = await resp.json()

        assert resp.status == 400
        assert data["error"] == "validation_failed"
        mock_db.create_series.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_series_malformed_body(self, app):
        async with TestClient(TestServer(app)) as client:
            missing = await client.post("/series", json={"pattern": {}}, headers=HEADERS)
            not_json = await client.post("/series", data="{not json", headers=HEADERS)
            not_object = await client.post("/series", json=[1, 2], headers=HEADERS)

        assert missing.status == 400
        assert not_json.status == 400
        assert not_object.status == 400

    @pytest.mark.asyncio
    async def test_extend_missing_series(self, app):
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/series/missing/extend", json={}, headers=HEADERS)
            data = await resp.json()

        assert resp.status == 404
        assert data["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_cancel_series(self, app, mock_db):
        mock_db.get_series.return_value = RecurringSeries(
            id="series-1",
            base_appointment=APPOINTMENT,
            pattern=RecurrencePattern(type=RecurrenceType.WEEKLY),
        )
        mock_db.get_series_appointments.return_value = [
            Appointment(
                id="appt-2",
                start_time=utc(2024, 1, 8, 9),
                end_time=utc(2024, 1, 8, 9, 30),
                recurring_appointment_id="series-1",
            )
        ]

        with patch("scheduling.service.utc_now", return_value=utc(2024, 1, 1)):
            async with TestClient(TestServer(app)) as client:
                resp = await client.post(
                    "/series/series-1/cancel",
                    json={"from_date": "2024-01-05T00:00:00Z", "reason": "Moved"},
                    headers=HEADERS,
                )
                data = await resp.json()

        assert resp.status == 200
        assert data["cancelled"] == ["appt-2"]
        assert data["cancelled_count"] == 1


class TestAppointmentRoutes:
    """Single bookings, checks and slots."""

    @pytest.mark.asyncio
    async def test_book_appointment(self, app):
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/appointments", json=APPOINTMENT, headers=HEADERS)
            data = await resp.json()

        assert resp.status == 201
        assert data["id"] == "appt-1"
        assert data["patient_name"] == "Jane Doe"

    @pytest.mark.asyncio
    async def test_book_appointment_conflict(self, app):
        body = {
            **APPOINTMENT,
            "start_time": "2024-01-01T12:30:00Z",
            "end_time": "2024-01-01T13:00:00Z",
        }

        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/appointments", json=body, headers=HEADERS)
            data = await resp.json()

        assert resp.status == 409
        assert data["error"] == "conflict"
        assert data["reason"] == "break_conflict"

    @pytest.mark.asyncio
    async def test_database_error(self, app, mock_db):
        mock_db.get_patient.side_effect = DatabaseError("timeout")

        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/appointments", json=APPOINTMENT, headers=HEADERS)
            data = await resp.json()

        assert resp.status == 500
        assert data["error"] == "database_error"

    @pytest.mark.asyncio
    async def test_check_availability(self, app):
        async with TestClient(TestServer(app)) as client:
            resp = await client.post(
                "/appointments/check",
                json={
                    "provider_id": "provider-1",
                    "start_time": "2024-01-01T08:00:00Z",
                    "end_time": "2024-01-01T09:00:00Z",
                },
                headers=HEADERS,
            )
            data = await resp.json()

        assert resp.status == 200
        assert data["accepted"] is False
        assert data["reason"] == "outside_availability"

    @pytest.mark.asyncio
    async def test_available_slots(self, app):
        async with TestClient(TestServer(app)) as client:
            resp = await client.get(
                "/providers/provider-1/slots",
                params={"date": "2024-01-01", "duration": "60", "buffer": "0"},
                headers=HEADERS,
            )
            data = await resp.json()

        assert resp.status == 200
        assert data["date"] == "2024-01-01"
        assert len(data["slots"]) == 7

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "params", [{}, {"date": "01/01/2024"}, {"date": "2024-01-01", "duration": "long"}]
    )
    async def test_available_slots_bad_query(self, app, params):
        async with TestClient(TestServer(app)) as client:
            resp = await client.get(
                "/providers/provider-1/slots", params=params, headers=HEADERS
            )

        assert resp.status == 400


class TestPatientAndPreferenceRoutes:
    """Custom fields and onboarding tours."""

    @pytest.mark.asyncio
    async def test_update_custom_fields(self, app, mock_db):
        mock_db.update_patient_custom_fields.return_value = Patient(
            id="patient-1", first_name="Jane"
        )

        async with TestClient(TestServer(app)) as client:
            resp = await client.put(
                "/patients/patient-1/custom-fields",
                json={"custom_fields": [{"name": "Allergies", "value": "Latex"}]},
                headers=HEADERS,
            )

        assert resp.status == 200
        values = mock_db.update_patient_custom_fields.await_args.args[1]
        assert values.get("allergies") == "Latex"

    @pytest.mark.asyncio
    async def test_unknown_custom_field(self, app):
        async with TestClient(TestServer(app)) as client:
            resp = await client.put(
                "/patients/patient-1/custom-fields",
                json={"shoe_size": "42"},
                headers=HEADERS,
            )

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_complete_tour(self, app, mock_db):
        async with TestClient(TestServer(app)) as client:
            resp = await client.put("/preferences/tours/calendar", headers=HEADERS)
            data = await resp.json()

        assert resp.status == 200
        assert data["completed_tours"] == ["calendar"]
        mock_db.save_session_preferences.assert_awaited_once()


class TestEventStream:
    """Server-sent change events."""

    @pytest.mark.asyncio
    async def test_stream_delivers_events(self, app, feed):
        event_filter = EventFilter(
            table="appointments", column="provider_id", value="provider-1"
        )
        subscription = Subscription(event_filter, AsyncMock())
        subscription._on_change(
            {
                "table": "appointments",
                "eventType": "INSERT",
                "new": {"id": "appt-9", "provider_id": "provider-1"},
            }
        )
        await subscription.unsubscribe()
        feed.subscribe = AsyncMock(return_value=subscription)

        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/events", params={"provider_id": "provider-1"})
            body = await resp.text()

        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/event-stream")
        assert body.startswith("event: insert\ndata: ")
        assert '"appt-9"' in body
        requested = feed.subscribe.await_args.args[0]
        assert requested.event == ChangeType.ALL
        assert requested.postgres_filter == "provider_id=eq.provider-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [{"table": "patients"}, {"event": "truncate"}])
    async def test_stream_rejects_bad_filter(self, app, feed, params):
        feed.subscribe = AsyncMock()

        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/events", params=params)

        assert resp.status == 400
        feed.subscribe.assert_not_awaited()
