"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, time, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from models.availability import ProviderAvailability
from models.patient import Patient, Profile
from models.preferences import SessionPreferences

PROVIDER_ID = "provider-1"
PATIENT_ID = "patient-1"
USER_ID = "user-1"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def weekday_availability(provider_id: str = PROVIDER_ID):
    """Mon-Fri 09:00-17:00 with a 12:00-13:00 break."""
    return [
        ProviderAvailability(
            provider_id=provider_id,
            day_of_week=day,
            start_time=time(9, 0),
            end_time=time(17, 0),
            break_start_time=time(12, 0),
            break_end_time=time(13, 0),
        )
        for day in range(1, 6)
    ]


@pytest.fixture
def availability():
    return weekday_availability()


@pytest.fixture
def preferences():
    return SessionPreferences(
        user_id=USER_ID,
        timezone="UTC",
        default_duration_minutes=60,
        buffer_minutes=15,
        default_generate_count=10,
    )


@pytest.fixture
def mock_supabase_client():
    """Create a mock Supabase client."""
    mock_client = MagicMock()
    mock_table = MagicMock()
    mock_client.table.return_value = mock_table
    return mock_client, mock_table


@pytest.fixture
def mock_db(availability, preferences):
    """Database client double with every coroutine method mocked."""
    db = MagicMock()
    db.get_provider_availability = AsyncMock(return_value=availability)
    db.get_blocked_slots = AsyncMock(return_value=[])
    db.get_provider_appointments = AsyncMock(return_value=[])
    db.get_patient = AsyncMock(
        return_value=Patient(id=PATIENT_ID, first_name="Jane", last_name="Doe")
    )
    db.get_profile = AsyncMock(
        return_value=Profile(user_id=PROVIDER_ID, first_name="Ann", last_name="Lee")
    )
    db.load_session_preferences = AsyncMock(return_value=preferences)
    db.save_session_preferences = AsyncMock()

    created = []

    async def create_appointment(appointment):
        saved = appointment.model_copy(update={"id": f"appt-{len(created) + 1}"})
        created.append(saved)
        return saved

    async def create_series(series):
        return series.model_copy(update={"id": "series-1"})

    db.create_appointment = AsyncMock(side_effect=create_appointment)
    db.create_series = AsyncMock(side_effect=create_series)
    db.update_series = AsyncMock(return_value=None)
    db.get_series = AsyncMock(return_value=None)
    db.get_series_appointments = AsyncMock(return_value=[])
    db.cancel_appointments = AsyncMock(return_value=0)
    db.get_appointment = AsyncMock(return_value=None)
    db.update_appointment = AsyncMock(return_value=None)
    db.create_exception = AsyncMock(side_effect=lambda exception: exception)
    db.create_reminder = AsyncMock()
    db.update_patient_custom_fields = AsyncMock()
    db.created = created
    return db
