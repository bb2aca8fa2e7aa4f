"""
Basic unit tests for scheduling models.
"""

from datetime import datetime, time, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from models.appointment import AppointmentCreate, AppointmentStatus, AppointmentUpdate
from models.availability import BlockedSlot, ProviderAvailability
from models.preferences import SessionPreferences
from models.recurrence import RecurrencePattern, RecurrenceType
from models.reminder import AppointmentReminder, ReminderStatus
from models.slot import TimeRange
from scheduling.conflicts import ConflictReason


def test_appointment_status_enum():
    """Test appointment status enum."""
    assert AppointmentStatus.SCHEDULED.value == "scheduled"
    assert AppointmentStatus.NO_SHOW.value == "no_show"


def test_conflict_reason_codes():
    assert {r.value for r in ConflictReason} == {
        "outside_availability",
        "break_conflict",
        "blocked_slot",
        "appointment_conflict",
        "provider_unavailable",
    }


def test_reminder_status_enum():
    assert ReminderStatus.PENDING.value == "pending"
    assert ReminderStatus.SENT.value == "sent"


def test_naive_datetimes_become_utc():
    appointment = AppointmentCreate(
        title="Consultation",
        patient_id="patient-1",
        start_time=datetime(2024, 1, 1, 9),
        end_time=datetime(2024, 1, 1, 10),
    )

    assert appointment.start_time.utcoffset() == timedelta(0)


def test_appointment_end_must_follow_start():
    with pytest.raises(PydanticValidationError):
        AppointmentCreate(
            title="Consultation",
            patient_id="patient-1",
            start_time=datetime(2024, 1, 1, 10),
            end_time=datetime(2024, 1, 1, 10),
        )


def test_update_applies_only_set_fields():
    template = AppointmentCreate(
        title="Consultation",
        patient_id="patient-1",
        location="Room 1",
        start_time=datetime(2024, 1, 1, 9),
        end_time=datetime(2024, 1, 1, 10),
    )

    updated = AppointmentUpdate(title="Follow-up").apply_to(template)

    assert updated.title == "Follow-up"
    assert updated.location == "Room 1"


def test_availability_parses_database_times():
    record = ProviderAvailability(
        provider_id="provider-1",
        day_of_week=1,
        start_time="09:00:00",
        end_time="17:00",
        break_start_time="12:00",
        break_end_time="13:00",
    )

    assert record.start_time == time(9, 0)
    assert record.has_break


@pytest.mark.parametrize(
    "window",
    [
        {"start_time": "17:00", "end_time": "09:00"},
        {"start_time": "09:00", "end_time": "17:00", "break_start_time": "12:00"},
        {
            "start_time": "09:00",
            "end_time": "17:00",
            "break_start_time": "08:00",
            "break_end_time": "10:00",
        },
    ],
)
def test_availability_rejects_bad_windows(window):
    with pytest.raises(PydanticValidationError):
        ProviderAvailability(provider_id="provider-1", day_of_week=1, **window)


def test_blocked_slot_applies_to():
    practice_wide = BlockedSlot(
        start_time=datetime(2024, 1, 1, 9), end_time=datetime(2024, 1, 1, 10)
    )
    own = practice_wide.model_copy(update={"provider_id": "provider-1"})

    assert practice_wide.applies_to("anyone")
    assert own.applies_to("provider-1")
    assert not own.applies_to("provider-2")


def test_time_range_half_open():
    first = TimeRange(datetime(2024, 1, 1, 9), datetime(2024, 1, 1, 10))
    second = TimeRange(datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11))

    assert not first.overlaps(second)
    assert first.overlaps(TimeRange(datetime(2024, 1, 1, 9, 59), datetime(2024, 1, 1, 11)))


def test_pattern_json_roundtrip_drops_empty_fields():
    pattern = RecurrencePattern(type=RecurrenceType.WEEKLY, days_of_week=[1, 3])

    raw = pattern.to_json()

    assert "end_date" not in raw
    assert RecurrencePattern.from_json(raw) == pattern


def test_schema_examples():
    """Request models carry an example in their JSON schema."""
    assert AppointmentCreate.model_json_schema()["example"]["appointment_type"] == "consultation"
    assert RecurrencePattern.model_json_schema()["example"]["days_of_week"] == [1, 3]


def test_reminder_due_time():
    reminder = AppointmentReminder(appointment_id="appt-1", minutes_before=90)

    assert reminder.due_at(datetime(2024, 1, 1, 10)) == datetime(2024, 1, 1, 8, 30)


def test_preferences_tour_tracking():
    prefs = SessionPreferences(user_id="user-1")

    prefs.mark_tour_completed("calendar")
    prefs.mark_tour_completed("calendar")

    assert prefs.completed_tours == ["calendar"]
    assert prefs.dirty
    assert "dirty" not in prefs.to_setting_value()
    assert "user_id" not in prefs.to_setting_value()


def test_preferences_from_settings_row_ignores_nulls():
    prefs = SessionPreferences.from_settings_row(
        "user-1",
        {"setting_value": {"user_id": "someone-else", "timezone": None, "buffer_minutes": 5}},
    )

    assert prefs.user_id == "user-1"
    assert prefs.buffer_minutes == 5
