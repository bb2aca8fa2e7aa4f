"""
Unit tests for slot / conflict checking.
"""

from datetime import datetime, time, timedelta, timezone
from itertools import combinations

import pytest

from models.appointment import Appointment, AppointmentStatus
from models.availability import BlockedSlot, ProviderAvailability
from models.recurrence import RecurrencePattern, RecurrenceType
from models.slot import TimeRange
from scheduling.conflicts import ConflictReason, check_batch, check_slot

PROVIDER = "provider-1"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def monday(hour: int, minute: int = 0) -> datetime:
    """2024-01-01 is a Monday."""
    return utc(2024, 1, 1, hour, minute)


def appointment(start, end, appointment_id="appt-1", **kwargs) -> Appointment:
    return Appointment(
        id=appointment_id, provider_id=PROVIDER, start_time=start, end_time=end, **kwargs
    )


class TestCheckSlot:
    """Single candidate decisions."""

    def test_break_conflict(self, availability):
        decision = check_slot(
            PROVIDER, TimeRange(monday(12, 30), monday(13)), availability
        )

        assert not decision.accepted
        assert decision.reason == ConflictReason.BREAK_CONFLICT

    def test_appointment_conflict(self, availability):
        existing = [appointment(monday(11, 30), monday(12, 30))]

        decision = check_slot(
            PROVIDER, TimeRange(monday(11), monday(12)), availability, appointments=existing
        )

        assert decision.reason == ConflictReason.APPOINTMENT_CONFLICT
        assert decision.conflicting_id == "appt-1"

    def test_earlier_range_accepted(self, availability):
        existing = [appointment(monday(11, 30), monday(12, 30))]

        decision = check_slot(
            PROVIDER, TimeRange(monday(10), monday(11)), availability, appointments=existing
        )

        assert decision.accepted
        assert decision.reason is None

    def test_shared_endpoints_do_not_conflict(self, availability):
        existing = [appointment(monday(10), monday(11))]

        before = check_slot(
            PROVIDER, TimeRange(monday(9), monday(10)), availability, appointments=existing
        )
        after = check_slot(
            PROVIDER, TimeRange(monday(11), monday(12)), availability, appointments=existing
        )

        assert before.accepted
        assert after.accepted

    def test_ending_at_break_start_is_accepted(self, availability):
        decision = check_slot(PROVIDER, TimeRange(monday(11), monday(12)), availability)

        assert decision.accepted

    def test_whole_working_day_edges(self, availability):
        assert check_slot(PROVIDER, TimeRange(monday(9), monday(10)), availability).accepted
        assert check_slot(PROVIDER, TimeRange(monday(16), monday(17)), availability).accepted

    @pytest.mark.parametrize(
        "start,end",
        [
            (monday(8, 30), monday(9, 30)),
            (monday(16, 30), monday(17, 30)),
            (monday(7), monday(8)),
        ],
    )
    def test_outside_availability(self, availability, start, end):
        decision = check_slot(PROVIDER, TimeRange(start, end), availability)

        assert decision.reason == ConflictReason.OUTSIDE_AVAILABILITY

    def test_crossing_midnight_is_outside(self):
        all_day = [
            ProviderAvailability(
                provider_id=PROVIDER,
                day_of_week=day,
                start_time=time(0, 0),
                end_time=time(23, 59),
            )
            for day in range(7)
        ]

        decision = check_slot(
            PROVIDER, TimeRange(monday(23), utc(2024, 1, 2, 1)), all_day
        )

        assert decision.reason == ConflictReason.OUTSIDE_AVAILABILITY

    def test_no_record_for_weekday(self, availability):
        sunday = TimeRange(utc(2023, 12, 31, 10), utc(2023, 12, 31, 11))

        decision = check_slot(PROVIDER, sunday, availability)

        assert decision.reason == ConflictReason.PROVIDER_UNAVAILABLE

    def test_day_marked_unavailable(self, availability):
        availability[0] = availability[0].model_copy(update={"is_available": False})

        decision = check_slot(PROVIDER, TimeRange(monday(10), monday(11)), availability)

        assert decision.reason == ConflictReason.PROVIDER_UNAVAILABLE

    def test_other_provider_template_ignored(self, availability):
        decision = check_slot("provider-2", TimeRange(monday(10), monday(11)), availability)

        assert decision.reason == ConflictReason.PROVIDER_UNAVAILABLE

    def test_practice_timezone(self, availability):
        """Working hours are wall-clock times; 09:00 New York is 14:00 UTC in January."""
        nine_utc = TimeRange(monday(9), monday(10))
        nine_new_york = TimeRange(monday(14), monday(15))

        assert check_slot(PROVIDER, nine_utc, availability).accepted
        assert (
            check_slot(PROVIDER, nine_utc, availability, tz_name="America/New_York").reason
            == ConflictReason.OUTSIDE_AVAILABILITY
        )
        assert check_slot(
            PROVIDER, nine_new_york, availability, tz_name="America/New_York"
        ).accepted

    def test_recurring_block_follows_practice_clock(self, availability):
        """A daily 15:00 New York block still covers 15:00 after the DST switch."""
        blocked = [
            BlockedSlot(
                id="team-meeting",
                provider_id=PROVIDER,
                start_time=utc(2024, 3, 4, 20),
                end_time=utc(2024, 3, 4, 21),
                is_recurring=True,
                recurrence_pattern=RecurrencePattern(type=RecurrenceType.DAILY).to_json(),
            )
        ]
        after_switch = TimeRange(utc(2024, 3, 11, 19), utc(2024, 3, 11, 20))

        decision = check_slot(
            PROVIDER, after_switch, availability, blocked, tz_name="America/New_York"
        )

        assert decision.reason == ConflictReason.BLOCKED_SLOT
        assert decision.conflicting_id == "team-meeting"

    def test_blocked_slot(self, availability):
        blocked = [
            BlockedSlot(
                id="block-1",
                provider_id=PROVIDER,
                start_time=monday(10),
                end_time=monday(11),
            )
        ]

        decision = check_slot(
            PROVIDER, TimeRange(monday(10, 30), monday(11, 30)), availability, blocked
        )

        assert decision.reason == ConflictReason.BLOCKED_SLOT
        assert decision.conflicting_id == "block-1"

    def test_practice_wide_block_applies_to_everyone(self, availability):
        blocked = [BlockedSlot(provider_id=None, start_time=monday(10), end_time=monday(11))]

        decision = check_slot(PROVIDER, TimeRange(monday(10), monday(11)), availability, blocked)

        assert decision.reason == ConflictReason.BLOCKED_SLOT

    def test_other_provider_block_ignored(self, availability):
        blocked = [
            BlockedSlot(provider_id="provider-2", start_time=monday(10), end_time=monday(11))
        ]

        decision = check_slot(PROVIDER, TimeRange(monday(10), monday(11)), availability, blocked)

        assert decision.accepted

    def test_recurring_block_is_expanded(self, availability):
        weekly_meeting = BlockedSlot(
            provider_id=PROVIDER,
            start_time=monday(15),
            end_time=monday(16),
            is_recurring=True,
            recurrence_pattern=RecurrencePattern(type=RecurrenceType.WEEKLY).to_json(),
        )
        next_monday = monday(15) + timedelta(weeks=3)

        decision = check_slot(
            PROVIDER,
            TimeRange(next_monday, next_monday + timedelta(minutes=30)),
            availability,
            [weekly_meeting],
        )

        assert decision.reason == ConflictReason.BLOCKED_SLOT

    def test_cancelled_appointments_ignored(self, availability):
        existing = [
            appointment(monday(10), monday(11), status=AppointmentStatus.CANCELLED)
        ]

        decision = check_slot(
            PROVIDER, TimeRange(monday(10), monday(11)), availability, appointments=existing
        )

        assert decision.accepted

    def test_excluded_appointment_ignored(self, availability):
        existing = [appointment(monday(10), monday(11), appointment_id="moving")]

        decision = check_slot(
            PROVIDER,
            TimeRange(monday(10, 30), monday(11, 30)),
            availability,
            appointments=existing,
            exclude_appointment_id="moving",
        )

        assert decision.accepted

    def test_check_order_break_before_appointment(self, availability):
        existing = [appointment(monday(12), monday(13))]

        decision = check_slot(
            PROVIDER, TimeRange(monday(12), monday(12, 30)), availability, appointments=existing
        )

        assert decision.reason == ConflictReason.BREAK_CONFLICT

    def test_decision_is_idempotent(self, availability):
        existing = [appointment(monday(11, 30), monday(12, 30))]
        candidate = TimeRange(monday(11), monday(12))

        first = check_slot(PROVIDER, candidate, availability, appointments=existing)
        second = check_slot(PROVIDER, candidate, availability, appointments=existing)

        assert first == second

    def test_to_dict(self, availability):
        decision = check_slot(PROVIDER, TimeRange(monday(12, 30), monday(13)), availability)

        data = decision.to_dict()

        assert data["accepted"] is False
        assert data["reason"] == "break_conflict"
        assert data["start"] == monday(12, 30).isoformat()


class TestCheckBatch:
    """Batch decisions."""

    def test_accepted_instances_never_overlap(self, availability):
        candidates = [
            TimeRange(monday(10), monday(11)),
            TimeRange(monday(10, 30), monday(11, 30)),
            TimeRange(monday(11), monday(12)),
            TimeRange(monday(12, 30), monday(13, 30)),
        ]

        result = check_batch(PROVIDER, candidates, availability)

        assert result.accepted == [candidates[0], candidates[2]]
        assert [r.reason for r in result.rejected] == [
            "appointment_conflict",
            "break_conflict",
        ]
        for a, b in combinations(result.accepted, 2):
            assert not a.overlaps(b)

    def test_partial_success(self, availability):
        existing = [appointment(utc(2024, 1, 8, 9), utc(2024, 1, 8, 10))]
        candidates = [
            TimeRange(utc(2024, 1, day, 9), utc(2024, 1, day, 9, 30)) for day in (1, 8, 15)
        ]

        result = check_batch(PROVIDER, candidates, availability, appointments=existing)

        assert [r.start for r in result.accepted] == [utc(2024, 1, 1, 9), utc(2024, 1, 15, 9)]
        assert len(result.rejected) == 1
        assert result.rejected[0].start == utc(2024, 1, 8, 9)
        assert result.rejected[0].detail == "appt-1"
