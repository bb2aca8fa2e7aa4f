"""
Scheduling service: recurrence, conflict checking and series lifecycle
over the Supabase store.

One service instance serves one user session; it is handed the session's
preferences at construction instead of reading shared state.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentStatus,
    AppointmentUpdate,
)
from models.custom_fields import PATIENT_CUSTOM_FIELDS
from models.patient import Patient
from models.preferences import SessionPreferences
from models.recurrence import (
    ExceptionType,
    RecurrencePattern,
    RecurringSeries,
    SeriesException,
)
from models.reminder import AppointmentReminder, ReminderCreate
from models.slot import AvailableSlot, RejectedInstance, TimeRange
from scheduling.conflicts import SlotDecision, check_batch, check_slot
from scheduling.recurrence import RecurrenceExpansion
from scheduling.series import SeriesCancellation, cancel_from, next_batch, split_for_edit
from scheduling.slots import generate_available_slots
from utils.constants import UNKNOWN_PROVIDER_NAME
from utils.datetime_utils import ensure_aware, get_timezone, to_iso_string, utc_now
from utils.exceptions import (
    AppointmentNotFoundError,
    ConflictError,
    DatabaseError,
    PatientNotFoundError,
    ProviderNotFoundError,
    SeriesNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

WRITE_FAILED = "write_failed"


@dataclass
class SeriesResult:
    """Outcome of generating a batch of series instances."""

    series: RecurringSeries
    accepted: List[Appointment] = field(default_factory=list)
    rejected: List[RejectedInstance] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "series": self.series.model_dump(mode="json"),
            "accepted": [a.model_dump(mode="json") for a in self.accepted],
            "rejected": [r.model_dump(mode="json") for r in self.rejected],
        }


class _SeriesPlan(NamedTuple):
    template: AppointmentCreate
    pattern: RecurrencePattern
    candidates: List[TimeRange]
    patient: Patient
    provider_name: str


class SchedulingService:
    """Orchestrates the pure scheduling functions over the database."""

    def __init__(self, db, preferences: SessionPreferences):
        self.db = db
        self.preferences = preferences

    @property
    def tz_name(self) -> str:
        return self.preferences.timezone

    # ========== Context Loading ==========

    async def _load_context(self, provider_id: str, window: TimeRange):
        availability = await self.db.get_provider_availability(provider_id)
        blocked = await self.db.get_blocked_slots(window.start, window.end, provider_id)
        appointments = await self.db.get_provider_appointments(
            provider_id, window.start, window.end
        )
        return availability, blocked, appointments

    async def _get_patient(self, patient_id: str) -> Patient:
        patient = await self.db.get_patient(patient_id)
        if patient is None:
            raise PatientNotFoundError(patient_id)
        return patient

    async def _provider_name(self, provider_id: str) -> str:
        profile = await self.db.get_profile(provider_id)
        if profile is None:
            raise ProviderNotFoundError(provider_id)
        return profile.display_name or UNKNOWN_PROVIDER_NAME

    async def _get_series(self, series_id: str) -> RecurringSeries:
        series = await self.db.get_series(series_id)
        if series is None:
            raise SeriesNotFoundError(series_id)
        return series

    def _with_provider(self, template: AppointmentCreate) -> AppointmentCreate:
        if template.provider_id:
            return template
        return template.model_copy(update={"provider_id": self.preferences.user_id})

    # ========== Recurring Series ==========

    async def create_recurring_series(
        self,
        template: AppointmentCreate,
        pattern: RecurrencePattern,
        generate_count: Optional[int] = None,
    ) -> SeriesResult:
        """
        Create a series and its first batch of instances.

        Pattern errors surface before anything is written. Each candidate
        is checked against the provider's schedule and the instances
        accepted before it; accepted instances are written one at a time
        and a failed write is reported as a rejection.

        Raises:
            ValidationError: on a malformed pattern
            PatientNotFoundError: if the patient does not exist
            ProviderNotFoundError: if the provider has no profile
        """
        plan = await self._plan_series(template, pattern, generate_count)
        return await self._start_series(plan)

    async def _plan_series(
        self,
        template: AppointmentCreate,
        pattern: RecurrencePattern,
        generate_count: Optional[int],
    ) -> _SeriesPlan:
        """Expand and resolve everything a new series needs, writing nothing."""
        template = self._with_provider(template)
        if generate_count is None:
            generate_count = self.preferences.default_generate_count
        candidates = RecurrenceExpansion(
            TimeRange(template.start_time, template.end_time),
            pattern,
            generate_count=generate_count,
            tz_name=self.tz_name,
        ).to_list()

        patient = await self._get_patient(template.patient_id)
        provider_name = await self._provider_name(template.provider_id)
        return _SeriesPlan(template, pattern, candidates, patient, provider_name)

    async def _start_series(self, plan: _SeriesPlan) -> SeriesResult:
        template, pattern, candidates, patient, provider_name = plan
        series = await self.db.create_series(
            RecurringSeries(
                base_appointment=template,
                pattern=pattern,
                created_by=self.preferences.user_id,
            )
        )
        logger.info(
            f"Created series {series.id} for patient {patient.id}: "
            f"{len(candidates)} candidate instances"
        )
        return await self._book_batch(series, candidates, patient, provider_name)

    async def extend_series(
        self, series_id: str, count: Optional[int] = None
    ) -> SeriesResult:
        """Generate the next ``count`` instances of an active series."""
        series = await self._get_series(series_id)
        if count is None:
            count = self.preferences.default_generate_count
        candidates = next_batch(series, count, self.tz_name)
        if not candidates:
            logger.info(f"Series {series_id} has nothing left to generate")
            return SeriesResult(series=series)

        patient = await self._get_patient(series.base_appointment.patient_id)
        provider_name = await self._provider_name(series.base_appointment.provider_id)
        return await self._book_batch(series, candidates, patient, provider_name)

    async def _book_batch(
        self,
        series: RecurringSeries,
        candidates: Sequence[TimeRange],
        patient: Patient,
        provider_name: str,
    ) -> SeriesResult:
        if not candidates:
            return SeriesResult(series=series)

        template = series.base_appointment
        provider_id = template.provider_id

        window = TimeRange(candidates[0].start, candidates[-1].end)
        availability, blocked, appointments = await self._load_context(provider_id, window)
        batch = check_batch(
            provider_id,
            candidates,
            availability,
            blocked,
            appointments,
            tz_name=self.tz_name,
        )

        result = SeriesResult(series=series, rejected=list(batch.rejected))
        pattern_json = series.pattern.to_json()

        for candidate in batch.accepted:
            instance = Appointment(
                title=template.title,
                patient_id=template.patient_id,
                patient_name=patient.display_name,
                provider_id=provider_id,
                provider_name=provider_name,
                start_time=candidate.start,
                end_time=candidate.end,
                status=template.status,
                appointment_type=template.appointment_type,
                location=template.location,
                notes=template.notes,
                is_recurring=True,
                recurring_appointment_id=series.id,
                recurrence_pattern=pattern_json,
            )
            try:
                result.accepted.append(await self.db.create_appointment(instance))
            except DatabaseError as e:
                logger.error(
                    f"Failed to write instance {candidate.start} of series {series.id}: {e}"
                )
                result.rejected.append(
                    RejectedInstance(
                        start=candidate.start,
                        end=candidate.end,
                        reason=WRITE_FAILED,
                        detail=str(e),
                    )
                )

        result.rejected.sort(key=lambda r: r.start)

        created_instances = series.created_instances + len(candidates)
        now = utc_now()
        updated = await self.db.update_series(
            series.id,
            {
                "created_instances": created_instances,
                "last_generated": to_iso_string(now),
            },
        )
        result.series = updated or series.model_copy(
            update={"created_instances": created_instances, "last_generated": now}
        )

        logger.info(
            f"Series {series.id}: {len(result.accepted)} instances booked, "
            f"{len(result.rejected)} rejected"
        )
        return result

    async def cancel_series_from(
        self,
        series_id: str,
        from_date: datetime,
        reason: Optional[str] = None,
    ) -> SeriesCancellation:
        """Cancel every instance starting at or after ``from_date``."""
        series = await self._get_series(series_id)
        instances = await self.db.get_series_appointments(series_id)

        outcome = cancel_from(series, instances, from_date, reason, now=utc_now())
        if outcome.cancelled:
            await self.db.cancel_appointments([a.id for a in outcome.cancelled], reason)

        updated = await self.db.update_series(
            series_id,
            {
                "cancelled_from": to_iso_string(outcome.series.cancelled_from),
                "is_active": outcome.series.is_active,
            },
        )
        if updated is not None:
            outcome.series = updated

        logger.info(
            f"Series {series_id} cancelled from {from_date}: "
            f"{len(outcome.cancelled)} instances cancelled"
        )
        return outcome

    async def edit_series_from(
        self,
        series_id: str,
        from_date: datetime,
        updates: AppointmentUpdate,
        pattern: Optional[RecurrencePattern] = None,
        generate_count: Optional[int] = None,
    ) -> Tuple[SeriesCancellation, SeriesResult]:
        """
        Edit this and all future instances.

        The series is cancelled from ``from_date`` and a new series with the
        modified template starts at the first occurrence on/after it. The
        replacement is validated before anything is cancelled.
        """
        series = await self._get_series(series_id)
        _, new_series = split_for_edit(series, from_date, updates, pattern, self.tz_name)
        plan = await self._plan_series(
            new_series.base_appointment, new_series.pattern, generate_count
        )

        cancellation = await self.cancel_series_from(
            series_id, from_date, reason="Series edited"
        )
        result = await self._start_series(plan)
        return cancellation, result

    async def create_exception(
        self,
        series_id: str,
        appointment_id: str,
        exception_type: ExceptionType,
        new_start_time: Optional[datetime] = None,
        new_end_time: Optional[datetime] = None,
        reason: Optional[str] = None,
        updates: Optional[AppointmentUpdate] = None,
    ) -> SeriesException:
        """
        Apply a single-instance exception to a series.

        Raises:
            ValidationError: if the appointment is not part of the series or
                the exception data is incomplete
            ConflictError: if a rescheduled range is rejected
        """
        await self._get_series(series_id)
        appointment = await self.db.get_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        if appointment.recurring_appointment_id != series_id:
            raise ValidationError(
                f"Appointment {appointment_id} is not part of series {series_id}"
            )

        if exception_type == ExceptionType.CANCELLED:
            await self.db.update_appointment(
                appointment_id,
                {
                    "status": AppointmentStatus.CANCELLED.value,
                    "cancellation_reason": reason,
                },
            )

        elif exception_type == ExceptionType.RESCHEDULED:
            if new_start_time is None or new_end_time is None:
                raise ValidationError("Rescheduling needs new_start_time and new_end_time")
            new_start_time = ensure_aware(new_start_time)
            new_end_time = ensure_aware(new_end_time)
            if new_end_time <= new_start_time:
                raise ValidationError("new_end_time must be after new_start_time")

            decision = await self.check_availability(
                appointment.provider_id,
                new_start_time,
                new_end_time,
                exclude_appointment_id=appointment_id,
            )
            if not decision.accepted:
                raise ConflictError(decision.reason.value)

            await self.db.update_appointment(
                appointment_id,
                {
                    "start_time": to_iso_string(new_start_time),
                    "end_time": to_iso_string(new_end_time),
                },
            )

        elif exception_type == ExceptionType.MODIFIED:
            if updates is None:
                raise ValidationError("Modifying an instance needs the changed fields")
            changes = updates.model_dump(
                mode="json",
                exclude_unset=True,
                exclude_none=True,
                exclude={"start_time", "end_time", "patient_id"},
            )
            if not changes:
                raise ValidationError("No changes given for the instance")
            await self.db.update_appointment(appointment_id, changes)

        exception = await self.db.create_exception(
            SeriesException(
                series_id=series_id,
                original_date=appointment.start_time,
                exception_type=exception_type,
                new_start_time=new_start_time,
                new_end_time=new_end_time,
                reason=reason,
            )
        )
        logger.info(
            f"Recorded {exception_type.value} exception for appointment "
            f"{appointment_id} in series {series_id}"
        )
        return exception

    # ========== Single Appointments ==========

    async def check_availability(
        self,
        provider_id: Optional[str],
        start_time: datetime,
        end_time: datetime,
        exclude_appointment_id: Optional[str] = None,
    ) -> SlotDecision:
        """Decide whether one range can be booked for a provider."""
        candidate = TimeRange(ensure_aware(start_time), ensure_aware(end_time))
        if candidate.end <= candidate.start:
            raise ValidationError("end_time must be after start_time")

        provider_id = provider_id or self.preferences.user_id
        availability, blocked, appointments = await self._load_context(
            provider_id, candidate
        )
        return check_slot(
            provider_id,
            candidate,
            availability,
            blocked,
            appointments,
            tz_name=self.tz_name,
            exclude_appointment_id=exclude_appointment_id,
        )

    async def book_appointment(self, data: AppointmentCreate) -> Appointment:
        """
        Book a single appointment after a conflict check.

        Raises:
            PatientNotFoundError: if the patient does not exist
            ConflictError: if the range is rejected
        """
        data = self._with_provider(data)
        patient = await self._get_patient(data.patient_id)
        provider_name = await self._provider_name(data.provider_id)

        decision = await self.check_availability(
            data.provider_id, data.start_time, data.end_time
        )
        if not decision.accepted:
            raise ConflictError(decision.reason.value)

        appointment = Appointment(
            **data.model_dump(),
            patient_name=patient.display_name,
            provider_name=provider_name,
        )
        created = await self.db.create_appointment(appointment)
        logger.info(f"Booked appointment {created.id} for patient {patient.id}")
        return created

    async def get_available_slots(
        self,
        provider_id: Optional[str],
        day: date,
        duration_minutes: Optional[int] = None,
        buffer_minutes: Optional[int] = None,
    ) -> List[AvailableSlot]:
        """Open slots of a provider on a calendar day in the practice timezone."""
        provider_id = provider_id or self.preferences.user_id
        if duration_minutes is None:
            duration_minutes = self.preferences.default_duration_minutes
        if buffer_minutes is None:
            buffer_minutes = self.preferences.buffer_minutes

        tz = get_timezone(self.tz_name)
        day_start = tz.localize(datetime.combine(day, time.min))
        day_end = tz.localize(datetime.combine(day + timedelta(days=1), time.min))

        availability, blocked, appointments = await self._load_context(
            provider_id, TimeRange(day_start, day_end)
        )
        return generate_available_slots(
            provider_id,
            day,
            availability,
            blocked,
            appointments,
            duration_minutes=duration_minutes,
            buffer_minutes=buffer_minutes,
            tz_name=self.tz_name,
        )

    # ========== Reminders, Patients, Preferences ==========

    async def add_reminder(self, data: ReminderCreate) -> AppointmentReminder:
        appointment = await self.db.get_appointment(data.appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(data.appointment_id)
        if data.created_by is None:
            data = data.model_copy(update={"created_by": self.preferences.user_id})
        return await self.db.create_reminder(data)

    async def update_patient_custom_fields(self, patient_id: str, raw: Any) -> Patient:
        """Validate upstream custom fields against the patient schema and store them."""
        values = PATIENT_CUSTOM_FIELDS.parse(raw, strict=True)
        await self._get_patient(patient_id)
        return await self.db.update_patient_custom_fields(patient_id, values)

    async def complete_tour(self, tour: str) -> SessionPreferences:
        self.preferences.mark_tour_completed(tour)
        await self.end_session()
        return self.preferences

    async def end_session(self) -> None:
        """Persist preferences changed during the session."""
        if self.preferences.dirty:
            await self.db.save_session_preferences(self.preferences)
            self.preferences.dirty = False

    @classmethod
    async def start_session(cls, db, user_id: str) -> "SchedulingService":
        preferences = await db.load_session_preferences(user_id)
        return cls(db, preferences)
