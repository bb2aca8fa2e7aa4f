"""
Supabase database client with CRUD operations.
Handles all database interactions for appointments, recurring series,
provider availability, blocked slots, patients, reminders and user settings.

Row Level Security (RLS) Notes:
==============================
This client uses the service key, which bypasses RLS. The practice's RLS
policies should ensure:
1. Staff can read appointments and patients of their organization
2. Providers can only edit their own availability rows
3. user_settings rows are readable/writable by their user_id owner only
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from supabase import Client as SupabaseClientType
from supabase import create_client

from config import settings
from models.appointment import Appointment, AppointmentCreate, AppointmentStatus
from models.availability import BlockedSlot, ProviderAvailability
from models.custom_fields import PATIENT_CUSTOM_FIELDS, CustomFieldValues
from models.patient import Patient, Profile
from models.preferences import SETTING_KEY, SessionPreferences
from models.recurrence import RecurrencePattern, RecurringSeries, SeriesException
from models.reminder import AppointmentReminder, ReminderCreate, ReminderStatus
from utils.constants import (
    APPOINTMENTS_TABLE,
    AVAILABILITY_TABLE,
    BLOCKED_SLOTS_TABLE,
    EXCEPTIONS_TABLE,
    PATIENTS_TABLE,
    PROFILES_TABLE,
    REMINDERS_TABLE,
    SERIES_TABLE,
    USER_SETTINGS_TABLE,
)
from utils.datetime_utils import parse_iso_datetime, to_iso_string, utc_now
from utils.exceptions import DatabaseError, NotificationError, ValidationError

logger = logging.getLogger(__name__)

_TIMESTAMP_FIELDS = ("created_at", "updated_at")


class SupabaseClient:
    """
    Supabase database client wrapper.

    Uses service_role key which bypasses RLS.

    Includes a simple in-memory cache for provider availability, which is
    read on every conflict check but rarely changes.
    """

    def __init__(self):
        self.client: SupabaseClientType = create_client(
            settings.supabase_url, settings.supabase_key
        )

        # Format: {cache_key: (data, expiry_time)}
        self._cache: Dict[str, Tuple[Any, datetime]] = {}
        self._cache_ttl = timedelta(minutes=settings.cache_ttl_minutes)

    # ========== Cache Helpers ==========

    def _get_from_cache(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired."""
        if key not in self._cache:
            return None

        data, expiry = self._cache[key]
        if utc_now() > expiry:
            del self._cache[key]
            return None

        return data

    def _set_cache(self, key: str, value: Any) -> None:
        """Set value in cache with TTL."""
        self._cache[key] = (value, utc_now() + self._cache_ttl)

    def _clear_cache(self, pattern: Optional[str] = None) -> None:
        """Clear cache entries matching pattern, or all if pattern is None."""
        if pattern is None:
            self._cache.clear()
        else:
            for key in [k for k in self._cache if pattern in k]:
                del self._cache[key]

    # ========== Appointment Operations ==========

    async def create_appointment(self, appointment: Appointment) -> Appointment:
        """Insert one appointment row."""
        try:
            data = appointment.model_dump(
                mode="json",
                exclude_none=True,
                exclude={"id", "created_at", "updated_at"},
            )
            response = self.client.table(APPOINTMENTS_TABLE).insert(data).execute()

            if not response.data:
                raise DatabaseError("Failed to create appointment: no data returned")

            return self._parse_appointment(response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Failed to create appointment: {e}") from e

    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        """Get appointment by ID."""
        try:
            response = (
                self.client.table(APPOINTMENTS_TABLE)
                .select("*")
                .eq("id", appointment_id)
                .execute()
            )

            if response.data:
                return self._parse_appointment(response.data[0])
            return None
        except Exception as e:
            raise DatabaseError(f"Failed to get appointment: {e}") from e

    async def get_appointments_by_ids(
        self, appointment_ids: List[str]
    ) -> Dict[str, Appointment]:
        """
        Batch fetch multiple appointments by IDs.

        Returns:
            Dictionary mapping appointment_id -> Appointment
        """
        if not appointment_ids:
            return {}

        try:
            response = (
                self.client.table(APPOINTMENTS_TABLE)
                .select("*")
                .in_("id", appointment_ids)
                .execute()
            )

            appointments = {}
            for item in response.data:
                appointment = self._parse_appointment(item)
                appointments[appointment.id] = appointment
            return appointments
        except Exception as e:
            raise DatabaseError(f"Failed to get appointments by IDs: {e}") from e

    async def get_provider_appointments(
        self, provider_id: str, start: datetime, end: datetime
    ) -> List[Appointment]:
        """Non-cancelled appointments of a provider overlapping ``[start, end)``."""
        try:
            response = (
                self.client.table(APPOINTMENTS_TABLE)
                .select("*")
                .eq("provider_id", provider_id)
                .neq("status", AppointmentStatus.CANCELLED.value)
                .lt("start_time", to_iso_string(end))
                .gt("end_time", to_iso_string(start))
                .order("start_time", desc=False)
                .execute()
            )

            return [self._parse_appointment(item) for item in response.data]
        except Exception as e:
            raise DatabaseError(f"Failed to get provider appointments: {e}") from e

    async def get_series_appointments(self, series_id: str) -> List[Appointment]:
        """All instances of a recurring series in chronological order."""
        try:
            response = (
                self.client.table(APPOINTMENTS_TABLE)
                .select("*")
                .eq("recurring_appointment_id", series_id)
                .order("start_time", desc=False)
                .execute()
            )

            return [self._parse_appointment(item) for item in response.data]
        except Exception as e:
            raise DatabaseError(f"Failed to get series appointments: {e}") from e

    async def update_appointment(
        self, appointment_id: str, data: Dict[str, Any]
    ) -> Optional[Appointment]:
        """Update appointment fields; returns None if the row does not exist."""
        try:
            update_data = {**data, "updated_at": to_iso_string(utc_now())}

            response = (
                self.client.table(APPOINTMENTS_TABLE)
                .update(update_data)
                .eq("id", appointment_id)
                .execute()
            )

            if not response.data:
                return None

            return self._parse_appointment(response.data[0])
        except Exception as e:
            raise DatabaseError(f"Failed to update appointment: {e}") from e

    async def cancel_appointments(
        self, appointment_ids: List[str], reason: Optional[str] = None
    ) -> int:
        """Mark appointments as cancelled; returns how many rows changed."""
        if not appointment_ids:
            return 0

        try:
            update_data = {
                "status": AppointmentStatus.CANCELLED.value,
                "updated_at": to_iso_string(utc_now()),
            }
            if reason:
                update_data["cancellation_reason"] = reason

            response = (
                self.client.table(APPOINTMENTS_TABLE)
                .update(update_data)
                .in_("id", appointment_ids)
                .execute()
            )
            return len(response.data or [])
        except Exception as e:
            raise DatabaseError(f"Failed to cancel appointments: {e}") from e

    # ========== Recurring Series Operations ==========

    async def create_series(self, series: RecurringSeries) -> RecurringSeries:
        """Insert a recurring series row."""
        try:
            data = series.model_dump(
                mode="json",
                exclude_none=True,
                exclude={"id", "created_at", "updated_at"},
            )
            response = self.client.table(SERIES_TABLE).insert(data).execute()

            if not response.data:
                raise DatabaseError("Failed to create series: no data returned")

            return self._parse_series(response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Failed to create series: {e}") from e

    async def get_series(self, series_id: str) -> Optional[RecurringSeries]:
        """Get recurring series by ID."""
        try:
            response = (
                self.client.table(SERIES_TABLE).select("*").eq("id", series_id).execute()
            )

            if response.data:
                return self._parse_series(response.data[0])
            return None
        except Exception as e:
            raise DatabaseError(f"Failed to get series: {e}") from e

    async def update_series(
        self, series_id: str, data: Dict[str, Any]
    ) -> Optional[RecurringSeries]:
        """Update series fields; returns None if the row does not exist."""
        try:
            update_data = {**data, "updated_at": to_iso_string(utc_now())}

            response = (
                self.client.table(SERIES_TABLE)
                .update(update_data)
                .eq("id", series_id)
                .execute()
            )

            if not response.data:
                return None

            return self._parse_series(response.data[0])
        except Exception as e:
            raise DatabaseError(f"Failed to update series: {e}") from e

    async def create_exception(self, exception: SeriesException) -> SeriesException:
        """Record a single-instance exception of a series."""
        try:
            data = exception.model_dump(
                mode="json", exclude_none=True, exclude={"id", "created_at"}
            )
            response = self.client.table(EXCEPTIONS_TABLE).insert(data).execute()

            if not response.data:
                raise DatabaseError("Failed to create exception: no data returned")

            return SeriesException(**response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Failed to create series exception: {e}") from e

    # ========== Availability Operations ==========

    async def get_provider_availability(
        self, provider_id: str
    ) -> List[ProviderAvailability]:
        """
        Weekly availability template of a provider.

        Uses cache to reduce database load; every conflict check reads it.
        """
        cache_key = f"availability:{provider_id}"
        cached = self._get_from_cache(cache_key)
        if cached is not None:
            return cached

        try:
            response = (
                self.client.table(AVAILABILITY_TABLE)
                .select("*")
                .eq("provider_id", provider_id)
                .order("day_of_week", desc=False)
                .execute()
            )

            availability = [ProviderAvailability(**item) for item in response.data]
            self._set_cache(cache_key, availability)
            return availability
        except Exception as e:
            raise DatabaseError(f"Failed to get provider availability: {e}") from e

    async def upsert_availability(
        self, availability: ProviderAvailability
    ) -> ProviderAvailability:
        """Create or replace a provider's record for one weekday."""
        try:
            data = availability.model_dump(
                mode="json", exclude_none=True, exclude={"id", "created_at", "updated_at"}
            )
            response = (
                self.client.table(AVAILABILITY_TABLE)
                .upsert(data, on_conflict="provider_id,day_of_week")
                .execute()
            )

            if not response.data:
                raise DatabaseError("Failed to save availability: no data returned")

            self._clear_cache(f"availability:{availability.provider_id}")
            return ProviderAvailability(**response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Failed to save availability: {e}") from e

    async def get_blocked_slots(
        self, start: datetime, end: datetime, provider_id: Optional[str] = None
    ) -> List[BlockedSlot]:
        """
        Blocked slots that may affect ``[start, end)``.

        Practice-wide blocks (no provider) are always included. Recurring
        blocks are returned whenever they begin before ``end`` since their
        later occurrences may fall inside the window.
        """
        try:
            query = (
                self.client.table(BLOCKED_SLOTS_TABLE)
                .select("*")
                .lt("start_time", to_iso_string(end))
            )
            if provider_id:
                query = query.or_(f"provider_id.eq.{provider_id},provider_id.is.null")

            response = query.order("start_time", desc=False).execute()

            blocked = []
            for item in response.data:
                slot = self._parse_blocked_slot(item)
                if slot.is_recurring or slot.end_time > start:
                    blocked.append(slot)
            return blocked
        except Exception as e:
            raise DatabaseError(f"Failed to get blocked slots: {e}") from e

    # ========== Patient / Profile Operations ==========

    async def get_patient(self, patient_id: str) -> Optional[Patient]:
        """Get patient by ID."""
        try:
            response = (
                self.client.table(PATIENTS_TABLE).select("*").eq("id", patient_id).execute()
            )

            if response.data:
                return self._parse_patient(response.data[0])
            return None
        except Exception as e:
            raise DatabaseError(f"Failed to get patient: {e}") from e

    async def update_patient_custom_fields(
        self, patient_id: str, values: CustomFieldValues
    ) -> Patient:
        """Store validated custom-field values on a patient."""
        try:
            response = (
                self.client.table(PATIENTS_TABLE)
                .update(
                    {
                        "custom_fields": values.model_dump(mode="json"),
                        "updated_at": to_iso_string(utc_now()),
                    }
                )
                .eq("id", patient_id)
                .execute()
            )

            if not response.data:
                raise DatabaseError(f"Patient {patient_id} was not updated")

            return self._parse_patient(response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Failed to update patient custom fields: {e}") from e

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        """Get a staff profile by auth user ID."""
        cache_key = f"profile:{user_id}"
        cached = self._get_from_cache(cache_key)
        if cached is not None:
            return cached

        try:
            response = (
                self.client.table(PROFILES_TABLE).select("*").eq("user_id", user_id).execute()
            )

            if response.data:
                profile = Profile(**response.data[0])
                self._set_cache(cache_key, profile)
                return profile
            return None
        except Exception as e:
            raise DatabaseError(f"Failed to get profile: {e}") from e

    # ========== Reminder Operations ==========

    async def create_reminder(self, reminder: ReminderCreate) -> AppointmentReminder:
        """Create a pending reminder for an appointment."""
        try:
            data = reminder.model_dump(mode="json", exclude_none=True)
            data["status"] = ReminderStatus.PENDING.value

            response = self.client.table(REMINDERS_TABLE).insert(data).execute()

            if not response.data:
                raise DatabaseError("Failed to create reminder: no data returned")

            return self._parse_reminder(response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Failed to create reminder: {e}") from e

    async def get_pending_reminders(self, limit: int = 200) -> List[AppointmentReminder]:
        """Reminders that have not been sent yet, oldest first."""
        try:
            response = (
                self.client.table(REMINDERS_TABLE)
                .select("*")
                .eq("status", ReminderStatus.PENDING.value)
                .order("created_at", desc=False)
                .limit(limit)
                .execute()
            )

            return [self._parse_reminder(item) for item in response.data]
        except Exception as e:
            raise DatabaseError(f"Failed to get pending reminders: {e}") from e

    async def update_reminder_status(
        self, reminder_id: str, status: ReminderStatus
    ) -> Optional[AppointmentReminder]:
        """Update reminder status; sent reminders get a sent_at timestamp."""
        try:
            update_data: Dict[str, Any] = {"status": status.value}
            if status == ReminderStatus.SENT:
                update_data["sent_at"] = to_iso_string(utc_now())

            response = (
                self.client.table(REMINDERS_TABLE)
                .update(update_data)
                .eq("id", reminder_id)
                .execute()
            )

            if not response.data:
                return None

            return self._parse_reminder(response.data[0])
        except Exception as e:
            raise DatabaseError(f"Failed to update reminder status: {e}") from e

    # ========== User Settings ==========

    async def load_session_preferences(self, user_id: str) -> SessionPreferences:
        """Load the user's scheduling preferences; defaults when none are stored."""
        try:
            response = (
                self.client.table(USER_SETTINGS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .eq("setting_key", SETTING_KEY)
                .execute()
            )

            row = response.data[0] if response.data else None
            return SessionPreferences.from_settings_row(user_id, row)
        except Exception as e:
            raise DatabaseError(f"Failed to load user preferences: {e}") from e

    async def save_session_preferences(self, preferences: SessionPreferences) -> None:
        try:
            self.client.table(USER_SETTINGS_TABLE).upsert(
                {
                    "user_id": preferences.user_id,
                    "setting_key": SETTING_KEY,
                    "setting_value": preferences.to_setting_value(),
                    "updated_at": to_iso_string(utc_now()),
                },
                on_conflict="user_id,setting_key",
            ).execute()
        except Exception as e:
            raise DatabaseError(f"Failed to save user preferences: {e}") from e

    # ========== Edge Functions ==========

    async def invoke_function(self, name: str, body: Dict[str, Any]) -> Any:
        """
        Invoke a Supabase edge function.

        Raises:
            NotificationError: if the function call fails
        """
        try:
            return self.client.functions.invoke(name, invoke_options={"body": body})
        except Exception as e:
            raise NotificationError(f"Edge function {name} failed: {e}") from e

    # ========== Helper Methods ==========

    def _parse_appointment(self, item: dict) -> Appointment:
        """
        Parse appointment data from database response.

        Args:
            item: Raw appointment row

        Returns:
            Parsed Appointment object
        """
        item = item.copy()
        for field in ("start_time", "end_time", *_TIMESTAMP_FIELDS):
            if item.get(field):
                item[field] = parse_iso_datetime(item[field])
        if item.get("is_recurring") is None:
            item["is_recurring"] = False
        return Appointment(**item)

    def _parse_series(self, item: dict) -> RecurringSeries:
        """Parse a series row; template and pattern may be JSON strings."""
        item = item.copy()
        base = item.get("base_appointment")
        if isinstance(base, str):
            base = json.loads(base)
        pattern = item.get("pattern")
        if isinstance(pattern, str):
            item["pattern"] = RecurrencePattern.from_json(pattern)
        item["base_appointment"] = AppointmentCreate(**base)
        for field in ("cancelled_from", "last_generated", *_TIMESTAMP_FIELDS):
            if item.get(field):
                item[field] = parse_iso_datetime(item[field])
        return RecurringSeries(**item)

    def _parse_blocked_slot(self, item: dict) -> BlockedSlot:
        item = item.copy()
        for field in ("start_time", "end_time", *_TIMESTAMP_FIELDS):
            if item.get(field):
                item[field] = parse_iso_datetime(item[field])
        return BlockedSlot(**item)

    def _parse_reminder(self, item: dict) -> AppointmentReminder:
        item = item.copy()
        for field in ("sent_at", "created_at"):
            if item.get(field):
                item[field] = parse_iso_datetime(item[field])
        return AppointmentReminder(**item)

    def _parse_patient(self, item: dict) -> Patient:
        """
        Parse a patient row.

        Stored custom fields are either already-validated values
        (``{"schema_version", "values"}``) or a raw upstream array.
        """
        item = item.copy()
        raw = item.pop("custom_fields", None)
        if isinstance(raw, dict) and "schema_version" in raw:
            item["custom_fields"] = CustomFieldValues(**raw)
        else:
            try:
                item["custom_fields"] = PATIENT_CUSTOM_FIELDS.parse(raw)
            except ValidationError as e:
                logger.warning(
                    f"Ignoring invalid custom fields of patient {item.get('id')}: {e}"
                )
                item["custom_fields"] = CustomFieldValues(
                    schema_version=PATIENT_CUSTOM_FIELDS.version
                )
        return Patient(**item)


# Global database client instance
_db_client: Optional[SupabaseClient] = None


def get_db_client() -> SupabaseClient:
    """Get or create database client instance."""
    global _db_client
    if _db_client is None:
        _db_client = SupabaseClient()
    return _db_client
