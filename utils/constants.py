"""
Application-wide constants.
Centralizes magic numbers and table names.
"""

# Supabase tables
APPOINTMENTS_TABLE = "appointments"
SERIES_TABLE = "recurring_appointment_series"
EXCEPTIONS_TABLE = "appointment_exceptions"
AVAILABILITY_TABLE = "provider_availability"
BLOCKED_SLOTS_TABLE = "blocked_time_slots"
PATIENTS_TABLE = "patients"
PROFILES_TABLE = "profiles"
REMINDERS_TABLE = "appointment_reminders"
USER_SETTINGS_TABLE = "user_settings"

# Validation limits
MAX_TITLE_LENGTH = 200
MAX_NOTES_LENGTH = 1000
MAX_REASON_LENGTH = 500
MAX_TOUR_NAME_LENGTH = 100
MAX_GENERATE_COUNT = 365  # Upper bound for a single series expansion
MAX_SLOT_DURATION_MINUTES = 480

# Time constants
DAYS_IN_WEEK = 7

# Fallback provider name written on appointments when the profile has none
UNKNOWN_PROVIDER_NAME = "Unknown Provider"
