"""
Typed custom fields for patient records.

The marketing CRM returns custom fields as loose arrays such as
``[{"id": "abc", "value": "..."}]`` or ``[{"name": "Allergies", "value": ...}]``.
A ``CustomFieldSchema`` maps those entries onto a fixed set of typed keys;
the parsed ``CustomFieldValues`` distinguishes an absent field from a
present one holding an empty value.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from utils.datetime_utils import parse_iso_datetime
from utils.exceptions import ValidationError
from utils.validation import sanitize_text, validate_email, validate_phone


class CustomFieldType(str, Enum):
    """Value type of a custom field."""

    TEXT = "text"
    PHONE = "phone"
    EMAIL = "email"
    DATE = "date"
    DATETIME = "datetime"
    BOOLEAN = "boolean"
    NUMBER = "number"


class CustomFieldDefinition(BaseModel):
    """One key of the schema and the identifiers it is known by upstream."""

    key: str
    name: str
    type: CustomFieldType = CustomFieldType.TEXT
    field_id: Optional[str] = None
    required: bool = False


class CustomFieldValues(BaseModel):
    """Validated custom-field values for one record."""

    schema_version: int
    values: Dict[str, Any] = Field(default_factory=dict)

    def is_present(self, key: str) -> bool:
        return key in self.values

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


class CustomFieldSchema(BaseModel):
    """Versioned set of custom-field definitions."""

    version: int
    fields: List[CustomFieldDefinition]

    def definition(self, key: str) -> CustomFieldDefinition:
        for field in self.fields:
            if field.key == key:
                return field
        raise ValidationError(f"Unknown custom field: {key}")

    def _match(self, entry: Dict[str, Any]) -> Optional[CustomFieldDefinition]:
        """Find the definition an upstream entry refers to: id, then key, then name."""
        entry_id = entry.get("id")
        entry_key = entry.get("key")
        entry_name = str(entry.get("name") or "").strip().lower()

        for field in self.fields:
            if entry_id and field.field_id and entry_id == field.field_id:
                return field
        for field in self.fields:
            if entry_key and entry_key == field.key:
                return field
        for field in self.fields:
            if entry_name and entry_name == field.name.lower():
                return field
        return None

    def parse(self, raw: Any, strict: bool = False) -> CustomFieldValues:
        """
        Validate upstream custom fields into typed values.

        Args:
            raw: list of ``{id|key|name, value}`` entries, a ``{key: value}``
                mapping, or None
            strict: raise on entries that match no definition instead of
                dropping them

        Raises:
            ValidationError: on malformed input, bad values or missing
                required fields
        """
        if raw is None:
            entries: List[Dict[str, Any]] = []
        elif isinstance(raw, dict):
            entries = [{"key": k, "value": v} for k, v in raw.items()]
        elif isinstance(raw, list):
            entries = raw
        else:
            raise ValidationError("Custom fields must be a list or an object")

        values: Dict[str, Any] = {}
        for entry in entries:
            if not isinstance(entry, dict):
                raise ValidationError("Custom field entries must be objects")

            field = self._match(entry)
            if field is None:
                if strict:
                    label = entry.get("key") or entry.get("id") or entry.get("name")
                    raise ValidationError(f"Unknown custom field: {label}")
                continue

            values[field.key] = _coerce(field, entry.get("value"))

        missing = [
            f.key for f in self.fields if f.required and values.get(f.key) in (None, "")
        ]
        if missing:
            raise ValidationError(f"Missing required custom fields: {', '.join(missing)}")

        return CustomFieldValues(schema_version=self.version, values=values)

    def to_payload(self, values: CustomFieldValues) -> List[Dict[str, Any]]:
        """Serialize back to the upstream ``customField`` array (by id when known)."""
        if values.schema_version != self.version:
            raise ValidationError(
                f"Values use schema v{values.schema_version}, expected v{self.version}"
            )

        payload = []
        for key, value in values.values.items():
            field = self.definition(key)
            if isinstance(value, (date, datetime)):
                value = value.isoformat()
            entry = {"id": field.field_id} if field.field_id else {"key": field.key}
            entry["value"] = "" if value is None else value
            payload.append(entry)
        return payload


def _coerce(field: CustomFieldDefinition, value: Any) -> Any:
    if value is None or value == "":
        return value

    try:
        if field.type == CustomFieldType.TEXT:
            return sanitize_text(str(value))
        if field.type == CustomFieldType.PHONE:
            if not validate_phone(str(value)):
                raise ValueError("invalid phone number")
            return str(value).strip()
        if field.type == CustomFieldType.EMAIL:
            if not validate_email(str(value)):
                raise ValueError("invalid email address")
            return str(value).strip()
        if field.type == CustomFieldType.DATE:
            return value if isinstance(value, date) else date.fromisoformat(str(value)[:10])
        if field.type == CustomFieldType.DATETIME:
            return value if isinstance(value, datetime) else parse_iso_datetime(str(value))
        if field.type == CustomFieldType.BOOLEAN:
            if isinstance(value, bool):
                return value
            lowered = str(value).strip().lower()
            if lowered in ("true", "yes", "1"):
                return True
            if lowered in ("false", "no", "0"):
                return False
            raise ValueError("not a boolean")
        if field.type == CustomFieldType.NUMBER:
            return float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid value for {field.name}: {e}") from e

    return value


# Patient intake fields kept in the marketing CRM
PATIENT_CUSTOM_FIELDS = CustomFieldSchema(
    version=1,
    fields=[
        CustomFieldDefinition(key="emergency_contact_name", name="Emergency Contact Name"),
        CustomFieldDefinition(
            key="emergency_contact_phone",
            name="Emergency Contact Phone",
            type=CustomFieldType.PHONE,
        ),
        CustomFieldDefinition(key="medical_insurance", name="Medical Insurance"),
        CustomFieldDefinition(key="auto_insurance", name="Auto Insurance"),
        CustomFieldDefinition(key="attorney_name", name="Attorney Name"),
        CustomFieldDefinition(
            key="attorney_phone", name="Attorney Phone", type=CustomFieldType.PHONE
        ),
        CustomFieldDefinition(key="allergies", name="Allergies"),
        CustomFieldDefinition(key="gender", name="Gender"),
        CustomFieldDefinition(
            key="next_appointment",
            name="Next Appointment",
            type=CustomFieldType.DATETIME,
        ),
    ],
)
