"""Patient and provider profile models."""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from models.custom_fields import PATIENT_CUSTOM_FIELDS, CustomFieldValues


class Patient(BaseModel):
    """Patient record."""

    id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    ghl_contact_id: Optional[str] = None
    custom_fields: CustomFieldValues = Field(
        default_factory=lambda: CustomFieldValues(
            schema_version=PATIENT_CUSTOM_FIELDS.version
        )
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full_name or self.email or "Unknown Patient"


class Profile(BaseModel):
    """Staff profile; providers are profiles."""

    id: Optional[str] = None
    user_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full_name or self.email or ""
