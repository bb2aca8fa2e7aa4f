"""Realtime change events pushed by the database."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from utils.datetime_utils import parse_iso_datetime


class ChangeType(str, Enum):
    """Postgres change kind."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ALL = "*"


class EventFilter(BaseModel):
    """Which changes a subscriber wants to receive."""

    table: str
    event: ChangeType = ChangeType.ALL
    schema_name: str = "public"
    column: Optional[str] = None
    value: Optional[str] = None

    @property
    def postgres_filter(self) -> Optional[str]:
        """Row filter in the realtime ``column=eq.value`` syntax."""
        if self.column and self.value is not None:
            return f"{self.column}=eq.{self.value}"
        return None

    @property
    def topic(self) -> str:
        suffix = f":{self.column}={self.value}" if self.postgres_filter else ""
        return f"{self.schema_name}:{self.table}:{self.event.value}{suffix}"


class ChangeEvent(BaseModel):
    """One insert/update/delete notification."""

    table: str
    type: ChangeType
    record: Dict[str, Any] = Field(default_factory=dict)
    old_record: Dict[str, Any] = Field(default_factory=dict)
    commit_timestamp: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChangeEvent":
        """
        Decode a realtime postgres_changes payload.

        Accepts both the wrapped shape (``{"data": {...}, "ids": [...]}``)
        and the flat ``eventType/new/old`` shape.
        """
        data = payload.get("data", payload)
        event_type = data.get("type") or data.get("eventType")
        record = data.get("record") or data.get("new") or {}
        old_record = data.get("old_record") or data.get("old") or {}
        timestamp = data.get("commit_timestamp")

        return cls(
            table=data.get("table", ""),
            type=ChangeType(str(event_type).upper()),
            record=record,
            old_record=old_record,
            commit_timestamp=parse_iso_datetime(timestamp) if timestamp else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
