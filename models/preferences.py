"""Per-session user preferences."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from config import settings


# user_settings.setting_key holding these preferences
SETTING_KEY = "scheduling_preferences"


class SessionPreferences(BaseModel):
    """
    Preferences of the signed-in user for one session.

    Loaded from user_settings when the session starts and handed to the
    components that need them; written back when the session ends.
    """

    user_id: str
    timezone: str = Field(default_factory=lambda: settings.timezone)
    default_duration_minutes: int = Field(
        default_factory=lambda: settings.default_slot_duration_minutes, gt=0
    )
    buffer_minutes: int = Field(
        default_factory=lambda: settings.default_buffer_minutes, ge=0
    )
    default_generate_count: int = Field(
        default_factory=lambda: settings.default_generate_count, gt=0
    )
    completed_tours: List[str] = Field(default_factory=list)
    dirty: bool = Field(default=False, exclude=True)

    def tour_completed(self, tour: str) -> bool:
        return tour in self.completed_tours

    def mark_tour_completed(self, tour: str) -> None:
        if tour not in self.completed_tours:
            self.completed_tours.append(tour)
            self.dirty = True

    @classmethod
    def from_settings_row(
        cls, user_id: str, row: Optional[Dict[str, Any]]
    ) -> "SessionPreferences":
        """Build from the user_settings row keyed ``scheduling_preferences``."""
        stored = (row or {}).get("setting_value") or {}
        values = {k: v for k, v in stored.items() if v is not None and k != "user_id"}
        return cls(user_id=user_id, **values)

    def to_setting_value(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"user_id", "dirty"})
