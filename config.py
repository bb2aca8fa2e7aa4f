"""
Configuration module for the practice scheduling service.
Loads environment variables and provides typed configuration.
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file
env_path = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=env_path)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""  # service_role key, bypasses RLS

    # Edge functions
    notification_function: str = "send-notification-email"

    # Scheduling defaults (overridable per user through user_settings)
    timezone: str = "America/New_York"
    default_generate_count: int = 10
    default_slot_duration_minutes: int = 60
    default_buffer_minutes: int = 15

    # Reminders
    reminder_check_interval_minutes: int = 5
    reminder_batch_limit: int = 200

    # Data access
    cache_ttl_minutes: int = 5

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    environment: str = "development"  # development, staging, production
    api_token: Optional[str] = None  # Bearer token for the HTTP API
    log_level: str = "INFO"

    # Redis Configuration (for APScheduler cluster support)
    redis_url: Optional[str] = (
        None  # Redis connection URL (e.g., redis://localhost:6379/0)
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def validate_all_required(self) -> None:
        """
        Validate that all required settings are present.

        Raises:
            ValueError: If required fields are missing or invalid
        """
        required_fields = ["supabase_url", "supabase_key"]
        if self.is_production:
            required_fields.append("api_token")

        missing = []
        for field in required_fields:
            value = getattr(self, field, None)

            if not value:
                missing.append(field)
                continue

            # Check for placeholder values
            if str(value).lower().startswith("your_"):
                missing.append(field)

        if self.default_generate_count < 1:
            missing.append("default_generate_count")

        if missing:
            raise ValueError(
                f"Missing or invalid required configuration: "
                f"{', '.join(missing)}. "
                f"Please check your .env file and ensure all required "
                f"values are set."
            )


# Global settings instance
settings = Settings()
