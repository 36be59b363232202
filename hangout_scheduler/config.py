from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # =================================================================
    # SCHEDULING POLICY - business window and candidate grid
    # =================================================================
    SCHEDULING_TIMEZONE: str = "UTC"
    BUSINESS_DAY_START_HOUR: int = 9
    BUSINESS_DAY_END_HOUR: int = 21
    SLOT_GRID_MINUTES: int = 30
    AVAILABILITY_SCAN_DAYS: int = 14

    # Unverified sample used when a calendar cannot be read
    DEGRADED_SAMPLE_START_HOUR: int = 9
    DEGRADED_SAMPLE_END_HOUR: int = 18
    DEGRADED_SLOTS_PER_DAY: int = 3

    # Persona derived for creators that have none
    DEFAULT_PERSONA_NAME: str = "Me"

    # Google Calendar settings
    GOOGLE_CALENDAR_API_BASE_URL: str = "https://www.googleapis.com/calendar/v3"
    CALENDAR_REQUEST_TIMEOUT: float = 30.0
    CALENDAR_MAX_RETRIES: int = 3
    CALENDAR_BACKOFF_FACTOR: float = 2.0
    TOKEN_REFRESH_BUFFER_MINUTES: int = 5

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def scheduling_tz(self) -> ZoneInfo:
        """Local zone used for the business window."""
        return ZoneInfo(self.SCHEDULING_TIMEZONE)

    def get_calendar_client_config(self) -> dict:
        """
        Get Google Calendar client configuration.
        Shorter timeouts in development so a hung API call surfaces quickly.
        """
        config = {
            "base_url": self.GOOGLE_CALENDAR_API_BASE_URL,
            "timeout": self.CALENDAR_REQUEST_TIMEOUT,
            "max_retries": self.CALENDAR_MAX_RETRIES,
            "backoff_factor": self.CALENDAR_BACKOFF_FACTOR,
        }

        if self.environment == "development":
            config.update({"timeout": min(self.CALENDAR_REQUEST_TIMEOUT, 15.0)})

        return config


settings = Settings()
