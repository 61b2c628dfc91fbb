from datetime import tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ROSTERING_", env_file=".env", extra="ignore"
    )

    app_name: str = "Rostering API"
    log_level: str = "INFO"

    # IANA zone the clinic schedules in; shift windows are wall-clock times
    timezone: str = "UTC"

    # Shifts are materialized for the current month plus this many months
    generation_months_ahead: int = 1
    generate_on_create: bool = True

    @property
    def tz(self) -> tzinfo:
        return ZoneInfo(self.timezone)


@lru_cache
def get_settings() -> Settings:
    return Settings()
