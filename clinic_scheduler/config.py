from __future__ import annotations

from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CLINIC_", env_file=".env", extra="ignore")

    # Organization local clock used for slot keys and stored offsets
    timezone: str = "America/Santiago"

    slot_minutes: int = 30
    day_start_hour: int = 8
    day_end_hour: int = 20

    data_dir: str = "data"

    import_batch_size: int = 400
    import_batch_pause_seconds: float = 1.0

    recurrence_max_days: int = 1000
    strict_conflicts: bool = False

    holiday_country: str | None = None

    log_level: str = "INFO"

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


settings = Settings()
