"""Application configuration."""

from datetime import time
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="Clinic Scheduler API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")
    cache_enabled: bool = Field(default=True, alias="CACHE_ENABLED")

    # Clinic calendar
    clinic_timezone: str = Field(
        default="UTC",
        alias="CLINIC_TIMEZONE",
        description="IANA zone that defines calendar days and working hours",
    )
    work_start: time = Field(default=time(9, 0), alias="WORK_START")
    work_end: time = Field(default=time(18, 0), alias="WORK_END")
    default_slot_duration_minutes: int = Field(
        default=30, gt=0, alias="DEFAULT_SLOT_DURATION_MINUTES"
    )
    default_appointment_duration_minutes: int = Field(
        default=30, gt=0, alias="DEFAULT_APPOINTMENT_DURATION_MINUTES"
    )
    min_appointment_duration_minutes: int = Field(
        default=15, gt=0, alias="MIN_APPOINTMENT_DURATION_MINUTES"
    )
    max_appointment_duration_minutes: int = Field(
        default=240, gt=0, alias="MAX_APPOINTMENT_DURATION_MINUTES"
    )

    # Queue model (M/M/1)
    service_rate_lookback_days: int = Field(default=7, gt=0, alias="SERVICE_RATE_LOOKBACK_DAYS")
    working_hours_per_day: float = Field(default=8.0, gt=0, alias="WORKING_HOURS_PER_DAY")
    clinic_hours_per_day: float = Field(default=8.0, gt=0, alias="CLINIC_HOURS_PER_DAY")
    # At least 6 minutes per patient
    min_service_rate: float = Field(default=0.1, gt=0, alias="MIN_SERVICE_RATE")
    unstable_wait_fallback_minutes: int = Field(
        default=30, ge=0, alias="UNSTABLE_WAIT_FALLBACK_MINUTES"
    )
    queue_position_scale_divisor: int = Field(
        default=5, gt=0, alias="QUEUE_POSITION_SCALE_DIVISOR"
    )
    snapshot_window_start: time = Field(default=time(8, 0), alias="SNAPSHOT_WINDOW_START")
    snapshot_window_end: time = Field(default=time(16, 0), alias="SNAPSHOT_WINDOW_END")

    # Cache TTLs (seconds)
    queue_status_cache_ttl: int = Field(default=30, alias="QUEUE_STATUS_CACHE_TTL")
    queue_position_cache_ttl: int = Field(default=30, alias="QUEUE_POSITION_CACHE_TTL")
    wait_time_cache_ttl: int = Field(default=60, alias="WAIT_TIME_CACHE_TTL")
    arrival_rate_cache_ttl: int = Field(default=300, alias="ARRIVAL_RATE_CACHE_TTL")
    service_rate_cache_ttl: int = Field(default=3600, alias="SERVICE_RATE_CACHE_TTL")
    snapshot_cache_ttl: int = Field(default=21600, alias="SNAPSHOT_CACHE_TTL")

    # Daily snapshot scheduler
    snapshot_scheduler_enabled: bool = Field(default=False, alias="SNAPSHOT_SCHEDULER_ENABLED")
    snapshot_cron_hour: int = Field(default=23, ge=0, le=23, alias="SNAPSHOT_CRON_HOUR")
    snapshot_cron_minute: int = Field(default=59, ge=0, le=59, alias="SNAPSHOT_CRON_MINUTE")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def is_postgres(self) -> bool:
        """Check if the configured database is PostgreSQL."""
        return self.database_url.startswith("postgresql")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
