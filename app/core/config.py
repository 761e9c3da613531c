from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global application configuration.

    Values are loaded from environment variables (or a local `.env` file)
    at runtime.

    Groups
    ------
    - Service metadata and logging
    - DB connection
    - Microsoft Graph access (delegated tokens come from the caller)
    - Attendance classification thresholds per ingestion source
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Meeting Attendance Tracker"
    APP_ENV: str = Field("local", description="Environment name: local/dev/stage/prod")
    LOG_LEVEL: str = Field("INFO", description="Root log level for the service.")

    DB_URL: str = Field(
        "sqlite+aiosqlite:///./attendance.db",
        description="SQLAlchemy-compatible async database URL",
    )

    GRAPH_BASE_URL: str = Field(
        "https://graph.microsoft.com",
        description="Base URL of the Microsoft Graph API.",
    )
    GRAPH_TIMEOUT_SECONDS: float = Field(
        10.0,
        description="Timeout applied to every Graph HTTP call.",
    )

    # --- Classification thresholds ---
    SYNC_LATE_THRESHOLD_MINUTES: float = Field(
        15,
        description="Live Graph sync: joins later than this many minutes are 'late'.",
    )
    SYNC_MIN_ATTENDANCE_MINUTES: float = Field(
        5,
        description="Live Graph sync: attended durations below this are 'partial'.",
    )
    CSV_LATE_THRESHOLD_MINUTES: float = Field(
        10,
        description="CSV import: joins later than this many minutes are 'late'.",
    )
    CSV_MIN_ATTENDANCE_MINUTES: float = Field(
        30,
        description="CSV import: attended durations below this are 'partial'.",
    )

    SYNC_DEFAULT_DAYS_BACK: int = Field(
        7,
        description="Default look-back window for syncing recent meetings.",
    )
    SYNC_MAX_DAYS_BACK: int = Field(
        30,
        description="Upper bound accepted for the recent-meetings look-back window.",
    )

    CSV_MAX_UPLOAD_BYTES: int = Field(
        10 * 1024 * 1024,
        description="Maximum accepted size of an uploaded attendance CSV.",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Cached accessor for application settings.

    Using LRU cache ensures settings are read and validated only once,
    while still being easily importable across the app.
    """
    return Settings()
