"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # Database
    DATABASE_URL: str = "sqlite+pysqlite:///./callgate.db"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Rate Limiting (webhook and flag writes)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    RATE_LIMIT_WEBHOOK: str = "60/minute"
    RATE_LIMIT_FLAGS: str = "30/minute"

    # Google OAuth (calendar free/busy access)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""

    # Token Encryption (for storing calendar OAuth tokens)
    FERNET_KEY: str = ""

    # Calendar fetches must never stall a booking request
    CALENDAR_FETCH_TIMEOUT_SECONDS: float = 5.0

    # Credit ledger
    DEFAULT_DM_MONTHLY_CALLS: int = 3  # Used when the DM's plan cannot be resolved
    ENGAGEMENT_SCORE_THRESHOLD: int = 40  # Percent
    DEFAULT_ENGAGEMENT_SCORE: int = 60  # DMs without a computed score yet

    # Flags and suspensions
    VIOLATION_THRESHOLD: int = 3
    VIOLATION_SUSPENSION_DAYS: int = 90
    FIXED_SUSPENSION_DAYS: int = 30
    FLAG_DEBOUNCE_HOURS: int = 24

    # Availability
    SLOT_INTERVAL_MINUTES: int = 15
    WORKING_HOURS_START: int = 8  # 8:00 AM
    WORKING_HOURS_END: int = 18  # 6:00 PM
    WORKING_DAYS: str = "0,1,2,3,4"  # Monday=0
    HOLIDAY_CALENDAR: str = ""  # e.g. "US"; empty disables holiday skipping
    DEFAULT_TIMEZONE: str = "UTC"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def working_days_list(self) -> list[int]:
        """Parse WORKING_DAYS into weekday numbers."""
        return [int(d) for d in self.WORKING_DAYS.split(",") if d.strip()]


settings = Settings()
