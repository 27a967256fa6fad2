"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # Internal scheduled endpoints (cron jobs, trusted event producers)
    INTERNAL_SECRET: str = ""  # Secret for /internal/* endpoints

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"

    # Automation engine
    AUTOMATION_MAX_REPORTED_ERRORS: int = 20  # Per-call bound on returned error summaries
    AUTOMATION_QUEUE_MAX_ATTEMPTS: int = 3  # Stamped on new queue entries for the action worker

    # Daily work-item scan
    WORK_ITEM_RENEWAL_HORIZON_DAYS: int = 30
    WORK_ITEM_EVENT_REMINDER_DAYS: int = 7
    WORK_ITEM_SCAN_MEMBERSHIP_LIMIT: int = 500
    WORK_ITEM_SCAN_DONATION_LIMIT: int = 300
    WORK_ITEM_SCAN_EVENT_LIMIT: int = 50

    @property
    def internal_secret_configured(self) -> bool:
        return bool(self.INTERNAL_SECRET)

    @property
    def sentry_enabled(self) -> bool:
        """Sentry only outside dev, and only with a DSN."""
        return bool(self.SENTRY_DSN) and self.ENV != "dev"


settings = Settings()
