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
    DATABASE_URL: str = "sqlite:///./rescheduler.db"

    # Magic links (HMAC secret for capability tokens)
    MAGIC_LINKS_SECRET: str = ""
    MAGIC_LINK_TTL_DAYS: int = 7

    # Pending proposals older than this are swept to expired
    PROPOSAL_TTL_HOURS: int = 72

    # Frontend (decision/reschedule pages live here)
    FRONTEND_URL: str = "http://localhost:3000"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Notifications (dry-run unless explicitly enabled)
    NOTIFICATIONS_ENABLED: bool = False
    NOTIFICATIONS_FROM_EMAIL: str = "Practice Hub <notifications@localhost>"
    RESEND_API_KEY: str = ""
    SESSION_TITLE: str = "Practice Session"

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute on public magic-link endpoints)
    RATE_LIMIT_PUBLIC: int = 10

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def magic_link_ttl_seconds(self) -> int:
        return self.MAGIC_LINK_TTL_DAYS * 86400

    @property
    def frontend_base_url(self) -> str:
        return self.FRONTEND_URL.rstrip("/")


settings = Settings()
