from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """App settings loaded from environment variables (.env)."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "Issue Tracker"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # SECURITY
    SECRET_KEY: str = "CHANGE_ME"
    COOKIE_SECURE: bool = False   # set True behind HTTPS
    COOKIE_SAMESITE: str = "lax"
    SESSION_MAX_AGE_SECONDS: int = 60 * 60 * 12  # 12h
    # One password shared by every role; the role is picked on the login page.
    SHARED_PASSWORD: str = "1111"

    # CORS
    CORS_ALLOW_ORIGINS: str = "*"  # "*" or "https://a.com,https://b.com"
    CORS_ALLOW_CREDENTIALS: bool = False

    # DATABASE / CACHE
    DATABASE_DSN: str = "sqlite:///./issue_tracker.db"
    REDIS_URL: str = "redis://127.0.0.1:6379/0"
    REDIS_TIMEOUT_SECONDS: float = 2.0

    # SUBMISSION IDS
    COUNTER_BACKEND: str = "sql"  # sql | redis | memory
    COUNTER_NAME: str = "SUBMISSION_COUNTER"
    SUBMISSION_ID_PREFIX: str = "SUB-"
    SUBMISSION_ID_WIDTH: int = 4
    ALLOCATOR_MAX_RETRIES: int = 5

    # UPLOADS
    UPLOAD_DIR: str = "./uploads"
    UPLOAD_URL_PREFIX: str = "/uploads"
    ATTACHMENT_WARN_MB: int = 100
    ATTACHMENT_MAX_MB: int = 200

    # LIST / LIVE FEED
    LIST_LIMIT: int = 200
    LIVE_POLL_SECONDS: float = 5.0

    def cors_origins(self) -> list[str]:
        s = (self.CORS_ALLOW_ORIGINS or "").strip()
        if not s or s == "*":
            return ["*"]
        return [x.strip() for x in s.split(",") if x.strip()]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_DSN.startswith("sqlite")


settings = Settings()
