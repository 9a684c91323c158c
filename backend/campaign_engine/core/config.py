"""Core configuration settings loaded from environment variables."""
from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Core
    APP_ENV: Literal["development", "staging", "production", "test"] = "development"
    APP_NAME: str = "Campaign Follow-up Engine"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = True

    # Database
    DB_TYPE: Literal["mysql", "sqlite"] = "sqlite"
    SQLITE_PATH: str = "./data/campaign_engine.db"
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_NAME: str = "campaign_engine"
    DB_USER: str = "campaign_user"
    DB_PASSWORD: str = "change_me"
    SQLITE_BUSY_TIMEOUT_SECONDS: int = 30

    @property
    def DATABASE_URL(self) -> str:
        if self.DB_TYPE == "sqlite":
            return f"sqlite:///{self.SQLITE_PATH}"
        return f"mysql+pymysql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Tracking beacons
    # Public base URL that recipients' mail clients can reach. Pixel, click and
    # unsubscribe links embedded in outbound mail are built from it.
    TRACKING_BASE_URL: str = "http://localhost:8000"
    # Only enable behind a proxy that overwrites X-Forwarded-For.
    TRUST_FORWARDED_FOR: bool = False
    BOT_USER_AGENT_PATTERNS: list[str] = [
        "bot", "crawler", "spider", "scanner", "preview",
        "curl", "wget", "postman", "insomnia", "httpie",
        "node", "axios", "fetch", "request", "python-requests",
        "go-http-client", "java/", "headless",
    ]

    # Dispatcher
    SCHEDULER_ENABLED: bool = True
    DISPATCH_INTERVAL_SECONDS: int = 30
    DISPATCH_BATCH_SIZE: int = 200
    DISPATCH_CONCURRENCY: int = 8
    TRANSPORT_TIMEOUT_SECONDS: int = 30
    # 0 means twice DISPATCH_CONCURRENCY, leaving headroom for calls abandoned on timeout.
    TRANSPORT_POOL_SIZE: int = 0
    # A lease older than this is considered abandoned by a crashed worker.
    LOCK_TIMEOUT_SECONDS: int = 300
    MAX_SEND_ATTEMPTS: int = 3
    RETRY_BACKOFF_SECONDS: int = 60  # doubled on every further attempt
    CAMPAIGN_SWEEP_INTERVAL_SECONDS: int = 60
    LEGACY_FOLLOWUP_INTERVAL_MINUTES: int = 5
    RECONCILE_INTERVAL_MINUTES: int = 60

    # Email Sending
    EMAIL_SEND_MODE: Literal["mock", "smtp"] = "mock"
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_NAME: str = ""


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
