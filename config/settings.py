"""
config/settings.py
Environment-driven configuration for the vehicle-care booking service.
Read once through get_settings(); every module imports `settings`.
"""

from functools import lru_cache
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Service ──────────────────────────────────────────────
    APP_NAME: str = "Vehicle Care Booking API"
    APP_ENV: str = "development"        # development | test | production
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    # ── Storage ──────────────────────────────────────────────
    DATABASE_URL: str                   # postgresql+asyncpg://... or sqlite+aiosqlite://...
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_PAYMENT_LOCK_TTL: int = 60    # seconds a verification may hold a payment id

    # ── Access tokens ────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 20

    # ── Razorpay checkout ────────────────────────────────────
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_CURRENCY: str = "INR"
    GATEWAY_FAIL_MAX: int = 5           # consecutive failures before the breaker opens
    GATEWAY_RESET_TIMEOUT: int = 60     # seconds before a half-open trial call

    # ── Scheduling & pricing ─────────────────────────────────
    BUSINESS_TIMEZONE: str = "Asia/Kolkata"
    ADVANCE_PAYMENT_PERCENT: int = 30
    CHECKOUT_SESSION_TTL_MINUTES: int = 15
    AVAILABLE_DAYS_AHEAD: int = 30

    # ── Background audit ─────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    @field_validator("BUSINESS_TIMEZONE")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("ADVANCE_PAYMENT_PERCENT")
    @classmethod
    def _percent_range(cls, value: int) -> int:
        if not 0 < value <= 100:
            raise ValueError("ADVANCE_PAYMENT_PERCENT must be in 1..100")
        return value

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def sync_database_url(self) -> str:
        """Blocking-driver URL for Celery workers."""
        return self.DATABASE_URL.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
