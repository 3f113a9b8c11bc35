import os
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Reads a secret from Docker secrets if available,
    otherwise falls back to a normal environment variable.
    """
    file_path = os.getenv(f"{name}_FILE")
    if file_path and os.path.exists(file_path):
        with open(file_path, "r") as f:
            return f.read().strip()
    return os.getenv(name, default)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LIMO_", env_file=".env", extra="ignore")

    APP_NAME: str = "Limo Booking API"
    LOG_LEVEL: str = "INFO"

    # Platform REST API (vehicle catalog, pricing rules, bookings, auth)
    API_BASE_URL: str = "http://localhost:5000"
    HTTP_TIMEOUT_SECONDS: float = 10.0
    LOGIN_URL: str = "/mobile-login?role=passenger"
    CHECKOUT_URL: str = "/checkout"
    BOOKING_RETURN_PATH: str = "/booking"
    # Pickup date and time are entered as wall-clock time in this zone
    SERVICE_TIMEZONE: str = "UTC"

    # TomTom search + routing
    TOMTOM_API_KEY: str = ""
    TOMTOM_BASE_URL: str = "https://api.tomtom.com"
    TOMTOM_COUNTRY_SET: str = "US"

    # Address suggestions
    SUGGESTION_DEBOUNCE_SECONDS: float = 0.3
    SUGGESTION_LIMIT: int = 5

    # Evaluate pricing rules in-process from a JSON file instead of calling the platform
    PRICING_RULES_FILE: Optional[Path] = None

    # Draft store
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    DRAFT_TTL_SECONDS: int = 86400  # 24h

    # In-process session registry; evicted sessions are rebuilt and restore() reloads their draft
    MAX_SESSIONS: int = 1000
    SESSION_IDLE_SECONDS: float = 1800.0

    @field_validator("API_BASE_URL", "TOMTOM_BASE_URL", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("REDIS_PORT", mode="after")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if v <= 0 or v > 65535:
            raise ValueError("Invalid REDIS_PORT")
        return v

    @property
    def tomtom_api_key(self) -> str:
        return self.TOMTOM_API_KEY or get_secret("TOMTOM_API_KEY", "") or ""

    @property
    def redis_password(self) -> Optional[str]:
        return self.REDIS_PASSWORD or get_secret("REDIS_PASSWORD")


settings = Settings()
