# backend/config.py
from pydantic_settings import BaseSettings
from typing import ClassVar
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

class Settings(BaseSettings):
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite:///./inventory_ledger.db"

    # "development" exposes error details in 500 responses
    ENVIRONMENT: str = "production"
    FRONTEND_URL: str = "http://localhost:5173"

    # Backoff policy for write conflicts and transient transaction errors (seconds)
    RETRY_MAX_RETRIES: int = 5
    RETRY_INITIAL_DELAY: float = 0.05
    RETRY_MAX_DELAY: float = 2.0
    RETRY_MULTIPLIER: float = 2.0
    RETRY_JITTER: bool = True

    # Duplicate submission guard
    IDEMPOTENCY_WINDOW_SECONDS: float = 60.0
    IDEMPOTENCY_POS_WINDOW_SECONDS: float = 5.0
    IDEMPOTENCY_RETENTION_SECONDS: float = 300.0
    IDEMPOTENCY_MAX_ENTRIES: int = 10000
    IDEMPOTENCY_REQUIRE_KEY: bool = False

    # Cart/checkout holds
    RESERVATION_DEFAULT_MINUTES: int = 15
    RESERVATION_SWEEP_MINUTES: int = 5

    SCHEDULER_ENABLED: bool = True

    class Config:
        env_file: ClassVar[str] = str(env_path)

settings = Settings()
