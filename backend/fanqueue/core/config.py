import os
from typing import List
from pydantic import BaseModel, Field

class Settings(BaseModel):
    DATABASE_URL: str
    SECRET_KEY: str
    CORS_ORIGINS: List[str]
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    REDIS_URL: str = "redis://redis:6379/0"

    # Payments
    PAYMENT_PROVIDER: str = "stripe"
    STRIPE_SECRET_KEY: str | None = None
    PAYMENT_WEBHOOK_SECRET: str | None = None
    PLATFORM_FEE_PERCENT: int = Field(default=10, ge=0, le=100)
    DEFAULT_CURRENCY: str = "usd"

    # Queue policy
    POSITION_UPDATE_THRESHOLD: int = Field(default=3, ge=1)
    COMING_UP_WINDOW_MINUTES: int = Field(default=15, gt=0)
    NEXT_UP_WINDOW_MINUTES: int = Field(default=5, gt=0)
    MISSED_GRACE_MINUTES: int = Field(default=5, ge=0)
    EVENT_LOCK_TIMEOUT_SECONDS: float = Field(default=10, gt=0)

    # Scheduler
    SWEEP_INTERVAL_SECONDS: int = Field(default=300, ge=0)
    SCHEDULER_TOKEN: str | None = None

    @classmethod
    def load_from_env(cls):
        database_url = os.getenv("DATABASE_URL")
        secret_key = os.getenv("SECRET_KEY")

        cors_origins_str = os.getenv("CORS_ORIGINS", "http://localhost:3000")
        cors_origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]

        missing = []
        if not database_url:
            missing.append("DATABASE_URL")
        if not secret_key:
            missing.append("SECRET_KEY")

        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        # Optional values fall back to the model defaults when unset
        optional = {
            name: os.environ[name]
            for name in (
                "ENVIRONMENT",
                "LOG_LEVEL",
                "REDIS_URL",
                "PAYMENT_PROVIDER",
                "STRIPE_SECRET_KEY",
                "PAYMENT_WEBHOOK_SECRET",
                "PLATFORM_FEE_PERCENT",
                "DEFAULT_CURRENCY",
                "POSITION_UPDATE_THRESHOLD",
                "COMING_UP_WINDOW_MINUTES",
                "NEXT_UP_WINDOW_MINUTES",
                "MISSED_GRACE_MINUTES",
                "EVENT_LOCK_TIMEOUT_SECONDS",
                "SWEEP_INTERVAL_SECONDS",
                "SCHEDULER_TOKEN",
            )
            if os.getenv(name)
        }

        return cls(
            DATABASE_URL=database_url,
            SECRET_KEY=secret_key,
            CORS_ORIGINS=cors_origins,
            **optional
        )

# Load settings immediately so a misconfigured deployment fails at startup/import time.
# Test runs must not silently pick up production credentials, so they get
# an in-memory database, a throwaway secret and the mock payment provider.
_is_test_mode = os.getenv("TEST_MODE", "").lower() == "true" or os.getenv("PYTEST_CURRENT_TEST") is not None

try:
    settings = Settings.load_from_env()
except ValueError as e:
    if _is_test_mode:
        import secrets
        settings = Settings(
            DATABASE_URL=os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:"),
            SECRET_KEY=os.getenv("TEST_SECRET_KEY") or secrets.token_urlsafe(32),
            CORS_ORIGINS=["http://localhost:3000"],
            ENVIRONMENT="test",
            PAYMENT_PROVIDER="mock",
            PAYMENT_WEBHOOK_SECRET="whsec_test",
            SCHEDULER_TOKEN="scheduler-test-token",
            SWEEP_INTERVAL_SECONDS=0,
        )
    else:
        print(f"CRITICAL: Configuration Error: {e}")
        print("Please set the required environment variables: DATABASE_URL, SECRET_KEY")
        raise e
