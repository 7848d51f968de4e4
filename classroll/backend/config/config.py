import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """
    Settings read directly from environment variables.
    """
    # Database
    DATABASE_URL: str = os.environ.get("DATABASE_URL")

    # Redis: notification idempotency tokens and rate limiter storage
    APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL")
    RATE_LIMITER_REDIS_URL: str = os.environ.get("RATE_LIMITER_REDIS_URL", "memory://")

    # JWT verification (tokens are issued elsewhere)
    SECRET_KEY: str = os.environ.get("SECRET_KEY")
    ALGORITHM: str = os.environ.get("ALGORITHM", "HS256")

    # Calendar dates and "HH:MM" strings are interpreted in this timezone
    APP_TIMEZONE: str = os.environ.get("APP_TIMEZONE", "Africa/Johannesburg")

    # Check-in guards
    SCHOOL_PUBLIC_IP: str = os.environ.get("SCHOOL_PUBLIC_IP")
    REQUIRE_LOCATION_FOR_CHECK_IN: bool = _env_bool("REQUIRE_LOCATION_FOR_CHECK_IN", False)

    # Push gateway
    NOTIFICATION_SERVICE_URL: str = os.environ.get("NOTIFICATION_SERVICE_URL", "http://localhost:8100")
    NOTIFICATION_TIMEOUT_SECONDS: float = float(os.environ.get("NOTIFICATION_TIMEOUT_SECONDS", 10))
    NOTIFICATION_TOKEN_TTL_SECONDS: int = int(os.environ.get("NOTIFICATION_TOKEN_TTL_SECONDS", 86400))

    # Lifecycle job
    STORE_TIMEOUT_SECONDS: float = float(os.environ.get("STORE_TIMEOUT_SECONDS", 15))
    LIFECYCLE_TICK_MINUTES: int = int(os.environ.get("LIFECYCLE_TICK_MINUTES", 5))
    RETENTION_TICK_MINUTES: int = int(os.environ.get("RETENTION_TICK_MINUTES", 60))
    REMINDER_LOOKAHEAD_MINUTES: int = int(os.environ.get("REMINDER_LOOKAHEAD_MINUTES", 30))
    ATTENDANCE_RETENTION_DAYS: int = int(os.environ.get("ATTENDANCE_RETENTION_DAYS", 365))

    # Logging
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.environ.get("LOG_DIR", "logs")

# Single importable settings instance
settings = Config()
