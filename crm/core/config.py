import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


APP_ENV = os.getenv("APP_ENV", "development")
APP_URL = os.getenv("APP_URL", "http://localhost:3000")
CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

DATABASE_URL = os.getenv("DATABASE_URL")
DB_POOL_TIMEOUT_SECONDS = _get_int(os.getenv("DB_POOL_TIMEOUT_SECONDS"), 10)
DB_CONNECT_TIMEOUT_SECONDS = _get_int(os.getenv("DB_CONNECT_TIMEOUT_SECONDS"), 5)
DB_STATEMENT_TIMEOUT_MS = _get_int(os.getenv("DB_STATEMENT_TIMEOUT_MS"), 5000)

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/New_York")
DEFAULT_SLOT_DURATION_MINUTES = _get_int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES"), 30)
DEFAULT_BOOKING_DURATION_MINUTES = _get_int(os.getenv("DEFAULT_BOOKING_DURATION_MINUTES"), 60)

# Tokens are issued by the external auth provider; this service only verifies them.
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "")

PUBLIC_API_KEY = os.getenv("PUBLIC_API_KEY", "")
CRON_SECRET = os.getenv("CRON_SECRET", "")

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "")
BUSINESS_NAME = os.getenv("BUSINESS_NAME", "Shallow Bay Advisors")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Shallow Bay Advisors <noreply@shallowbayadvisors.com>")
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
EMAIL_ENABLED = _get_bool(os.getenv("EMAIL_ENABLED"), default=True)

REMINDER_BATCH_SIZE = _get_int(os.getenv("REMINDER_BATCH_SIZE"), 50)
REMINDER_MAX_ATTEMPTS = _get_int(os.getenv("REMINDER_MAX_ATTEMPTS"), 3)
REMINDER_SEND_DELAY_SECONDS = _get_float(os.getenv("REMINDER_SEND_DELAY_SECONDS"), 1.0)
REMINDER_CLAIM_LEASE_MINUTES = _get_int(os.getenv("REMINDER_CLAIM_LEASE_MINUTES"), 10)


def validate_runtime_config() -> None:
    if APP_ENV.lower() != "production":
        return
    if JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if not CRON_SECRET:
        raise RuntimeError("CRON_SECRET must be set in production.")
