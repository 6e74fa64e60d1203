import os

from dotenv import load_dotenv

# Load .env from the project root
load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def _env_int_list(name: str, default: str) -> list[int]:
    raw = os.getenv(name, default)
    return [int(part) for part in raw.split(",") if part.strip()]


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./onprez.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_STAGE = ENV_NORMALIZED in {"stage", "staging"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}
PUBLIC_BASE_DOMAIN = os.getenv("PUBLIC_BASE_DOMAIN", "onprez.com").strip().lower()

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

# Sessions (signed cookie)
SESSION_SECRET = os.getenv("SESSION_SECRET", "")
SESSION_MAX_AGE_SECONDS = int(os.getenv("SESSION_MAX_AGE_SECONDS", "604800"))
SESSION_COOKIE_SECURE = _env_flag("SESSION_COOKIE_SECURE", "0" if IS_DEV else "1")
SESSION_COOKIE_HTTPONLY = _env_flag("SESSION_COOKIE_HTTPONLY", "1")
SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "lax").strip().lower()
if SESSION_COOKIE_SAMESITE not in {"lax", "strict", "none"}:
    SESSION_COOKIE_SAMESITE = "lax"

_cookie_domain_env = os.getenv("SESSION_COOKIE_DOMAIN", "").strip()
if _cookie_domain_env:
    SESSION_COOKIE_DOMAIN = _cookie_domain_env
elif (IS_PROD or IS_STAGE) and PUBLIC_BASE_DOMAIN:
    SESSION_COOKIE_DOMAIN = f".{PUBLIC_BASE_DOMAIN}"
else:
    SESSION_COOKIE_DOMAIN = None

CRON_SECRET = os.getenv("CRON_SECRET", "").strip()

# Booking policy
BOOKING_MIN_ADVANCE_HOURS = int(os.getenv("BOOKING_MIN_ADVANCE_HOURS", "2"))
BOOKING_MAX_ADVANCE_DAYS = int(os.getenv("BOOKING_MAX_ADVANCE_DAYS", "90"))
CANCELLATION_CUTOFF_HOURS = int(os.getenv("CANCELLATION_CUTOFF_HOURS", "24"))

# Reminders
REMINDER_HOURS = _env_int_list("REMINDER_HOURS", "24")
MAX_REMINDER_COUNT = int(os.getenv("MAX_REMINDER_COUNT", "2"))

# Brute force
LOGIN_MAX_FAILED_ATTEMPTS = int(os.getenv("LOGIN_MAX_FAILED_ATTEMPTS", "5"))
LOGIN_RESET_WINDOW_MINUTES = int(os.getenv("LOGIN_RESET_WINDOW_MINUTES", "15"))
SECURITY_LOG_RETENTION_DAYS = int(os.getenv("SECURITY_LOG_RETENTION_DAYS", "90"))

# Availability
SLOT_INTERVAL_MINUTES = int(os.getenv("SLOT_INTERVAL_MINUTES", "15"))
AVAILABILITY_SEARCH_DAYS = int(os.getenv("AVAILABILITY_SEARCH_DAYS", "30"))

# Rate limiting
RATE_LIMIT_ENABLED = _env_flag("RATE_LIMIT_ENABLED", "1")
