import os

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except Exception:
        return int(default)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "1" if default else "0").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return bool(default)


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./vetcare.db")
    DB_AUTO_CREATE_ALL = _get_bool("DB_AUTO_CREATE_ALL", False)
    REDIS_URL = os.getenv("REDIS_URL", "").strip()
    ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "").strip()
    SECURITY_HEADERS_ENABLED = _get_bool("SECURITY_HEADERS_ENABLED", True)

    TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "").strip()
    TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "").strip()
    TWILIO_WHATSAPP_NUMBER = os.getenv("TWILIO_WHATSAPP_NUMBER", "").strip()
    TWILIO_API_BASE_URL = os.getenv("TWILIO_API_BASE_URL", "https://api.twilio.com/2010-04-01").strip()
    TWILIO_TIMEOUT_SECONDS = _get_int("TWILIO_TIMEOUT_SECONDS", 10)

    REMINDER_DEFAULT_COUNTRY_CODE = os.getenv("REMINDER_DEFAULT_COUNTRY_CODE", "964").strip()

    SCHEDULER_ENABLED = _get_bool("SCHEDULER_ENABLED", False)
    SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "UTC").strip()
    SCHEDULER_POLL_SECONDS = _get_int("SCHEDULER_POLL_SECONDS", 30)
    QUOTA_RESET_AT = os.getenv("QUOTA_RESET_AT", "00:05").strip()
    REMINDER_DISPATCH_AT = os.getenv("REMINDER_DISPATCH_AT", "13:00").strip()
    JOB_LOCK_TTL_SECONDS = _get_int("JOB_LOCK_TTL_SECONDS", 3600)


settings = Settings()
