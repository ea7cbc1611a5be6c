from __future__ import annotations

import os


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except Exception:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: list[str] | None = None) -> list[str]:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return list(default or [])
    return [x.strip() for x in raw.split(",") if x.strip()]


class Config:
    def __init__(self):
        self.APP_ENV = _env_str("APP_ENV", "development").lower()
        self.IS_PRODUCTION = self.APP_ENV in {"production", "prod"}
        self.HOST = _env_str("HOST", "0.0.0.0")
        self.PORT = _env_int("PORT", 5002)
        self.LOG_LEVEL = _env_str("LOG_LEVEL", "INFO").upper()

        self.DATABASE_URL = _env_str("DATABASE_URL")
        self.ALLOWED_ORIGINS = _env_list("ALLOWED_ORIGINS", ["http://localhost:3000"])

        # Every civil date/time rule (booking window, email formatting) uses this zone.
        self.APP_TIMEZONE = _env_str("APP_TIMEZONE", "America/New_York")

        self.PUBLIC_BASE_URL = _env_str("PUBLIC_BASE_URL", "http://localhost:3000").rstrip("/")
        self.INTERVIEW_MEETING_URL = _env_str("INTERVIEW_MEETING_URL")
        self.DEFAULT_INTERVIEWER_NAME = _env_str("DEFAULT_INTERVIEWER_NAME", "Interviewer TBD")

        self.EMAIL_FROM = _env_str("EMAIL_FROM", "noreply@example.com")
        self.RESEND_API_KEY = _env_str("RESEND_API_KEY")
        self.RESEND_API_URL = _env_str("RESEND_API_URL", "https://api.resend.com/emails")
        self.EMAIL_TIMEOUT_SECONDS = max(1, _env_int("EMAIL_TIMEOUT_SECONDS", 10))

        self.INTERNAL_CRON_TOKEN = _env_str("INTERNAL_CRON_TOKEN")
        self.SESSION_TTL_MINUTES = max(5, _env_int("SESSION_TTL_MINUTES", 720))

        self.RATE_LIMIT_GLOBAL = _env_str("RATE_LIMIT_GLOBAL", "600/60")
        self.RATE_LIMIT_DEFAULT = _env_str("RATE_LIMIT_DEFAULT", "120/60")
        self.RATE_LIMIT_PUBLIC = _env_str("RATE_LIMIT_PUBLIC", "20/60")

        self.ENABLE_SCHEDULER = _env_bool("ENABLE_SCHEDULER", False)
        self.SCHEDULER_REMINDER_INTERVAL_MINUTES = max(1, _env_int("SCHEDULER_REMINDER_INTERVAL_MINUTES", 5))

    def validate(self) -> None:
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required")
        if self.IS_PRODUCTION and not self.INTERNAL_CRON_TOKEN:
            raise RuntimeError("INTERNAL_CRON_TOKEN is required in production")
        if self.IS_PRODUCTION and not self.RESEND_API_KEY:
            raise RuntimeError("RESEND_API_KEY is required in production")
