"""
Runtime configuration for the kiosk backend and kiosk-side session library.
Values come from environment variables (optionally from a .env file).
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name, default):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


@dataclass(frozen=True)
class Settings:
    frontend_url: str = "http://localhost:3000"
    log_level: str = "INFO"
    facility_timezone: str = "Europe/Warsaw"
    auto_exit_cutoff_hour: int = 15      # local hour, kiosk-side daily trigger
    sweep_exit_hour_utc: int = 14        # UTC hour stamped by the server sweep
    cron_secret: Optional[str] = None
    auto_exit_schedule_enabled: bool = False
    auto_exit_schedule_hour: int = 23
    auto_exit_schedule_minute: int = 55
    bcrypt_rounds: int = 12
    kiosk_api_url: str = "http://localhost:8000"
    kiosk_session_file: str = ".kiosk/session.json"


# PUBLIC_INTERFACE
def load_settings():
    """
    Builds Settings from the environment.
    Recognised variables:
        - FRONTEND_URL, LOG_LEVEL
        - FACILITY_TIMEZONE
        - AUTO_EXIT_CUTOFF_HOUR, SWEEP_EXIT_HOUR_UTC
        - CRON_SECRET
        - AUTO_EXIT_SCHEDULE_ENABLED, AUTO_EXIT_SCHEDULE_HOUR, AUTO_EXIT_SCHEDULE_MINUTE
        - BCRYPT_ROUNDS
        - KIOSK_API_URL, KIOSK_SESSION_FILE
    """
    return Settings(
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        facility_timezone=os.getenv("FACILITY_TIMEZONE", "Europe/Warsaw"),
        auto_exit_cutoff_hour=_env_int("AUTO_EXIT_CUTOFF_HOUR", 15),
        sweep_exit_hour_utc=_env_int("SWEEP_EXIT_HOUR_UTC", 14),
        cron_secret=os.getenv("CRON_SECRET") or None,
        auto_exit_schedule_enabled=_env_bool("AUTO_EXIT_SCHEDULE_ENABLED", False),
        auto_exit_schedule_hour=_env_int("AUTO_EXIT_SCHEDULE_HOUR", 23),
        auto_exit_schedule_minute=_env_int("AUTO_EXIT_SCHEDULE_MINUTE", 55),
        bcrypt_rounds=_env_int("BCRYPT_ROUNDS", 12),
        kiosk_api_url=os.getenv("KIOSK_API_URL", "http://localhost:8000"),
        kiosk_session_file=os.getenv("KIOSK_SESSION_FILE", ".kiosk/session.json"),
    )


settings = load_settings()


# PUBLIC_INTERFACE
def get_settings():
    """FastAPI dependency returning the process-wide settings."""
    return settings


def configure_logging(level="INFO"):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
