import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv("config.env")


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    return int(val)


@dataclass
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./seating.db")
    # Wall-clock zone every "now" is converted into before comparisons
    restaurant_timezone: str = os.getenv("RESTAURANT_TIMEZONE", "Asia/Amman")
    default_duration_minutes: int = _as_int(os.getenv("DEFAULT_DURATION_MINUTES"), 60)
    assignment_default_duration_minutes: int = _as_int(
        os.getenv("ASSIGNMENT_DEFAULT_DURATION_MINUTES"), 300
    )
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
