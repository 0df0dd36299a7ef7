import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 60

# Tried in order; first match wins. Digit runs are bounded, longer ones fall
# through to the default.
_HOURS_AND_MINUTES = re.compile(r"^(\d{1,6})h:(\d{1,6})m$")
_HOURS_ONLY = re.compile(r"^(\d{1,6})h$")
_MINUTES_ONLY = re.compile(r"^(\d{1,6})m$")
_STRICT_CLOCK = re.compile(r"^(\d{2}):(\d{2})$")
_FLEX_CLOCK = re.compile(r"^(\d{1,2}):(\d{2})$")
_BARE_HOURS = re.compile(r"^[+-]?\d{1,6}$")


def _match_minutes(text: str) -> Optional[int]:
    match = _HOURS_AND_MINUTES.match(text)
    if match:
        return int(match.group(1)) * 60 + int(match.group(2))

    match = _HOURS_ONLY.match(text)
    if match:
        return int(match.group(1)) * 60

    match = _MINUTES_ONLY.match(text)
    if match:
        return int(match.group(1))

    match = _STRICT_CLOCK.match(text) or _FLEX_CLOCK.match(text)
    if match:
        return int(match.group(1)) * 60 + int(match.group(2))

    if _BARE_HOURS.match(text):
        return int(text) * 60

    return None


def parse_duration(text: Optional[str], default: int = DEFAULT_DURATION_MINUTES) -> int:
    """
    Convert a human-entered duration into minutes.

    Accepts "2h:30m", "2h", "90m", "01:30", "1:30" or a bare number of hours.
    Anything else (including None or "") yields ``default`` with a warning;
    this never raises.
    """
    if text is None or not str(text).strip():
        logger.warning(f"No duration provided. Using default of {default} minutes.")
        return default

    cleaned = str(text).strip()
    minutes = _match_minutes(cleaned)
    if minutes is None:
        logger.warning(
            f"Invalid duration format: {cleaned!r}. Using default of {default} minutes. "
            "Expected formats are: HH:mm, H:mm, Nh:MMm, Nh, or Nm"
        )
        return default
    if minutes <= 0:
        logger.warning(f"Duration {cleaned!r} is not positive. Using default of {default} minutes.")
        return default
    return minutes


def format_duration(minutes: Optional[int]) -> Optional[str]:
    """Render minutes as "1h:30m" """
    if minutes is None:
        return None
    hours, remaining = divmod(minutes, 60)
    return f"{hours}h:{remaining:02d}m"
