from datetime import date, datetime, time
from typing import Callable, Optional

import pytz


def _utc_now() -> datetime:
    return datetime.now(pytz.utc)


class RestaurantClock:
    """
    Local wall-clock "now" for one restaurant.

    The ambient time is UTC; it is converted to the restaurant's zone here and
    nowhere else. Pass ``utc_now`` to pin the clock in tests.
    """

    def __init__(self, timezone_name: str, utc_now: Optional[Callable[[], datetime]] = None):
        self.timezone = pytz.timezone(timezone_name)
        self._utc_now = utc_now or _utc_now

    def now(self) -> datetime:
        current = self._utc_now()
        if current.tzinfo is None:
            current = pytz.utc.localize(current)
        # Naive local datetime, truncated to the minute
        local = current.astimezone(self.timezone)
        return local.replace(tzinfo=None, second=0, microsecond=0)

    def today(self) -> date:
        return self.now().date()

    def time_of_day(self) -> time:
        return self.now().time()
