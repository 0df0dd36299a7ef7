import logging
from datetime import time
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import InvalidRequestError, NotFoundError, Reason
from ..models import Restaurant, Shift
from .time_window import format_time_am_pm

logger = logging.getLogger(__name__)


def check_time_in_shift(value: time, shift: Shift) -> bool:
    """Inclusive on both ends: a booking may start exactly at closing time"""
    return shift.start_time <= value <= shift.end_time


def shift_range(shift: Shift) -> str:
    return f"{format_time_am_pm(shift.start_time)} - {format_time_am_pm(shift.end_time)}"


class ShiftValidator:
    def __init__(self, db: Session):
        self.db = db

    def get_restaurant(self, restaurant_id: int) -> Restaurant:
        restaurant = self.db.get(Restaurant, restaurant_id)
        if restaurant is None:
            logger.error(f"Restaurant with ID {restaurant_id} not found")
            raise NotFoundError(
                f"Restaurant with ID {restaurant_id} not found",
                Reason.RESTAURANT_NOT_FOUND, "restaurant", restaurant_id,
            )
        return restaurant

    def validate(self, restaurant_id: int, shift_name: str) -> Shift:
        """Return the restaurant's shift called ``shift_name`` (case-insensitive)"""
        restaurant = self.get_restaurant(restaurant_id)
        shift = self.db.query(Shift).filter(
            Shift.restaurant_id == restaurant.id,
            func.lower(Shift.name) == (shift_name or "").lower(),
        ).first()
        if shift is None:
            logger.error(f"Shift {shift_name!r} is not offered by restaurant {restaurant.name}")
            raise NotFoundError(
                f"Shift {shift_name} is not associated with restaurant {restaurant.name}",
                Reason.SHIFT_NOT_FOUND, "shift", shift_name,
            )
        return shift

    def get_shift(self, shift_id: int, restaurant_id: Optional[int] = None) -> Shift:
        shift = self.db.get(Shift, shift_id)
        if shift is None or (restaurant_id is not None and shift.restaurant_id != restaurant_id):
            logger.error(f"Shift with ID {shift_id} not found")
            raise NotFoundError(
                f"Shift with ID {shift_id} not found", Reason.SHIFT_NOT_FOUND, "shift", shift_id
            )
        return shift

    def ensure_time_in_shift(self, value: Optional[time], shift: Shift) -> None:
        if value is not None and check_time_in_shift(value, shift):
            return
        logger.error(
            f"Reservation time {format_time_am_pm(value)} is outside the shift time range "
            f"{shift_range(shift)} ({shift.name})"
        )
        raise InvalidRequestError(
            f"Reservation time {format_time_am_pm(value)} is outside the shift time range {shift_range(shift)}",
            Reason.TIME_OUTSIDE_SHIFT,
            "shift",
            shift.id,
        )

    def shifts_for(self, restaurant_id: int) -> List[Shift]:
        # Declaration order decides ties
        return self.db.query(Shift).filter(Shift.restaurant_id == restaurant_id).order_by(Shift.id).all()

    def current_or_next(self, restaurant_id: int, now: time) -> Shift:
        """The shift running at ``now``, else the first one that has not started yet"""
        for shift in self.shifts_for(restaurant_id):
            if shift.start_time <= now < shift.end_time or shift.start_time > now:
                return shift
        logger.error(f"No active or upcoming shift found for current time {format_time_am_pm(now)}")
        raise InvalidRequestError(
            "No active or upcoming shift found for the current time",
            Reason.NO_ACTIVE_SHIFT, "restaurant", restaurant_id,
        )

    def for_time(self, restaurant_id: int, value: time) -> Shift:
        """The shift containing ``value``, else the first one starting at or after it"""
        for shift in self.shifts_for(restaurant_id):
            if check_time_in_shift(value, shift) or shift.start_time >= value:
                return shift
        logger.error(f"No active or upcoming shift found for time {format_time_am_pm(value)}")
        raise InvalidRequestError(
            "No active or upcoming shift found for the provided time.",
            Reason.NO_ACTIVE_SHIFT, "restaurant", restaurant_id,
        )
