import logging

from ..errors import InvalidRequestError, Reason
from ..models import Reservation, ReservationStatus

logger = logging.getLogger(__name__)

# Statuses that hold a table for conflict purposes
ACTIVE_STATUSES = frozenset({ReservationStatus.UPCOMING, ReservationStatus.SEATED})

# Statuses from which a table may be (re)assigned; everything else is terminal
ASSIGNABLE_STATUSES = frozenset(
    {ReservationStatus.WAITLIST, ReservationStatus.UPCOMING, ReservationStatus.SEATED}
)


def is_active(status: ReservationStatus) -> bool:
    return status in ACTIVE_STATUSES


def can_assign(status: ReservationStatus) -> bool:
    return status in ASSIGNABLE_STATUSES


def initial_status(has_table: bool, is_upcoming: bool) -> ReservationStatus:
    """Seated when a table is bound at creation, otherwise Upcoming or Waitlist"""
    if has_table:
        return ReservationStatus.SEATED
    return ReservationStatus.UPCOMING if is_upcoming else ReservationStatus.WAITLIST


def ensure_assignable(reservation: Reservation, action: str = "assign table to") -> None:
    if can_assign(reservation.status):
        return
    logger.error(f"Cannot {action} reservation {reservation.id} with status {reservation.status.value}")
    raise InvalidRequestError(
        f"Cannot {action} reservation with status {reservation.status.value}",
        Reason.STATUS_NOT_ASSIGNABLE,
        "reservation",
        reservation.id,
    )
