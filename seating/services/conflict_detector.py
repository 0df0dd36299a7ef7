import logging
from datetime import date
from typing import Iterable, List, Optional, Set, Union

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError, Reason
from ..models import CombinedTable, CombinedTableMember, FloorplanElementInstance, Reservation
from .lifecycle import ACTIVE_STATUSES
from .time_window import TimeWindow

logger = logging.getLogger(__name__)

Candidate = Union[FloorplanElementInstance, CombinedTable]


def candidate_table_ids(candidate: Candidate) -> List[int]:
    """Physical tables a candidate occupies"""
    if isinstance(candidate, CombinedTable):
        return sorted(candidate.table_ids)
    return [candidate.id]


def candidate_entity(candidate: Candidate) -> str:
    return "combined_table" if isinstance(candidate, CombinedTable) else "table"


class ConflictDetector:
    """
    Finds active reservations that overlap a candidate table or combination.

    A booking occupies every physical table behind it: a single-table booking
    holds one table, a combined booking holds every member of its combination.
    Two bookings conflict when they share a physical table, fall on the same
    date and their windows overlap.
    """

    def __init__(self, db: Session, default_duration: Optional[int] = None):
        self.db = db
        self.default_duration = default_duration or settings.assignment_default_duration_minutes

    def window_of(self, reservation: Reservation) -> TimeWindow:
        return TimeWindow(reservation.time, reservation.duration or self.default_duration)

    def _member_ids_sharing(self, table_ids: Set[int]) -> Set[int]:
        # Every member row of every combination that contains one of the tables
        combo_ids = {
            row.combined_table_id
            for row in self.db.query(CombinedTableMember).filter(
                CombinedTableMember.floorplan_element_instance_id.in_(table_ids)
            )
        }
        if not combo_ids:
            return set()
        return {
            row.id
            for row in self.db.query(CombinedTableMember).filter(
                CombinedTableMember.combined_table_id.in_(combo_ids)
            )
        }

    def reservations_occupying(self, table_ids: Iterable[int], on_date: date,
                               exclude_reservation_id: Optional[int] = None,
                               until: Optional[date] = None) -> List[Reservation]:
        """
        Active reservations holding any of ``table_ids``, directly or via a combination.

        Only ``on_date`` is searched unless ``until`` extends it to an inclusive range.
        """
        table_ids = set(table_ids)
        if not table_ids:
            return []
        holds = [Reservation.reserved_element_id.in_(table_ids)]
        member_ids = self._member_ids_sharing(table_ids)
        if member_ids:
            holds.append(Reservation.combined_table_member_id.in_(member_ids))

        query = self.db.query(Reservation).filter(
            Reservation.date >= on_date,
            Reservation.date <= (until or on_date),
            Reservation.status.in_(list(ACTIVE_STATUSES)),
            or_(*holds),
        )
        if exclude_reservation_id is not None:
            query = query.filter(Reservation.id != exclude_reservation_id)
        return query.order_by(Reservation.date, Reservation.time, Reservation.id).all()

    def find_conflict(self, candidate: Candidate, on_date: date, window: TimeWindow,
                      exclude_reservation_id: Optional[int] = None) -> Optional[Reservation]:
        for other in self.reservations_occupying(candidate_table_ids(candidate), on_date, exclude_reservation_id):
            if self.window_of(other).overlaps(window):
                return other
        return None

    def has_conflict(self, candidate: Candidate, on_date: date, window: TimeWindow,
                     exclude_reservation_id: Optional[int] = None) -> bool:
        return self.find_conflict(candidate, on_date, window, exclude_reservation_id) is not None

    def ensure_no_conflict(self, candidate: Candidate, on_date: date, window: TimeWindow,
                           exclude_reservation_id: Optional[int] = None,
                           reason: Reason = Reason.OVERLAPPING_RESERVATION) -> None:
        other = self.find_conflict(candidate, on_date, window, exclude_reservation_id)
        if other is None:
            return
        label = candidate.label
        logger.error(
            f"{label} already has reservation {other.id} from {self.window_of(other)} on {on_date}; "
            f"requested {window}"
        )
        raise ConflictError(
            f"{label} is already reserved from {self.window_of(other)} on {on_date}, "
            f"which overlaps the requested time {window}.",
            reason,
            candidate_entity(candidate),
            candidate.id,
        )
