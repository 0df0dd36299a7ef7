"""
Table assignment for existing reservations.

Every path runs the same gates in a fixed order and stops at the first one
that fails:

1. the reservation exists
2. its status still allows a table change
3. its stored time lies inside its shift
4. the target table / combination member exists and is reservable
5. the party fits the target's capacity
6. no table behind the target is blocked
7. no other active reservation holds any of those tables at an overlapping time

The exactly-one-of check on the request happens before any of these, when
the target is built.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import InvalidRequestError, NotFoundError, Reason, SeatingError
from ..models import (
    Assignment,
    CombinedMember,
    CombinedTable,
    CombinedTableMember,
    FloorplanElementInstance,
    Reservation,
    SingleTable,
    Unassigned,
)
from .block_registry import BlockRegistry
from .capacity import ensure_capacity
from .clock import RestaurantClock
from .conflict_detector import Candidate, ConflictDetector, candidate_entity, candidate_table_ids
from .lifecycle import ensure_assignable
from .locking import TableLockRegistry, table_locks
from .shift_validator import ShiftValidator
from .time_window import TimeWindow

logger = logging.getLogger(__name__)


def target_from_request(table_id: Optional[int], combined_member_id: Optional[int]) -> Assignment:
    """Build the requested target; exactly one of the two ids must be given"""
    if table_id is not None and combined_member_id is not None:
        logger.error("Both table id and combined table member id were provided")
        raise InvalidRequestError(
            "Only one of ReservedElementId or CombinedTableMemberId must be provided, not both.",
            Reason.AMBIGUOUS_TARGET,
        )
    if table_id is not None:
        return SingleTable(table_id)
    if combined_member_id is not None:
        return CombinedMember(combined_member_id)
    logger.error("Neither table id nor combined table member id was provided")
    raise InvalidRequestError(
        "Either ReservedElementId or CombinedTableMemberId must be provided.",
        Reason.MISSING_TARGET,
    )


class AssignmentResolver:
    def __init__(self, db: Session, clock: Optional[RestaurantClock] = None,
                 locks: Optional[TableLockRegistry] = None):
        self.db = db
        self.clock = clock or RestaurantClock(settings.restaurant_timezone)
        self.locks = locks or table_locks
        self.shifts = ShiftValidator(db)
        self.blocks = BlockRegistry(db)
        self.conflicts = ConflictDetector(db)

    # lookups

    def get_reservation(self, reservation_id: int) -> Reservation:
        reservation = self.db.get(Reservation, reservation_id)
        if reservation is None:
            logger.error(f"Reservation with ID {reservation_id} not found")
            raise NotFoundError(
                f"Reservation with ID {reservation_id} not found",
                Reason.RESERVATION_NOT_FOUND, "reservation", reservation_id,
            )
        return reservation

    def get_table(self, table_id: int) -> FloorplanElementInstance:
        table = self.db.get(FloorplanElementInstance, table_id)
        if table is None:
            logger.error(f"Table with ID {table_id} not found")
            raise NotFoundError(
                f"Table with ID {table_id} not found", Reason.TABLE_NOT_FOUND, "table", table_id
            )
        return table

    def get_member(self, member_id: int) -> CombinedTableMember:
        member = self.db.get(CombinedTableMember, member_id)
        if member is None:
            logger.error(f"Combined table member with ID {member_id} not found")
            raise NotFoundError(
                f"Combined table member with ID {member_id} not found",
                Reason.COMBINED_MEMBER_NOT_FOUND, "combined_table_member", member_id,
            )
        return member

    def resolve(self, target: Assignment) -> Candidate:
        """Load the table or combination behind a target"""
        if isinstance(target, SingleTable):
            return self.get_table(target.table_id)
        if isinstance(target, CombinedMember):
            return self.get_member(target.member_id).combined_table
        raise InvalidRequestError("No table target given", Reason.MISSING_TARGET)

    def current_candidate(self, reservation: Reservation) -> Optional[Candidate]:
        """The table or combination the reservation holds now, if it still exists"""
        assignment = reservation.assignment
        if isinstance(assignment, SingleTable):
            return self.db.get(FloorplanElementInstance, assignment.table_id)
        if isinstance(assignment, CombinedMember):
            member = self.db.get(CombinedTableMember, assignment.member_id)
            return member.combined_table if member else None
        return None

    # checks

    def ensure_reservable(self, candidate: Candidate) -> None:
        if isinstance(candidate, CombinedTable):
            tables = [m.table for m in candidate.members]
        else:
            tables = [candidate]
        for table in tables:
            if table is not None and table.is_reservable:
                continue
            label = table.label if table is not None else candidate.label
            logger.error(f"Table {label} is not reservable")
            raise InvalidRequestError(
                f"Table {label} is not reservable.",
                Reason.NOT_RESERVABLE, "table", table.id if table is not None else candidate.id,
            )

    def check_candidate(self, candidate: Candidate, party_size: int, on_date, window: TimeWindow,
                        exclude_reservation_id: Optional[int] = None) -> None:
        """Reservable, capacity, block and overlap checks for one target, in that order"""
        entity = candidate_entity(candidate)
        self.ensure_reservable(candidate)
        ensure_capacity(
            party_size, candidate.min_capacity, candidate.max_capacity,
            candidate.label, entity, candidate.id,
        )
        self.blocks.ensure_not_blocked(
            candidate_table_ids(candidate), on_date, window, candidate.label, entity, candidate.id
        )
        self.conflicts.ensure_no_conflict(candidate, on_date, window, exclude_reservation_id)

    # commands

    def assign_table(self, reservation_id: int, table_id: Optional[int] = None,
                     combined_member_id: Optional[int] = None) -> Reservation:
        target = target_from_request(table_id, combined_member_id)
        return self._assign(reservation_id, target, check_existing=False)

    def update_assigned_table(self, reservation_id: int, table_id: Optional[int] = None,
                              combined_member_id: Optional[int] = None) -> Reservation:
        target = target_from_request(table_id, combined_member_id)
        return self._assign(reservation_id, target, check_existing=True)

    def remove_table_assignment(self, reservation_id: int) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        previous = reservation.assignment
        reservation.assignment = Unassigned()
        reservation.modified_at = self.clock.now()
        self._commit(reservation)
        logger.info(f"Removed table assignment {previous} from reservation {reservation.id}")
        return reservation

    def _assign(self, reservation_id: int, target: Assignment, check_existing: bool) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        action = "update table for" if check_existing else "assign table to"
        ensure_assignable(reservation, action)
        self.shifts.ensure_time_in_shift(reservation.time, reservation.shift)

        duration = reservation.duration or settings.assignment_default_duration_minutes
        window = TimeWindow(reservation.time, duration)

        if check_existing:
            self._ensure_existing_assignment_clear(reservation, window)

        candidate = self.resolve(target)
        try:
            with self.locks.hold(candidate_table_ids(candidate)):
                # Fresh read so a booking committed while we waited is seen
                self.db.expire_all()
                if reservation.duration is None:
                    reservation.duration = duration
                self.check_candidate(candidate, reservation.party_size, reservation.date, window,
                                     exclude_reservation_id=reservation.id)
                reservation.assignment = target
                reservation.modified_at = self.clock.now()
                self.db.commit()
        except SeatingError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error assigning table to reservation {reservation.id}: {str(e)}")
            raise
        self.db.refresh(reservation)
        logger.info(
            f"Reservation {reservation.id} assigned to {candidate.label} "
            f"on {reservation.date} at {window}"
        )
        return reservation

    def _ensure_existing_assignment_clear(self, reservation: Reservation, window: TimeWindow) -> None:
        current = self.current_candidate(reservation)
        if current is None:
            return
        self.conflicts.ensure_no_conflict(
            current, reservation.date, window, reservation.id,
            reason=Reason.EXISTING_ASSIGNMENT_CONFLICT,
        )

    def _commit(self, reservation: Reservation) -> None:
        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error saving reservation {reservation.id}: {str(e)}")
            raise
        self.db.refresh(reservation)
