import logging
from datetime import date, datetime, time
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import InvalidRequestError, NotFoundError, Reason, SeatingError
from ..models import (
    Client,
    ClientTag,
    FloorplanElementInstance,
    Reservation,
    ReservationStatus,
    ReservationType,
    SingleTable,
    Unassigned,
)
from .assignment import AssignmentResolver
from .clock import RestaurantClock
from .conflict_detector import candidate_entity, candidate_table_ids
from .duration import parse_duration
from .lifecycle import initial_status
from .locking import TableLockRegistry
from .time_window import TimeWindow, format_time_am_pm

logger = logging.getLogger(__name__)


def normalize_tags(values: Optional[Iterable]) -> List[str]:
    """Map tag values (ints or names) to ClientTag names, skipping unknown ones"""
    tags = []
    for value in values or []:
        try:
            if isinstance(value, str) and not value.strip().lstrip("-").isdigit():
                tag = ClientTag[value.strip().upper()]
            else:
                tag = ClientTag(int(value))
        except (KeyError, ValueError):
            logger.warning(f"Invalid tag value {value!r} provided")
            continue
        if tag.name not in tags:
            tags.append(tag.name)
    return tags


class ReservationService:
    """Create, update and look up reservations for one restaurant clock"""

    def __init__(self, db: Session, clock: RestaurantClock,
                 locks: Optional[TableLockRegistry] = None):
        self.db = db
        self.clock = clock
        self.resolver = AssignmentResolver(db, clock, locks)
        self.shifts = self.resolver.shifts

    def get_reservation(self, reservation_id: int) -> Reservation:
        return self.resolver.get_reservation(reservation_id)

    def get_client(self, client_id: int) -> Client:
        client = self.db.get(Client, client_id)
        if client is None:
            logger.error(f"Client with ID {client_id} not found")
            raise NotFoundError(
                f"Client with ID {client_id} not found", Reason.CLIENT_NOT_FOUND, "client", client_id
            )
        return client

    def create_reservation(self, client_id: int, shift_id: int, reservation_date: date,
                           reservation_time: time, party_size: int, duration: Optional[str] = None,
                           tags: Optional[Iterable] = None, notes: Optional[str] = None,
                           table_id: Optional[int] = None, is_upcoming: bool = False) -> Reservation:
        now = self.clock.now()
        logger.info(
            f"Creating reservation on {reservation_date} at {format_time_am_pm(reservation_time)} "
            f"for party of {party_size}"
        )
        self._ensure_not_past(reservation_date, reservation_time, now)

        client = self.get_client(client_id)
        shift = self.shifts.get_shift(shift_id)
        self.shifts.ensure_time_in_shift(reservation_time, shift)
        if reservation_date == now.date() and shift.end_time <= now.time():
            logger.error(f"Shift {shift.name} has already ended for today")
            raise InvalidRequestError(
                f"Shift {shift.name} has already ended for today.",
                Reason.SHIFT_ENDED, "shift", shift.id,
            )

        minutes = parse_duration(duration, settings.default_duration_minutes)
        table = self.resolver.get_table(table_id) if table_id is not None else None

        reservation = Reservation(
            client_id=client.id,
            shift_id=shift.id,
            date=reservation_date,
            time=reservation_time,
            duration=minutes,
            party_size=party_size,
            status=initial_status(table is not None, is_upcoming),
            type=ReservationType.ON_CALL,
            tags=normalize_tags(tags),
            notes=notes or "",
            created_at=now,
            modified_at=now,
        )
        return self._add_with_table(reservation, table)

    def create_walk_in(self, restaurant_id: int, party_size: int, client_id: Optional[int] = None,
                       tags: Optional[Iterable] = None, notes: Optional[str] = None,
                       table_id: Optional[int] = None, duration: Optional[str] = None,
                       is_upcoming: bool = False) -> Reservation:
        now = self.clock.now()
        logger.info(f"Creating walk-in reservation on {now.date()} at {format_time_am_pm(now.time())}")

        client = self.get_client(client_id) if client_id is not None else None

        shift = self.shifts.current_or_next(restaurant_id, now.time())
        if not (shift.start_time <= now.time() < shift.end_time):
            logger.error(
                f"Walk-in time {format_time_am_pm(now.time())} is outside the shift time range "
                f"{format_time_am_pm(shift.start_time)} - {format_time_am_pm(shift.end_time)}"
            )
            raise InvalidRequestError(
                f"Reservation time {format_time_am_pm(now.time())} is outside the shift time range "
                f"{format_time_am_pm(shift.start_time)} - {format_time_am_pm(shift.end_time)}",
                Reason.NO_ACTIVE_SHIFT, "shift", shift.id,
            )

        tag_names = normalize_tags(tags)
        table = self.resolver.get_table(table_id) if table_id is not None else None

        reservation = Reservation(
            client_id=client.id if client else None,
            shift_id=shift.id,
            date=now.date(),
            time=now.time(),
            duration=parse_duration(duration, settings.default_duration_minutes),
            party_size=party_size,
            status=initial_status(table is not None, is_upcoming),
            type=ReservationType.WALK_IN,
            tags=tag_names,
            notes=notes or "",
            created_at=now,
            modified_at=now,
        )
        reservation = self._add_with_table(reservation, table)
        logger.info(
            f"Created walk-in reservation with ID {reservation.id} for "
            f"{'client ' + client.name if client else 'anonymous customer'} with tags {', '.join(tag_names)}"
        )
        return reservation

    def update_reservation(self, reservation_id: int, reservation_date: date, reservation_time: time,
                           party_size: int, tags: Optional[Iterable] = None, notes: Optional[str] = None,
                           duration: Optional[str] = None, client_id: Optional[int] = None,
                           client_name: Optional[str] = None,
                           client_phone: Optional[str] = None) -> Reservation:
        logger.info(
            f"Updating reservation {reservation_id} for date {reservation_date} "
            f"at {format_time_am_pm(reservation_time)}"
        )
        reservation = self.get_reservation(reservation_id)
        now = self.clock.now()
        if reservation_date < now.date():
            logger.error(f"Cannot update a reservation for a past date. Date: {reservation_date}, Now: {now}")
            raise InvalidRequestError(
                "Cannot update a reservation for a past date.",
                Reason.PAST_DATE, "reservation", reservation.id,
            )

        shift = self.shifts.for_time(reservation.shift.restaurant_id, reservation_time)
        self.shifts.ensure_time_in_shift(reservation_time, shift)
        minutes = parse_duration(duration, settings.default_duration_minutes)
        window = TimeWindow(reservation_time, minutes)

        client = None
        if client_id is not None:
            client = self.get_client(client_id)

        candidate = self.resolver.current_candidate(reservation)
        table_ids = candidate_table_ids(candidate) if candidate is not None else []
        try:
            with self.resolver.locks.hold(table_ids):
                if candidate is not None:
                    self.resolver.conflicts.ensure_no_conflict(
                        candidate, reservation_date, window, reservation.id
                    )
                    self.resolver.blocks.ensure_not_blocked(
                        table_ids, reservation_date, window, candidate.label,
                        candidate_entity(candidate), candidate.id,
                    )
                if client is not None:
                    if client_name:
                        client.name = client_name
                    if client_phone:
                        client.phone_number = client_phone
                    logger.info(f"Updated client details for {client.name}")

                reservation.shift_id = shift.id
                reservation.date = reservation_date
                reservation.time = reservation_time
                reservation.party_size = party_size
                reservation.tags = normalize_tags(tags)
                reservation.notes = notes or ""
                reservation.duration = minutes
                reservation.modified_at = now
                self.db.commit()
        except SeatingError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error updating reservation {reservation.id}: {str(e)}")
            raise
        self.db.refresh(reservation)
        logger.info(f"Successfully updated reservation with ID {reservation.id}")
        return reservation

    def update_status(self, reservation_id: int, status: ReservationStatus) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        previous = reservation.status
        reservation.status = ReservationStatus(status)
        reservation.modified_at = self.clock.now()
        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error updating status of reservation {reservation.id}: {str(e)}")
            raise
        self.db.refresh(reservation)
        logger.info(f"Reservation {reservation.id} status changed from {previous.value} to {reservation.status.value}")
        return reservation

    def assign_table(self, reservation_id: int, table_id: Optional[int] = None,
                     combined_member_id: Optional[int] = None) -> Reservation:
        return self.resolver.assign_table(reservation_id, table_id, combined_member_id)

    def update_assigned_table(self, reservation_id: int, table_id: Optional[int] = None,
                              combined_member_id: Optional[int] = None) -> Reservation:
        return self.resolver.update_assigned_table(reservation_id, table_id, combined_member_id)

    def remove_table_assignment(self, reservation_id: int) -> Reservation:
        return self.resolver.remove_table_assignment(reservation_id)

    def _ensure_not_past(self, reservation_date: date, reservation_time: time, now: datetime) -> None:
        if reservation_date < now.date():
            logger.error(f"Cannot create a reservation for a past date. Date: {reservation_date}, Now: {now}")
            raise InvalidRequestError(
                "Cannot create a reservation for a past date.", Reason.PAST_DATE, "reservation"
            )
        if reservation_date == now.date() and reservation_time < now.time():
            logger.error(
                f"Cannot create a reservation for a past time today. "
                f"Time: {format_time_am_pm(reservation_time)}, Now: {format_time_am_pm(now.time())}"
            )
            raise InvalidRequestError(
                "Cannot create a reservation for a past time today.", Reason.PAST_DATE, "reservation"
            )

    def _add_with_table(self, reservation: Reservation,
                        table: Optional[FloorplanElementInstance]) -> Reservation:
        table_ids = [table.id] if table is not None else []
        try:
            with self.resolver.locks.hold(table_ids):
                if table is not None:
                    window = TimeWindow(reservation.time, reservation.duration)
                    self.resolver.check_candidate(table, reservation.party_size, reservation.date, window)
                    reservation.assignment = SingleTable(table.id)
                else:
                    reservation.assignment = Unassigned()
                self.db.add(reservation)
                self.db.commit()
        except SeatingError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error creating reservation: {str(e)}")
            raise
        self.db.refresh(reservation)
        logger.info(
            f"Created {reservation.type.value} reservation {reservation.id} with status "
            f"{reservation.status.value}"
            + (f" at table {table.label}" if table is not None else "")
        )
        return reservation
