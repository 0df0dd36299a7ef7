import logging
from datetime import date, time
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..errors import ConflictError, InvalidRequestError, NotFoundError, Reason, SeatingError
from ..models import (
    BlockTable,
    CombinedTable,
    CombinedTableMember,
    Floorplan,
    FloorplanElementInstance,
    Reservation,
    Shift,
)
from .clock import RestaurantClock
from .conflict_detector import ConflictDetector
from .locking import TableLockRegistry, table_locks
from .time_window import TimeWindow, format_time_am_pm

logger = logging.getLogger(__name__)


class FloorplanService:
    """Blocks, combinations and table removal on a floorplan"""

    def __init__(self, db: Session, clock: RestaurantClock,
                 locks: Optional[TableLockRegistry] = None):
        self.db = db
        self.clock = clock
        self.locks = locks or table_locks
        self.conflicts = ConflictDetector(db)

    def get_floorplan(self, floorplan_id: int) -> Floorplan:
        floorplan = self.db.get(Floorplan, floorplan_id)
        if floorplan is None:
            logger.error(f"Floorplan with ID {floorplan_id} not found")
            raise NotFoundError(
                f"Floorplan with ID {floorplan_id} not found",
                Reason.FLOORPLAN_NOT_FOUND, "floorplan", floorplan_id,
            )
        return floorplan

    def get_table(self, table_id: int) -> FloorplanElementInstance:
        table = self.db.get(FloorplanElementInstance, table_id)
        if table is None:
            logger.error(f"Floorplan element with ID {table_id} not found")
            raise NotFoundError(
                f"Floorplan element with ID {table_id} not found", Reason.TABLE_NOT_FOUND, "table", table_id
            )
        return table

    def block_table(self, table_id: int, start_date: date, end_date: date, start_time: time,
                    end_time: time, notes: Optional[str] = None) -> BlockTable:
        table = self.get_table(table_id)
        if not table.is_reservable:
            logger.error(f"Element {table.label} is not a reservable table")
            raise InvalidRequestError(
                f"Element {table.label} is not a reservable table",
                Reason.NOT_RESERVABLE, "table", table.id,
            )
        if end_time <= start_time:
            logger.error(f"Block end time {end_time} is not after start time {start_time}")
            raise InvalidRequestError(
                "End time must be after start time", Reason.INVALID_BLOCK_WINDOW, "table", table.id
            )
        if end_date < start_date:
            logger.error(f"Block end date {end_date} is before start date {start_date}")
            raise InvalidRequestError(
                "End date must be after or equal to start date",
                Reason.INVALID_BLOCK_WINDOW, "table", table.id,
            )
        if start_date < self.clock.today():
            logger.error(f"Cannot block table {table.label} in the past ({start_date})")
            raise InvalidRequestError(
                "Cannot block table in the past", Reason.PAST_DATE, "table", table.id
            )

        window = TimeWindow.between(start_time, end_time)
        shifts = self.db.query(Shift).filter(
            Shift.restaurant_id == table.floorplan.restaurant_id
        ).order_by(Shift.id).all()
        if not any(s.start_time <= start_time and end_time <= s.end_time for s in shifts):
            logger.error(f"Block time {window} does not fall within any shift")
            raise InvalidRequestError(
                f"Block time {window} does not fall within any shift",
                Reason.TIME_OUTSIDE_SHIFT, "table", table.id,
            )

        try:
            with self.locks.hold([table.id]):
                for reservation in self.conflicts.reservations_occupying([table.id], start_date, until=end_date):
                    if self.conflicts.window_of(reservation).overlaps(window):
                        logger.error(
                            f"Cannot block table {table.label}. Reservation {reservation.id} conflicts at "
                            f"{reservation.date} {format_time_am_pm(reservation.time)}"
                        )
                        raise ConflictError(
                            f"Cannot block table. There is a reservation at {reservation.date} "
                            f"{format_time_am_pm(reservation.time)}",
                            Reason.OVERLAPPING_RESERVATION, "table", table.id,
                        )
                block = BlockTable(
                    floorplan_element_instance_id=table.id,
                    start_date=start_date,
                    end_date=end_date,
                    start_time=start_time,
                    end_time=end_time,
                    notes=notes or "",
                )
                self.db.add(block)
                self.db.commit()
        except SeatingError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error blocking table {table.label}: {str(e)}")
            raise
        self.db.refresh(block)
        logger.info(f"Blocked table {table.label} from {start_date} to {end_date}, {window}")
        return block

    def create_combined_table(self, floorplan_id: int, table_ids: Iterable[int],
                              group_name: Optional[str] = None, min_capacity: Optional[int] = None,
                              max_capacity: Optional[int] = None) -> CombinedTable:
        floorplan = self.get_floorplan(floorplan_id)
        requested = sorted(set(table_ids or []))
        if not requested:
            logger.error("No tables given for combined table")
            raise InvalidRequestError(
                "At least one table is required to create a combined table",
                Reason.INVALID_COMBINATION, "floorplan", floorplan.id,
            )

        tables = self._load_tables(requested)
        foreign = [t.label for t in tables if t.floorplan_id != floorplan.id]
        if foreign:
            logger.error(f"Elements {', '.join(foreign)} do not belong to floorplan {floorplan.name}")
            raise InvalidRequestError(
                f"Elements {', '.join(foreign)} don't belong to floorplan {floorplan.name}",
                Reason.INVALID_COMBINATION, "floorplan", floorplan.id,
            )
        decorative = [t.label for t in tables if not t.is_reservable]
        if decorative:
            logger.error(f"Elements {', '.join(decorative)} are not reservable and cannot be combined")
            raise InvalidRequestError(
                f"Elements {', '.join(decorative)} are decorative and cannot be combined. "
                "Only reservable elements can be combined.",
                Reason.NOT_RESERVABLE, "floorplan", floorplan.id,
            )

        for member in self.db.query(CombinedTableMember).filter(
            CombinedTableMember.floorplan_element_instance_id.in_(requested)
        ).order_by(CombinedTableMember.id):
            existing = member.combined_table
            logger.error(
                f"Cannot combine table {member.table.label} because it is already combined in group "
                f"'{existing.label}' with tables ({', '.join(m.table.label for m in existing.members)})"
            )
            raise ConflictError(
                f"Cannot combine tables because table {member.table.label} is already combined in group "
                f"'{existing.label}'",
                Reason.TABLE_ALREADY_COMBINED, "combined_table", existing.id,
            )

        if min_capacity is None:
            min_capacity = sum(t.min_capacity for t in tables)
        if max_capacity is None:
            max_capacity = sum(t.max_capacity for t in tables)
        if min_capacity > max_capacity:
            logger.error(f"Combined capacity {min_capacity}-{max_capacity} is not a valid range")
            raise InvalidRequestError(
                f"Minimum capacity {min_capacity} exceeds maximum capacity {max_capacity}",
                Reason.INVALID_COMBINATION, "floorplan", floorplan.id,
            )

        combined = CombinedTable(
            floorplan_id=floorplan.id,
            group_name=group_name,
            min_capacity=min_capacity,
            max_capacity=max_capacity,
            members=[CombinedTableMember(floorplan_element_instance_id=t.id) for t in tables],
        )
        try:
            self.db.add(combined)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error creating combined table in floorplan {floorplan.name}: {str(e)}")
            raise
        self.db.refresh(combined)
        logger.info(
            f"Created combined table {combined.label} ({', '.join(t.label for t in tables)}) "
            f"capacity {min_capacity}-{max_capacity}"
        )
        return combined

    def delete_combined_table(self, combined_table_id: int) -> int:
        combined = self.db.get(CombinedTable, combined_table_id)
        if combined is None:
            logger.error(f"Combined table with ID {combined_table_id} not found")
            raise NotFoundError(
                f"Combined table with ID {combined_table_id} not found",
                Reason.COMBINED_TABLE_NOT_FOUND, "combined_table", combined_table_id,
            )
        label = combined.label
        try:
            cleared = self._release_members([m.id for m in combined.members])
            self.db.delete(combined)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error deleting combined table {label}: {str(e)}")
            raise
        logger.info(f"Deleted combined table {label}; cleared {cleared} reservation(s)")
        return cleared

    def delete_floorplan_element(self, floorplan_id: int, table_id: int) -> int:
        floorplan = self.get_floorplan(floorplan_id)
        table = self.db.get(FloorplanElementInstance, table_id)
        if table is None or table.floorplan_id != floorplan.id:
            logger.error(f"Element with ID {table_id} not found in floorplan {floorplan.name}")
            raise NotFoundError(
                f"Element with ID {table_id} not found in floorplan {floorplan.name}",
                Reason.TABLE_NOT_FOUND, "table", table_id,
            )
        label = table.label
        try:
            with self.locks.hold([table.id]):
                cleared = self.db.query(Reservation).filter(
                    Reservation.reserved_element_id == table.id
                ).update({Reservation.reserved_element_id: None}, synchronize_session="fetch")

                member_ids = [m.id for m in table.memberships]
                combined_ids = {m.combined_table_id for m in table.memberships}
                cleared += self._release_members(member_ids)
                if member_ids:
                    self.db.query(CombinedTableMember).filter(
                        CombinedTableMember.id.in_(member_ids)
                    ).delete(synchronize_session="fetch")
                for combined_id in sorted(combined_ids):
                    remaining = self.db.query(CombinedTableMember).filter(
                        CombinedTableMember.combined_table_id == combined_id
                    ).count()
                    if not remaining:
                        logger.info(f"Combined table {combined_id} has no members left; deleting it")
                        self.db.query(CombinedTable).filter(
                            CombinedTable.id == combined_id
                        ).delete(synchronize_session="fetch")

                self.db.query(BlockTable).filter(
                    BlockTable.floorplan_element_instance_id == table.id
                ).delete(synchronize_session="fetch")
                self.db.query(FloorplanElementInstance).filter(
                    FloorplanElementInstance.id == table.id
                ).delete(synchronize_session="fetch")
                self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Error deleting element {label} from floorplan {floorplan.name}: {str(e)}")
            raise
        logger.info(
            f"Deleted element {label} from floorplan {floorplan.name}; cleared {cleared} reservation(s)"
        )
        return cleared

    def _load_tables(self, table_ids: List[int]) -> List[FloorplanElementInstance]:
        tables = self.db.query(FloorplanElementInstance).filter(
            FloorplanElementInstance.id.in_(table_ids)
        ).order_by(FloorplanElementInstance.id).all()
        missing = sorted(set(table_ids) - {t.id for t in tables})
        if missing:
            logger.error(f"Some elements were not found. Missing element IDs: {missing}")
            raise NotFoundError(
                f"Elements with IDs {', '.join(str(m) for m in missing)} not found",
                Reason.TABLE_NOT_FOUND, "table", missing[0],
            )
        return tables

    def _release_members(self, member_ids: List[int]) -> int:
        """Unassign every reservation pointing at one of the member rows"""
        if not member_ids:
            return 0
        return self.db.query(Reservation).filter(
            Reservation.combined_table_member_id.in_(member_ids)
        ).update({Reservation.combined_table_member_id: None}, synchronize_session="fetch")
