"""
Tests for table assignment: exclusivity, gates, capacity, blocks, overlaps
and combination handling.
"""

import logging
import pytest
import threading
from datetime import datetime, time

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from conftest import TOMORROW, pinned_clock
from seating.config import settings
from seating.database import init_db
from seating.errors import ConflictError, InvalidRequestError, NotFoundError, Reason
from seating.init_db import seed_demo_data
from seating.models import (
    BlockTable,
    CombinedMember,
    Reservation,
    ReservationStatus,
    ReservationType,
    SingleTable,
    Unassigned,
)
from seating.services.assignment import AssignmentResolver, target_from_request
from seating.services.locking import TableLockRegistry
from seating.services.reservation_service import ReservationService


def add_block(db, table, start=time(18, 0), end=time(20, 0), start_date=TOMORROW, end_date=TOMORROW):
    block = BlockTable(
        floorplan_element_instance_id=table.id,
        start_date=start_date,
        end_date=end_date,
        start_time=start,
        end_time=end,
        notes="Maintenance",
    )
    db.add(block)
    db.commit()
    return block


class TestTargetFromRequest:

    def test_single_table(self):
        assert target_from_request(3, None) == SingleTable(3)

    def test_combined_member(self):
        assert target_from_request(None, 8) == CombinedMember(8)

    def test_both_ids_rejected(self):
        with pytest.raises(InvalidRequestError) as exc:
            target_from_request(3, 8)
        assert exc.value.reason == Reason.AMBIGUOUS_TARGET

    def test_neither_id_rejected(self):
        with pytest.raises(InvalidRequestError) as exc:
            target_from_request(None, None)
        assert exc.value.reason == Reason.MISSING_TARGET

    def test_exclusivity_checked_before_lookup(self, reservations, seeded):
        with pytest.raises(InvalidRequestError) as exc:
            reservations.assign_table(99999, table_id=1, combined_member_id=1)
        assert exc.value.reason == Reason.AMBIGUOUS_TARGET


class TestMutualExclusivity:

    def test_assignment_setter_clears_the_other_column(self, make_reservation, member_of, seeded):
        reservation = make_reservation(table="T1")
        reservation.assignment = CombinedMember(member_of("T2").id)
        assert reservation.reserved_element_id is None
        assert reservation.combined_table_member_id == member_of("T2").id
        reservation.assignment = Unassigned()
        assert reservation.assignment == Unassigned()

    def test_database_rejects_both_columns(self, db, make_reservation, member_of, seeded):
        reservation = make_reservation(table="T1")
        reservation.combined_table_member_id = member_of("T1").id
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_switching_to_combination_nulls_single_table(self, reservations, make_reservation, member_of):
        reservation = make_reservation(party_size=4, table="T3")
        updated = reservations.update_assigned_table(reservation.id, combined_member_id=member_of("T1").id)
        assert updated.reserved_element_id is None
        assert updated.combined_table_member_id == member_of("T1").id

    def test_switching_to_single_table_nulls_member(self, reservations, make_reservation, member_of, seeded):
        reservation = make_reservation(party_size=4, member=member_of("T1"))
        updated = reservations.update_assigned_table(reservation.id, table_id=seeded["tables"]["T4"].id)
        assert updated.combined_table_member_id is None
        assert updated.reserved_element_id == seeded["tables"]["T4"].id


class TestAssignTable:

    def test_assigns_table_and_stamps_modified(self, reservations, make_reservation, seeded, clock):
        reservation = make_reservation()
        updated = reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert updated.assignment == SingleTable(seeded["tables"]["T1"].id)
        assert updated.modified_at == clock.now()

    def test_missing_reservation(self, reservations, seeded):
        with pytest.raises(NotFoundError) as exc:
            reservations.assign_table(99999, table_id=seeded["tables"]["T1"].id)
        assert exc.value.reason == Reason.RESERVATION_NOT_FOUND

    def test_missing_table(self, reservations, make_reservation):
        reservation = make_reservation()
        with pytest.raises(NotFoundError) as exc:
            reservations.assign_table(reservation.id, table_id=99999)
        assert exc.value.reason == Reason.TABLE_NOT_FOUND

    def test_missing_member(self, reservations, make_reservation):
        reservation = make_reservation()
        with pytest.raises(NotFoundError) as exc:
            reservations.assign_table(reservation.id, combined_member_id=99999)
        assert exc.value.reason == Reason.COMBINED_MEMBER_NOT_FOUND

    def test_decorative_element_rejected(self, reservations, make_reservation, seeded):
        reservation = make_reservation()
        with pytest.raises(InvalidRequestError) as exc:
            reservations.assign_table(reservation.id, table_id=seeded["tables"]["P1"].id)
        assert exc.value.reason == Reason.NOT_RESERVABLE

    @pytest.mark.parametrize("status", [
        ReservationStatus.COMPLETED,
        ReservationStatus.NO_SHOW,
        ReservationStatus.CANCELLED,
        ReservationStatus.REJECTED,
    ])
    def test_terminal_status_rejected(self, reservations, make_reservation, seeded, status):
        reservation = make_reservation(status=status)
        with pytest.raises(InvalidRequestError) as exc:
            reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert exc.value.reason == Reason.STATUS_NOT_ASSIGNABLE

    def test_waitlisted_reservation_can_be_assigned(self, reservations, make_reservation, seeded):
        reservation = make_reservation(status=ReservationStatus.WAITLIST)
        updated = reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert updated.reserved_element_id == seeded["tables"]["T1"].id
        assert updated.status == ReservationStatus.WAITLIST

    def test_time_outside_shift_rejected(self, reservations, make_reservation, seeded):
        reservation = make_reservation(at=time(16, 30))
        with pytest.raises(InvalidRequestError) as exc:
            reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert exc.value.reason == Reason.TIME_OUTSIDE_SHIFT

    def test_shift_end_is_inclusive(self, reservations, make_reservation, seeded):
        reservation = make_reservation(at=time(23, 0))
        updated = reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert updated.reserved_element_id == seeded["tables"]["T1"].id

    def test_missing_duration_defaults_and_persists(self, reservations, make_reservation, seeded, db):
        reservation = make_reservation(duration=None)
        reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        db.expire_all()
        assert db.get(Reservation, reservation.id).duration == 300

    def test_default_duration_used_for_conflicts(self, reservations, make_reservation, seeded):
        make_reservation(at=time(17, 0), duration=None, table="T1")
        reservation = make_reservation(at=time(21, 30))
        with pytest.raises(ConflictError):
            reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)


class TestCapacityOnAssignment:

    @pytest.mark.parametrize("party_size", [2, 4])
    def test_boundary_values_accepted(self, reservations, make_reservation, seeded, party_size):
        reservation = make_reservation(party_size=party_size)
        updated = reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert updated.reserved_element_id == seeded["tables"]["T1"].id

    @pytest.mark.parametrize("party_size", [1, 5])
    def test_out_of_range_rejected(self, reservations, make_reservation, seeded, party_size):
        reservation = make_reservation(party_size=party_size)
        with pytest.raises(InvalidRequestError) as exc:
            reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert exc.value.reason == Reason.CAPACITY_MISMATCH

    def test_combination_uses_its_own_capacity(self, reservations, make_reservation, member_of):
        # T1 alone seats at most 4; C1 seats 4 to 8
        reservation = make_reservation(party_size=7)
        updated = reservations.assign_table(reservation.id, combined_member_id=member_of("T1").id)
        assert updated.combined_table_member_id == member_of("T1").id

    def test_combination_capacity_rejects_small_party(self, reservations, make_reservation, member_of):
        reservation = make_reservation(party_size=2)
        with pytest.raises(InvalidRequestError) as exc:
            reservations.assign_table(reservation.id, combined_member_id=member_of("T1").id)
        assert exc.value.reason == Reason.CAPACITY_MISMATCH


class TestBlocks:

    def test_blocked_table_rejected(self, reservations, make_reservation, seeded, db):
        add_block(db, seeded["tables"]["T1"])
        reservation = make_reservation()
        with pytest.raises(ConflictError) as exc:
            reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert exc.value.reason == Reason.TABLE_BLOCKED

    def test_block_on_other_day_ignored(self, reservations, make_reservation, seeded, db):
        add_block(db, seeded["tables"]["T1"], start_date=TOMORROW.replace(day=25), end_date=TOMORROW.replace(day=26))
        reservation = make_reservation()
        updated = reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert updated.reserved_element_id == seeded["tables"]["T1"].id

    def test_block_ending_at_start_time_ignored(self, reservations, make_reservation, seeded, db):
        add_block(db, seeded["tables"]["T1"], start=time(17, 0), end=time(19, 0))
        reservation = make_reservation(at=time(19, 0))
        updated = reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert updated.reserved_element_id == seeded["tables"]["T1"].id

    def test_blocked_member_blocks_whole_combination(self, reservations, make_reservation, member_of, seeded, db):
        add_block(db, seeded["tables"]["T2"])
        reservation = make_reservation(party_size=5)
        with pytest.raises(ConflictError) as exc:
            reservations.assign_table(reservation.id, combined_member_id=member_of("T1").id)
        assert exc.value.reason == Reason.TABLE_BLOCKED
        assert "C1" in exc.value.message


class TestConflicts:

    def test_end_to_end_single_table(self, reservations, seeded):
        """R1 holds T1 19:00-20:00; 19:30 conflicts, 20:00 does not"""
        client_id = seeded["clients"][0].id
        dinner = seeded["shifts"]["Dinner"].id
        t1 = seeded["tables"]["T1"].id

        r1 = reservations.create_reservation(client_id, dinner, TOMORROW, time(19, 0), 2, "60m", table_id=t1)
        assert r1.status == ReservationStatus.SEATED

        with pytest.raises(ConflictError) as exc:
            reservations.create_reservation(client_id, dinner, TOMORROW, time(19, 30), 2, "60m", table_id=t1)
        assert exc.value.reason == Reason.OVERLAPPING_RESERVATION

        r3 = reservations.create_reservation(client_id, dinner, TOMORROW, time(20, 0), 2, "60m", table_id=t1)
        assert r3.reserved_element_id == t1

    def test_end_to_end_combination(self, reservations, make_reservation, member_of):
        """A booking on C1 via T1 blocks C1 via T2 for an overlapping window"""
        first = make_reservation(party_size=4)
        reservations.assign_table(first.id, combined_member_id=member_of("T1").id)

        second = make_reservation(at=time(19, 30), party_size=4)
        with pytest.raises(ConflictError) as exc:
            reservations.assign_table(second.id, combined_member_id=member_of("T2").id)
        assert exc.value.reason == Reason.OVERLAPPING_RESERVATION

    def test_combination_blocks_single_member_table(self, reservations, make_reservation, member_of, seeded):
        make_reservation(party_size=4, member=member_of("T1"))
        reservation = make_reservation(at=time(19, 30))
        with pytest.raises(ConflictError):
            reservations.assign_table(reservation.id, table_id=seeded["tables"]["T2"].id)

    def test_single_table_blocks_combination(self, reservations, make_reservation, member_of):
        make_reservation(table="T2")
        reservation = make_reservation(at=time(19, 30), party_size=4)
        with pytest.raises(ConflictError):
            reservations.assign_table(reservation.id, combined_member_id=member_of("T1").id)

    @pytest.mark.parametrize("status", [
        ReservationStatus.WAITLIST,
        ReservationStatus.COMPLETED,
        ReservationStatus.NO_SHOW,
        ReservationStatus.CANCELLED,
        ReservationStatus.REJECTED,
    ])
    def test_inactive_reservations_never_block(self, reservations, make_reservation, seeded, status):
        make_reservation(table="T1", status=status)
        reservation = make_reservation()
        updated = reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert updated.reserved_element_id == seeded["tables"]["T1"].id

    def test_other_date_does_not_conflict(self, reservations, make_reservation, seeded):
        make_reservation(table="T1", on=TOMORROW.replace(day=20))
        reservation = make_reservation()
        updated = reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert updated.reserved_element_id == seeded["tables"]["T1"].id

    def test_reassigning_to_same_table_is_not_a_self_conflict(self, reservations, make_reservation, seeded):
        reservation = make_reservation()
        t1 = seeded["tables"]["T1"].id
        reservations.assign_table(reservation.id, table_id=t1)
        again = reservations.update_assigned_table(reservation.id, table_id=t1)
        assert again.reserved_element_id == t1

    def test_reassigning_to_same_combination_is_not_a_self_conflict(self, reservations, make_reservation,
                                                                    member_of):
        reservation = make_reservation(party_size=4)
        reservations.assign_table(reservation.id, combined_member_id=member_of("T1").id)
        again = reservations.update_assigned_table(reservation.id, combined_member_id=member_of("T2").id)
        assert again.combined_table_member_id == member_of("T2").id

    def test_failed_assignment_leaves_reservation_unchanged(self, reservations, make_reservation, seeded, db):
        make_reservation(table="T1")
        reservation = make_reservation(at=time(19, 30), duration=None)
        with pytest.raises(ConflictError):
            reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        db.expire_all()
        stored = db.get(Reservation, reservation.id)
        assert stored.assignment == Unassigned()
        assert stored.duration is None


class TestUpdateAssignedTable:

    def test_existing_assignment_conflict(self, reservations, make_reservation, seeded):
        current = make_reservation(table="T3")
        make_reservation(at=time(19, 30), table="T3")
        with pytest.raises(ConflictError) as exc:
            reservations.update_assigned_table(current.id, table_id=seeded["tables"]["T4"].id)
        assert exc.value.reason == Reason.EXISTING_ASSIGNMENT_CONFLICT

    def test_moves_to_free_table(self, reservations, make_reservation, seeded):
        reservation = make_reservation(table="T1")
        updated = reservations.update_assigned_table(reservation.id, table_id=seeded["tables"]["T6"].id)
        assert updated.reserved_element_id == seeded["tables"]["T6"].id

    def test_unassigned_reservation_can_be_updated(self, reservations, make_reservation, seeded):
        reservation = make_reservation()
        updated = reservations.update_assigned_table(reservation.id, table_id=seeded["tables"]["T6"].id)
        assert updated.reserved_element_id == seeded["tables"]["T6"].id


class TestRemoveTableAssignment:

    def test_clears_single_table(self, reservations, make_reservation):
        reservation = make_reservation(table="T1")
        updated = reservations.remove_table_assignment(reservation.id)
        assert updated.reserved_element_id is None
        assert updated.combined_table_member_id is None

    def test_clears_combination_member(self, reservations, make_reservation, member_of):
        reservation = make_reservation(party_size=4, member=member_of("T1"))
        updated = reservations.remove_table_assignment(reservation.id)
        assert updated.assignment == Unassigned()

    def test_unassigned_reservation_is_left_as_is(self, reservations, make_reservation):
        reservation = make_reservation()
        assert reservations.remove_table_assignment(reservation.id).assignment == Unassigned()

    def test_missing_reservation(self, reservations, seeded):
        with pytest.raises(NotFoundError):
            reservations.remove_table_assignment(99999)


class TestTableLockRegistry:

    def test_second_holder_waits_for_first(self):
        registry = TableLockRegistry()
        entered = threading.Event()

        def contender():
            with registry.hold([2]):
                entered.set()

        with registry.hold([1, 2]):
            worker = threading.Thread(target=contender)
            worker.start()
            assert not entered.wait(timeout=0.2)
        worker.join(timeout=2)
        assert entered.is_set()

    def test_disjoint_tables_do_not_wait(self):
        registry = TableLockRegistry()
        entered = threading.Event()

        def other():
            with registry.hold([3]):
                entered.set()

        with registry.hold([1, 2]):
            worker = threading.Thread(target=other)
            worker.start()
            assert entered.wait(timeout=2)
        worker.join(timeout=2)

    def test_locks_released_after_error(self):
        registry = TableLockRegistry()
        with pytest.raises(RuntimeError):
            with registry.hold([1]):
                raise RuntimeError("boom")
        with registry.hold([1]):
            pass


class RacingLocks(TableLockRegistry):
    """Holds every caller at the lock until all of them have reached it"""

    def __init__(self, parties):
        super().__init__()
        self.barrier = threading.Barrier(parties, timeout=5)

    def hold(self, table_ids):
        self.barrier.wait()
        return super().hold(table_ids)


@pytest.fixture
def file_session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'seating.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def file_seed(file_session_factory):
    """Seed the file database and keep only the ids, so sessions can be closed"""
    session = file_session_factory()
    try:
        data = seed_demo_data(session)
        return {
            "client_id": data["clients"][0].id,
            "dinner_id": data["shifts"]["Dinner"].id,
            "t1_id": data["tables"]["T1"].id,
        }
    finally:
        session.close()


def run_concurrently(*calls):
    outcomes = [None] * len(calls)

    def runner(index, call):
        try:
            outcomes[index] = call()
        except Exception as e:
            outcomes[index] = e

    threads = [threading.Thread(target=runner, args=(i, call)) for i, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return outcomes


class TestConcurrentBooking:

    def test_simultaneous_assignments_first_wins(self, file_session_factory, file_seed):
        locks = RacingLocks(2)
        session = file_session_factory()
        ids = []
        for _ in range(2):
            reservation = Reservation(
                client_id=file_seed["client_id"], shift_id=file_seed["dinner_id"], date=TOMORROW,
                time=time(19, 0), duration=60, party_size=2, status=ReservationStatus.UPCOMING,
                type=ReservationType.ON_CALL, tags=[], notes="",
            )
            session.add(reservation)
            session.commit()
            ids.append(reservation.id)
        session.close()

        def assign(reservation_id):
            def call():
                db = file_session_factory()
                try:
                    service = ReservationService(db, pinned_clock(), locks)
                    return service.assign_table(reservation_id, table_id=file_seed["t1_id"]).id
                finally:
                    db.close()
            return call

        outcomes = run_concurrently(assign(ids[0]), assign(ids[1]))

        winners = [o for o in outcomes if isinstance(o, int)]
        losers = [o for o in outcomes if isinstance(o, ConflictError)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert losers[0].reason == Reason.OVERLAPPING_RESERVATION

        check = file_session_factory()
        try:
            holders = check.query(Reservation).filter_by(reserved_element_id=file_seed["t1_id"]).all()
            assert [r.id for r in holders] == winners
        finally:
            check.close()

    def test_simultaneous_creates_first_wins(self, file_session_factory, file_seed):
        locks = RacingLocks(2)

        def create():
            db = file_session_factory()
            try:
                service = ReservationService(db, pinned_clock(), locks)
                return service.create_reservation(
                    file_seed["client_id"], file_seed["dinner_id"], TOMORROW, time(19, 0), 2,
                    duration="1h", table_id=file_seed["t1_id"],
                ).id
            finally:
                db.close()

        outcomes = run_concurrently(create, create)

        assert len([o for o in outcomes if isinstance(o, int)]) == 1
        assert len([o for o in outcomes if isinstance(o, ConflictError)]) == 1

        check = file_session_factory()
        try:
            assert check.query(Reservation).filter_by(reserved_element_id=file_seed["t1_id"]).count() == 1
        finally:
            check.close()


def failing_commit():
    raise OperationalError("COMMIT", {}, Exception("disk I/O error"))


class TestStorageFailures:

    def test_assign_commit_failure_is_logged_and_rolled_back(self, reservations, make_reservation,
                                                              seeded, db, monkeypatch, caplog):
        reservation = make_reservation()
        monkeypatch.setattr(db, "commit", failing_commit)
        with caplog.at_level(logging.ERROR, logger="seating.services.assignment"):
            with pytest.raises(OperationalError):
                reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert "Error assigning table to reservation" in caplog.text
        assert any(record.exc_info for record in caplog.records)
        assert db.get(Reservation, reservation.id).assignment == Unassigned()

    def test_remove_commit_failure_is_logged(self, reservations, make_reservation, db, monkeypatch, caplog):
        reservation = make_reservation(table="T1")
        monkeypatch.setattr(db, "commit", failing_commit)
        with caplog.at_level(logging.ERROR, logger="seating.services.assignment"):
            with pytest.raises(OperationalError):
                reservations.remove_table_assignment(reservation.id)
        assert f"Error saving reservation {reservation.id}" in caplog.text

    def test_rejections_are_not_logged_as_failures(self, reservations, make_reservation, seeded, caplog):
        make_reservation(table="T1")
        reservation = make_reservation(at=time(19, 30))
        with caplog.at_level(logging.ERROR, logger="seating.services.assignment"):
            with pytest.raises(ConflictError):
                reservations.assign_table(reservation.id, table_id=seeded["tables"]["T1"].id)
        assert not any(record.exc_info for record in caplog.records)


class TestResolverClock:

    def test_defaults_to_restaurant_timezone(self, db):
        resolver = AssignmentResolver(db)
        assert resolver.clock.timezone.zone == settings.restaurant_timezone

    def test_removal_stamps_local_time(self, db, make_reservation):
        reservation = make_reservation(table="T1")
        resolver = AssignmentResolver(db, pinned_clock(timezone="Asia/Tokyo"))
        updated = resolver.remove_table_assignment(reservation.id)
        # 18:30 UTC is 03:30 the next day in Tokyo
        assert updated.modified_at == datetime(2026, 10, 19, 3, 30)

    def test_created_at_defaults_to_naive_utc(self, seeded):
        assert seeded["restaurant"].created_at is not None
        assert seeded["restaurant"].created_at.tzinfo is None
