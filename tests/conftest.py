"""
Shared fixtures: an in-memory database seeded with the demo floorplan and a
clock pinned to 2026-10-18 18:30 (UTC wall clock, during the Dinner shift).
"""

import pytest
from datetime import date, datetime, time, timedelta
import pytz
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from seating.database import Base, init_db
from seating.init_db import seed_demo_data
from seating.models import Reservation, ReservationStatus, ReservationType
from seating.services.clock import RestaurantClock
from seating.services.floorplan_service import FloorplanService
from seating.services.locking import TableLockRegistry
from seating.services.reservation_service import ReservationService


TODAY = date(2026, 10, 18)
TOMORROW = TODAY + timedelta(days=1)
NOW_UTC = datetime(2026, 10, 18, 18, 30, tzinfo=pytz.utc)


def pinned_clock(hour: int = 18, minute: int = 30, timezone: str = "UTC") -> RestaurantClock:
    pinned = NOW_UTC.replace(hour=hour, minute=minute)
    return RestaurantClock(timezone, utc_now=lambda: pinned)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded(db):
    return seed_demo_data(db)


@pytest.fixture
def clock():
    return pinned_clock()


@pytest.fixture
def locks():
    return TableLockRegistry()


@pytest.fixture
def reservations(db, clock, locks):
    return ReservationService(db, clock, locks)


@pytest.fixture
def floorplans(db, clock, locks):
    return FloorplanService(db, clock, locks)


@pytest.fixture
def member_of(seeded):
    """Combined table member row of C1 for a table label"""
    def _member_of(label):
        table_id = seeded["tables"][label].id
        return next(m for m in seeded["combined"].members if m.floorplan_element_instance_id == table_id)
    return _member_of


@pytest.fixture
def make_reservation(db, seeded):
    """Insert a reservation row directly, bypassing every check"""
    def _make(at=time(19, 0), duration=60, party_size=2, status=ReservationStatus.UPCOMING,
              on=TOMORROW, shift="Dinner", table=None, member=None):
        reservation = Reservation(
            client_id=seeded["clients"][0].id,
            shift_id=seeded["shifts"][shift].id,
            date=on,
            time=at,
            duration=duration,
            party_size=party_size,
            status=status,
            type=ReservationType.ON_CALL,
            tags=[],
            notes="",
            reserved_element_id=seeded["tables"][table].id if table else None,
            combined_table_member_id=member.id if member is not None else None,
        )
        db.add(reservation)
        db.commit()
        db.refresh(reservation)
        return reservation
    return _make
