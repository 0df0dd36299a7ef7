import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Union

import pytz
from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship

from .database import Base
from .services.duration import format_duration


def _utc_now() -> datetime:
    return datetime.now(pytz.utc).replace(tzinfo=None)


class ElementPurpose(str, enum.Enum):
    RESERVABLE = "reservable"
    DECORATIVE = "decorative"


class TableType(str, enum.Enum):
    ROUND = "round"
    SQUARE = "square"
    RECTANGLE = "rectangle"
    BOOTH = "booth"
    BAR = "bar"
    OTHER = "other"


class ReservationStatus(str, enum.Enum):
    """Reservation lifecycle states; a waitlisted reservation is WAITLIST, never NULL"""
    WAITLIST = "waitlist"
    UPCOMING = "upcoming"
    SEATED = "seated"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class ReservationType(str, enum.Enum):
    ON_CALL = "on_call"
    WALK_IN = "walk_in"


class ClientTag(enum.IntEnum):
    VIP = 0
    WINE_LOVER = 1
    VEGETARIAN = 2
    VEGAN = 3
    GLUTEN_FREE = 4
    BIRTHDAY = 5
    ANNIVERSARY = 6
    REGULAR = 7
    HIGH_SPENDER = 8
    ALLERGIES = 9
    BBQ_LOVER = 10
    PESCATARIAN = 11
    QUIET_TABLE = 12
    BUSINESS = 13


def _enum_column(enum_cls, **kwargs):
    return Column(
        Enum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=20),
        **kwargs,
    )


# Assignment variants. A reservation holds exactly one of these at any time.

@dataclass(frozen=True)
class Unassigned:
    pass


@dataclass(frozen=True)
class SingleTable:
    table_id: int


@dataclass(frozen=True)
class CombinedMember:
    member_id: int


Assignment = Union[Unassigned, SingleTable, CombinedMember]


class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=_utc_now)

    shifts = relationship("Shift", back_populates="restaurant", order_by="Shift.id")
    floorplans = relationship("Floorplan", back_populates="restaurant")


class Shift(Base):
    """Named daily service window, e.g. Dinner 17:00-23:00"""
    __tablename__ = "shifts"
    __table_args__ = (CheckConstraint("start_time < end_time", name="ck_shift_window"),)

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    name = Column(String(50), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    restaurant = relationship("Restaurant", back_populates="shifts")
    reservations = relationship("Reservation", back_populates="shift")


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    phone_number = Column(String(20))
    email = Column(String(100))
    created_at = Column(DateTime, default=_utc_now)

    reservations = relationship("Reservation", back_populates="client")


class Element(Base):
    """Catalog entry a placed table or decoration is built from"""
    __tablename__ = "elements"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    table_type = _enum_column(TableType, default=TableType.OTHER, nullable=False)
    purpose = _enum_column(ElementPurpose, default=ElementPurpose.RESERVABLE, nullable=False)

    instances = relationship("FloorplanElementInstance", back_populates="element")


class Floorplan(Base):
    __tablename__ = "floorplans"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    name = Column(String(100), nullable=False)

    restaurant = relationship("Restaurant", back_populates="floorplans")
    elements = relationship("FloorplanElementInstance", back_populates="floorplan")
    combined_tables = relationship("CombinedTable", back_populates="floorplan")


class FloorplanElementInstance(Base):
    """A placed table (or decoration) on a floorplan"""
    __tablename__ = "floorplan_element_instances"
    __table_args__ = (CheckConstraint("min_capacity <= max_capacity", name="ck_table_capacity"),)

    id = Column(Integer, primary_key=True, index=True)
    floorplan_id = Column(Integer, ForeignKey("floorplans.id"), nullable=False)
    element_id = Column(Integer, ForeignKey("elements.id"), nullable=False)
    table_id = Column(String(20))  # Label shown to staff, e.g. "T1"
    min_capacity = Column(Integer, nullable=False, default=1)
    max_capacity = Column(Integer, nullable=False, default=2)

    floorplan = relationship("Floorplan", back_populates="elements")
    element = relationship("Element", back_populates="instances")
    memberships = relationship("CombinedTableMember", back_populates="table")
    blocks = relationship("BlockTable", back_populates="table")

    @property
    def purpose(self):
        return self.element.purpose if self.element else None

    @property
    def is_reservable(self) -> bool:
        return self.purpose == ElementPurpose.RESERVABLE

    @property
    def label(self) -> str:
        return self.table_id or f"#{self.id}"


class CombinedTable(Base):
    """Named group of tables reservable as one unit"""
    __tablename__ = "combined_tables"

    id = Column(Integer, primary_key=True, index=True)
    floorplan_id = Column(Integer, ForeignKey("floorplans.id"), nullable=False)
    group_name = Column(String(100))
    min_capacity = Column(Integer)
    max_capacity = Column(Integer)
    created_at = Column(DateTime, default=_utc_now)

    floorplan = relationship("Floorplan", back_populates="combined_tables")
    members = relationship(
        "CombinedTableMember",
        back_populates="combined_table",
        cascade="all, delete-orphan",
        order_by="CombinedTableMember.id",
    )

    @property
    def label(self) -> str:
        return self.group_name or "Combined Table"

    @property
    def table_ids(self) -> list[int]:
        return [m.floorplan_element_instance_id for m in self.members]


class CombinedTableMember(Base):
    __tablename__ = "combined_table_members"

    id = Column(Integer, primary_key=True, index=True)
    combined_table_id = Column(Integer, ForeignKey("combined_tables.id"), nullable=False)
    floorplan_element_instance_id = Column(
        Integer, ForeignKey("floorplan_element_instances.id"), nullable=False
    )

    combined_table = relationship("CombinedTable", back_populates="members")
    table = relationship("FloorplanElementInstance", back_populates="memberships")


class BlockTable(Base):
    """Administrative block of one table for [start_date, end_date] x [start_time, end_time)"""
    __tablename__ = "block_tables"

    id = Column(Integer, primary_key=True, index=True)
    floorplan_element_instance_id = Column(
        Integer, ForeignKey("floorplan_element_instances.id"), nullable=False
    )
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    notes = Column(Text)

    table = relationship("FloorplanElementInstance", back_populates="blocks")


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint(
            "reserved_element_id IS NULL OR combined_table_member_id IS NULL",
            name="ck_reservation_single_assignment",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)  # None for anonymous walk-ins
    shift_id = Column(Integer, ForeignKey("shifts.id"), nullable=False)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    duration = Column(Integer, nullable=True)  # Minutes; None until set
    party_size = Column(Integer, nullable=False)
    status = _enum_column(ReservationStatus, default=ReservationStatus.WAITLIST, nullable=False)
    type = _enum_column(ReservationType, default=ReservationType.ON_CALL, nullable=False)
    tags = Column(JSON, default=list)
    notes = Column(Text, default="")
    reserved_element_id = Column(Integer, ForeignKey("floorplan_element_instances.id"), nullable=True)
    combined_table_member_id = Column(Integer, ForeignKey("combined_table_members.id"), nullable=True)
    created_at = Column(DateTime)
    modified_at = Column(DateTime)

    client = relationship("Client", back_populates="reservations")
    shift = relationship("Shift", back_populates="reservations")
    reserved_element = relationship("FloorplanElementInstance")
    combined_table_member = relationship("CombinedTableMember")

    @property
    def assignment(self) -> Assignment:
        if self.reserved_element_id is not None:
            return SingleTable(self.reserved_element_id)
        if self.combined_table_member_id is not None:
            return CombinedMember(self.combined_table_member_id)
        return Unassigned()

    @assignment.setter
    def assignment(self, value: Assignment):
        # Both columns are always written together so only one can ever be set
        if isinstance(value, SingleTable):
            self.reserved_element_id, self.combined_table_member_id = value.table_id, None
        elif isinstance(value, CombinedMember):
            self.reserved_element_id, self.combined_table_member_id = None, value.member_id
        else:
            self.reserved_element_id, self.combined_table_member_id = None, None

    @property
    def combined_table(self):
        member = self.combined_table_member
        return member.combined_table if member is not None else None

    @property
    def duration_text(self):
        return format_duration(self.duration)
