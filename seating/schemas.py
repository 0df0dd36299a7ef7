from pydantic import BaseModel, Field
from datetime import date, datetime, time
from typing import Optional, List, Union

from .models import ReservationStatus, ReservationType


class Shift(BaseModel):
    id: int
    name: str
    start_time: time
    end_time: time

    class Config:
        from_attributes = True


class Client(BaseModel):
    id: int
    name: str
    phone_number: Optional[str] = None
    email: Optional[str] = None

    class Config:
        from_attributes = True


class Table(BaseModel):
    id: int
    floorplan_id: int
    table_id: Optional[str] = None
    min_capacity: int
    max_capacity: int
    is_reservable: bool

    class Config:
        from_attributes = True


class CombinedTableMember(BaseModel):
    id: int
    floorplan_element_instance_id: int

    class Config:
        from_attributes = True


class CombinedTable(BaseModel):
    id: int
    floorplan_id: int
    group_name: Optional[str] = None
    min_capacity: Optional[int] = None
    max_capacity: Optional[int] = None
    members: List[CombinedTableMember] = []

    class Config:
        from_attributes = True


class Block(BaseModel):
    id: int
    floorplan_element_instance_id: int
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class Reservation(BaseModel):
    id: int
    client: Optional[Client] = None
    shift: Shift
    date: date
    time: time
    duration: Optional[int] = None
    duration_text: Optional[str] = None
    party_size: int
    status: ReservationStatus
    type: ReservationType
    tags: List[str] = []
    notes: Optional[str] = None
    reserved_element_id: Optional[int] = None
    combined_table_member_id: Optional[int] = None
    reserved_element: Optional[Table] = None
    combined_table: Optional[CombinedTable] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReservationCreate(BaseModel):
    client_id: int
    shift_id: int
    date: date
    time: time
    party_size: int = Field(gt=0)
    duration: Optional[str] = None
    tags: List[Union[int, str]] = []
    notes: Optional[str] = None
    table_id: Optional[int] = None
    is_upcoming: bool = False


class WalkInCreate(BaseModel):
    restaurant_id: int
    party_size: int = Field(gt=0)
    client_id: Optional[int] = None
    tags: List[Union[int, str]] = []
    notes: Optional[str] = None
    table_id: Optional[int] = None
    duration: Optional[str] = None
    is_upcoming: bool = False


class ReservationUpdate(BaseModel):
    date: date
    time: time
    party_size: int = Field(gt=0)
    duration: Optional[str] = None
    tags: List[Union[int, str]] = []
    notes: Optional[str] = None
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None


class StatusUpdate(BaseModel):
    status: ReservationStatus


class TableAssignment(BaseModel):
    """Exactly one of the two ids; checked by the assignment service"""
    table_id: Optional[int] = None
    combined_table_member_id: Optional[int] = None


class BlockCreate(BaseModel):
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    notes: Optional[str] = None


class CombinedTableCreate(BaseModel):
    table_ids: List[int]
    group_name: Optional[str] = None
    min_capacity: Optional[int] = None
    max_capacity: Optional[int] = None


class ReservationResponse(BaseModel):
    success: bool
    message: str
    reservation: Optional[Reservation] = None


class BlockResponse(BaseModel):
    success: bool
    message: str
    block: Optional[Block] = None


class CombinedTableResponse(BaseModel):
    success: bool
    message: str
    combined_table: Optional[CombinedTable] = None


class DeleteResponse(BaseModel):
    success: bool
    message: str
    cleared_reservations: int = 0


class ShiftResponse(BaseModel):
    success: bool
    message: str
    shift: Optional[Shift] = None
