from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import logging

from .config import settings
from .database import get_db, init_db
from .errors import SeatingError
from .schemas import (
    BlockCreate,
    BlockResponse,
    CombinedTableCreate,
    CombinedTableResponse,
    DeleteResponse,
    ReservationCreate,
    ReservationResponse,
    ReservationUpdate,
    ShiftResponse,
    StatusUpdate,
    TableAssignment,
    WalkInCreate,
)
from .services.clock import RestaurantClock
from .services.floorplan_service import FloorplanService
from .services.reservation_service import ReservationService
from .services.shift_validator import ShiftValidator

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Restaurant Seating Manager",
    description="Table assignment and conflict resolution for restaurant reservations",
    version="1.0.0"
)


def get_clock() -> RestaurantClock:
    """Dependency providing the restaurant's local clock"""
    return RestaurantClock(settings.restaurant_timezone)


@app.exception_handler(SeatingError)
async def seating_error_handler(request: Request, exc: SeatingError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    init_db()


@app.post("/api/reservations", response_model=ReservationResponse, status_code=201)
def create_reservation(
    data: ReservationCreate,
    db: Session = Depends(get_db),
    clock: RestaurantClock = Depends(get_clock)
):
    """Create an on-call reservation, optionally seated at a table"""
    reservation = ReservationService(db, clock).create_reservation(
        client_id=data.client_id,
        shift_id=data.shift_id,
        reservation_date=data.date,
        reservation_time=data.time,
        party_size=data.party_size,
        duration=data.duration,
        tags=data.tags,
        notes=data.notes,
        table_id=data.table_id,
        is_upcoming=data.is_upcoming,
    )
    return ReservationResponse(success=True, message="Reservation created", reservation=reservation)


@app.post("/api/reservations/walkin", response_model=ReservationResponse, status_code=201)
def create_walk_in(
    data: WalkInCreate,
    db: Session = Depends(get_db),
    clock: RestaurantClock = Depends(get_clock)
):
    """Create a walk-in reservation for right now"""
    reservation = ReservationService(db, clock).create_walk_in(
        restaurant_id=data.restaurant_id,
        party_size=data.party_size,
        client_id=data.client_id,
        tags=data.tags,
        notes=data.notes,
        table_id=data.table_id,
        duration=data.duration,
        is_upcoming=data.is_upcoming,
    )
    return ReservationResponse(success=True, message="Walk-in reservation created", reservation=reservation)


@app.get("/api/reservations/{reservation_id}", response_model=ReservationResponse)
def get_reservation(
    reservation_id: int,
    db: Session = Depends(get_db),
    clock: RestaurantClock = Depends(get_clock)
):
    reservation = ReservationService(db, clock).get_reservation(reservation_id)
    return ReservationResponse(success=True, message="Reservation found", reservation=reservation)


@app.put("/api/reservations/{reservation_id}", response_model=ReservationResponse)
def update_reservation(
    reservation_id: int,
    data: ReservationUpdate,
    db: Session = Depends(get_db),
    clock: RestaurantClock = Depends(get_clock)
):
    reservation = ReservationService(db, clock).update_reservation(
        reservation_id,
        reservation_date=data.date,
        reservation_time=data.time,
        party_size=data.party_size,
        tags=data.tags,
        notes=data.notes,
        duration=data.duration,
        client_id=data.client_id,
        client_name=data.client_name,
        client_phone=data.client_phone,
    )
    return ReservationResponse(success=True, message="Reservation updated", reservation=reservation)


@app.patch("/api/reservations/{reservation_id}/status", response_model=ReservationResponse)
def update_reservation_status(
    reservation_id: int,
    data: StatusUpdate,
    db: Session = Depends(get_db),
    clock: RestaurantClock = Depends(get_clock)
):
    reservation = ReservationService(db, clock).update_status(reservation_id, data.status)
    return ReservationResponse(
        success=True, message=f"Reservation status set to {reservation.status.value}", reservation=reservation
    )


@app.post("/api/reservations/{reservation_id}/assign-table", response_model=ReservationResponse)
def assign_table(
    reservation_id: int,
    data: TableAssignment,
    db: Session = Depends(get_db),
    clock: RestaurantClock = Depends(get_clock)
):
    """Bind a table or a combined table member to a reservation"""
    reservation = ReservationService(db, clock).assign_table(
        reservation_id, data.table_id, data.combined_table_member_id
    )
    return ReservationResponse(success=True, message="Table assigned", reservation=reservation)


@app.put("/api/reservations/{reservation_id}/assigned-table", response_model=ReservationResponse)
def update_assigned_table(
    reservation_id: int,
    data: TableAssignment,
    db: Session = Depends(get_db),
    clock: RestaurantClock = Depends(get_clock)
):
    reservation = ReservationService(db, clock).update_assigned_table(
        reservation_id, data.table_id, data.combined_table_member_id
    )
    return ReservationResponse(success=True, message="Assigned table updated", reservation=reservation)


@app.delete("/api/reservations/{reservation_id}/table", response_model=ReservationResponse)
def remove_table_assignment(
    reservation_id: int,
    db: Session = Depends(get_db),
    clock: RestaurantClock = Depends(get_clock)
):
    reservation = ReservationService(db, clock).remove_table_assignment(reservation_id)
    return ReservationResponse(success=True, message="Table assignment removed", reservation=reservation)


@app.post("/api/tables/{table_id}/blocks", response_model=BlockResponse, status_code=201)
def block_table(
    table_id: int,
    data: BlockCreate,
    db: Session = Depends(get_db),
    clock: RestaurantClock = Depends(get_clock)
):
    """Take a table out of service for a date and time range"""
    block = FloorplanService(db, clock).block_table(
        table_id, data.start_date, data.end_date, data.start_time, data.end_time, data.notes
    )
    return BlockResponse(success=True, message="Table blocked", block=block)


@app.post("/api/floorplans/{floorplan_id}/combined-tables", response_model=CombinedTableResponse,
          status_code=201)
def create_combined_table(
    floorplan_id: int,
    data: CombinedTableCreate,
    db: Session = Depends(get_db),
    clock: RestaurantClock = Depends(get_clock)
):
    combined = FloorplanService(db, clock).create_combined_table(
        floorplan_id, data.table_ids, data.group_name, data.min_capacity, data.max_capacity
    )
    return CombinedTableResponse(success=True, message="Combined table created", combined_table=combined)


@app.delete("/api/combined-tables/{combined_table_id}", response_model=DeleteResponse)
def delete_combined_table(
    combined_table_id: int,
    db: Session = Depends(get_db),
    clock: RestaurantClock = Depends(get_clock)
):
    cleared = FloorplanService(db, clock).delete_combined_table(combined_table_id)
    return DeleteResponse(success=True, message="Combined table deleted", cleared_reservations=cleared)


@app.delete("/api/floorplans/{floorplan_id}/elements/{table_id}", response_model=DeleteResponse)
def delete_floorplan_element(
    floorplan_id: int,
    table_id: int,
    db: Session = Depends(get_db),
    clock: RestaurantClock = Depends(get_clock)
):
    cleared = FloorplanService(db, clock).delete_floorplan_element(floorplan_id, table_id)
    return DeleteResponse(success=True, message="Floorplan element deleted", cleared_reservations=cleared)


@app.get("/api/restaurants/{restaurant_id}/shifts/{shift_name}", response_model=ShiftResponse)
def validate_shift(restaurant_id: int, shift_name: str, db: Session = Depends(get_db)):
    """Confirm the restaurant offers a shift with this name"""
    shift = ShiftValidator(db).validate(restaurant_id, shift_name)
    return ShiftResponse(success=True, message=f"Shift {shift.name} is valid", shift=shift)


@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": get_clock().now().isoformat()}
