"""
Rejection types raised by the seating services.

Three kinds exist and callers branch on the class (or on ``reason``) rather
than on message text:

- ``NotFoundError``: a referenced entity does not exist.
- ``InvalidRequestError``: malformed or semantically invalid input.
- ``ConflictError``: a valid request that cannot be satisfied right now.
"""
import enum
from typing import Optional


class Reason(str, enum.Enum):
    # not found
    RESERVATION_NOT_FOUND = "reservation_not_found"
    TABLE_NOT_FOUND = "table_not_found"
    COMBINED_MEMBER_NOT_FOUND = "combined_member_not_found"
    COMBINED_TABLE_NOT_FOUND = "combined_table_not_found"
    SHIFT_NOT_FOUND = "shift_not_found"
    CLIENT_NOT_FOUND = "client_not_found"
    RESTAURANT_NOT_FOUND = "restaurant_not_found"
    FLOORPLAN_NOT_FOUND = "floorplan_not_found"
    # invalid request
    STATUS_NOT_ASSIGNABLE = "status_not_assignable"
    TIME_OUTSIDE_SHIFT = "time_outside_shift"
    NO_ACTIVE_SHIFT = "no_active_shift"
    SHIFT_ENDED = "shift_ended"
    PAST_DATE = "past_date"
    AMBIGUOUS_TARGET = "ambiguous_target"
    MISSING_TARGET = "missing_target"
    NOT_RESERVABLE = "not_reservable"
    CAPACITY_MISMATCH = "capacity_mismatch"
    NO_TABLE_ASSIGNED = "no_table_assigned"
    INVALID_BLOCK_WINDOW = "invalid_block_window"
    INVALID_COMBINATION = "invalid_combination"
    # conflict
    TABLE_BLOCKED = "table_blocked"
    OVERLAPPING_RESERVATION = "overlapping_reservation"
    EXISTING_ASSIGNMENT_CONFLICT = "existing_assignment_conflict"
    TABLE_ALREADY_COMBINED = "table_already_combined"


class SeatingError(Exception):
    """Base class for expected rejections"""

    status_code = 400
    kind = "error"

    def __init__(self, message: str, reason: Reason, entity: Optional[str] = None,
                 entity_id=None):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> dict:
        return {
            "success": False,
            "message": self.message,
            "reason": self.reason.value,
            "entity": self.entity,
            "entity_id": self.entity_id,
        }


class NotFoundError(SeatingError):
    status_code = 404
    kind = "not_found"


class InvalidRequestError(SeatingError):
    status_code = 400
    kind = "invalid_request"


class ConflictError(SeatingError):
    status_code = 409
    kind = "conflict"
