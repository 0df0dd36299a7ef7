import logging
from typing import Optional

from ..errors import InvalidRequestError, Reason

logger = logging.getLogger(__name__)


def check_capacity(party_size: int, min_capacity: Optional[int], max_capacity: Optional[int]) -> bool:
    """True iff min_capacity <= party_size <= max_capacity; a missing bound is open"""
    if min_capacity is not None and party_size < min_capacity:
        return False
    if max_capacity is not None and party_size > max_capacity:
        return False
    return True


def ensure_capacity(party_size: int, min_capacity: Optional[int], max_capacity: Optional[int],
                    label: str, entity: str, entity_id) -> None:
    if check_capacity(party_size, min_capacity, max_capacity):
        return
    logger.error(
        f"Party size {party_size} is not within the allowed range for {label}. "
        f"Min: {min_capacity}, Max: {max_capacity}"
    )
    raise InvalidRequestError(
        f"Party size {party_size} is not within the allowed range for {label} "
        f"(Min: {min_capacity}, Max: {max_capacity}).",
        Reason.CAPACITY_MISMATCH,
        entity,
        entity_id,
    )
