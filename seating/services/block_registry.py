import logging
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..errors import ConflictError, Reason
from ..models import BlockTable
from .time_window import TimeWindow

logger = logging.getLogger(__name__)


class BlockRegistry:
    """Answers whether administrative blocks take a table out of service"""

    def __init__(self, db: Session):
        self.db = db

    def find_block(self, table_id: int, on_date: date, window: TimeWindow) -> Optional[BlockTable]:
        blocks = self.db.query(BlockTable).filter(
            BlockTable.floorplan_element_instance_id == table_id,
            BlockTable.start_date <= on_date,
            BlockTable.end_date >= on_date,
        ).order_by(BlockTable.id).all()
        for block in blocks:
            if TimeWindow.between(block.start_time, block.end_time).overlaps(window):
                return block
        return None

    def is_blocked(self, table_id: int, on_date: date, window: TimeWindow) -> bool:
        return self.find_block(table_id, on_date, window) is not None

    def ensure_not_blocked(self, table_ids: Iterable[int], on_date: date, window: TimeWindow,
                           label: str, entity: str = "table", entity_id=None) -> None:
        """Raise Conflict if any of ``table_ids`` is blocked; one blocked member blocks a combination"""
        for table_id in table_ids:
            block = self.find_block(table_id, on_date, window)
            if block is None:
                continue
            logger.error(
                f"Table {label} is blocked on {on_date} from "
                f"{TimeWindow.between(block.start_time, block.end_time)} (requested {window})"
            )
            raise ConflictError(
                f"{label} is blocked during the requested time ({window} on {on_date}).",
                Reason.TABLE_BLOCKED,
                entity,
                entity_id if entity_id is not None else table_id,
            )
