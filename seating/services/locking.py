from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterable, Iterator


class TableLockRegistry:
    """
    One lock per physical table id.

    Binding a table is check-then-commit; holding the locks of every table
    involved for that whole sequence makes concurrent requests for the same
    table serialize, so the second one re-reads committed state and loses.
    """

    def __init__(self):
        self._lock = Lock()
        self._table_locks: Dict[int, Lock] = {}

    def _lock_for(self, table_id: int) -> Lock:
        with self._lock:
            if table_id not in self._table_locks:
                self._table_locks[table_id] = Lock()
            return self._table_locks[table_id]

    @contextmanager
    def hold(self, table_ids: Iterable[int]) -> Iterator[None]:
        # Sorted acquisition order keeps overlapping combinations deadlock free
        locks = [self._lock_for(table_id) for table_id in sorted(set(table_ids))]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


table_locks = TableLockRegistry()
