import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from depot.inventory.exceptions import TransientIOError

logger = logging.getLogger(__name__)


class PairLockRegistry:
    """One mutual-exclusion token per unordered warehouse pair.

    Transfers A->B and B->A share a token, so opposite transfers between the
    same two warehouses serialize instead of interleaving their legs.
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._locks: dict[frozenset, threading.Lock] = {}

    def _lock_for(self, first: int, second: int) -> threading.Lock:
        key = frozenset((first, second))
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, first: int, second: int) -> Iterator[None]:
        lock = self._lock_for(first, second)
        if not lock.acquire(timeout=self.timeout_seconds):
            logger.warning(
                "Timed out waiting for transfer lock: warehouses=%s,%s timeout=%ss",
                first,
                second,
                self.timeout_seconds,
            )
            raise TransientIOError(
                "Another transfer between these warehouses is in progress; retry the request.",
                {"warehouse_ids": sorted((first, second)), "timeout_seconds": self.timeout_seconds},
            )
        try:
            yield
        finally:
            lock.release()
