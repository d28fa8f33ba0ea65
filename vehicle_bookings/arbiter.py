from __future__ import annotations

import logging
from contextlib import contextmanager
from threading import Lock
from typing import Iterator

from .config import DEFAULT_LOCK_TIMEOUT_SECONDS
from .errors import BusyError

logger = logging.getLogger(__name__)


class ConflictArbiter:
    """Per-vehicle exclusive locks acquired with a bounded wait.

    Only admission decisions and status transitions for one vehicle are
    serialized; different vehicles never contend with each other.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be greater than zero")
        self.timeout_seconds = timeout_seconds
        self._locks: dict[str, Lock] = {}
        self._registry_lock = Lock()

    def _lock_for(self, vehicle_id: str) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(vehicle_id)
            if lock is None:
                lock = self._locks[vehicle_id] = Lock()
            return lock

    @contextmanager
    def hold(self, vehicle_id: str, timeout: float | None = None) -> Iterator[None]:
        wait = self.timeout_seconds if timeout is None else timeout
        lock = self._lock_for(vehicle_id)
        if not lock.acquire(timeout=wait):
            logger.warning("Timed out after %.2fs waiting for vehicle lock %s", wait, vehicle_id)
            raise BusyError(f"Vehicle {vehicle_id} is busy, please retry.")
        try:
            yield
        finally:
            lock.release()

    def is_held(self, vehicle_id: str) -> bool:
        with self._registry_lock:
            lock = self._locks.get(vehicle_id)
        return lock is not None and lock.locked()
