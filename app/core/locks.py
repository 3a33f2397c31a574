"""
Per-device serialization point

Operations that mutate shared per-device state (enrollment session hand-over,
online flags) take the device's lock so two requests for the same terminal
never interleave inside one process. The database enforces the same
invariants across processes (partial unique index, compare-and-set updates).
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from app.core.logging import get_logger

logger = get_logger(__name__)

_registry_guard = threading.Lock()
_device_locks: Dict[int, threading.Lock] = {}


def get_device_lock(device_id: int) -> threading.Lock:
    with _registry_guard:
        lock = _device_locks.get(device_id)
        if lock is None:
            lock = threading.Lock()
            _device_locks[device_id] = lock
        return lock


@contextmanager
def device_lock(device_id: int) -> Iterator[None]:
    """Hold the lock for one device for the duration of the block"""
    lock = get_device_lock(device_id)
    if not lock.acquire(blocking=False):
        logger.debug("Waiting for device lock: device_id=%s", device_id)
        lock.acquire()
    try:
        yield
    finally:
        lock.release()
