from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class CustomerLocks:
    """One lock per customer around read-credit -> write-billing -> allocate sequences."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def _lock_for(self, customer_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(customer_id)
            if lock is None:
                lock = self._locks[customer_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, customer_id: str) -> Iterator[None]:
        lock = self._lock_for(customer_id)
        with lock:
            yield
