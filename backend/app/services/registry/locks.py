"""
Keyed Locks

Short-lived exclusive locks scoped to one entity id ("submission:<id>",
"credit:<id>", "user:<id>", "registry"). Locks serialize writers inside
one process; the conditional (compare-and-swap) updates in the services
guard the same invariants across processes.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLocks:
    """Registry of re-entrant locks, one per key."""

    def __init__(self):
        self._map_lock = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._holders: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for `key` for the duration of the block."""
        with self._map_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            self._holders[key] = self._holders.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._map_lock:
                self._holders[key] -= 1
                if self._holders[key] == 0:
                    # Nobody holds or waits on it; drop so the map stays bounded
                    del self._holders[key]
                    del self._locks[key]

    def active_keys(self) -> int:
        """Number of keys currently held or awaited."""
        with self._map_lock:
            return len(self._locks)


# Process-wide lock registry shared by all services
registry_locks = KeyedLocks()


def submission_key(submission_id: str) -> str:
    return f"submission:{submission_id}"


def credit_key(credit_id: str) -> str:
    return f"credit:{credit_id}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


REGISTRY_KEY = "registry"
