"""Per-key locks serializing mutations of a single account or proposal"""
import threading
from contextlib import contextmanager
from typing import Dict, Generator


class KeyedLocks:
    """Registry of one lock per key, created on first use"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: str) -> Generator[None, None, None]:
        """Acquire the locks for all keys in sorted order"""
        acquired = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

