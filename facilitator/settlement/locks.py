import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class NonceLockRegistry:
    """
    One lock per authorization nonce, created on demand.

    Entries are dropped once no caller holds or waits on them, so the registry
    only grows with the number of settlements in flight.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @contextmanager
    def hold(self, nonce: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(nonce, threading.Lock())
            self._waiters[nonce] = self._waiters.get(nonce, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._waiters[nonce] -= 1
                if not self._waiters[nonce]:
                    del self._waiters[nonce]
                    del self._locks[nonce]

    def active(self) -> List[str]:
        with self._guard:
            return list(self._locks)
