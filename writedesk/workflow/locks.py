"""
Per-content mutual exclusion for workflow operations in this process.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class ContentLockRegistry:
    """Hands out one lock per key, dropping it once nobody holds it.

    Operations on different content ids never contend. Cross-process
    exclusion comes from the row lock taken in the same critical section.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._holders: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, content_id: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(content_id, threading.Lock())
            self._holders[content_id] = self._holders.get(content_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[content_id] -= 1
                if self._holders[content_id] == 0:
                    del self._holders[content_id]
                    del self._locks[content_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
