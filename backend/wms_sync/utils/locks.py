"""Per-key mutual exclusion that rejects instead of waiting."""

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator, Set

from wms_sync.exceptions import SyncAlreadyRunning


class KeyedLock:
    """
    Non-blocking lock keyed by tenant id.

    `hold(key)` either acquires the key for the duration of the block or raises
    SyncAlreadyRunning right away. Safe to share between the event loop and
    worker threads.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._held: Set[Hashable] = set()

    def try_acquire(self, key: Hashable) -> bool:
        with self._guard:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    def release(self, key: Hashable) -> None:
        with self._guard:
            self._held.discard(key)

    def is_held(self, key: Hashable) -> bool:
        with self._guard:
            return key in self._held

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        if not self.try_acquire(key):
            raise SyncAlreadyRunning(str(key))
        try:
            yield
        finally:
            self.release(key)
