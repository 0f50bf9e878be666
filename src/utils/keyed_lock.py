"""
Per-key mutual exclusion.

Serializes work on the same request id, employee or team while letting
unrelated keys proceed in parallel. Locks are reference counted and
dropped once nobody holds or waits on them, so memory stays bounded by
the number of keys in flight.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import ExitStack, contextmanager


class KeyedLock:
    def __init__(self, name: str = "KeyedLock"):
        self.name = name
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list] = {}  # key -> [lock, refcount]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    @contextmanager
    def hold_many(self, *keys: Hashable) -> Iterator[None]:
        """Acquire several keys in a stable order to avoid deadlocks."""
        with ExitStack() as stack:
            for key in sorted(set(keys), key=repr):
                stack.enter_context(self.hold(key))
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
