"""
Deduplication store for sent notifications.

The coordinator depends only on the ``DedupStore`` capability
(``contains`` and ``mark_added``), so a durable store can replace the
in-memory one without touching the coordinator.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator, Protocol, Set


class DedupStore(Protocol):
    """Key-existence store keyed by job identity."""

    def contains(self, key: Hashable) -> bool:
        """Return True if the key was already marked."""

    def mark_added(self, key: Hashable) -> bool:
        """
        Mark the key as present.

        Returns True only for the caller that actually added it; the check
        and the insert happen as one atomic step.
        """


class ReadWriteLock:
    """
    Reader/writer lock: many concurrent readers or one writer.

    Waiting writers block new readers so a steady stream of membership
    checks cannot starve a mark.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class InMemoryDedupStore:
    """
    Process-local dedup store.

    Entries are never evicted and are lost when the process exits.

    Example:
        >>> store = InMemoryDedupStore()
        >>> store.mark_added("batch/nightly")
        True
        >>> store.mark_added("batch/nightly")
        False
    """

    def __init__(self):
        self._keys: Set[Hashable] = set()
        self._lock = ReadWriteLock()

    def contains(self, key: Hashable) -> bool:
        with self._lock.read_locked():
            return key in self._keys

    def mark_added(self, key: Hashable) -> bool:
        with self._lock.write_locked():
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def __contains__(self, key: Hashable) -> bool:
        return self.contains(key)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._keys)
