"""
Keyed re-entrant locks.

Serializes work on a single aggregate (a holding, a transaction, an
optimization slot) across request threads and scheduler threads while
leaving unrelated keys free to proceed in parallel.
"""

import threading
from collections.abc import Hashable, Iterable, Iterator
from contextlib import contextmanager, ExitStack


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.refs = 0


class KeyedLock:
    """A registry of re-entrant locks, one per hashable key.

    Entries are reference counted and dropped once no thread holds or
    waits on them, so the registry does not grow with every key ever seen.

    Usage:
        locks = KeyedLock()
        with locks.hold(("holding", portfolio_id, "AAPL")):
            ...
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def _checkout(self, key: Hashable) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.refs += 1
            return entry

    def _checkin(self, key: Hashable, entry: _Entry) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Acquire the lock for ``key`` for the duration of the block."""
        entry = self._checkout(key)
        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            self._checkin(key, entry)

    @contextmanager
    def hold_many(self, keys: Iterable[Hashable]) -> Iterator[None]:
        """Acquire several keys in a stable (sorted) order.

        Callers that lock overlapping key sets through this method cannot
        deadlock against each other.
        """
        ordered = sorted(set(keys), key=repr)
        with ExitStack() as stack:
            for key in ordered:
                stack.enter_context(self.hold(key))
            yield

    def active_keys(self) -> int:
        """Return how many keys currently have holders or waiters."""
        with self._guard:
            return len(self._entries)
