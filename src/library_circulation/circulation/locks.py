"""
Per-entity critical sections for the circulation engine.

Every unit of work names the entities it touches (``book:7``,
``member:3``, ...) and holds their locks until it commits or rolls back.
Keys are always acquired in sorted order, so two operations can never wait
on each other in a cycle. Acquisition is bounded: a lock that cannot be had
within the timeout raises ``LockTimeout`` and the caller backs off.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class LockTimeout(Exception):
    """A lock could not be acquired in time. Transient; the engine retries it."""

    def __init__(self, key: str, timeout: float):
        super().__init__(f"Timed out after {timeout:.2f}s waiting for lock {key}")
        self.key = key
        self.timeout = timeout


def book_key(book_id: int) -> str:
    return f"book:{book_id}"


def member_key(member_id: int) -> str:
    return f"member:{member_id}"


def transaction_key(transaction_id: int) -> str:
    return f"transaction:{transaction_id}"


def reservation_key(reservation_id: int) -> str:
    return f"reservation:{reservation_id}"


class _Entry:
    """A lock plus the number of callers waiting on or holding it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class LockManager:
    """
    A registry of named locks.

    A lock exists only while some caller holds or waits for it; the entry is
    dropped when the last one leaves, so the registry stays as small as the
    set of entities currently in use. Locks are not re-entrant: a thread
    must not hold a key it asks for again.
    """

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout
        self._locks: dict[str, _Entry] = {}
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)

    def _checkout(self, key: str) -> threading.Lock:
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _Entry()
            entry.users += 1
            return entry.lock

    def _checkin(self, key: str) -> None:
        with self._registry_lock:
            entry = self._locks[key]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    def is_held(self, key: str) -> bool:
        """Whether some thread currently holds ``key``."""
        with self._registry_lock:
            entry = self._locks.get(key)
            return entry is not None and entry.lock.locked()

    @contextmanager
    def hold(self, *keys: str, timeout: float | None = None) -> Iterator[tuple[str, ...]]:
        """
        Hold the locks for ``keys`` for the duration of the block.

        Raises:
            LockTimeout: If any key stays contended past ``timeout``; locks
                already taken are released first
        """
        wait = self.timeout if timeout is None else timeout
        ordered = tuple(sorted(set(keys)))
        checked_out: list[str] = []
        acquired: list[threading.Lock] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append(key)
                if not lock.acquire(timeout=wait):
                    logger.debug("Lock %s contended past %.2fs", key, wait)
                    raise LockTimeout(key, wait)
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in reversed(checked_out):
                self._checkin(key)
