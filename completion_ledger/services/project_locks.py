"""
ProjectLockRegistry -- in-process serialization of payments per project.

One re-entrant lock per project id, created on first use and dropped once
no thread holds or waits for it, so the registry only holds locks for
projects with payments in flight.  Payments on different projects never
share a lock.  The lock is re-entrant so the recovery path can run inside
a payment that already holds it.

Cross-process safety does not come from here: it comes from the project
row lock, the version column and the invoice slot indexes.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from completion_ledger.logging_config import get_logger

logger = get_logger("services.project_locks")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        # Threads holding or waiting for ``lock`` (re-entries count too)
        self.users = 0


class ProjectLockRegistry:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _Entry] = {}

    @contextmanager
    def hold(self, project_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(project_id)
            if entry is None:
                entry = _Entry()
                self._locks[project_id] = entry
            entry.users += 1
        try:
            if not entry.lock.acquire(blocking=False):
                logger.debug("project_lock_wait", extra={"project_id": project_id})
                entry.lock.acquire()
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[project_id]

    def __len__(self) -> int:
        """Projects with a payment holding or waiting for their lock."""
        with self._guard:
            return len(self._locks)
