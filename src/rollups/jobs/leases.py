"""Named, process-local leases over rollup categories.

One lock per coarse category (``player-aggregates``, ``map-statistics``,
``server-activity``). A routine holds exactly one lease for the duration of
its delete-then-insert transaction; callers asking for a held lease block
until it is released. Leases are not re-entrant: asking again for a lease the
current thread already holds raises ``LeaseError`` instead of deadlocking.

The locks only serialize work inside one process. The deployment runs a
single scheduler process, and SQLite's own write lock (with WAL and a busy
timeout) covers anything outside it.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, TypeVar

from rollups.core.constants import LEASE_NAMES
from rollups.core.errors import LeaseError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LeaseCoordinator:
    """Grants exclusive named leases."""

    def __init__(self, names: Iterable[str] = LEASE_NAMES) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {name: threading.Lock() for name in names}
        self._holders: dict[str, int] = {}

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    def holder(self, name: str) -> int | None:
        """Thread ident currently holding ``name``, if any."""
        with self._guard:
            return self._holders.get(name)

    @contextmanager
    def lease(self, name: str) -> Iterator[None]:
        """Hold the lease ``name`` for the duration of the block.

        Raises:
            LeaseError: The calling thread already holds ``name``.
        """
        me = threading.get_ident()
        if self.holder(name) == me:
            raise LeaseError(f"Lease {name!r} is already held by this thread")
        lock = self._lock_for(name)
        waited_from = time.perf_counter()
        if not lock.acquire(blocking=False):
            logger.debug("Waiting for lease %s", name)
            lock.acquire()
            logger.debug(
                "Acquired lease %s after %.2fs", name, time.perf_counter() - waited_from
            )
        with self._guard:
            self._holders[name] = me
        try:
            yield
        finally:
            with self._guard:
                self._holders.pop(name, None)
            lock.release()

    def execute_with_lease(self, name: str, action: Callable[[], T]) -> T:
        """Run ``action`` while holding the lease ``name`` and return its result."""
        with self.lease(name):
            return action()


__all__ = ["LeaseCoordinator"]
