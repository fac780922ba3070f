"""Per-name exclusive sections for lifecycle operations."""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from devenv.core.exceptions import ConflictError


logger = logging.getLogger(__name__)


class NameLocks:
    """One lock per environment name.

    Lifecycle operations on the same name queue behind each other; operations
    on distinct names never contend.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._locks[name] = lock
            return lock

    @contextmanager
    def hold(
        self, name: str, timeout: Optional[float] = None, operation: str = ""
    ) -> Iterator[None]:
        """
        Wait for the exclusive section of name.

        Args:
            name: Environment name.
            timeout: Seconds to wait; None waits indefinitely.
            operation: Operation name used in the conflict message.

        Raises:
            ConflictError: If the lock is not acquired within timeout.
        """
        lock = self._lock_for(name)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise ConflictError(
                f"another operation is still in flight after waiting {timeout}s",
                environment=name,
                operation=operation,
            )
        logger.debug(f"Acquired lock for {name} ({operation})")
        try:
            yield
        finally:
            lock.release()
            logger.debug(f"Released lock for {name} ({operation})")

    @contextmanager
    def try_hold(self, name: str) -> Iterator[bool]:
        """Take the section only if it is free; yields whether it was taken."""
        lock = self._lock_for(name)
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

    def is_held(self, name: str) -> bool:
        return self._lock_for(name).locked()
