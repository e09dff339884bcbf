"""Shared-read / exclusive-write locking for in-memory stores."""

import logging
import threading
import time
from typing import Optional

logger = logging.getLogger(__name__)


class LockTimeoutError(Exception):
    """Raised when lock acquisition times out."""
    pass


class ReadWriteLock:
    """
    Readers-writer lock for state shared between the event loop and threads.

    Any number of readers may hold the lock together; a writer holds it
    alone. Waiting writers block new readers so a steady stream of reads
    cannot starve a mutation. The lock is not reentrant.
    """

    def __init__(self, name: str = "store"):
        """
        Initialize lock.

        Args:
            name: Label used in log and error messages
        """
        self.name = name
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self, timeout: Optional[float] = None) -> None:
        """
        Acquire the lock in shared mode.

        Args:
            timeout: Seconds to wait, or None to wait forever

        Raises:
            LockTimeoutError: If the lock cannot be acquired within timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._writer or self._writers_waiting:
                if not self._wait(deadline):
                    raise LockTimeoutError(
                        f"Failed to acquire read lock on {self.name} within {timeout}s"
                    )
            self._readers += 1

    def release_read(self) -> None:
        """Release a shared hold."""
        with self._cond:
            if self._readers == 0:
                raise RuntimeError(f"Read lock on {self.name} released too many times")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self, timeout: Optional[float] = None) -> None:
        """
        Acquire the lock in exclusive mode.

        Args:
            timeout: Seconds to wait, or None to wait forever

        Raises:
            LockTimeoutError: If the lock cannot be acquired within timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    if not self._wait(deadline):
                        raise LockTimeoutError(
                            f"Failed to acquire write lock on {self.name} within {timeout}s"
                        )
                self._writer = True
            finally:
                self._writers_waiting -= 1

    def release_write(self) -> None:
        """Release the exclusive hold."""
        with self._cond:
            if not self._writer:
                raise RuntimeError(f"Write lock on {self.name} is not held")
            self._writer = False
            self._cond.notify_all()

    def _wait(self, deadline: Optional[float]) -> bool:
        if deadline is None:
            self._cond.wait()
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.debug(f"Timed out waiting for lock on {self.name}")
            return False
        self._cond.wait(remaining)
        return True

    def read(self, timeout: Optional[float] = None) -> "LockContext":
        """Context manager holding the lock in shared mode."""
        return LockContext(self, exclusive=False, timeout=timeout)

    def write(self, timeout: Optional[float] = None) -> "LockContext":
        """Context manager holding the lock in exclusive mode."""
        return LockContext(self, exclusive=True, timeout=timeout)


class LockContext:
    """Context manager for lock acquisition."""

    def __init__(
        self,
        lock: ReadWriteLock,
        exclusive: bool,
        timeout: Optional[float] = None
    ):
        self.lock = lock
        self.exclusive = exclusive
        self.timeout = timeout

    def __enter__(self) -> ReadWriteLock:
        """Acquire lock on entry."""
        if self.exclusive:
            self.lock.acquire_write(self.timeout)
        else:
            self.lock.acquire_read(self.timeout)
        return self.lock

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Release lock on exit."""
        if self.exclusive:
            self.lock.release_write()
        else:
            self.lock.release_read()
