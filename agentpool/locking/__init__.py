"""In-process locking primitives."""

from agentpool.locking.rw_lock import LockContext, LockTimeoutError, ReadWriteLock

__all__ = ["LockContext", "LockTimeoutError", "ReadWriteLock"]
