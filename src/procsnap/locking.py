"""Timed lock acquisition shared by the snapshot engine."""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol


class LockAcquisitionError(RuntimeError):
    """Raised when a shared resource cannot be locked within the timeout."""


class _Lock(Protocol):
    def acquire(self, blocking: bool = ..., timeout: float = ...) -> bool: ...

    def release(self) -> None: ...


@contextmanager
def hold(lock: _Lock, timeout: float | None, message: str) -> Iterator[None]:
    """
    Hold ``lock`` for the duration of the block.

    Args:
        lock: A ``threading.Lock`` or ``threading.RLock``.
        timeout: Seconds to wait. ``None`` waits forever.
        message: Error message used when the lock cannot be acquired.

    Raises:
        LockAcquisitionError: If the lock was not acquired in time.
    """
    if not lock.acquire(timeout=-1 if timeout is None else timeout):
        raise LockAcquisitionError(message)
    try:
        yield
    finally:
        lock.release()
