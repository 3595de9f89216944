"""
Profile lock — exclusive, bounded-wait file lock for index mutations.

Two bendctl processes against the same profile serialise on
``<profile>/.lock``.  The lock is an advisory ``flock`` held on an open
file description, so it is released by the kernel if the process dies.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from pathlib import Path
from types import TracebackType

from bendctl.core.errors import StoreLocked

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05


class ProfileLock:
    """Context manager around an exclusive ``flock``.

    Usage::

        with ProfileLock(profile.lock_path, timeout=10):
            ...  # mutate the index

    Raises:
        StoreLocked: If the lock is not acquired within ``timeout`` seconds.
    """

    def __init__(self, path: Path, timeout: float = 10.0) -> None:
        self._path = path
        self._timeout = timeout
        self._fd: int | None = None
        self.wait_ms = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            raise RuntimeError(f"Lock {self._path} is already held by this handle")

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._path, os.O_RDWR | os.O_CREAT, 0o644)
        start = time.monotonic()
        deadline = start + self._timeout
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise StoreLocked(
                            f"Profile is locked by another bendctl process "
                            f"(waited {self._timeout:g}s)"
                        ) from None
                    time.sleep(_POLL_INTERVAL)
        except BaseException:
            os.close(fd)
            raise

        self._fd = fd
        self.wait_ms = int((time.monotonic() - start) * 1000)
        try:
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n".encode())
        except OSError:
            pass
        logger.debug("Acquired %s after %dms", self._path, self.wait_ms)

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("Released %s", self._path)

    def __enter__(self) -> ProfileLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
