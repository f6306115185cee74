"""File-based advisory locking for metadata mutations."""

from __future__ import annotations

import fcntl
import logging
import time
from pathlib import Path
from typing import IO

from .exceptions import LockTimeoutError, config_error

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3.0
_INITIAL_POLL = 0.01
_MAX_POLL = 0.1


class FileLock:
    """Exclusive flock() over a lock file.

    Only cooperating yagwt processes honour the lock; it does not stop other
    writers from touching the metadata file.
    """

    def __init__(self, path: Path | str, timeout: float = DEFAULT_TIMEOUT):
        self.path = Path(path)
        self.timeout = timeout
        self._fd: IO[str] | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise config_error("failed to create lock directory", exc).with_detail(
                "path", str(self.path.parent)
            ) from exc

    @property
    def acquired(self) -> bool:
        return self._fd is not None

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False

    def acquire(self, timeout: float | None = None) -> None:
        """Poll for the lock with exponential backoff until `timeout` seconds pass."""
        timeout = self.timeout if timeout is None else timeout
        try:
            fd = open(self.path, "a+")
        except OSError as exc:
            raise config_error("failed to open lock file", exc).with_detail("path", str(self.path)) from exc

        deadline = time.monotonic() + timeout
        interval = _INITIAL_POLL
        while True:
            try:
                fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    fd.close()
                    raise LockTimeoutError(str(self.path), timeout) from None
                time.sleep(min(interval, max(deadline - time.monotonic(), 0)))
                interval = min(interval * 2, _MAX_POLL)
                continue
            except OSError as exc:
                fd.close()
                raise config_error("failed to acquire lock", exc).with_detail("path", str(self.path)) from exc
            self._fd = fd
            log.debug("Acquired lock %s", self.path)
            return

    def release(self) -> None:
        if self._fd is None:
            raise config_error("lock not acquired").with_detail("path", str(self.path))
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_UN)
        except OSError as exc:
            raise config_error("failed to release lock", exc).with_detail("path", str(self.path)) from exc
        finally:
            fd.close()
        log.debug("Released lock %s", self.path)

    def __repr__(self) -> str:
        status = "acquired" if self.acquired else "not acquired"
        return f"FileLock(path={str(self.path)!r}, status={status})"


__all__ = ["FileLock", "DEFAULT_TIMEOUT"]
