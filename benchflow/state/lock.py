"""Cross-process exclusive lock guarding run state mutations."""

from __future__ import annotations

import fcntl
import logging
import os
import threading
import time
from pathlib import Path
from typing import IO, Any

from ..errors import LockTimeout
from ..util import utc_now

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 30.0


class ExclusiveAccessGuard:
    """Named mutual-exclusion lock backed by ``flock`` on a lock file.

    The lock serializes mutators across processes (via the OS lock) and
    across threads of one process (via an in-process lock, since threads
    sharing one guard share its file handle). Acquisition is bounded: it
    raises ``LockTimeout`` rather than blocking forever.

    Usage:
        guard = ExclusiveAccessGuard(state_dir / "state.lock")
        with guard:
            ...  # read current -> compute next -> atomic write
    """

    POLL_INTERVAL = 0.05

    def __init__(self, lock_path: str | Path, timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.lock_path = Path(lock_path)
        self.timeout = timeout
        self._thread_lock = threading.Lock()
        self._handle: IO[str] | None = None

    @property
    def is_held(self) -> bool:
        return self._handle is not None

    def acquire(self, timeout: float | None = None) -> None:
        """Acquire the lock or raise ``LockTimeout`` after ``timeout`` seconds."""
        wait = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + wait

        if not self._thread_lock.acquire(timeout=max(wait, 0)):
            raise LockTimeout(str(self.lock_path), wait)

        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_path, "a+", encoding="utf-8")
            while True:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        handle.close()
                        raise LockTimeout(str(self.lock_path), wait) from None
                    time.sleep(self.POLL_INTERVAL)
        except BaseException:
            self._thread_lock.release()
            raise

        # Owner info is informational only; the flock is what excludes.
        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()} {threading.get_ident()} {utc_now().isoformat()}\n")
        handle.flush()
        self._handle = handle
        logger.debug(f"Acquired state lock {self.lock_path}")

    def release(self) -> None:
        """Release the lock. Releasing an unheld guard is a no-op."""
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()
            self._thread_lock.release()
        logger.debug(f"Released state lock {self.lock_path}")

    def __enter__(self) -> ExclusiveAccessGuard:
        self.acquire()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()
