"""
Exclusive session lock shared by concurrent invocations.
"""

import fcntl
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from .errors import SessionActive

logger = logging.getLogger(__name__)


class SessionLock:
    """
    ``flock``-based lock around the active-session check, provisioning and
    teardown.

    Re-entrant within one process: teardown triggered while ``start`` still
    holds the lock must not block on itself.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._fd: Optional[int] = None
        self._depth = 0

    @property
    def held(self) -> bool:
        return self._depth > 0

    def acquire(self, blocking: bool = True) -> None:
        """
        Take the lock.

        Args:
            blocking: Wait for other invocations instead of failing

        Raises:
            SessionActive: If ``blocking`` is False and another process holds it
        """
        if self._depth:
            self._depth += 1
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
        try:
            fcntl.flock(fd, flags)
        except BlockingIOError:
            os.close(fd)
            raise SessionActive("Another vpn-tunnel invocation is starting or stopping a session")
        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        self._fd = fd
        self._depth = 1

    def release(self) -> None:
        if not self._depth:
            return
        self._depth -= 1
        if self._depth:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    @contextmanager
    def hold(self, blocking: bool = True):
        self.acquire(blocking=blocking)
        try:
            yield self
        finally:
            self.release()
