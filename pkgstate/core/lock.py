"""
Write lock for the extended state store.

The cache is writable only while this lock is held. It is taken once when the
cache is opened and kept until the cache is closed; a caller may drop it so a
cooperating tool (dpkg, another frontend) can write, and must take it back
before resuming writes.
"""

import fcntl
import logging
import os
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class StateLock:
    """Manages the state lock file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.lock_fd = None
        self.locked = False

    def acquire(self) -> bool:
        """Acquire the lock without waiting.

        Returns:
            True if the lock is now held, False if another process holds it
            or the lock file cannot be created.
        """
        if self.locked:
            return True

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.lock_fd = open(self.path, 'a+')
        except OSError as e:
            logger.warning(f"Cannot open lock file {self.path}: {e}")
            self.lock_fd = None
            return False

        try:
            fcntl.flock(self.lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except (BlockingIOError, PermissionError):
            holder_pid = self._get_holder_pid()
            if holder_pid:
                logger.info(f"State lock {self.path} is held by PID {holder_pid}")
            self.lock_fd.close()
            self.lock_fd = None
            return False

        # Got the lock - write our PID
        self.lock_fd.truncate(0)
        self.lock_fd.seek(0)
        self.lock_fd.write(str(os.getpid()))
        self.lock_fd.flush()
        self.locked = True
        return True

    def release(self):
        """Release the lock."""
        if self.lock_fd:
            if self.locked:
                try:
                    fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
                except OSError as e:
                    logger.debug(f"Unlocking {self.path} failed: {e}")
            self.lock_fd.close()
            self.lock_fd = None
            self.locked = False

    def _get_holder_pid(self) -> Optional[int]:
        """Get PID of current lock holder."""
        try:
            with open(self.path, 'r') as f:
                return int(f.read().strip())
        except (OSError, ValueError):
            return None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, *args):
        self.release()
