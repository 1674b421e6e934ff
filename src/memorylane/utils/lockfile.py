"""Cross-process lock files created with O_CREAT | O_EXCL."""

import os
import secrets
import threading
import time
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)


class LockFile:
    """
    An exclusive lock held by whoever created ``path``.

    A lock whose mtime is older than ``stale_seconds`` belongs to a process
    that died; it is claimed by renaming it to a unique name, so of several
    contenders only the one whose rename succeeds removes it. Long-running
    holders call ``refresh`` to keep their lock from looking abandoned.
    """

    def __init__(self, path: Path | str, stale_seconds: float, poll_interval: float = 0.01) -> None:
        self.path = Path(path)
        self.stale_seconds = stale_seconds
        self.poll_interval = poll_interval
        self._inode: int | None = None

    def acquire(self, timeout: float = 0.0) -> bool:
        """
        Create the lock file, waiting up to ``timeout`` seconds for the holder.

        Returns:
            bool: True once the lock is held, False on timeout
        """
        deadline = time.monotonic() + timeout
        broke_stale = False
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                pass
            else:
                with os.fdopen(fd, "w") as f:
                    f.write(f"{os.getpid()} {threading.get_ident()} {time.time()}\n")
                    self._inode = os.fstat(f.fileno()).st_ino
                return True

            # One immediate retry after an abandoned lock is cleared
            if not broke_stale and self._break_stale():
                broke_stale = True
                continue
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.poll_interval)

    def _break_stale(self) -> bool:
        """Claim and remove an abandoned lock; True when creating it should be retried."""
        try:
            observed = os.stat(self.path)
        except FileNotFoundError:
            return True
        age = time.time() - observed.st_mtime
        if age < self.stale_seconds:
            return False

        claimed = self.path.with_name(f"{self.path.name}.stale-{os.getpid()}-{secrets.token_hex(4)}")
        try:
            os.rename(self.path, claimed)
        except FileNotFoundError:
            # Another contender claimed it first
            return True

        claimed_stat = os.stat(claimed)
        if (claimed_stat.st_ino, claimed_stat.st_mtime_ns) != (observed.st_ino, observed.st_mtime_ns):
            # Already replaced by a live lock; put that one back
            try:
                os.link(claimed, self.path)
            except FileExistsError:
                logger.warning("live_lock_displaced", lock=str(self.path))
            os.unlink(claimed)
            return False

        os.unlink(claimed)
        logger.warning("stale_lock_removed", lock=str(self.path), age_seconds=age)
        return True

    def refresh(self) -> None:
        """Bump the lock's mtime so it is not mistaken for an abandoned one."""
        try:
            os.utime(self.path)
        except FileNotFoundError:
            logger.warning("lock_lost", lock=str(self.path))

    def release(self) -> None:
        """Remove the lock file if it is still the one this holder created."""
        inode, self._inode = self._inode, None
        try:
            if os.stat(self.path).st_ino != inode:
                logger.warning("lock_taken_over", lock=str(self.path))
                return
            os.unlink(self.path)
        except FileNotFoundError:
            logger.warning("lock_already_released", lock=str(self.path))
