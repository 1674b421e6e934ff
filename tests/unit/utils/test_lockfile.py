"""
Unit tests for cross-process lock files.
"""

import os
import threading
import time
from pathlib import Path

from memorylane.utils.lockfile import LockFile


def _age(path: Path, seconds: float) -> None:
    old = time.time() - seconds
    os.utime(path, (old, old))


class TestLockFile:
    """Test cases for LockFile."""

    def setup_method(self):
        self.stale_seconds = 60.0

    def test_acquire_and_release(self, tmp_path: Path):
        lock = LockFile(tmp_path / ".lock", self.stale_seconds)

        assert lock.acquire() is True
        assert lock.path.exists()
        assert str(os.getpid()) in lock.path.read_text()

        lock.release()
        assert not lock.path.exists()

    def test_held_lock_is_not_acquired(self, tmp_path: Path):
        holder = LockFile(tmp_path / ".lock", self.stale_seconds)
        contender = LockFile(tmp_path / ".lock", self.stale_seconds)
        holder.acquire()

        assert contender.acquire() is False
        assert contender.acquire(timeout=0.05) is False

    def test_waits_for_holder_to_release(self, tmp_path: Path):
        holder = LockFile(tmp_path / ".lock", self.stale_seconds)
        contender = LockFile(tmp_path / ".lock", self.stale_seconds)
        holder.acquire()

        timer = threading.Timer(0.05, holder.release)
        timer.start()
        try:
            assert contender.acquire(timeout=5.0) is True
        finally:
            timer.join()
        contender.release()

    def test_abandoned_lock_is_taken_over(self, tmp_path: Path):
        path = tmp_path / ".lock"
        path.write_text("crashed holder\n")
        _age(path, 3600)
        lock = LockFile(path, self.stale_seconds)

        assert lock.acquire() is True
        assert "crashed" not in path.read_text()
        assert [p.name for p in tmp_path.iterdir()] == [".lock"]

    def test_refresh_keeps_lock_from_looking_abandoned(self, tmp_path: Path):
        holder = LockFile(tmp_path / ".lock", self.stale_seconds)
        holder.acquire()
        _age(holder.path, 3600)

        holder.refresh()

        assert LockFile(holder.path, self.stale_seconds).acquire() is False

    def test_release_leaves_a_lock_taken_over_by_someone_else(self, tmp_path: Path):
        holder = LockFile(tmp_path / ".lock", self.stale_seconds)
        holder.acquire()
        replacement = tmp_path / "replacement"
        replacement.write_text("other holder")
        os.replace(replacement, holder.path)

        holder.release()

        assert holder.path.read_text() == "other holder"
