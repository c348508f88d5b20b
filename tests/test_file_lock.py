"""Tests for the advisory record lock."""

import stat
import sys
import threading
import time

import pytest

from teamai.file_lock import FileLock, FileLockError, FileLockTimeout

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="fcntl semantics")


class TestFileLock:
    def test_creates_lock_file_with_private_mode(self, tmp_path):
        path = tmp_path / "locks" / "agent.lock"
        with FileLock(path) as lock:
            assert lock.is_locked
        assert path.exists()
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert not lock.is_locked

    def test_second_holder_times_out(self, tmp_path):
        path = tmp_path / "agent.lock"
        with FileLock(path):
            with pytest.raises(FileLockTimeout):
                with FileLock(path, timeout=0.1):
                    pass

    def test_reentry_rejected(self, tmp_path):
        lock = FileLock(tmp_path / "agent.lock")
        with lock:
            with pytest.raises(FileLockError, match="Reentrancy"):
                with lock:
                    pass

    def test_waiter_acquires_after_release(self, tmp_path):
        path = tmp_path / "agent.lock"
        acquired = threading.Event()

        holder = FileLock(path)
        holder.acquire()

        def wait_for_lock():
            with FileLock(path, timeout=5.0):
                acquired.set()

        thread = threading.Thread(target=wait_for_lock)
        thread.start()
        time.sleep(0.1)
        assert not acquired.is_set()
        holder.release()
        thread.join(timeout=5)
        assert acquired.is_set()

    def test_release_when_not_held_is_noop(self, tmp_path):
        FileLock(tmp_path / "agent.lock").release()
