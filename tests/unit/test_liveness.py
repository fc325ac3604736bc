"""Tests for the PID-file single-instance lock."""

import os

import pytest

from workflow_watcher.queue.liveness import LockHeldError, OsProcessLivenessChecker, PidFileLock


class FakeChecker:
    def __init__(self, alive=()):
        self.alive = set(alive)

    def is_alive(self, pid):
        return pid in self.alive


@pytest.fixture
def pid_file(tmp_path):
    return tmp_path / "watcher.pid"


def test_acquire_writes_pid(pid_file):
    lock = PidFileLock(pid_file, checker=FakeChecker(), pid=4242)

    assert lock.acquire()
    assert pid_file.read_text() == "4242"
    assert lock.acquired


def test_live_holder_blocks_second_instance(pid_file):
    checker = FakeChecker(alive={100})
    first = PidFileLock(pid_file, checker=checker, pid=100)
    second = PidFileLock(pid_file, checker=checker, pid=200)

    assert first.acquire()
    assert not second.acquire()
    assert second.holder() == 100
    assert pid_file.read_text() == "100"


def test_stale_lock_is_replaced(pid_file):
    pid_file.write_text("999")
    lock = PidFileLock(pid_file, checker=FakeChecker(alive=set()), pid=200)

    assert lock.acquire()
    assert pid_file.read_text() == "200"


def test_garbage_lock_file_is_stale(pid_file):
    pid_file.write_text("not-a-pid")
    lock = PidFileLock(pid_file, checker=FakeChecker(), pid=200)

    assert lock.read_pid() is None
    assert lock.acquire()


def test_release_is_idempotent_and_only_removes_own_file(pid_file):
    lock = PidFileLock(pid_file, checker=FakeChecker(), pid=300)
    lock.acquire()
    lock.release()
    lock.release()
    assert not pid_file.exists()

    other = PidFileLock(pid_file, checker=FakeChecker(), pid=301)
    other.acquire()
    lock._acquired = True
    lock.release()
    assert pid_file.read_text() == "301"


def test_same_process_instance_does_not_steal_lock(pid_file):
    first = PidFileLock(pid_file, checker=FakeChecker(), pid=500)
    second = PidFileLock(pid_file, checker=FakeChecker(), pid=500)

    assert first.acquire()
    assert not second.acquire()
    second.release()
    assert pid_file.read_text() == "500"
    assert first.acquired


def test_context_manager_raises_when_held(pid_file):
    checker = FakeChecker(alive={1})
    PidFileLock(pid_file, checker=checker, pid=1).acquire()

    with pytest.raises(LockHeldError) as exc_info:
        with PidFileLock(pid_file, checker=checker, pid=2):
            pass
    assert exc_info.value.pid == 1


def test_os_checker_sees_current_process():
    checker = OsProcessLivenessChecker()

    assert checker.is_alive(os.getpid())
    assert not checker.is_alive(0)
    assert not checker.is_alive(-5)
