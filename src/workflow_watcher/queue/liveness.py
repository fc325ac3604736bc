"""Single-instance lock backed by a PID file and a liveness probe."""

import logging
import os
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class ProcessLivenessChecker(Protocol):
    """Answers whether a process id belongs to a running process."""

    def is_alive(self, pid: int) -> bool: ...


class OsProcessLivenessChecker:
    """Signal-zero probe: delivers nothing, only checks the target exists."""

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists but owned by someone else; treat as live
            return True


class LockHeldError(RuntimeError):
    """Another live process holds the lock."""

    def __init__(self, pid: int):
        self.pid = pid
        super().__init__(f"Watcher already running (PID {pid})")


class PidFileLock:
    """
    Advisory lock file holding the owner's PID.

    - Created with O_CREAT|O_EXCL so two racing starters can't both win
    - A lock whose PID is dead or unreadable is stale and removed on acquire
    - Liveness is pinged through a ProcessLivenessChecker, not just read
    """

    def __init__(
        self,
        pid_file: Path,
        checker: Optional[ProcessLivenessChecker] = None,
        pid: Optional[int] = None,
    ):
        self.pid_file = Path(pid_file)
        self.checker = checker or OsProcessLivenessChecker()
        self.pid = pid if pid is not None else os.getpid()
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    def read_pid(self) -> Optional[int]:
        """PID recorded in the lock file, or None if absent/unreadable."""
        try:
            return int(self.pid_file.read_text().strip())
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            logger.warning(f"Lock file {self.pid_file} is unreadable")
            return None

    def holder(self) -> Optional[int]:
        """PID of the live process holding the lock, if any."""
        pid = self.read_pid()
        if pid is None or not self.checker.is_alive(pid):
            return None
        return pid

    def acquire(self) -> bool:
        """
        Attempt to take the lock.

        Returns False when another live process holds it. Raises OSError when
        the lock file cannot be written at all.
        """
        if self._acquired:
            return True

        if self.pid_file.exists():
            if self._is_stale_lock():
                logger.info(f"Removing stale lock file {self.pid_file}")
                self._remove_lock()
            else:
                return False

        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.pid_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            logger.debug(f"Lock file {self.pid_file} appeared concurrently (race condition)")
            return False

        with os.fdopen(fd, "w") as f:
            f.write(str(self.pid))
        self._acquired = True
        logger.debug(f"Acquired lock {self.pid_file} (PID: {self.pid})")
        return True

    def release(self) -> None:
        """Release the lock; a no-op when not held."""
        if not self._acquired:
            return
        # Only remove the file if it is still ours
        if self.read_pid() == self.pid:
            self._remove_lock()
        self._acquired = False

    def _is_stale_lock(self) -> bool:
        pid = self.read_pid()
        if pid is None:
            logger.warning(f"Lock file {self.pid_file} has no valid PID (stale)")
            return True
        if pid == self.pid:
            # Another instance in this process holds it
            logger.debug(f"Lock file {self.pid_file} held by this process")
            return False
        if not self.checker.is_alive(pid):
            logger.warning(f"Lock file {self.pid_file} held by dead PID {pid} (stale)")
            return True
        logger.debug(f"Lock file {self.pid_file} held by active PID {pid}")
        return False

    def _remove_lock(self) -> None:
        try:
            self.pid_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove lock file {self.pid_file}: {e}")

    def __enter__(self):
        if not self.acquire():
            raise LockHeldError(self.read_pid() or -1)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
