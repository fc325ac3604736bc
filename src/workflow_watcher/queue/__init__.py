"""Durable task queue and single-instance lock."""

from .liveness import LockHeldError, OsProcessLivenessChecker, PidFileLock, ProcessLivenessChecker
from .task_queue import (
    InvalidTransitionError,
    QueueStorageError,
    TaskNotFoundError,
    TaskQueue,
)

__all__ = [
    "LockHeldError",
    "OsProcessLivenessChecker",
    "PidFileLock",
    "ProcessLivenessChecker",
    "InvalidTransitionError",
    "QueueStorageError",
    "TaskNotFoundError",
    "TaskQueue",
]
