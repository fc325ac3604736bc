"""Task model, configuration and notifications."""

from .config import WatcherConfig, load_config
from .notifier import LoggingNotifier, Notification, Notifier, ScriptNotifier, Urgency
from .task import (
    AnomalyType,
    ArchivedTask,
    ArchiveReason,
    CreateTaskInput,
    Priority,
    Task,
    TaskSource,
    TaskStatus,
)

__all__ = [
    "WatcherConfig",
    "load_config",
    "LoggingNotifier",
    "Notification",
    "Notifier",
    "ScriptNotifier",
    "Urgency",
    "AnomalyType",
    "ArchivedTask",
    "ArchiveReason",
    "CreateTaskInput",
    "Priority",
    "Task",
    "TaskSource",
    "TaskStatus",
]
