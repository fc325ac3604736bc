"""Durable priority queue of remediation tasks backed by JSON documents."""

import json
import logging
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_serializer

from ..core.task import (
    ALLOWED_TRANSITIONS,
    PRIORITY_ORDER,
    ArchivedTask,
    ArchiveReason,
    CreateTaskInput,
    Task,
    TaskStatus,
)
from ..utils.atomic_io import atomic_write_model

logger = logging.getLogger(__name__)

QUEUE_FILENAME = "queue.json"
FAILED_ARCHIVE_FILENAME = "queue-failed.json"
EXPIRED_ARCHIVE_FILENAME = "queue-expired.json"

QUEUE_FORMAT_VERSION = "1.0"


class TaskNotFoundError(KeyError):
    """No live task with the given id."""


class InvalidTransitionError(ValueError):
    """Requested status change is not allowed from the current status."""


class QueueStorageError(OSError):
    """The queue document could not be written."""


class QueueDocument(BaseModel):
    """On-disk shape of the live queue."""
    version: str = QUEUE_FORMAT_VERSION
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    tasks: list[Task] = Field(default_factory=list)

    @field_serializer("updated_at")
    def serialize_updated_at(self, v: datetime) -> str:
        return v.isoformat()


class ArchiveDocument(BaseModel):
    """On-disk shape of a failed/expired archive."""
    version: str = QUEUE_FORMAT_VERSION
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    tasks: list[ArchivedTask] = Field(default_factory=list)

    @field_serializer("updated_at")
    def serialize_updated_at(self, v: datetime) -> str:
        return v.isoformat()


class TaskQueue:
    """
    Priority-ordered task store mirrored in memory and flushed on every change.

    - Every mutation is written (temp file + rename) before the call returns
    - Ordering: priority rank first, insertion order within a tier
    - Bounded by max_queue_size; overflow is archived with reason ``dropped``
    - Terminal, expired and dropped tasks go to archive documents, never deleted
    """

    def __init__(
        self,
        state_dir: Path,
        max_queue_size: int = 50,
        task_expiry_hours: int = 24,
    ):
        self.state_dir = Path(state_dir)
        self.queue_file = self.state_dir / QUEUE_FILENAME
        self.failed_file = self.state_dir / FAILED_ARCHIVE_FILENAME
        self.expired_file = self.state_dir / EXPIRED_ARCHIVE_FILENAME
        self.max_queue_size = max_queue_size
        self.task_expiry_hours = task_expiry_hours

        self._lock = threading.RLock()
        self._tasks: list[Task] = []
        self._pending = 0

        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._load()

    # -- persistence -------------------------------------------------------

    def _load(self) -> None:
        document = self._read_document(self.queue_file, QueueDocument)
        self._tasks = list(document.tasks) if document else []
        self._pending = self._count_pending(self._tasks)
        logger.debug(f"Loaded {len(self._tasks)} tasks from {self.queue_file}")

    def _read_document(self, path: Path, model_class):
        if not path.exists():
            return None
        try:
            return model_class.model_validate_json(path.read_text())
        except (ValidationError, ValueError) as e:
            self._quarantine(path, e)
            return None
        except OSError as e:
            logger.warning(f"Could not read {path}: {e}")
            return None

    def _quarantine(self, path: Path, error: Exception) -> None:
        """Move a malformed document aside so the queue can start clean."""
        stamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
        dest = path.with_name(f"{path.name}.malformed-{stamp}")
        try:
            path.rename(dest)
            logger.warning(f"Quarantined malformed queue file: {path} -> {dest} (error: {error})")
        except OSError as move_error:
            logger.error(f"Failed to quarantine malformed queue file {path}: {move_error}")

    def _commit(self, tasks: list[Task]) -> None:
        """Persist ``tasks`` then make them the in-memory state."""
        document = QueueDocument(tasks=tasks)
        try:
            atomic_write_model(self.queue_file, document)
        except OSError as e:
            raise QueueStorageError(f"Failed to write task queue {self.queue_file}: {e}") from e
        self._tasks = tasks
        self._pending = self._count_pending(tasks)

    def _archive(self, tasks: list[Task], reason: ArchiveReason, now: datetime) -> None:
        if not tasks:
            return
        path = self.failed_file if reason == ArchiveReason.FAILED else self.expired_file
        document = self._read_document(path, ArchiveDocument) or ArchiveDocument()
        document.tasks.extend(ArchivedTask.from_task(t, reason, now) for t in tasks)
        document.updated_at = now
        try:
            atomic_write_model(path, document)
        except OSError as e:
            raise QueueStorageError(f"Failed to write archive {path}: {e}") from e
        logger.info(f"Archived {len(tasks)} task(s) to {path.name} (reason: {reason.value})")

    @staticmethod
    def _count_pending(tasks: list[Task]) -> int:
        return sum(1 for t in tasks if t.status == TaskStatus.PENDING.value)

    # -- core operations ---------------------------------------------------

    def enqueue(self, task_input: CreateTaskInput, now: Optional[datetime] = None) -> Task:
        """Create, persist and return a new pending task.

        When the queue is full, completed and failed tasks are archived
        first. If it is still full, the oldest pending task of the lowest
        non-empty priority tier is archived as dropped. Executing tasks are
        only evicted when nothing else is left.
        """
        now = now or datetime.now(UTC)
        task = Task.from_input(task_input, now)

        with self._lock:
            tasks = self._tasks + [task]
            if len(tasks) > self.max_queue_size:
                finished = [t for t in tasks if t.is_terminal]
                self._archive(
                    [t for t in finished if t.status == TaskStatus.COMPLETED.value],
                    ArchiveReason.COMPLETED, now,
                )
                self._archive(
                    [t for t in finished if t.status == TaskStatus.FAILED.value],
                    ArchiveReason.FAILED, now,
                )
                tasks = [t for t in tasks if not t.is_terminal]

            dropped: list[Task] = []
            while len(tasks) > self.max_queue_size:
                victim = self._pick_overflow_victim(tasks)
                tasks.remove(victim)
                dropped.append(victim)

            if dropped:
                logger.warning(
                    f"Queue full ({self.max_queue_size}); dropping "
                    f"{', '.join(t.id for t in dropped)}"
                )
                self._archive(dropped, ArchiveReason.DROPPED, now)
            self._commit(tasks)

        logger.info(f"Enqueued {task.id} [{task.priority}] {task.anomaly_type}")
        return task

    @staticmethod
    def _pick_overflow_victim(tasks: list[Task]) -> Task:
        candidates = [t for t in tasks if t.status == TaskStatus.PENDING.value] or tasks
        lowest = max(PRIORITY_ORDER[t.priority] for t in candidates)
        tier = [t for t in candidates if PRIORITY_ORDER[t.priority] == lowest]
        # list order is insertion order, so the first entry is the oldest
        return tier[0]

    def next_task(self) -> Optional[Task]:
        """Highest-priority pending task, FIFO within a tier. Does not claim it."""
        with self._lock:
            pending = [t for t in self._tasks if t.status == TaskStatus.PENDING.value]
            if not pending:
                return None
            # sorted() is stable, so insertion order breaks ties
            return sorted(pending, key=lambda t: PRIORITY_ORDER[t.priority])[0]

    def update_task(
        self,
        task_id: str,
        status: Optional[TaskStatus] = None,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Task:
        """Apply a status change (and/or error note) and persist it.

        Raises:
            TaskNotFoundError: no live task with ``task_id``
            InvalidTransitionError: the status move is not allowed
        """
        now = now or datetime.now(UTC)
        with self._lock:
            index, task = self._find(task_id)
            changes: dict = {}

            if status is not None:
                new_status = TaskStatus(status).value
                if new_status != task.status:
                    if new_status not in ALLOWED_TRANSITIONS[task.status]:
                        raise InvalidTransitionError(
                            f"Task {task_id}: cannot move from {task.status} to {new_status}"
                        )
                    changes["status"] = new_status
                    if new_status == TaskStatus.EXECUTING.value:
                        changes["attempts"] = task.attempts + 1
                    if new_status in (TaskStatus.COMPLETED.value, TaskStatus.FAILED.value):
                        changes["completed_at"] = now
                    elif new_status == TaskStatus.PENDING.value:
                        changes["completed_at"] = None

            if error is not None:
                changes["error"] = error

            if not changes:
                return task

            updated = task.model_copy(update=changes)
            tasks = list(self._tasks)
            tasks[index] = updated
            self._commit(tasks)

        logger.debug(f"Updated {task_id}: {changes}")
        return updated

    def pending_count(self) -> int:
        return self._pending

    # -- inspection --------------------------------------------------------

    def _find(self, task_id: str) -> tuple[int, Task]:
        for index, task in enumerate(self._tasks):
            if task.id == task_id:
                return index, task
        raise TaskNotFoundError(task_id)

    def get_tasks(self, status: Optional[TaskStatus] = None) -> list[Task]:
        """Live tasks in service order (priority, then insertion)."""
        with self._lock:
            tasks = list(self._tasks)
        if status is not None:
            wanted = TaskStatus(status).value
            tasks = [t for t in tasks if t.status == wanted]
        return sorted(tasks, key=lambda t: PRIORITY_ORDER[t.priority])

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            try:
                return self._find(task_id)[1]
            except TaskNotFoundError:
                return None

    def count_by_priority(self) -> dict[str, int]:
        """Pending task counts per priority tier."""
        counts = {priority: 0 for priority in PRIORITY_ORDER}
        with self._lock:
            for task in self._tasks:
                if task.status == TaskStatus.PENDING.value:
                    counts[task.priority] += 1
        return counts

    def __len__(self) -> int:
        return len(self._tasks)

    # -- removal and archival ---------------------------------------------

    def remove_task(self, task_id: str) -> bool:
        """Delete a live task without archiving it (manual clean-up)."""
        with self._lock:
            try:
                index, _ = self._find(task_id)
            except TaskNotFoundError:
                return False
            tasks = list(self._tasks)
            del tasks[index]
            self._commit(tasks)
        logger.info(f"Removed task {task_id}")
        return True

    def move_to_failed(self, task_id: str, error: str, now: Optional[datetime] = None) -> ArchivedTask:
        """Mark a task failed and move it to the failed archive immediately."""
        now = now or datetime.now(UTC)
        with self._lock:
            index, task = self._find(task_id)
            failed = task.model_copy(update={
                "status": TaskStatus.FAILED.value,
                "error": error,
                "completed_at": now,
            })
            self._archive([failed], ArchiveReason.FAILED, now)
            tasks = list(self._tasks)
            del tasks[index]
            self._commit(tasks)
        return ArchivedTask.from_task(failed, ArchiveReason.FAILED, now)

    def archive_terminal(self, now: Optional[datetime] = None) -> int:
        """Move completed and failed tasks out of the live queue."""
        now = now or datetime.now(UTC)
        with self._lock:
            completed = [t for t in self._tasks if t.status == TaskStatus.COMPLETED.value]
            failed = [t for t in self._tasks if t.status == TaskStatus.FAILED.value]
            if not completed and not failed:
                return 0
            self._archive(completed, ArchiveReason.COMPLETED, now)
            self._archive(failed, ArchiveReason.FAILED, now)
            self._commit([t for t in self._tasks if not t.is_terminal])
        return len(completed) + len(failed)

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Archive pending tasks older than ``task_expiry_hours``."""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(hours=self.task_expiry_hours)
        with self._lock:
            stale = [
                t for t in self._tasks
                if t.status == TaskStatus.PENDING.value and t.created_at < cutoff
            ]
            if not stale:
                return 0
            stale_ids = {t.id for t in stale}
            self._archive(stale, ArchiveReason.EXPIRED, now)
            self._commit([t for t in self._tasks if t.id not in stale_ids])
        logger.info(f"Expired {len(stale)} stale task(s)")
        return len(stale)

    def clear(self) -> None:
        """Drop every live task (archives are left untouched)."""
        with self._lock:
            self._commit([])

    def read_archive(self, reason: ArchiveReason) -> list[ArchivedTask]:
        """Archived tasks stored under ``reason``'s archive document."""
        path = self.failed_file if reason == ArchiveReason.FAILED else self.expired_file
        if not path.exists():
            return []
        try:
            document = ArchiveDocument.model_validate(json.loads(path.read_text()))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read archive {path}: {e}")
            return []
        return [t for t in document.tasks if t.archive_reason == ArchiveReason(reason).value]
