"""Task model for remediation work produced by the watcher."""

import secrets
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator


class Priority(str, Enum):
    """Task priority tiers, highest first."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Lower rank = served first
PRIORITY_ORDER: dict[str, int] = {
    Priority.CRITICAL.value: 0,
    Priority.HIGH.value: 1,
    Priority.MEDIUM.value: 2,
    Priority.LOW.value: 3,
}


class TaskSource(str, Enum):
    """Which monitor produced a task."""
    LOG_MONITOR = "log-monitor"
    TEST_MONITOR = "test-monitor"
    GIT_MONITOR = "git-monitor"
    MANUAL = "manual"


class AnomalyType(str, Enum):
    """Closed set of anomaly kinds a task can describe."""
    AGENT_ERROR = "agent_error"
    AGENT_LOOP = "agent_loop"
    AGENT_STUCK = "agent_stuck"
    EXCEPTION = "exception"
    TEST_FAILURE = "test_failure"
    TEST_FLAKY = "test_flaky"
    COVERAGE_DROP = "coverage_drop"
    CI_FAILURE = "ci_failure"
    PR_CHECK_FAILED = "pr_check_failed"
    PUSH_FAILED = "push_failed"
    UNUSUAL_PATTERN = "unusual_pattern"
    RECOMMENDED_INVESTIGATION = "recommended_investigation"


class TaskStatus(str, Enum):
    """Task status values."""
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {TaskStatus.COMPLETED.value, TaskStatus.FAILED.value}

# Allowed status moves; the executor may hand a task back to pending for retry
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    TaskStatus.PENDING.value: {TaskStatus.EXECUTING.value},
    TaskStatus.EXECUTING.value: {
        TaskStatus.COMPLETED.value,
        TaskStatus.FAILED.value,
        TaskStatus.PENDING.value,
    },
    TaskStatus.FAILED.value: {TaskStatus.PENDING.value},
    TaskStatus.COMPLETED.value: set(),
}


class ArchiveReason(str, Enum):
    """Why a task left the live queue."""
    FAILED = "failed"
    COMPLETED = "completed"
    EXPIRED = "expired"
    DROPPED = "dropped"


# --- Context variants ------------------------------------------------------
# One model per anomaly family, discriminated by ``kind`` (== anomaly_type).

class _ContextBase(BaseModel):
    log_excerpt: Optional[str] = None
    analysis: Optional[str] = None
    confidence: Optional[float] = None


class RuntimeErrorContext(_ContextBase):
    """Runtime errors and exceptions seen in agent output."""
    kind: Literal["agent_error", "exception"]
    file: Optional[str] = None
    line: Optional[int] = None
    error: Optional[str] = None


class LoopContext(_ContextBase):
    kind: Literal["agent_loop"]
    tool_name: Optional[str] = None
    signature: Optional[str] = None
    repeat_count: Optional[int] = None


class StuckContext(_ContextBase):
    kind: Literal["agent_stuck"]
    idle_seconds: Optional[float] = None
    command: Optional[str] = None
    phase: Optional[str] = None


class FailingTestContext(_ContextBase):
    kind: Literal["test_failure", "test_flaky"]
    test_file: Optional[str] = None
    test_name: Optional[str] = None
    failure_count: Optional[int] = None
    pass_count: Optional[int] = None
    last_error: Optional[str] = None


class CoverageContext(_ContextBase):
    kind: Literal["coverage_drop"]
    current: Optional[float] = None
    baseline: Optional[float] = None
    drop: Optional[float] = None


class GitContext(_ContextBase):
    """CI runs, PR checks and pushes."""
    kind: Literal["ci_failure", "pr_check_failed", "push_failed"]
    branch: Optional[str] = None
    commit: Optional[str] = None
    workflow: Optional[str] = None
    ci_url: Optional[str] = None
    pr_number: Optional[int] = None
    check_name: Optional[str] = None
    failure_type: Optional[str] = None
    last_error: Optional[str] = None


class AdvisoryContext(_ContextBase):
    """Semantic findings from the workflow analyzer or the advisory model."""
    kind: Literal["unusual_pattern", "recommended_investigation"]
    issue_type: Optional[str] = None
    evidence: dict[str, Any] = Field(default_factory=dict)


TaskContext = Annotated[
    Union[
        RuntimeErrorContext,
        LoopContext,
        StuckContext,
        FailingTestContext,
        CoverageContext,
        GitContext,
        AdvisoryContext,
    ],
    Field(discriminator="kind"),
]


class CreateTaskInput(BaseModel):
    """What a monitor hands to the queue; the queue fills in the rest."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    priority: Priority
    source: TaskSource
    anomaly_type: AnomalyType
    prompt: str
    suggested_agent: str
    context: TaskContext

    @model_validator(mode="before")
    @classmethod
    def default_context_kind(cls, data: Any) -> Any:
        """Let callers pass a plain mapping (or nothing) as context.

        The context variant is picked from ``anomaly_type`` so monitors don't
        have to repeat it.
        """
        if not isinstance(data, dict):
            return data
        anomaly = data.get("anomaly_type")
        if isinstance(anomaly, Enum):
            anomaly = anomaly.value
        context = data.get("context")
        if context is None:
            data = {**data, "context": {"kind": anomaly}}
        elif isinstance(context, dict) and "kind" not in context:
            data = {**data, "context": {**context, "kind": anomaly}}
        return data

    @model_validator(mode="after")
    def check_context_kind(self) -> "CreateTaskInput":
        if self.context.kind != self.anomaly_type:
            raise ValueError(
                f"context kind '{self.context.kind}' does not match "
                f"anomaly_type '{self.anomaly_type}'"
            )
        return self


def generate_task_id(now: Optional[datetime] = None) -> str:
    """Time-sortable id: creation timestamp plus a random suffix."""
    now = now or datetime.now(UTC)
    return f"task-{now.strftime('%Y%m%d-%H%M%S-%f')}-{secrets.token_hex(2)}"


class Task(CreateTaskInput):
    """A unit of remediation work."""

    id: str
    created_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def from_input(cls, task_input: CreateTaskInput, now: Optional[datetime] = None) -> "Task":
        now = now or datetime.now(UTC)
        return cls(
            **task_input.model_dump(),
            id=generate_task_id(now),
            created_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @field_serializer("created_at", "completed_at")
    def serialize_datetime(self, v: Optional[datetime]) -> Optional[str]:
        return v.isoformat() if v else None


class ArchivedTask(Task):
    """Task moved to one of the archive stores."""

    archived_at: datetime
    archive_reason: ArchiveReason

    @field_serializer("archived_at")
    def serialize_archived_at(self, v: datetime) -> str:
        return v.isoformat()

    @classmethod
    def from_task(
        cls,
        task: Task,
        reason: ArchiveReason,
        now: Optional[datetime] = None,
    ) -> "ArchivedTask":
        return cls(
            **task.model_dump(),
            archived_at=now or datetime.now(UTC),
            archive_reason=reason,
        )
