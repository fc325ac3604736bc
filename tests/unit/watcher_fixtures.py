"""Builders for tasks and log entries shared across unit tests."""

from datetime import UTC, datetime, timedelta

from workflow_watcher.core.task import AnomalyType, CreateTaskInput, Priority, TaskSource
from workflow_watcher.eventlog.models import AgentInfo, ParsedLogEntry, WorkflowEvent

# Fixed reference time so time-based detectors are deterministic.
T0 = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


def make_input(
    priority=Priority.MEDIUM,
    anomaly_type=AnomalyType.AGENT_ERROR,
    prompt="Fix the thing",
    suggested_agent="debugger",
    source=TaskSource.MANUAL,
    **context,
) -> CreateTaskInput:
    return CreateTaskInput(
        priority=priority,
        source=source,
        anomaly_type=anomaly_type,
        prompt=prompt,
        suggested_agent=suggested_agent,
        context=context or None,
    )


def entry(
    event,
    cmd="build",
    phase=None,
    seconds=0,
    data=None,
    agent_id=None,
    agent_type=None,
) -> ParsedLogEntry:
    """Log entry ``seconds`` after T0."""
    return ParsedLogEntry(
        ts=T0 + timedelta(seconds=seconds),
        cmd=cmd,
        event=WorkflowEvent(event),
        phase=phase,
        data=data or {},
        agent=AgentInfo(id=agent_id, type=agent_type) if agent_id else None,
    )


