"""Append entries to the workflow event log."""

import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Optional

from .models import EVENT_LOG_FILENAME, AgentInfo, ParsedLogEntry, WorkflowEvent

logger = logging.getLogger(__name__)


def format_summary(entry: ParsedLogEntry) -> str:
    """Human-readable ``# CMD:PHASE:EVENT - description`` line."""
    header = entry.cmd.upper()
    if entry.phase:
        header += f":{entry.phase}"
    header += f":{entry.event}"

    description = _describe(entry)
    return f"# {header} - {description}" if description else f"# {header}"


def _describe(entry: ParsedLogEntry) -> str:
    data = entry.data
    if entry.agent or entry.event in (WorkflowEvent.AGENT_SPAWN, WorkflowEvent.AGENT_COMPLETE):
        agent_type = (entry.agent.type if entry.agent else None) or data.get("agent_type")
        task = data.get("task")
        return f"{agent_type}: {task}" if task else f"{agent_type}"
    if entry.event == WorkflowEvent.COMPLETE and data.get("summary"):
        return str(data["summary"])
    if entry.event == WorkflowEvent.FAILED and data.get("error"):
        return str(data["error"])
    if entry.event == WorkflowEvent.START and data.get("args"):
        args = data["args"]
        return " ".join(str(a) for a in args) if isinstance(args, list) else str(args)
    if entry.event == WorkflowEvent.MILESTONE and data.get("description"):
        return str(data["description"])
    return ""


class EventLogWriter:
    """Appends a JSON line plus a ``#`` summary line per entry."""

    def __init__(self, state_dir: Optional[Path] = None, log_path: Optional[Path] = None):
        if log_path is None:
            if state_dir is None:
                raise ValueError("state_dir or log_path is required")
            log_path = Path(state_dir) / EVENT_LOG_FILENAME
        self.log_path = Path(log_path)
        self._lock = threading.Lock()

    def log(
        self,
        cmd: str,
        event: WorkflowEvent,
        phase: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
        agent: Optional[AgentInfo] = None,
        ts: Optional[datetime] = None,
    ) -> ParsedLogEntry:
        entry = ParsedLogEntry(
            ts=ts or datetime.now(UTC),
            cmd=cmd,
            event=event,
            phase=phase,
            data=data or {},
            agent=agent,
        )
        self.append(entry)
        return entry

    def append(self, entry: ParsedLogEntry) -> None:
        content = f"{entry.model_dump_json(exclude_none=True)}\n{format_summary(entry)}\n"
        with self._lock:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            # Single write in append mode keeps the JSON and summary lines together
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(content)
        logger.debug(f"Logged {entry.cmd}:{entry.event}")
