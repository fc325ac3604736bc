"""Typed records of the append-only workflow event log."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

EVENT_LOG_FILENAME = "workflow.log"


class WorkflowEvent(str, Enum):
    """Kinds of event a workflow command can log."""
    START = "START"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    PHASE_START = "PHASE_START"
    PHASE_COMPLETE = "PHASE_COMPLETE"
    MILESTONE = "MILESTONE"
    AGENT_SPAWN = "AGENT_SPAWN"
    AGENT_COMPLETE = "AGENT_COMPLETE"
    IRON_LAW_CHECK = "IRON_LAW_CHECK"


class AgentInfo(BaseModel):
    """Which sub-agent produced an entry."""
    id: str
    type: Optional[str] = None


class ParsedLogEntry(BaseModel):
    """One structured line of the event log.

    Unknown keys written by producers are preserved so nothing is lost when
    an entry is re-serialised.
    """

    model_config = ConfigDict(use_enum_values=True, extra="allow")

    ts: datetime
    cmd: str
    event: WorkflowEvent
    phase: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    agent: Optional[AgentInfo] = None

    @field_validator("ts")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=UTC)

    @field_serializer("ts")
    def serialize_ts(self, v: datetime) -> str:
        return v.isoformat()


class QueryFilter(BaseModel):
    """Optional match criteria for ``EventLogReader.query_last``."""

    model_config = ConfigDict(use_enum_values=True)

    cmd: Optional[str] = None
    event: Optional[WorkflowEvent] = None
    phase: Optional[str] = None

    def matches(self, entry: ParsedLogEntry) -> bool:
        if self.cmd and entry.cmd != self.cmd:
            return False
        if self.event and entry.event != self.event:
            return False
        if self.phase and entry.phase != self.phase:
            return False
        return True
