"""Workflow event log: entry model, reader and writer."""

from .models import EVENT_LOG_FILENAME, AgentInfo, ParsedLogEntry, QueryFilter, WorkflowEvent
from .reader import EventLogReader
from .writer import EventLogWriter, format_summary

__all__ = [
    "EVENT_LOG_FILENAME",
    "AgentInfo",
    "ParsedLogEntry",
    "QueryFilter",
    "WorkflowEvent",
    "EventLogReader",
    "EventLogWriter",
    "format_summary",
]
