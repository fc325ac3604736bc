"""Shared utility functions for the workflow watcher."""

from .atomic_io import atomic_write_model, atomic_write_text
from .error_handling import ErrorContext, log_and_ignore, safe_call
from .logging_setup import WatcherLogFormatter, setup_watcher_logging
from .stream_parser import parse_jsonl_line
from .subprocess_utils import CommandResult, SubprocessError, run_command, split_command

__all__ = [
    # Atomic I/O
    "atomic_write_text",
    "atomic_write_model",
    # Error handling
    "log_and_ignore",
    "safe_call",
    "ErrorContext",
    # Logging
    "WatcherLogFormatter",
    "setup_watcher_logging",
    # Stream parsing
    "parse_jsonl_line",
    # Subprocess utilities
    "CommandResult",
    "SubprocessError",
    "run_command",
    "split_command",
]
