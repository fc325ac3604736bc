"""Monitors that turn raw signals into queued tasks."""

from .git_monitor import (
    CIState,
    CIStatus,
    GitMonitor,
    PRCheckResult,
    PushFailureType,
    analyze_push_output,
    parse_gh_status,
)
from .log_monitor import LogMonitor
from .test_monitor import SuiteResult, TestMonitor, analyze_test_output, parse_coverage

__all__ = [
    "CIState",
    "CIStatus",
    "GitMonitor",
    "PRCheckResult",
    "PushFailureType",
    "analyze_push_output",
    "parse_gh_status",
    "LogMonitor",
    "SuiteResult",
    "TestMonitor",
    "analyze_test_output",
    "parse_coverage",
]
