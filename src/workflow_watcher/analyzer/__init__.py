"""Workflow health analysis, interventions and supervision."""

from .interventions import Intervention, InterventionGenerator, ResponseType
from .supervisor import WorkflowSupervisor
from .workflow_analyzer import (
    ChainStatus,
    HealthStatus,
    IssueType,
    WorkflowAnalysis,
    WorkflowAnalyzer,
    WorkflowIssue,
    WorkflowState,
    build_state,
)

__all__ = [
    "Intervention",
    "InterventionGenerator",
    "ResponseType",
    "WorkflowSupervisor",
    "ChainStatus",
    "HealthStatus",
    "IssueType",
    "WorkflowAnalysis",
    "WorkflowAnalyzer",
    "WorkflowIssue",
    "WorkflowState",
    "build_state",
]
