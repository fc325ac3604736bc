"""Tests for mapping workflow issues to interventions."""

import pytest

from workflow_watcher.analyzer.interventions import (
    InterventionGenerator,
    ResponseType,
    determine_response_type,
)
from workflow_watcher.analyzer.workflow_analyzer import IssueType, WorkflowIssue
from workflow_watcher.core.task import AnomalyType


@pytest.fixture
def generator():
    return InterventionGenerator()


def _issue(issue_type, confidence, message="something happened", **context):
    return WorkflowIssue(type=issue_type, confidence=confidence, message=message, context=context)


@pytest.mark.parametrize(
    "confidence, expected",
    [
        (0.95, ResponseType.AUTO_REMEDIATE),
        (0.91, ResponseType.AUTO_REMEDIATE),
        (0.9, ResponseType.NOTIFY_SUGGEST),
        (0.7, ResponseType.NOTIFY_SUGGEST),
        (0.69, ResponseType.NOTIFY_ONLY),
    ],
)
def test_response_type_boundaries(confidence, expected):
    assert determine_response_type(confidence) == expected


def test_high_confidence_failure_gets_high_priority_task(generator):
    intervention = generator.generate(
        _issue(IssueType.EXPLICIT_FAILURE, 0.95, "Command ship failed: boom", command="ship", error="boom")
    )

    assert intervention.response_type == ResponseType.AUTO_REMEDIATE
    assert intervention.notification.urgency == "critical"
    assert intervention.notification.title == "Workflow: Failure"
    task = intervention.task
    assert task.priority == "high"
    assert task.anomaly_type == AnomalyType.AGENT_ERROR
    assert task.suggested_agent == "debugger"
    assert task.context.error == "boom"
    assert task.context.confidence == 0.95


def test_medium_confidence_gets_medium_priority_task(generator):
    intervention = generator.generate(_issue(IssueType.SILENCE, 0.8, silence_seconds=150))

    assert intervention.response_type == ResponseType.NOTIFY_SUGGEST
    assert intervention.notification.urgency == "warning"
    assert intervention.task.priority == "medium"
    assert intervention.task.anomaly_type == AnomalyType.RECOMMENDED_INVESTIGATION
    assert intervention.task.context.evidence == {"silence_seconds": 150}


def test_low_confidence_only_notifies(generator):
    intervention = generator.generate(_issue(IssueType.CHAIN_BROKEN, 0.6))

    assert intervention.response_type == ResponseType.NOTIFY_ONLY
    assert intervention.task is None
    assert intervention.notification.urgency == "info"


def test_tdd_violation_routed_to_test_engineer(generator):
    task = generator.generate(_issue(IssueType.TDD_VIOLATION, 0.95, violation="green_before_red")).task

    assert task.anomaly_type == AnomalyType.UNUSUAL_PATTERN
    assert task.suggested_agent == "test-engineer"
    assert task.context.issue_type == "tdd_violation"


def test_agent_type_in_evidence_wins(generator):
    issue = _issue(IssueType.ABANDONED_AGENT, 0.8, agent_id="a1", agent_type="security-auditor")
    assert generator.generate(issue).task.suggested_agent == "security-auditor"


def test_stuck_phase_context(generator):
    task = generator.generate(_issue(IssueType.PHASE_STUCK, 0.85, phase="GREEN", elapsed_seconds=300.0)).task

    assert task.anomaly_type == AnomalyType.AGENT_STUCK
    assert task.context.phase == "GREEN"
    assert task.context.idle_seconds == 300.0


def test_prompt_sections(generator):
    issue = _issue(
        IssueType.PHASE_STUCK,
        0.85,
        "Phase GREEN has been running for 5 minutes without completion",
        phase="GREEN",
        elapsed_seconds=305,
        skipped=None,
    )

    prompt = generator.create_prompt(issue)

    assert prompt.startswith("## Workflow Issue: Phase Stuck")
    assert "### Issue Description\nPhase GREEN has been running" in prompt
    assert "- **Phase**: GREEN" in prompt
    assert "- **Elapsed Seconds**: 5 minutes 5 seconds" in prompt
    assert "Skipped" not in prompt
    assert "### Suggested Action\nInvestigate why the phase is not completing" in prompt
    assert prompt.rstrip().endswith("85%")


def test_prompt_formats_lists_and_short_durations(generator):
    issue = _issue(IssueType.OUT_OF_ORDER, 0.85, actual_order=["RED", "GREEN", "RED"], silence_seconds=42)

    prompt = generator.create_prompt(issue)

    assert "- **Actual Order**: RED, GREEN, RED" in prompt
    assert "- **Silence Seconds**: 42 seconds" in prompt


def test_repeated_iron_law_notification_says_repeatedly(generator):
    issue = _issue(IssueType.IRON_LAW_REPEATED, 0.97, "IRON LAW #1 violated 2 times: no test", law=1, count=2)

    notification = generator.create_notification(issue)

    assert notification.message == "IRON LAW #1 repeatedly violated 2 times: no test"
    assert notification.title == "Workflow: IRON LAW Repeated Violation"
