"""Turn workflow issues into notifications and remediation tasks.

Response type follows the issue's confidence:

- above 0.9: auto_remediate (high-priority task + notification)
- 0.7 to 0.9: notify_suggest (medium-priority task + notification)
- below 0.7: notify_only (notification only)
"""

import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from ..core.notifier import Notification, Urgency
from ..core.task import AnomalyType, CreateTaskInput, Priority, TaskSource
from .workflow_analyzer import IssueType, WorkflowIssue

AUTO_REMEDIATE_THRESHOLD = 0.9
NOTIFY_SUGGEST_THRESHOLD = 0.7


class ResponseType(str, Enum):
    AUTO_REMEDIATE = "auto_remediate"
    NOTIFY_SUGGEST = "notify_suggest"
    NOTIFY_ONLY = "notify_only"


ISSUE_NAMES = {
    IssueType.LOOP_DETECTED: "Loop Detected",
    IssueType.PHASE_STUCK: "Phase Stuck",
    IssueType.REGRESSION: "Regression",
    IssueType.OUT_OF_ORDER: "Out of Order",
    IssueType.CHAIN_BROKEN: "Chain Broken",
    IssueType.TDD_VIOLATION: "TDD Violation",
    IssueType.EXPLICIT_FAILURE: "Failure",
    IssueType.AGENT_FAILED: "Agent Failed",
    IssueType.IRON_LAW_VIOLATION: "IRON LAW Violation",
    IssueType.IRON_LAW_REPEATED: "IRON LAW Repeated Violation",
    IssueType.SILENCE: "Workflow Silence",
    IssueType.MISSING_MILESTONES: "Missing Milestones",
    IssueType.DECLINING_VELOCITY: "Declining Velocity",
    IssueType.INCOMPLETE_OUTPUTS: "Incomplete Outputs",
    IssueType.AGENT_SILENCE: "Agent Silence",
    IssueType.ABRUPT_STOP: "Abrupt Stop",
    IssueType.PARTIAL_COMPLETION: "Partial Completion",
    IssueType.ABANDONED_AGENT: "Abandoned Agent",
}

ISSUE_TO_ANOMALY = {
    IssueType.LOOP_DETECTED: AnomalyType.AGENT_LOOP,
    IssueType.PHASE_STUCK: AnomalyType.AGENT_STUCK,
    IssueType.ABRUPT_STOP: AnomalyType.AGENT_STUCK,
    IssueType.PARTIAL_COMPLETION: AnomalyType.AGENT_STUCK,
    IssueType.EXPLICIT_FAILURE: AnomalyType.AGENT_ERROR,
    IssueType.AGENT_FAILED: AnomalyType.AGENT_ERROR,
    IssueType.REGRESSION: AnomalyType.AGENT_ERROR,
    IssueType.TDD_VIOLATION: AnomalyType.UNUSUAL_PATTERN,
    IssueType.OUT_OF_ORDER: AnomalyType.UNUSUAL_PATTERN,
    IssueType.CHAIN_BROKEN: AnomalyType.UNUSUAL_PATTERN,
    IssueType.MISSING_MILESTONES: AnomalyType.UNUSUAL_PATTERN,
    IssueType.INCOMPLETE_OUTPUTS: AnomalyType.UNUSUAL_PATTERN,
    IssueType.IRON_LAW_VIOLATION: AnomalyType.UNUSUAL_PATTERN,
    IssueType.IRON_LAW_REPEATED: AnomalyType.UNUSUAL_PATTERN,
    IssueType.SILENCE: AnomalyType.RECOMMENDED_INVESTIGATION,
    IssueType.DECLINING_VELOCITY: AnomalyType.RECOMMENDED_INVESTIGATION,
    IssueType.AGENT_SILENCE: AnomalyType.RECOMMENDED_INVESTIGATION,
    IssueType.ABANDONED_AGENT: AnomalyType.RECOMMENDED_INVESTIGATION,
}

ISSUE_TO_AGENT = {
    IssueType.REGRESSION: "test-engineer",
    IssueType.OUT_OF_ORDER: "test-engineer",
    IssueType.TDD_VIOLATION: "test-engineer",
    IssueType.MISSING_MILESTONES: "test-engineer",
    IssueType.DECLINING_VELOCITY: "performance-engineer",
}
DEFAULT_AGENT = "debugger"

SUGGESTED_ACTIONS = {
    IssueType.LOOP_DETECTED: (
        "Break out of the loop by trying a different approach. Analyze what action "
        "is being repeated and why it is not succeeding."
    ),
    IssueType.PHASE_STUCK: (
        "Investigate why the phase is not completing. Check for blocking errors, "
        "infinite loops, or missing dependencies."
    ),
    IssueType.REGRESSION: (
        "Revert the recent changes or fix the broken tests. Ensure GREEN phase passes "
        "before proceeding to REFACTOR."
    ),
    IssueType.OUT_OF_ORDER: (
        "Follow the correct TDD phase order: RED (write failing test) -> GREEN "
        "(make test pass) -> REFACTOR (clean up)."
    ),
    IssueType.CHAIN_BROKEN: (
        "Complete the prerequisite command before proceeding. The workflow chain "
        "should follow: ideate -> plan -> build -> ship."
    ),
    IssueType.TDD_VIOLATION: (
        "Write failing tests first (RED phase) before implementing code (GREEN phase)."
    ),
    IssueType.EXPLICIT_FAILURE: (
        "Investigate and fix the error that caused the failure. Check logs and error "
        "messages for root cause."
    ),
    IssueType.AGENT_FAILED: (
        "Review what caused the agent to fail. Consider retrying or using a different approach."
    ),
    IssueType.IRON_LAW_VIOLATION: (
        "IRON LAW violated. Delete code written without a test and start with a failing test first."
    ),
    IssueType.IRON_LAW_REPEATED: (
        "IRON LAW repeatedly violated. Put the IRON LAWS at the top of the context "
        "and follow TDD strictly."
    ),
    IssueType.SILENCE: (
        "Check if the workflow is still running. Consider if it is waiting for user "
        "input or has stalled."
    ),
    IssueType.MISSING_MILESTONES: (
        "Ensure each phase produces expected outputs and checkpoints. Log milestones "
        "as work progresses."
    ),
    IssueType.DECLINING_VELOCITY: (
        "Workflow is slowing down. Consider if complexity is increasing or if there "
        "are blocking issues."
    ),
    IssueType.INCOMPLETE_OUTPUTS: (
        "Ensure the command produces expected outputs before marking complete. Check "
        "for missing files or artifacts."
    ),
    IssueType.AGENT_SILENCE: (
        "Check if the spawned agent started correctly. Consider restarting or using a "
        "different agent."
    ),
    IssueType.ABRUPT_STOP: (
        "Workflow stopped unexpectedly after making progress. Check for crashes, "
        "timeouts, or user interruption."
    ),
    IssueType.PARTIAL_COMPLETION: (
        "Some phases completed but workflow did not finish. Resume from the stuck "
        "phase or investigate the blocker."
    ),
    IssueType.ABANDONED_AGENT: (
        "An agent started but never completed. Check for timeouts, errors, or stuck processes."
    ),
}
DEFAULT_ACTION = "Investigate the issue and take appropriate corrective action."


class Intervention(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    response_type: ResponseType
    issue: WorkflowIssue
    notification: Notification
    task: Optional[CreateTaskInput] = None


def determine_response_type(confidence: float) -> ResponseType:
    if confidence > AUTO_REMEDIATE_THRESHOLD:
        return ResponseType.AUTO_REMEDIATE
    if confidence >= NOTIFY_SUGGEST_THRESHOLD:
        return ResponseType.NOTIFY_SUGGEST
    return ResponseType.NOTIFY_ONLY


def _format_key(key: str) -> str:
    return " ".join(word.capitalize() for word in key.split("_"))


def _format_value(key: str, value: Any) -> str:
    if key.endswith("_seconds") and isinstance(value, (int, float)):
        seconds = round(value)
        if seconds >= 60:
            minutes, remainder = divmod(seconds, 60)
            return f"{minutes} minutes {remainder} seconds" if remainder else f"{minutes} minutes"
        return f"{seconds} seconds"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return str(value)


class InterventionGenerator:
    """Maps a WorkflowIssue to a notification and, when warranted, a task."""

    def generate(self, issue: WorkflowIssue) -> Intervention:
        response_type = determine_response_type(issue.confidence)
        task = None
        if response_type != ResponseType.NOTIFY_ONLY:
            task = self.create_task(issue, response_type)
        return Intervention(
            response_type=response_type,
            issue=issue,
            notification=self.create_notification(issue),
            task=task,
        )

    def create_prompt(self, issue: WorkflowIssue) -> str:
        """Markdown write-up of the issue for the executor."""
        sections = [f"## Workflow Issue: {ISSUE_NAMES.get(issue.type, issue.type)}\n"]
        sections.append(f"### Issue Description\n{issue.message}\n")

        evidence = {k: v for k, v in issue.context.items() if v is not None}
        if evidence:
            sections.append("### Evidence\n")
            for key, value in evidence.items():
                sections.append(f"- **{_format_key(key)}**: {_format_value(key, value)}")
            sections.append("")

        sections.append(f"### Suggested Action\n{SUGGESTED_ACTIONS.get(issue.type, DEFAULT_ACTION)}\n")
        sections.append(f"### Confidence\n{issue.confidence * 100:.0f}%\n")
        return "\n".join(sections)

    def create_notification(self, issue: WorkflowIssue) -> Notification:
        message = issue.message
        if issue.type == IssueType.IRON_LAW_REPEATED and "repeated" not in message.lower():
            message = message.replace("violated", "repeatedly violated", 1)

        response_type = determine_response_type(issue.confidence)
        if response_type == ResponseType.AUTO_REMEDIATE:
            urgency = Urgency.CRITICAL
        elif response_type == ResponseType.NOTIFY_SUGGEST:
            urgency = Urgency.WARNING
        else:
            urgency = Urgency.INFO

        return Notification(
            title=f"Workflow: {ISSUE_NAMES.get(issue.type, issue.type)}",
            message=message,
            urgency=urgency,
        )

    def create_task(self, issue: WorkflowIssue, response_type: ResponseType) -> CreateTaskInput:
        anomaly = ISSUE_TO_ANOMALY.get(issue.type, AnomalyType.RECOMMENDED_INVESTIGATION)
        priority = Priority.HIGH if response_type == ResponseType.AUTO_REMEDIATE else Priority.MEDIUM
        return CreateTaskInput(
            priority=priority,
            source=TaskSource.LOG_MONITOR,
            anomaly_type=anomaly,
            prompt=self.create_prompt(issue),
            suggested_agent=self.agent_for(issue),
            context=self._context_for(issue, anomaly),
        )

    def agent_for(self, issue: WorkflowIssue) -> str:
        if issue.context.get("agent_type"):
            return str(issue.context["agent_type"])
        return ISSUE_TO_AGENT.get(issue.type, DEFAULT_AGENT)

    @staticmethod
    def _context_for(issue: WorkflowIssue, anomaly: AnomalyType) -> dict[str, Any]:
        context: dict[str, Any] = {
            "kind": anomaly.value,
            "analysis": issue.message,
            "confidence": issue.confidence,
        }
        if anomaly == AnomalyType.AGENT_LOOP:
            context["repeat_count"] = issue.context.get("repeat_count")
        elif anomaly == AnomalyType.AGENT_STUCK:
            context["phase"] = issue.context.get("phase") or issue.context.get("stuck_phase")
            context["command"] = issue.context.get("command")
            context["idle_seconds"] = issue.context.get("elapsed_seconds")
        elif anomaly == AnomalyType.AGENT_ERROR:
            error = issue.context.get("error")
            context["error"] = str(error) if error is not None else None
        else:
            context["issue_type"] = issue.type
            context["evidence"] = json.loads(json.dumps(issue.context, default=str))
        return context
