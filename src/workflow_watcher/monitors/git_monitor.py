"""Watches CI runs, PR checks and pushes."""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..core.task import AnomalyType, CreateTaskInput, Priority, Task, TaskSource
from ..queue.task_queue import TaskQueue

logger = logging.getLogger(__name__)

GIT_AGENT = "deployment-engineer"


class CIState(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    UNKNOWN = "unknown"


class PushFailureType(str, Enum):
    REJECTED = "rejected"
    PERMISSION = "permission"
    NETWORK = "network"
    UNKNOWN = "unknown"


@dataclass
class CIStatus:
    status: CIState
    workflow: str
    branch: str
    commit: str
    url: Optional[str] = None


@dataclass
class PRCheckResult:
    passed: bool
    check_name: str
    pr_number: int
    branch: str
    error_message: Optional[str] = None


@dataclass
class CIAnalysis:
    has_failure: bool
    is_pending: bool
    details: str


@dataclass
class PRCheckAnalysis:
    has_failure: bool
    details: Optional[str] = None


@dataclass
class PushAnalysis:
    has_failure: bool
    failure_type: Optional[PushFailureType] = None
    details: Optional[str] = None


_PUSH_PROMPTS = {
    PushFailureType.REJECTED: "Git push to {branch} was rejected. Pull remote changes and resolve any conflicts before pushing again.",
    PushFailureType.PERMISSION: "Git push to {branch} failed due to permission issues. Check SSH keys and repository access rights.",
    PushFailureType.NETWORK: "Git push to {branch} failed due to network issues. Check internet connection and try again.",
}


def analyze_ci_status(status: CIStatus) -> CIAnalysis:
    return CIAnalysis(
        has_failure=status.status == CIState.FAILURE,
        is_pending=status.status == CIState.PENDING,
        details=f"Workflow: {status.workflow}, Branch: {status.branch}",
    )


def analyze_pr_check(check: PRCheckResult) -> PRCheckAnalysis:
    return PRCheckAnalysis(has_failure=not check.passed, details=check.error_message)


def analyze_push_output(output: str) -> PushAnalysis:
    """Classify ``git push`` output.

    A ref update line (``a..b  main -> main``) with no error text is success.
    Otherwise the first matching failure family wins.
    """
    lowered = output.lower()
    if "->" in output and "error" not in lowered and "failed" not in lowered:
        return PushAnalysis(has_failure=False)

    if "failed to push some refs" in output or "rejected" in output:
        return PushAnalysis(
            has_failure=True,
            failure_type=PushFailureType.REJECTED,
            details="Push was rejected - remote has changes not present locally",
        )
    if "Permission denied" in output or "Could not read from remote" in output:
        return PushAnalysis(
            has_failure=True,
            failure_type=PushFailureType.PERMISSION,
            details="Permission denied - check SSH keys or access rights",
        )
    if "Could not resolve host" in output or "Connection refused" in output:
        return PushAnalysis(
            has_failure=True,
            failure_type=PushFailureType.NETWORK,
            details="Network error - check internet connection",
        )
    if "error" in lowered or "fatal" in lowered:
        return PushAnalysis(
            has_failure=True,
            failure_type=PushFailureType.UNKNOWN,
            details=output[:200],
        )
    return PushAnalysis(has_failure=False)


def parse_gh_status(output: str) -> CIStatus:
    """Build a CIStatus from ``gh api .../status`` JSON.

    Anything unparseable yields an ``unknown`` status rather than an error.
    """
    unknown = CIStatus(status=CIState.UNKNOWN, workflow="Unknown", branch="unknown", commit="unknown")
    if not output or not output.strip():
        return unknown
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        logger.debug("gh status output was not JSON")
        return unknown
    if not isinstance(data, dict):
        return unknown

    state = str(data.get("state") or "unknown").lower()
    try:
        ci_state = CIState(state)
    except ValueError:
        ci_state = CIState.UNKNOWN

    statuses = data.get("statuses") or []
    first = statuses[0] if statuses and isinstance(statuses[0], dict) else {}
    return CIStatus(
        status=ci_state,
        workflow=first.get("context") or "CI",
        branch=data.get("branch") or "unknown",
        commit=data.get("sha") or "unknown",
        url=first.get("targetUrl") or first.get("target_url"),
    )


class GitMonitor:
    """Queues high-priority tasks for CI, PR-check and push failures."""

    def __init__(self, queue: TaskQueue):
        self.queue = queue

    analyze_ci_status = staticmethod(analyze_ci_status)
    analyze_pr_check = staticmethod(analyze_pr_check)
    analyze_push_output = staticmethod(analyze_push_output)
    parse_gh_status = staticmethod(parse_gh_status)

    def report_ci_failure(self, status: CIStatus) -> Optional[Task]:
        return self._enqueue(CreateTaskInput(
            priority=Priority.HIGH,
            source=TaskSource.GIT_MONITOR,
            anomaly_type=AnomalyType.CI_FAILURE,
            prompt=(
                f'CI workflow "{status.workflow}" failed on branch {status.branch}. '
                "Investigate the failure and fix the underlying issue."
            ),
            suggested_agent=GIT_AGENT,
            context={
                "branch": status.branch,
                "commit": status.commit,
                "workflow": status.workflow,
                "ci_url": status.url,
            },
        ))

    def report_pr_check_failure(self, check: PRCheckResult) -> Optional[Task]:
        return self._enqueue(CreateTaskInput(
            priority=Priority.HIGH,
            source=TaskSource.GIT_MONITOR,
            anomaly_type=AnomalyType.PR_CHECK_FAILED,
            prompt=(
                f'PR #{check.pr_number} check "{check.check_name}" failed on branch {check.branch}. '
                f"Fix the failing check: {check.error_message or 'Unknown error'}"
            ),
            suggested_agent=GIT_AGENT,
            context={
                "branch": check.branch,
                "pr_number": check.pr_number,
                "check_name": check.check_name,
                "last_error": check.error_message,
            },
        ))

    def report_push_failure(
        self, error_message: str, failure_type: PushFailureType, branch: str
    ) -> Optional[Task]:
        failure_type = PushFailureType(failure_type)
        template = _PUSH_PROMPTS.get(failure_type)
        if template:
            prompt = template.format(branch=branch)
        else:
            prompt = f"Git push to {branch} failed: {error_message}. Investigate and resolve the issue."
        return self._enqueue(CreateTaskInput(
            priority=Priority.HIGH,
            source=TaskSource.GIT_MONITOR,
            anomaly_type=AnomalyType.PUSH_FAILED,
            prompt=prompt,
            suggested_agent=GIT_AGENT,
            context={
                "branch": branch,
                "failure_type": failure_type.value,
                "log_excerpt": error_message[:300],
            },
        ))

    # -- one-call entry points ---------------------------------------------

    def observe_ci_status(self, status: CIStatus) -> Optional[Task]:
        if not analyze_ci_status(status).has_failure:
            return None
        return self.report_ci_failure(status)

    def observe_pr_check(self, check: PRCheckResult) -> Optional[Task]:
        if not analyze_pr_check(check).has_failure:
            return None
        return self.report_pr_check_failure(check)

    def observe_push_output(self, output: str, branch: str) -> Optional[Task]:
        analysis = analyze_push_output(output)
        if not analysis.has_failure:
            return None
        return self.report_push_failure(output, analysis.failure_type, branch)

    def _enqueue(self, task_input: CreateTaskInput) -> Optional[Task]:
        try:
            return self.queue.enqueue(task_input)
        except OSError as e:
            logger.error(f"Failed to queue {task_input.anomaly_type} task: {e}")
            return None
