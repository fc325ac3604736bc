"""Workflow health analysis over the structured event log.

The analyzer is a pure function of (entries, now):

1. ``build_state`` folds the entries into an explicit ``WorkflowState``
   (position in the workflow, milestones, agents, chain progress).
2. A fixed battery of detectors inspects the state and the raw entries and
   appends scored ``WorkflowIssue`` records. Detectors come in three families:
   negative signals (presence of bad), positive-signal erosion (absence of
   good) and hard stops (progress that ceased).
3. The health verdict is derived from the issues by fixed thresholds.

A detector that raises contributes no issues; the rest of the pass still runs.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.config import AnalyzerThresholds
from ..eventlog.models import ParsedLogEntry, WorkflowEvent
from ..utils.error_handling import ErrorContext

logger = logging.getLogger(__name__)


class IssueType(str, Enum):
    # Negative signals
    LOOP_DETECTED = "loop_detected"
    PHASE_STUCK = "phase_stuck"
    REGRESSION = "regression"
    OUT_OF_ORDER = "out_of_order"
    CHAIN_BROKEN = "chain_broken"
    TDD_VIOLATION = "tdd_violation"
    EXPLICIT_FAILURE = "explicit_failure"
    AGENT_FAILED = "agent_failed"
    IRON_LAW_VIOLATION = "iron_law_violation"
    IRON_LAW_REPEATED = "iron_law_repeated"
    # Positive signal erosion
    SILENCE = "silence"
    MISSING_MILESTONES = "missing_milestones"
    DECLINING_VELOCITY = "declining_velocity"
    INCOMPLETE_OUTPUTS = "incomplete_outputs"
    AGENT_SILENCE = "agent_silence"
    # Hard stops
    ABRUPT_STOP = "abrupt_stop"
    PARTIAL_COMPLETION = "partial_completion"
    ABANDONED_AGENT = "abandoned_agent"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class ChainStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


PHASE_ORDER = ["RED", "GREEN", "REFACTOR"]
COMMAND_CHAIN = ["ideate", "plan", "build", "ship"]

# Minimum milestones a phase must log before PHASE_COMPLETE
EXPECTED_MILESTONES = {"RED": 1, "GREEN": 1, "REFACTOR": 0}

# Any one of the listed commands satisfies the prerequisite
CHAIN_PREREQUISITES = {
    "build": ["plan", "ideate"],
    "ship": ["build"],
}

# Commands that always produce data.outputs on COMPLETE
EXPECTED_OUTPUTS = {"ideate", "plan", "build"}

CRITICAL_ISSUE_TYPES = {
    IssueType.EXPLICIT_FAILURE.value,
    IssueType.AGENT_FAILED.value,
    IssueType.REGRESSION.value,
    IssueType.TDD_VIOLATION.value,
    IssueType.LOOP_DETECTED.value,
    IssueType.IRON_LAW_VIOLATION.value,
    IssueType.IRON_LAW_REPEATED.value,
}

LOOP_WINDOW = 10
LOOP_MIN_REPEATS = 3


class WorkflowIssue(BaseModel):
    """A scored finding produced by one detector."""

    model_config = ConfigDict(use_enum_values=True)

    type: IssueType
    confidence: float = Field(ge=0.0, le=1.0)
    message: str
    context: dict[str, Any] = Field(default_factory=dict)
    # Identifies the occurrence (e.g. the triggering entry) independent of time
    key: str = ""

    @property
    def signature(self) -> str:
        """Stable identity used to avoid acting on the same issue twice."""
        return f"{self.type}:{self.key}"


class ActiveAgent(BaseModel):
    id: str
    type: Optional[str] = None
    spawn_time: datetime
    started: bool = False
    completed: bool = False


class WorkflowAnalysis(BaseModel):
    """Snapshot verdict; recomputed on demand, never persisted."""

    model_config = ConfigDict(use_enum_values=True)

    health: HealthStatus
    issues: list[WorkflowIssue] = Field(default_factory=list)
    current_command: Optional[str] = None
    current_phase: Optional[str] = None
    phase_start_time: Optional[datetime] = None
    last_activity_time: Optional[datetime] = None
    milestone_timestamps: list[datetime] = Field(default_factory=list)
    active_agents: list[ActiveAgent] = Field(default_factory=list)
    expected_milestones: int = 0
    actual_milestones: int = 0
    chain_progress: dict[str, ChainStatus] = Field(default_factory=dict)


@dataclass
class WorkflowState:
    """Derived position of the workflow after folding every entry."""

    current_command: Optional[str] = None
    current_phase: Optional[str] = None
    phase_start_time: Optional[datetime] = None
    last_activity_time: Optional[datetime] = None
    milestone_timestamps: list[datetime] = field(default_factory=list)
    active_agents: dict[str, ActiveAgent] = field(default_factory=dict)
    actual_milestones: int = 0      # in the current phase
    total_milestones: int = 0
    chain_progress: dict[str, str] = field(
        default_factory=lambda: {cmd: ChainStatus.PENDING.value for cmd in COMMAND_CHAIN}
    )
    command_complete: bool = False
    command_failed: bool = False
    phase_complete: bool = False
    completed_phases: list[str] = field(default_factory=list)

    @property
    def command_finished(self) -> bool:
        return self.command_complete or self.command_failed

    @property
    def expected_milestones(self) -> int:
        if not self.current_phase:
            return 0
        return EXPECTED_MILESTONES.get(self.current_phase, 0)


def _apply(state: WorkflowState, entry: ParsedLogEntry) -> WorkflowState:
    """Advance ``state`` by one entry."""
    state.last_activity_time = entry.ts
    if state.current_command is None and entry.cmd:
        state.current_command = entry.cmd

    event = entry.event
    if event == WorkflowEvent.START:
        state.current_command = entry.cmd
        state.command_complete = False
        state.command_failed = False
        state.phase_complete = False
        if entry.cmd in state.chain_progress:
            state.chain_progress[entry.cmd] = ChainStatus.IN_PROGRESS.value
    elif event == WorkflowEvent.COMPLETE:
        state.command_complete = True
        if entry.cmd in state.chain_progress:
            state.chain_progress[entry.cmd] = ChainStatus.COMPLETE.value
    elif event == WorkflowEvent.FAILED:
        state.command_failed = True
        if entry.cmd in state.chain_progress:
            state.chain_progress[entry.cmd] = ChainStatus.FAILED.value
    elif event == WorkflowEvent.PHASE_START and entry.phase:
        state.current_phase = entry.phase
        state.phase_start_time = entry.ts
        state.phase_complete = False
        state.actual_milestones = 0
    elif event == WorkflowEvent.PHASE_COMPLETE:
        state.phase_complete = True
        if entry.phase and entry.phase not in state.completed_phases:
            state.completed_phases.append(entry.phase)
    elif event == WorkflowEvent.MILESTONE:
        state.milestone_timestamps.append(entry.ts)
        state.actual_milestones += 1
        state.total_milestones += 1
    elif event == WorkflowEvent.AGENT_SPAWN:
        agent_id = entry.data.get("agent_id") or (entry.agent.id if entry.agent else None)
        if agent_id:
            state.active_agents[str(agent_id)] = ActiveAgent(
                id=str(agent_id),
                type=entry.data.get("agent_type") or (entry.agent.type if entry.agent else None),
                spawn_time=entry.ts,
            )
    elif event == WorkflowEvent.AGENT_COMPLETE:
        agent_id = entry.data.get("agent_id") or (entry.agent.id if entry.agent else None)
        agent = state.active_agents.get(str(agent_id))
        if agent:
            agent.completed = True

    # Any entry tagged with a spawned agent's id is activity from that agent
    if entry.agent and event != WorkflowEvent.AGENT_SPAWN:
        agent = state.active_agents.get(entry.agent.id)
        if agent:
            agent.started = True

    return state


def build_state(entries: list[ParsedLogEntry]) -> WorkflowState:
    """Fold the full entry sequence into a WorkflowState."""
    state = WorkflowState()
    for entry in entries:
        _apply(state, entry)
    return state


def calculate_health(issues: list[WorkflowIssue]) -> HealthStatus:
    if any(i.confidence > 0.9 and i.type in CRITICAL_ISSUE_TYPES for i in issues):
        return HealthStatus.CRITICAL
    if any(i.confidence >= 0.7 for i in issues):
        return HealthStatus.WARNING
    return HealthStatus.HEALTHY


def _ts_key(entry: ParsedLogEntry) -> str:
    return entry.ts.isoformat()


def _minutes(seconds: float) -> int:
    return round(seconds / 60)


Detector = Callable[[list[ParsedLogEntry], WorkflowState, datetime], list[WorkflowIssue]]


class WorkflowAnalyzer:
    """Scores workflow health from the event log."""

    def __init__(self, thresholds: Optional[AnalyzerThresholds] = None):
        self.thresholds = thresholds or AnalyzerThresholds()
        self._detectors: list[Detector] = [
            # negative signals
            self.detect_loops,
            self.detect_stuck_phase,
            self.detect_regression,
            self.detect_out_of_order,
            self.detect_chain_violation,
            self.detect_tdd_violation,
            self.detect_explicit_failures,
            self.detect_agent_failures,
            self.detect_iron_law_violations,
            # positive signal erosion
            self.detect_silence,
            self.detect_missing_milestones,
            self.detect_declining_velocity,
            self.detect_incomplete_outputs,
            self.detect_agent_silence,
            # hard stops
            self.detect_abrupt_stop,
            self.detect_partial_completion,
            self.detect_abandoned_agents,
        ]

    def analyze(
        self,
        entries: list[ParsedLogEntry],
        now: Optional[datetime] = None,
    ) -> WorkflowAnalysis:
        now = now or datetime.now(UTC)
        state = build_state(entries)

        issues: list[WorkflowIssue] = []
        for detector in self._detectors:
            with ErrorContext(
                f"detector {detector.__name__}",
                raise_on_error=False,
                logger_instance=logger,
                log_level=logging.WARNING,
            ):
                issues.extend(detector(entries, state, now))

        return WorkflowAnalysis(
            health=calculate_health(issues),
            issues=issues,
            current_command=state.current_command,
            current_phase=state.current_phase,
            phase_start_time=state.phase_start_time,
            last_activity_time=state.last_activity_time,
            milestone_timestamps=state.milestone_timestamps,
            active_agents=list(state.active_agents.values()),
            expected_milestones=state.expected_milestones,
            actual_milestones=state.actual_milestones,
            chain_progress=dict(state.chain_progress),
        )

    # -- negative signals --------------------------------------------------

    def detect_loops(self, entries, state, now) -> list[WorkflowIssue]:
        """Consecutive identical milestones among the most recent entries."""
        milestones = [e for e in entries[-LOOP_WINDOW:] if e.event == WorkflowEvent.MILESTONE]

        max_repeats = 0
        max_run_start: Optional[ParsedLogEntry] = None
        run = 0
        run_start: Optional[ParsedLogEntry] = None
        last_signature = None
        for entry in milestones:
            signature = json.dumps(entry.data, sort_keys=True, default=str)
            if signature == last_signature:
                run += 1
            else:
                run = 1
                run_start = entry
                last_signature = signature
            if run > max_repeats:
                max_repeats = run
                max_run_start = run_start

        if max_repeats < LOOP_MIN_REPEATS:
            return []
        confidence = min(0.98, 0.85 + (max_repeats - LOOP_MIN_REPEATS) * 0.03)
        return [WorkflowIssue(
            type=IssueType.LOOP_DETECTED,
            confidence=confidence,
            message=f"Same action repeated {max_repeats} times consecutively",
            context={"repeat_count": max_repeats, "milestone": max_run_start.data},
            key=_ts_key(max_run_start),
        )]

    def detect_stuck_phase(self, entries, state, now) -> list[WorkflowIssue]:
        if not state.phase_start_time or state.phase_complete or state.command_finished:
            return []
        elapsed = (now - state.phase_start_time).total_seconds()
        if elapsed <= self.thresholds.phase_stuck_seconds:
            return []
        return [WorkflowIssue(
            type=IssueType.PHASE_STUCK,
            confidence=0.85,
            message=(
                f"Phase {state.current_phase} has been running for "
                f"{_minutes(elapsed)} minutes without completion"
            ),
            context={"phase": state.current_phase, "elapsed_seconds": elapsed},
            key=f"{state.current_phase}@{state.phase_start_time.isoformat()}",
        )]

    def detect_regression(self, entries, state, now) -> list[WorkflowIssue]:
        """A FAILED event after any phase had already completed."""
        issues = []
        completed_phase = None
        had_complete = False
        for entry in entries:
            if entry.event == WorkflowEvent.PHASE_COMPLETE:
                had_complete = True
                completed_phase = entry.phase
            elif entry.event == WorkflowEvent.FAILED and had_complete:
                issues.append(WorkflowIssue(
                    type=IssueType.REGRESSION,
                    confidence=0.9,
                    message=f"Workflow failed after {completed_phase} phase completed successfully",
                    context={"completed_phase": completed_phase, "error": entry.data.get("error")},
                    key=_ts_key(entry),
                ))
        return issues

    def detect_out_of_order(self, entries, state, now) -> list[WorkflowIssue]:
        issues = []
        seen: list[str] = []
        for entry in entries:
            if entry.event != WorkflowEvent.PHASE_START or not entry.phase:
                continue
            index = PHASE_ORDER.index(entry.phase) if entry.phase in PHASE_ORDER else -1
            last_index = PHASE_ORDER.index(seen[-1]) if seen and seen[-1] in PHASE_ORDER else -1

            if index != -1 and last_index != -1 and index < last_index:
                issues.append(WorkflowIssue(
                    type=IssueType.OUT_OF_ORDER,
                    confidence=0.85,
                    message=(
                        f"Phase {entry.phase} started after {seen[-1]}, "
                        f"expected order: {' -> '.join(PHASE_ORDER)}"
                    ),
                    context={"expected": PHASE_ORDER, "actual_order": seen + [entry.phase]},
                    key=f"reversed@{_ts_key(entry)}",
                ))

            if index > 0 and PHASE_ORDER[index - 1] not in seen:
                missing = PHASE_ORDER[index - 1]
                issues.append(WorkflowIssue(
                    type=IssueType.OUT_OF_ORDER,
                    confidence=0.9,
                    message=f"Phase {entry.phase} started without completing {missing}",
                    context={"started": entry.phase, "missing": missing},
                    key=f"skipped@{_ts_key(entry)}",
                ))

            if entry.phase not in seen:
                seen.append(entry.phase)
        return issues

    def detect_chain_violation(self, entries, state, now) -> list[WorkflowIssue]:
        """A command started before any of its prerequisite commands completed.

        When no prerequisite command appears in the history at all the log may
        simply begin mid-session, so the issue is raised at lower confidence.
        """
        issues = []
        reported: set[str] = set()
        completed: set[str] = set()
        mentioned: set[str] = set()
        for entry in entries:
            if entry.event == WorkflowEvent.START and entry.cmd in CHAIN_PREREQUISITES:
                prerequisites = CHAIN_PREREQUISITES[entry.cmd]
                if entry.cmd not in reported and not any(p in completed for p in prerequisites):
                    has_context = any(p in mentioned for p in prerequisites)
                    issues.append(WorkflowIssue(
                        type=IssueType.CHAIN_BROKEN,
                        confidence=0.8 if has_context else 0.6,
                        message=(
                            f"Command {entry.cmd} started without completing prerequisite: "
                            f"{' or '.join(prerequisites)}"
                        ),
                        context={
                            "command": entry.cmd,
                            "expected_prerequisites": prerequisites,
                            "prior_context": has_context,
                        },
                        key=f"{entry.cmd}@{_ts_key(entry)}",
                    ))
                    reported.add(entry.cmd)
            mentioned.add(entry.cmd)
            if entry.event == WorkflowEvent.COMPLETE:
                completed.add(entry.cmd)
        return issues

    def detect_tdd_violation(self, entries, state, now) -> list[WorkflowIssue]:
        """GREEN phase started before RED within the same build run."""
        issues = []
        in_build = False
        seen_red = False
        for entry in entries:
            if entry.cmd == "build" and entry.event == WorkflowEvent.START:
                in_build = True
                seen_red = False
            if entry.event != WorkflowEvent.PHASE_START or not (in_build or entry.cmd == "build"):
                continue
            if entry.phase == "RED":
                seen_red = True
            elif entry.phase == "GREEN" and not seen_red:
                issues.append(WorkflowIssue(
                    type=IssueType.TDD_VIOLATION,
                    confidence=0.95,
                    message=(
                        "GREEN phase started without completing RED phase first "
                        "(write tests before implementation)"
                    ),
                    context={"violation": "green_before_red"},
                    key=_ts_key(entry),
                ))
        return issues

    def detect_explicit_failures(self, entries, state, now) -> list[WorkflowIssue]:
        return [
            WorkflowIssue(
                type=IssueType.EXPLICIT_FAILURE,
                confidence=0.95,
                message=f"Command {entry.cmd} failed: {entry.data.get('error') or 'Unknown error'}",
                context={"command": entry.cmd, "error": entry.data.get("error")},
                key=f"{entry.cmd}@{_ts_key(entry)}",
            )
            for entry in entries
            if entry.event == WorkflowEvent.FAILED
        ]

    def detect_agent_failures(self, entries, state, now) -> list[WorkflowIssue]:
        issues = []
        for entry in entries:
            if entry.event != WorkflowEvent.AGENT_COMPLETE or entry.data.get("status") != "failed":
                continue
            agent_id = entry.data.get("agent_id")
            issues.append(WorkflowIssue(
                type=IssueType.AGENT_FAILED,
                confidence=0.9,
                message=(
                    f"Agent {entry.data.get('agent_type') or agent_id} failed: "
                    f"{entry.data.get('error') or 'Unknown error'}"
                ),
                context={"agent_id": agent_id, "error": entry.data.get("error")},
                key=f"{agent_id}@{_ts_key(entry)}",
            ))
        return issues

    def detect_iron_law_violations(self, entries, state, now) -> list[WorkflowIssue]:
        """Rule violations reported by IRON_LAW_CHECK events.

        A law violated again is reported as repeated, with higher confidence.
        """
        issues = []
        counts: dict[Any, int] = {}
        for entry in entries:
            if entry.event != WorkflowEvent.IRON_LAW_CHECK:
                continue
            violations = entry.data.get("violations") or []
            for violation in violations:
                if not isinstance(violation, dict):
                    continue
                law = violation.get("law")
                message = violation.get("message", "")
                counts[law] = counts.get(law, 0) + 1
                count = counts[law]
                if count >= 2:
                    issues.append(WorkflowIssue(
                        type=IssueType.IRON_LAW_REPEATED,
                        confidence=0.97,
                        message=f"IRON LAW #{law} violated {count} times: {message}",
                        context={"law": law, "message": message, "count": count},
                        key=f"{law}@{_ts_key(entry)}",
                    ))
                else:
                    issues.append(WorkflowIssue(
                        type=IssueType.IRON_LAW_VIOLATION,
                        confidence=0.93,
                        message=f"IRON LAW #{law} violated: {message}",
                        context={"law": law, "message": message},
                        key=f"{law}@{_ts_key(entry)}",
                    ))
        return issues

    # -- positive signal erosion ------------------------------------------

    def detect_silence(self, entries, state, now) -> list[WorkflowIssue]:
        if not state.last_activity_time or state.command_finished:
            return []
        if not state.current_command and not state.current_phase:
            return []

        threshold = self.thresholds.silence_seconds
        elapsed = (now - state.last_activity_time).total_seconds()
        if elapsed <= threshold:
            return []
        confidence = min(0.9, 0.7 + (elapsed / threshold - 1) * 0.1)
        active = state.current_command or state.current_phase or "workflow"
        return [WorkflowIssue(
            type=IssueType.SILENCE,
            confidence=confidence,
            message=f"No activity for {_minutes(elapsed)} minutes while {active} is active",
            context={
                "command": state.current_command,
                "phase": state.current_phase,
                "silence_seconds": elapsed,
            },
            key=state.last_activity_time.isoformat(),
        )]

    def detect_missing_milestones(self, entries, state, now) -> list[WorkflowIssue]:
        issues = []
        phase = None
        milestones = 0
        for entry in entries:
            if entry.event == WorkflowEvent.PHASE_START and entry.phase:
                phase = entry.phase
                milestones = 0
            elif entry.event == WorkflowEvent.MILESTONE:
                milestones += 1
            elif entry.event == WorkflowEvent.PHASE_COMPLETE and phase:
                expected = EXPECTED_MILESTONES.get(phase, 0)
                if expected > 0 and milestones < expected:
                    issues.append(WorkflowIssue(
                        type=IssueType.MISSING_MILESTONES,
                        confidence=0.8,
                        message=(
                            f"Phase {phase} completed with {milestones} milestones, "
                            f"expected at least {expected}"
                        ),
                        context={"phase": phase, "actual": milestones, "expected": expected},
                        key=f"{phase}@{_ts_key(entry)}",
                    ))
        return issues

    def detect_declining_velocity(self, entries, state, now) -> list[WorkflowIssue]:
        """Gaps between milestones growing across the run (needs 4+ milestones)."""
        stamps = state.milestone_timestamps
        if len(stamps) < 4:
            return []

        gaps = [(b - a).total_seconds() for a, b in zip(stamps, stamps[1:])]
        comparisons = len(gaps) - 1
        increasing = sum(1 for a, b in zip(gaps, gaps[1:]) if b > a)
        if increasing < max(1, (comparisons + 1) // 2):
            return []

        return [WorkflowIssue(
            type=IssueType.DECLINING_VELOCITY,
            confidence=min(0.6, 0.4 + increasing * 0.1),
            message="Time between milestones is increasing, workflow may be slowing down",
            context={"gaps_seconds": gaps, "increasing_count": increasing},
            key=stamps[0].isoformat(),
        )]

    def detect_incomplete_outputs(self, entries, state, now) -> list[WorkflowIssue]:
        issues = []
        for entry in entries:
            if entry.event != WorkflowEvent.COMPLETE or entry.cmd not in EXPECTED_OUTPUTS:
                continue
            outputs = entry.data.get("outputs")
            if isinstance(outputs, list) and outputs:
                continue
            issues.append(WorkflowIssue(
                type=IssueType.INCOMPLETE_OUTPUTS,
                confidence=0.75,
                message=f"Command {entry.cmd} completed without expected outputs",
                context={"command": entry.cmd},
                key=f"{entry.cmd}@{_ts_key(entry)}",
            ))
        return issues

    def detect_agent_silence(self, entries, state, now) -> list[WorkflowIssue]:
        issues = []
        for agent in state.active_agents.values():
            if agent.started or agent.completed:
                continue
            elapsed = (now - agent.spawn_time).total_seconds()
            if elapsed > self.thresholds.agent_silence_seconds:
                issues.append(WorkflowIssue(
                    type=IssueType.AGENT_SILENCE,
                    confidence=0.8,
                    message=f"Agent {agent.type} ({agent.id}) spawned but hasn't started producing entries",
                    context={"agent_id": agent.id, "agent_type": agent.type, "silence_seconds": elapsed},
                    key=agent.id,
                ))
        return issues

    # -- hard stops --------------------------------------------------------

    def detect_abrupt_stop(self, entries, state, now) -> list[WorkflowIssue]:
        if not state.last_activity_time or state.command_finished or state.total_milestones == 0:
            return []
        elapsed = (now - state.last_activity_time).total_seconds()
        if elapsed <= self.thresholds.abrupt_stop_seconds:
            return []
        return [WorkflowIssue(
            type=IssueType.ABRUPT_STOP,
            confidence=0.85,
            message=f"Workflow was making progress but stopped abruptly {_minutes(elapsed)} minutes ago",
            context={
                "last_activity": state.last_activity_time.isoformat(),
                "milestones_before_stop": state.total_milestones,
            },
            key=state.last_activity_time.isoformat(),
        )]

    def detect_partial_completion(self, entries, state, now) -> list[WorkflowIssue]:
        if state.command_finished or not state.completed_phases or not state.phase_start_time:
            return []
        if state.phase_complete:
            return []
        elapsed = (now - state.phase_start_time).total_seconds()
        if elapsed <= self.thresholds.phase_stuck_seconds:
            return []
        return [WorkflowIssue(
            type=IssueType.PARTIAL_COMPLETION,
            confidence=0.8,
            message=(
                f"Workflow partially complete ({', '.join(state.completed_phases)} done) "
                f"but {state.current_phase} phase stalled"
            ),
            context={"completed_phases": list(state.completed_phases), "stuck_phase": state.current_phase},
            key=f"{state.current_phase}@{state.phase_start_time.isoformat()}",
        )]

    def detect_abandoned_agents(self, entries, state, now) -> list[WorkflowIssue]:
        issues = []
        for agent in state.active_agents.values():
            if not agent.started or agent.completed:
                continue
            elapsed = (now - agent.spawn_time).total_seconds()
            if elapsed > self.thresholds.agent_abandoned_seconds:
                issues.append(WorkflowIssue(
                    type=IssueType.ABANDONED_AGENT,
                    confidence=0.8,
                    message=f"Agent {agent.type} ({agent.id}) started but never completed",
                    context={"agent_id": agent.id, "agent_type": agent.type, "running_seconds": elapsed},
                    key=agent.id,
                ))
        return issues
