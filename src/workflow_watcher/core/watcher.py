"""The watcher process: one per state directory, wiring every component."""

import asyncio
import logging
import subprocess
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..analyzer.supervisor import WorkflowSupervisor
from ..analyzer.workflow_analyzer import WorkflowAnalyzer
from ..detectors.advisory import AdvisoryAnalyzer
from ..detectors.rules import RuleEngine
from ..eventlog.reader import EventLogReader
from ..llm.base import LLMBackend
from ..llm.litellm_backend import LiteLLMBackend
from ..monitors.git_monitor import CIStatus, GitMonitor, PRCheckResult
from ..monitors.log_monitor import LogMonitor
from ..monitors.test_monitor import TestMonitor, analyze_test_output
from ..queue.liveness import PidFileLock, ProcessLivenessChecker
from ..queue.task_queue import TaskQueue
from ..utils.error_handling import safe_call
from ..utils.subprocess_utils import run_command
from .config import CONFIG_FILENAME, WatcherConfig, load_config
from .notifier import LoggingNotifier, Notification, Notifier, ScriptNotifier, Urgency
from .task import Priority, Task

logger = logging.getLogger(__name__)

PID_FILENAME = "watcher.pid"


class WatcherState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class WatcherStartupError(RuntimeError):
    """The task store or the PID file could not be written."""


@dataclass
class HealthCheckResult:
    passed: bool
    failure_count: int
    message: str


class Watcher:
    """
    Supervises one workflow from its state directory.

    Lifecycle is Idle -> Running -> Stopped. Only one watcher may run per
    state directory; ``start()`` returns False while another live process
    holds the PID file.
    """

    def __init__(
        self,
        state_dir: Path,
        project_dir: Optional[Path] = None,
        config: Optional[WatcherConfig] = None,
        notifier: Optional[Notifier] = None,
        llm_backend: Optional[LLMBackend] = None,
        liveness_checker: Optional[ProcessLivenessChecker] = None,
    ):
        self.state_dir = Path(state_dir)
        self.project_dir = Path(project_dir) if project_dir else self.state_dir.parent
        self.config_path = self.state_dir / CONFIG_FILENAME
        self.lock = PidFileLock(self.state_dir / PID_FILENAME, checker=liveness_checker)

        self._config_override = config
        self._notifier_override = notifier
        self._llm_backend = llm_backend

        self.config: WatcherConfig = config or WatcherConfig()
        self.notifier: Notifier = notifier or LoggingNotifier()
        self._state = WatcherState.IDLE
        self._stop_event: Optional[asyncio.Event] = None
        self._advised_lines = 0
        self._clear_components()

    def _clear_components(self) -> None:
        self.queue: Optional[TaskQueue] = None
        self.rule_engine: Optional[RuleEngine] = None
        self.log_monitor: Optional[LogMonitor] = None
        self.test_monitor: Optional[TestMonitor] = None
        self.git_monitor: Optional[GitMonitor] = None
        self.advisory: Optional[AdvisoryAnalyzer] = None
        self.supervisor: Optional[WorkflowSupervisor] = None

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == WatcherState.RUNNING

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> bool:
        """Take the lock, load config and wire components.

        Returns False if another watcher is alive. Raises WatcherStartupError
        if the PID file or the task store cannot be written.
        """
        if self.is_running:
            return True

        try:
            acquired = self.lock.acquire()
        except OSError as e:
            logger.error(f"Cannot write PID file {self.lock.pid_file}: {e}")
            raise WatcherStartupError(f"Cannot write PID file: {e}") from e
        if not acquired:
            logger.warning(f"Another watcher is running (PID {self.lock.read_pid()})")
            return False

        self.config = self._config_override or load_config(self.config_path)
        if self._notifier_override is None and self.config.notify_script:
            self.notifier = ScriptNotifier(self.config.notify_script)

        try:
            self.queue = TaskQueue(
                self.state_dir,
                max_queue_size=self.config.max_queue_size,
                task_expiry_hours=self.config.task_expiry_hours,
            )
        except OSError as e:
            self.lock.release()
            logger.error(f"Cannot open task store in {self.state_dir}: {e}")
            raise WatcherStartupError(f"Cannot open task store: {e}") from e

        self.rule_engine = RuleEngine(self.config.loop_detection_threshold)
        self.log_monitor = LogMonitor(self.queue, self.rule_engine)
        self.test_monitor = TestMonitor(self.queue)
        self.git_monitor = GitMonitor(self.queue)

        if self.config.use_llm_analysis:
            backend = self._llm_backend or LiteLLMBackend(
                model=self.config.llm.model,
                api_key=self.config.llm.api_key,
                api_base=self.config.llm.api_base,
                timeout=self.config.llm.timeout,
            )
            self.advisory = AdvisoryAnalyzer(
                backend,
                rule_engine=self.rule_engine,
                confidence_threshold=self.config.llm_confidence_threshold,
                max_log_chars=self.config.llm.max_log_chars,
                max_tokens=self.config.llm.max_tokens,
            )

        if self.config.enabled and self.config.monitors.logs:
            reader = EventLogReader(self.state_dir, poll_interval=self.config.tail_interval_ms / 1000)
            self.supervisor = WorkflowSupervisor(
                reader,
                self.queue,
                notifier=self.notifier,
                analyzer=WorkflowAnalyzer(self.config.analyzer),
            )
            await self.supervisor.start()

        self._stop_event = asyncio.Event()
        self._advised_lines = 0
        self._state = WatcherState.RUNNING
        logger.info(f"Watcher started (PID {self.lock.pid}, state dir {self.state_dir})")
        return True

    async def stop(self) -> None:
        """Stop and release the lock. Safe to call more than once."""
        if self._state == WatcherState.STOPPED:
            return
        was_running = self._state == WatcherState.RUNNING
        self._state = WatcherState.STOPPED
        if self._stop_event is not None:
            self._stop_event.set()

        if self.supervisor is not None:
            await self.supervisor.stop()
        self.lock.release()
        self._clear_components()
        if was_running:
            logger.info("Watcher stopped")

    async def run_forever(self) -> None:
        """Run maintenance every ``check_interval_seconds`` until stopped."""
        if not self.is_running:
            raise RuntimeError("Watcher is not running")

        interval = self.config.check_interval_seconds
        while self.is_running:
            try:
                await self.tick()
            except Exception as e:
                logger.exception(f"Error in watcher loop: {e}")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def tick(self, now: Optional[datetime] = None) -> None:
        """One maintenance pass."""
        if not self.is_running:
            return
        now = now or datetime.now(UTC)
        queue = self.queue

        if self.config.monitors.logs:
            safe_call(
                self.log_monitor.check_and_report_stuck,
                self.config.stuck_timeout_seconds,
                error_message="Stuck check failed",
            )
        if self.supervisor is not None:
            self.supervisor.check(now)
        if self.advisory is not None:
            await self.run_advisory_pass()

        expired = await asyncio.to_thread(queue.expire_stale, now)
        archived = await asyncio.to_thread(queue.archive_terminal, now)
        if expired or archived:
            logger.info(f"Queue maintenance: {expired} expired, {archived} archived")

    async def run_advisory_pass(self) -> Optional[Task]:
        """Ask the advisory analyzer about output seen since the last pass."""
        if self.advisory is None or self.log_monitor is None:
            return None
        seen = self.log_monitor.lines_seen
        if seen == 0 or seen == self._advised_lines:
            return None
        self._advised_lines = seen

        queue = self.queue
        recent = self.log_monitor.get_recent_logs(self.log_monitor.max_buffer_size)
        task_input = await self.advisory.analyze_with_model(recent)
        if task_input is None:
            return None
        try:
            return await asyncio.to_thread(queue.enqueue, task_input)
        except OSError as e:
            logger.error(f"Failed to queue advisory task: {e}")
            return None

    # -- health check ------------------------------------------------------

    async def run_health_check(self) -> HealthCheckResult:
        """Run the project's test command once and queue its failures as critical."""
        command = self.config.test_command
        logger.info(f"Running health check: {command}")
        self.notifier.notify(Notification(
            title="Health Check", message=f"Running {command}...", urgency=Urgency.INFO,
        ))

        try:
            completed = await asyncio.to_thread(
                run_command,
                command,
                cwd=self.project_dir,
                timeout=self.config.health_check_timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            return self._health_error(
                f"Test command timed out after {self.config.health_check_timeout_seconds}s"
            )
        except (OSError, ValueError) as e:
            return self._health_error(str(e))

        result = analyze_test_output(completed.output)
        if result.has_failures and result.failed_tests:
            if self.test_monitor is not None:
                await asyncio.to_thread(self.test_monitor.report_failures, result, Priority.CRITICAL)
            message = f"{len(result.failed_tests)} test(s) failing"
            logger.warning(f"Health check failed: {message}")
            self.notifier.notify(Notification(
                title="Health Check Failed", message=message, urgency=Urgency.CRITICAL,
            ))
            return HealthCheckResult(passed=False, failure_count=len(result.failed_tests), message=message)

        if completed.returncode != 0:
            return self._health_error(f"Test command exited with code {completed.returncode}")

        logger.info("Health check passed")
        self.notifier.notify(Notification(
            title="Health Check Passed", message="All tests passing", urgency=Urgency.INFO,
        ))
        return HealthCheckResult(passed=True, failure_count=0, message="All tests passing")

    def _health_error(self, reason: str) -> HealthCheckResult:
        logger.error(f"Health check error: {reason}")
        self.notifier.notify(Notification(
            title="Health Check Error", message="Could not run tests", urgency=Urgency.CRITICAL,
        ))
        return HealthCheckResult(passed=False, failure_count=0, message=f"Error: {reason}")

    # -- observations ------------------------------------------------------

    def _accepts(self, monitor: str) -> bool:
        return self.is_running and self.config.enabled and getattr(self.config.monitors, monitor)

    def process_log_line(self, line: str) -> list[Task]:
        if not self._accepts("logs"):
            return []
        return self.log_monitor.process_line(line)

    def process_test_output(self, output: str) -> list[Task]:
        if not self._accepts("tests"):
            return []
        return self.test_monitor.observe(output)

    def process_ci_status(self, status: CIStatus) -> Optional[Task]:
        if not self._accepts("git"):
            return None
        return self.git_monitor.observe_ci_status(status)

    def process_pr_check(self, check: PRCheckResult) -> Optional[Task]:
        if not self._accepts("git"):
            return None
        return self.git_monitor.observe_pr_check(check)

    def process_push_output(self, output: str, branch: str) -> Optional[Task]:
        if not self._accepts("git"):
            return None
        return self.git_monitor.observe_push_output(output, branch)

    def status(self) -> dict[str, Any]:
        info: dict[str, Any] = {
            "state": self._state.value,
            "pid": self.lock.pid if self.is_running else self.lock.holder(),
            "state_dir": str(self.state_dir),
        }
        if self.queue is not None:
            info["pending"] = self.queue.pending_count()
            info["by_priority"] = self.queue.count_by_priority()
        if self.supervisor is not None and self.supervisor.last_analysis is not None:
            info["health"] = self.supervisor.last_analysis.health
        return info
