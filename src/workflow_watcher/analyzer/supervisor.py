"""Ties the event log to analysis, notifications and the task queue."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Callable, Optional

from ..core.notifier import LoggingNotifier, Notification, Notifier, Urgency
from ..core.task import CreateTaskInput
from ..eventlog.models import ParsedLogEntry
from ..eventlog.reader import EventLogReader
from ..queue.task_queue import TaskQueue
from ..utils.error_handling import log_and_ignore
from .interventions import Intervention, InterventionGenerator
from .workflow_analyzer import WorkflowAnalysis, WorkflowAnalyzer

logger = logging.getLogger(__name__)

InterventionCallback = Callable[[Intervention], None]


class WorkflowSupervisor:
    """
    Watches the event log and acts on newly detected issues.

    - On start, the existing log is loaded and the issues it already shows are
      marked handled, so a restart does not re-announce old problems
    - Each new entry triggers a full re-analysis; only issues whose signature
      has not been seen produce an intervention
    - Queue writes run in a worker thread so the tail loop is never blocked
    """

    def __init__(
        self,
        reader: EventLogReader,
        queue: TaskQueue,
        notifier: Optional[Notifier] = None,
        analyzer: Optional[WorkflowAnalyzer] = None,
        generator: Optional[InterventionGenerator] = None,
    ):
        self.reader = reader
        self.queue = queue
        self.notifier = notifier or LoggingNotifier()
        self.analyzer = analyzer or WorkflowAnalyzer()
        self.generator = generator or InterventionGenerator()

        self.entries: list[ParsedLogEntry] = []
        self.last_analysis: Optional[WorkflowAnalysis] = None
        self._handled: set[str] = set()
        self._callbacks: list[InterventionCallback] = []
        self._pending_writes: set[asyncio.Task] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def on_intervention(self, callback: InterventionCallback) -> None:
        self._callbacks.append(callback)

    async def start(self, now: Optional[datetime] = None) -> None:
        if self._running:
            return
        entries, offset = self.reader.read_from(0)
        self.entries = entries
        self.last_analysis = self.analyzer.analyze(self.entries, now)
        self._handled.update(issue.signature for issue in self.last_analysis.issues)
        logger.info(
            f"Supervisor loaded {len(entries)} entries "
            f"({len(self._handled)} known issue(s), health: {self.last_analysis.health})"
        )
        self.reader.start_tailing(self.handle_entry, offset=offset)
        self._running = True

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self.reader.stop_tailing()
        await self.drain()

    async def drain(self) -> None:
        """Wait for queued task writes to finish."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    def handle_entry(self, entry: ParsedLogEntry) -> None:
        self.entries.append(entry)
        self.check()

    def check(self, now: Optional[datetime] = None) -> WorkflowAnalysis:
        """Re-analyse and act on issues not handled before."""
        analysis = self.analyzer.analyze(self.entries, now or datetime.now(UTC))
        self.last_analysis = analysis

        for issue in analysis.issues:
            if issue.signature in self._handled:
                continue
            self._handled.add(issue.signature)

            intervention = self.generator.generate(issue)
            logger.info(
                f"New issue {issue.type} ({issue.confidence:.2f}) -> {intervention.response_type}",
                extra={"command": analysis.current_command, "phase": analysis.current_phase},
            )
            for callback in self._callbacks:
                try:
                    callback(intervention)
                except Exception as e:
                    log_and_ignore(e, "Intervention callback failed", logger_instance=logger)

            self.notifier.notify(intervention.notification)
            if intervention.task is not None:
                self._submit(intervention.task)
        return analysis

    def _submit(self, task_input: CreateTaskInput) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._enqueue(task_input)
            return
        write = loop.create_task(asyncio.to_thread(self._enqueue, task_input))
        self._pending_writes.add(write)
        write.add_done_callback(self._pending_writes.discard)

    def _enqueue(self, task_input: CreateTaskInput) -> None:
        try:
            self.queue.enqueue(task_input)
        except OSError as e:
            logger.error(f"Failed to queue remediation task: {e}")
            self.notifier.notify(Notification(
                title="Task creation failed",
                message=f"Could not queue {task_input.anomaly_type} task: {e}",
                urgency=Urgency.CRITICAL,
            ))
