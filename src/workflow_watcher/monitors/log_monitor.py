"""Watches raw agent output for rule-engine anomalies."""

import logging
import time
from collections import deque
from typing import Callable, Optional

from ..core.task import AnomalyType, CreateTaskInput, Priority, Task, TaskSource
from ..detectors.rules import RuleEngine, RuleMatch
from ..queue.task_queue import TaskQueue

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 100


class LogMonitor:
    """
    Feeds each output line through the rule engine and queues what it finds.

    - A loop is reported once per run of identical lines, not on every repeat
    - Silence is reported once per silent period
    - Queue failures are logged; they never propagate to the caller
    """

    def __init__(
        self,
        queue: TaskQueue,
        rule_engine: Optional[RuleEngine] = None,
        max_buffer_size: int = DEFAULT_BUFFER_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.queue = queue
        self.rule_engine = rule_engine or RuleEngine()
        self.max_buffer_size = max_buffer_size
        self._clock = clock
        self._buffer: deque[str] = deque(maxlen=max_buffer_size)
        self._last_activity = clock()
        self._stuck_reported = False
        self._loop_reported = False
        self._lines_seen = 0

    @property
    def lines_seen(self) -> int:
        return self._lines_seen

    @property
    def last_activity_time(self) -> float:
        return self._last_activity

    def process_line(self, line: str) -> list[Task]:
        """Buffer one line of output and queue any anomalies it triggers."""
        stripped = line.strip()
        if not stripped:
            return []

        self._last_activity = self._clock()
        self._stuck_reported = False
        self._buffer.append(stripped)
        self._lines_seen += 1

        created = []
        matches = self.rule_engine.analyze_window(list(self._buffer))
        if not any(m.anomaly_type == AnomalyType.AGENT_LOOP for m in matches):
            self._loop_reported = False

        for match in matches:
            if match.anomaly_type == AnomalyType.AGENT_LOOP:
                if self._loop_reported:
                    continue
                self._loop_reported = True
            task = self._enqueue(match.to_task_input(TaskSource.LOG_MONITOR))
            if task:
                created.append(task)
        return created

    def get_recent_logs(self, count: int) -> str:
        if count <= 0:
            return ""
        return "\n".join(list(self._buffer)[-count:])

    def is_stuck(self, timeout_seconds: float) -> bool:
        return self._clock() - self._last_activity >= timeout_seconds

    def check_and_report_stuck(self, timeout_seconds: float) -> Optional[Task]:
        """Queue an agent_stuck task the first time output goes quiet."""
        if self._stuck_reported or not self.is_stuck(timeout_seconds):
            return None
        self._stuck_reported = True

        idle = self._clock() - self._last_activity
        logger.warning(f"No agent output for {idle:.0f}s")
        return self._enqueue(CreateTaskInput(
            priority=Priority.HIGH,
            source=TaskSource.LOG_MONITOR,
            anomaly_type=AnomalyType.AGENT_STUCK,
            prompt=(
                f"Agent appears stuck - no output for {timeout_seconds:.0f}+ seconds. "
                "Investigate if process is hung or waiting for input."
            ),
            suggested_agent="debugger",
            context={"log_excerpt": self.get_recent_logs(10), "idle_seconds": idle},
        ))

    def analyze_aggregated(self) -> Optional[Task]:
        """Run the buffered output through the rules as one blob."""
        aggregated = self.get_recent_logs(self.max_buffer_size)
        if not aggregated:
            return None
        match: Optional[RuleMatch] = self.rule_engine.analyze(aggregated)
        if match is None:
            return None
        return self._enqueue(match.to_task_input(TaskSource.LOG_MONITOR))

    def reset(self) -> None:
        self._buffer.clear()
        self._last_activity = self._clock()
        self._stuck_reported = False
        self._loop_reported = False
        self._lines_seen = 0

    def _enqueue(self, task_input: CreateTaskInput) -> Optional[Task]:
        try:
            return self.queue.enqueue(task_input)
        except OSError as e:
            logger.error(f"Failed to queue {task_input.anomaly_type} task: {e}")
            return None
