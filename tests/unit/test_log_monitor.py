"""Tests for LogMonitor."""

from unittest.mock import MagicMock

import pytest

from workflow_watcher.core.task import AnomalyType
from workflow_watcher.detectors.rules import RuleEngine
from workflow_watcher.monitors.log_monitor import LogMonitor


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monitor(queue, clock):
    return LogMonitor(queue, RuleEngine(loop_threshold=3), max_buffer_size=5, clock=clock)


def test_error_line_queues_task(monitor, queue):
    created = monitor.process_line("ImportError: cannot import name 'x'")

    assert len(created) == 1
    assert created[0].anomaly_type == AnomalyType.EXCEPTION
    assert created[0].source == "log-monitor"
    assert queue.pending_count() == 1


def test_quiet_line_queues_nothing(monitor, queue):
    assert monitor.process_line("Compiling module a") == []
    assert monitor.process_line("   ") == []
    assert queue.pending_count() == 0


def test_loop_reported_once_per_run(monitor, queue):
    results = [monitor.process_line("Tool: Read") for _ in range(6)]

    loops = [t for batch in results for t in batch if t.anomaly_type == AnomalyType.AGENT_LOOP]
    assert len(loops) == 1
    assert loops[0].context.tool_name == "Read"

    monitor.process_line("Tool: Write")
    again = [monitor.process_line("Tool: Read") for _ in range(3)]
    assert sum(len(batch) for batch in again) == 1


def test_buffer_is_bounded(monitor):
    for i in range(8):
        monitor.process_line(f"line {chr(97 + i)}")

    assert monitor.get_recent_logs(100).splitlines() == ["line d", "line e", "line f", "line g", "line h"]
    assert monitor.get_recent_logs(2) == "line g\nline h"
    assert monitor.get_recent_logs(0) == ""
    assert monitor.lines_seen == 8


def test_stuck_reported_once_per_silence(monitor, queue, clock):
    monitor.process_line("working")
    clock.now += 30
    assert monitor.check_and_report_stuck(60) is None

    clock.now += 40
    task = monitor.check_and_report_stuck(60)
    assert task.anomaly_type == AnomalyType.AGENT_STUCK
    assert task.priority == "high"
    assert task.context.idle_seconds == pytest.approx(70)
    assert monitor.check_and_report_stuck(60) is None

    monitor.process_line("back again")
    clock.now += 61
    assert monitor.check_and_report_stuck(60) is not None
    assert queue.pending_count() == 2


def test_analyze_aggregated(monitor):
    monitor.process_line("Traceback (most recent call last):")
    monitor.process_line('  File "svc/app.py", line 3, in main')
    monitor.process_line("    boot()")

    task = monitor.analyze_aggregated()

    assert task is None
    monitor.process_line("RuntimeError: no config")
    task = monitor.analyze_aggregated()
    assert task.anomaly_type == AnomalyType.EXCEPTION
    assert task.context.file == "svc/app.py"


def test_queue_failure_is_logged_not_raised(clock):
    broken = MagicMock()
    broken.enqueue.side_effect = OSError("read-only filesystem")
    monitor = LogMonitor(broken, clock=clock)

    assert monitor.process_line("KeyError: 'a'") == []


def test_reset_clears_state(monitor):
    monitor.process_line("x")
    monitor.reset()

    assert monitor.get_recent_logs(10) == ""
    assert monitor.lines_seen == 0
    assert not monitor.is_stuck(1)
