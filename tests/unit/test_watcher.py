"""Tests for the Watcher lifecycle, health check and observation entry points."""

import os
import subprocess
from datetime import timedelta
from unittest.mock import patch

import pytest

from workflow_watcher.core.config import WatcherConfig
from workflow_watcher.core.notifier import Notifier
from workflow_watcher.core.watcher import PID_FILENAME, Watcher, WatcherStartupError, WatcherState
from workflow_watcher.core.task import AnomalyType, Priority
from workflow_watcher.llm.base import LLMBackend, LLMResponse
from workflow_watcher.queue.task_queue import TaskQueue
from workflow_watcher.utils.subprocess_utils import CommandResult

from watcher_fixtures import T0, make_input


class FakeChecker:
    def __init__(self, alive=()):
        self.alive = set(alive)

    def is_alive(self, pid):
        return pid in self.alive


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def _deliver(self, notification):
        self.sent.append(notification)


class CannedBackend(LLMBackend):
    def __init__(self, content):
        self.content = content
        self.calls = 0

    async def complete(self, request):
        self.calls += 1
        return LLMResponse(
            content=self.content, model_used="canned", input_tokens=1, output_tokens=1,
            finish_reason="stop", latency_ms=1.0,
        )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_watcher(state_dir, notifier):
    created = []

    def factory(config=None, checker=None, **kwargs):
        watcher = Watcher(
            state_dir,
            config=config,
            notifier=notifier,
            liveness_checker=checker or FakeChecker(),
            **kwargs,
        )
        created.append(watcher)
        return watcher

    return factory


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_watcher, state_dir):
        watcher = make_watcher()

        assert watcher.state == WatcherState.IDLE
        assert await watcher.start()

        pid_file = state_dir / PID_FILENAME
        assert watcher.is_running
        assert pid_file.read_text() == str(os.getpid())
        assert watcher.queue is not None
        assert watcher.supervisor.is_running

        await watcher.stop()
        await watcher.stop()

        assert watcher.state == WatcherState.STOPPED
        assert not pid_file.exists()
        assert watcher.queue is None

    @pytest.mark.asyncio
    async def test_refuses_when_another_watcher_is_alive(self, make_watcher, state_dir):
        (state_dir / PID_FILENAME).write_text("999999")
        watcher = make_watcher(checker=FakeChecker(alive={999999}))

        assert not await watcher.start()

        assert watcher.state == WatcherState.IDLE
        assert (state_dir / PID_FILENAME).read_text() == "999999"
        assert watcher.status()["pid"] == 999999

    @pytest.mark.asyncio
    async def test_second_watcher_in_same_process_refused(self, make_watcher, state_dir):
        first = make_watcher()
        second = make_watcher()

        assert await first.start()
        assert not await second.start()
        await second.stop()

        assert first.is_running
        assert (state_dir / PID_FILENAME).read_text() == str(os.getpid())
        await first.stop()

    @pytest.mark.asyncio
    async def test_stale_pid_file_is_replaced(self, make_watcher, state_dir):
        (state_dir / PID_FILENAME).write_text("999999")
        watcher = make_watcher()

        assert await watcher.start()
        assert (state_dir / PID_FILENAME).read_text() == str(os.getpid())
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_unwritable_state_dir_is_fatal(self, tmp_path, notifier):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        watcher = Watcher(blocker / "state", notifier=notifier, liveness_checker=FakeChecker())

        with pytest.raises(WatcherStartupError):
            await watcher.start()

    @pytest.mark.asyncio
    async def test_config_file_is_loaded(self, make_watcher, state_dir):
        (state_dir / "config.yaml").write_text(
            "max_queue_size: 7\nloop_detection_threshold: nope\nmonitors:\n  git: false\n"
        )
        watcher = make_watcher()

        await watcher.start()

        assert watcher.config.max_queue_size == 7
        assert watcher.config.loop_detection_threshold == 5
        assert watcher.queue.max_queue_size == 7
        assert watcher.process_push_output("error: failed to push some refs", "main") is None
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_disabled_watcher_observes_nothing(self, make_watcher):
        watcher = make_watcher(config=WatcherConfig(enabled=False))

        await watcher.start()

        assert watcher.supervisor is None
        assert watcher.process_log_line("KeyError: 'x'") == []
        await watcher.stop()


class TestObservations:
    @pytest.mark.asyncio
    async def test_log_line_queues_task(self, make_watcher):
        watcher = make_watcher(config=WatcherConfig())
        await watcher.start()

        tasks = watcher.process_log_line("KeyError: 'user_id'")

        assert [t.anomaly_type for t in tasks] == [AnomalyType.EXCEPTION]
        assert watcher.status()["pending"] == 1
        await watcher.stop()

    def test_idle_watcher_ignores_input(self, make_watcher):
        watcher = make_watcher()
        assert watcher.process_log_line("KeyError: 'x'") == []
        assert watcher.process_test_output("FAILED tests/a.py::test_b") == []

    @pytest.mark.asyncio
    async def test_test_and_git_signals(self, make_watcher):
        watcher = make_watcher(config=WatcherConfig())
        await watcher.start()

        failures = watcher.process_test_output("FAILED tests/a.py::test_b - boom\n1 failed in 0.1s\n")
        push = watcher.process_push_output("Permission denied (publickey)", "main")

        assert [t.anomaly_type for t in failures] == [AnomalyType.TEST_FAILURE]
        assert push.context.failure_type == "permission"
        await watcher.stop()


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_tick_expires_stale_tasks(self, make_watcher, state_dir):
        TaskQueue(state_dir).enqueue(make_input(), now=T0)
        watcher = make_watcher(config=WatcherConfig())
        await watcher.start()

        await watcher.tick(now=T0 + timedelta(hours=25))

        assert watcher.queue.pending_count() == 0
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_advisory_pass_runs_only_on_new_output(self, make_watcher):
        backend = CannedBackend(
            '{"anomaly_detected": true, "anomaly_type": "unusual_pattern", "priority": "high",'
            ' "analysis": "editing without testing", "confidence": 0.9,'
            ' "suggested_agent": "test-engineer", "prompt": "Run the tests"}'
        )
        watcher = make_watcher(config=WatcherConfig(use_llm_analysis=True), llm_backend=backend)
        await watcher.start()

        assert await watcher.run_advisory_pass() is None
        watcher.process_log_line("Editing src/app.py")

        task = await watcher.run_advisory_pass()
        again = await watcher.run_advisory_pass()

        assert task.anomaly_type == AnomalyType.UNUSUAL_PATTERN
        assert again is None
        assert backend.calls == 1
        await watcher.stop()


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_passing_suite(self, make_watcher, notifier):
        watcher = make_watcher(config=WatcherConfig(test_command="pytest -q"))
        await watcher.start()

        with patch(
            "workflow_watcher.core.watcher.run_command",
            return_value=CommandResult(0, "12 passed in 0.5s\n"),
        ) as run:
            result = await watcher.run_health_check()

        assert result.passed
        assert result.failure_count == 0
        assert run.call_args.args[0] == "pytest -q"
        assert notifier.sent[-1].title == "Health Check Passed"
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_failures_become_critical_tasks(self, make_watcher, notifier):
        watcher = make_watcher(config=WatcherConfig())
        await watcher.start()
        output = (
            "FAILED tests/test_a.py::test_one - assert 1 == 2\n"
            "FAILED tests/test_a.py::test_two - KeyError\n"
            "2 failed, 3 passed in 0.2s\n"
        )

        with patch("workflow_watcher.core.watcher.run_command", return_value=CommandResult(1, output)):
            result = await watcher.run_health_check()

        assert not result.passed
        assert result.failure_count == 2
        tasks = watcher.queue.get_tasks()
        assert {t.priority for t in tasks} == {Priority.CRITICAL.value}
        assert notifier.sent[-1].urgency == "critical"
        await watcher.stop()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "side_effect, message",
        [
            (subprocess.TimeoutExpired("pytest", 300), "timed out"),
            (FileNotFoundError("pytest"), "pytest"),
        ],
    )
    async def test_runner_errors(self, make_watcher, notifier, side_effect, message):
        watcher = make_watcher(config=WatcherConfig())
        await watcher.start()

        with patch("workflow_watcher.core.watcher.run_command", side_effect=side_effect):
            result = await watcher.run_health_check()

        assert not result.passed
        assert message in result.message
        assert notifier.sent[-1].title == "Health Check Error"
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_crash_without_parsed_failures_is_an_error(self, make_watcher):
        watcher = make_watcher(config=WatcherConfig())
        await watcher.start()

        with patch(
            "workflow_watcher.core.watcher.run_command",
            return_value=CommandResult(4, "ERROR: file or directory not found: tests/\n"),
        ):
            result = await watcher.run_health_check()

        assert not result.passed
        assert "exited with code 4" in result.message
        await watcher.stop()
