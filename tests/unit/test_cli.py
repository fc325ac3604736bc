"""Tests for the workflow-watcher CLI."""

import json
import logging
import os
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from workflow_watcher.cli.main import cli
from workflow_watcher.core.watcher import PID_FILENAME
from workflow_watcher.eventlog.reader import EventLogReader
from workflow_watcher.queue.task_queue import TaskQueue
from workflow_watcher.utils.subprocess_utils import CommandResult

from watcher_fixtures import make_input


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_package_logging():
    yield
    package_logger = logging.getLogger("workflow_watcher")
    for handler in package_logger.handlers[:]:
        handler.close()
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


def invoke(runner, state_dir, *args):
    return runner.invoke(cli, ["--state-dir", str(state_dir), *args])


class TestLog:
    def test_appends_entry(self, runner, state_dir):
        result = invoke(
            runner, state_dir,
            "log", "build", "phase_start", "--phase", "RED",
            "--data", '{"note": "tests first"}', "--agent-id", "a1", "--agent-type", "test-engineer",
        )

        assert result.exit_code == 0, result.output
        [entry] = EventLogReader(state_dir).read_all()
        assert entry.event == "PHASE_START"
        assert entry.phase == "RED"
        assert entry.data == {"note": "tests first"}
        assert entry.agent.type == "test-engineer"

    @pytest.mark.parametrize("data", ["{not json", "[1, 2]"])
    def test_rejects_bad_data(self, runner, state_dir, data):
        result = invoke(runner, state_dir, "log", "build", "START", "--data", data)

        assert result.exit_code == 2
        assert "--data" in result.output
        assert EventLogReader(state_dir).read_all() == []

    def test_rejects_unknown_event(self, runner, state_dir):
        assert invoke(runner, state_dir, "log", "build", "EXPLODED").exit_code == 2


class TestAnalyze:
    def test_empty_log_is_healthy(self, runner, state_dir):
        result = invoke(runner, state_dir, "analyze")

        assert result.exit_code == 0
        assert "healthy" in result.output
        assert "No issues detected" in result.output

    def test_json_output(self, runner, state_dir):
        invoke(runner, state_dir, "log", "build", "START")
        invoke(runner, state_dir, "log", "build", "FAILED", "--data", '{"error": "boom"}')

        result = invoke(runner, state_dir, "analyze", "--json")

        analysis = json.loads(result.stdout)
        assert analysis["health"] == "critical"
        assert "explicit_failure" in [i["type"] for i in analysis["issues"]]


class TestQueueCommands:
    def test_add_list_next(self, runner, state_dir):
        result = invoke(
            runner, state_dir,
            "queue", "add", "--priority", "high", "--anomaly-type", "agent_error", "--prompt", "Fix login",
        )
        assert result.exit_code == 0, result.output

        listing = invoke(runner, state_dir, "queue", "list")
        assert listing.exit_code == 0
        assert "Fix" in listing.output

        task = json.loads(invoke(runner, state_dir, "queue", "next").stdout)
        assert task["priority"] == "high"
        assert task["source"] == "manual"
        assert task["context"]["kind"] == "agent_error"

    def test_empty_queue(self, runner, state_dir):
        assert "Queue is empty" in invoke(runner, state_dir, "queue", "list").output
        assert "No pending tasks" in invoke(runner, state_dir, "queue", "next").output

    def test_update_status(self, runner, state_dir):
        task = TaskQueue(state_dir).enqueue(make_input())

        result = invoke(runner, state_dir, "queue", "update", task.id, "--status", "executing")

        assert result.exit_code == 0, result.output
        assert TaskQueue(state_dir).get_task(task.id).status == "executing"

    def test_update_invalid_transition(self, runner, state_dir):
        task = TaskQueue(state_dir).enqueue(make_input())

        result = invoke(runner, state_dir, "queue", "update", task.id, "--status", "completed")

        assert result.exit_code == 1
        assert TaskQueue(state_dir).get_task(task.id).status == "pending"

    def test_update_unknown_task(self, runner, state_dir):
        result = invoke(runner, state_dir, "queue", "update", "task-missing", "--status", "executing")

        assert result.exit_code == 1
        assert "No task task-missing" in result.output


class TestStatus:
    def test_idle(self, runner, state_dir):
        TaskQueue(state_dir).enqueue(make_input(priority="critical"))

        result = invoke(runner, state_dir, "status")

        assert result.exit_code == 0
        assert "not running" in result.output
        assert "Total pending: 1" in result.output

    def test_running_holder_reported(self, runner, state_dir):
        (state_dir / PID_FILENAME).write_text(str(os.getppid()))

        result = invoke(runner, state_dir, "status")

        assert f"PID {os.getppid()}" in result.output


class TestHealthCheck:
    def test_pass_exits_zero(self, runner, state_dir):
        with patch("workflow_watcher.core.watcher.run_command", return_value=CommandResult(0, "3 passed\n")):
            result = invoke(runner, state_dir, "health-check")

        assert result.exit_code == 0, result.output
        assert "All tests passing" in result.output
        assert not (state_dir / PID_FILENAME).exists()

    def test_failures_exit_one_and_queue_tasks(self, runner, state_dir):
        output = "FAILED tests/test_a.py::test_one - assert 0\n1 failed in 0.1s\n"
        with patch("workflow_watcher.core.watcher.run_command", return_value=CommandResult(1, output)):
            result = invoke(runner, state_dir, "health-check")

        assert result.exit_code == 1
        assert TaskQueue(state_dir).pending_count() == 1

    def test_refuses_while_watcher_runs(self, runner, state_dir):
        (state_dir / PID_FILENAME).write_text(str(os.getppid()))

        result = invoke(runner, state_dir, "health-check")

        assert result.exit_code == 1
        assert "already running" in result.output
