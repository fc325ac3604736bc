"""Tests for subprocess_utils."""

import subprocess
import sys

import pytest

from workflow_watcher.utils.subprocess_utils import SubprocessError, run_command, split_command


def test_split_command_respects_quotes():
    assert split_command('pytest -k "login and not slow"') == ["pytest", "-k", "login and not slow"]
    assert split_command(["npm", "test"]) == ["npm", "test"]


@pytest.mark.parametrize("command", ["", "   ", 'pytest "unclosed'])
def test_split_command_rejects_bad_input(command):
    with pytest.raises(ValueError):
        split_command(command)


def test_run_command_joins_stdout_and_stderr(tmp_path):
    script = "import sys; print('out'); print('err', file=sys.stderr)"

    result = run_command([sys.executable, "-c", script], cwd=tmp_path)

    assert result.succeeded
    assert result.output == "out\nerr\n"


def test_nonzero_exit_is_reported_not_raised():
    result = run_command([sys.executable, "-c", "raise SystemExit(3)"])

    assert result.returncode == 3
    assert not result.succeeded


def test_check_raises_with_output():
    with pytest.raises(SubprocessError) as exc_info:
        run_command([sys.executable, "-c", "print('1 failed'); raise SystemExit(1)"], check=True)

    assert exc_info.value.returncode == 1
    assert "1 failed" in exc_info.value.output


def test_missing_executable_raises_oserror():
    with pytest.raises(OSError):
        run_command("definitely-not-a-real-test-runner --all")


def test_timeout_propagates():
    with pytest.raises(subprocess.TimeoutExpired):
        run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)
