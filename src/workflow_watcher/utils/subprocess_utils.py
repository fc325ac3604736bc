"""Running the project's external commands (test runner, notifier hooks)."""

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class SubprocessError(Exception):
    """A command exited non-zero while the caller asked for ``check``."""

    def __init__(self, cmd: str, returncode: int, output: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.output = output
        super().__init__(f"Command failed with exit code {returncode}: {cmd}")


@dataclass
class CommandResult:
    """Exit code plus stdout and stderr joined in that order."""
    returncode: int
    output: str

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


def split_command(command: Union[str, list[str]]) -> list[str]:
    """Turn a configured command line into argv without going through a shell.

    Raises ValueError for an empty command or unbalanced quoting.
    """
    argv = shlex.split(command) if isinstance(command, str) else list(command)
    if not argv:
        raise ValueError("empty command")
    return argv


def run_command(
    command: Union[str, list[str]],
    *,
    cwd: Optional[Path] = None,
    check: bool = False,
    timeout: Optional[float] = None,
    env: Optional[dict] = None,
) -> CommandResult:
    """
    Run ``command`` to completion and capture its output.

    Raises:
        ValueError: the command line cannot be split
        OSError: the executable cannot be started
        subprocess.TimeoutExpired: ``timeout`` elapsed; the child is killed
        SubprocessError: ``check`` is set and the exit code is non-zero
    """
    argv = split_command(command)
    logger.debug(f"Running {shlex.join(argv)} in {cwd or '.'}")
    try:
        completed = subprocess.run(
            argv,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {shlex.join(argv)}")
        raise

    result = CommandResult(
        returncode=completed.returncode,
        output=(completed.stdout or "") + (completed.stderr or ""),
    )
    if check and not result.succeeded:
        raise SubprocessError(shlex.join(argv), result.returncode, result.output)
    return result
