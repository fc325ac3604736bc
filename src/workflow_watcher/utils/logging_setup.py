"""Console and file logging for the watcher process."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


class WatcherLogFormatter(logging.Formatter):
    """Formatter with workflow context and optional colours."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",      # Cyan
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[35m",   # Magenta
    }

    def __init__(self, tag: str = "watcher", use_colors: bool = True):
        super().__init__()
        self.tag = tag
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        # Workflow position, when the caller passed it via ``extra``
        workflow_context = ""
        command = getattr(record, "command", None)
        if command:
            phase = getattr(record, "phase", None)
            workflow_context = f"[{command}:{phase}] " if phase else f"[{command}] "

        if self.use_colors:
            level_color = self.LEVEL_COLORS.get(record.levelname, "")
            reset = "\033[0m"
        else:
            level_color = ""
            reset = ""

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        return (
            f"{timestamp} {level_color}{record.levelname:8s}{reset} "
            f"[{self.tag}] {workflow_context}{message}"
        )


def setup_watcher_logging(
    state_dir: Optional[Path] = None,
    log_level: str = "INFO",
    use_file: bool = True,
) -> logging.Logger:
    """
    Configure logging for the ``workflow_watcher`` package.

    Args:
        state_dir: Directory holding ``watcher.log`` (file logging needs it)
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        use_file: Also write plain-text records to ``<state_dir>/watcher.log``

    Returns:
        The package root logger
    """
    logger = logging.getLogger("workflow_watcher")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    use_colors = sys.stderr.isatty() if hasattr(sys.stderr, "isatty") else False
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(WatcherLogFormatter(use_colors=use_colors))
    logger.addHandler(console_handler)

    if use_file and state_dir is not None:
        state_dir = Path(state_dir)
        state_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(state_dir / "watcher.log")
        file_handler.setFormatter(WatcherLogFormatter(use_colors=False))
        logger.addHandler(file_handler)

    return logger
