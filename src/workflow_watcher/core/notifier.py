"""Hand-off of human-readable summaries to whatever delivers them."""

import logging
import subprocess
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from ..utils.error_handling import log_and_ignore

logger = logging.getLogger(__name__)


class Urgency(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class Notification(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    title: str
    message: str
    urgency: Urgency = Urgency.INFO


class Notifier(ABC):
    """Fire-and-forget delivery. ``notify`` never raises into the caller."""

    def notify(self, notification: Notification) -> None:
        try:
            self._deliver(notification)
        except Exception as e:
            log_and_ignore(e, f"Notification '{notification.title}' not delivered", logger_instance=logger)

    @abstractmethod
    def _deliver(self, notification: Notification) -> None:
        pass


_URGENCY_LEVELS = {
    Urgency.CRITICAL.value: logging.ERROR,
    Urgency.WARNING.value: logging.WARNING,
    Urgency.INFO.value: logging.INFO,
}


class LoggingNotifier(Notifier):
    """Writes notifications to the watcher log."""

    def _deliver(self, notification: Notification) -> None:
        level = _URGENCY_LEVELS.get(notification.urgency, logging.INFO)
        logger.log(level, f"{notification.title}: {notification.message}")


class ScriptNotifier(Notifier):
    """Runs ``<script> <title> <message> <urgency>`` without waiting for it."""

    def __init__(self, script: Path):
        self.script = Path(script)

    def _deliver(self, notification: Notification) -> None:
        subprocess.Popen(
            [str(self.script), notification.title, notification.message, str(notification.urgency)],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        logger.debug(f"Dispatched notification '{notification.title}' to {self.script}")
