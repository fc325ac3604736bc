"""Incremental reader for the append-only workflow event log."""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional, Union

from ..utils.stream_parser import parse_jsonl_line
from .models import EVENT_LOG_FILENAME, ParsedLogEntry, QueryFilter

logger = logging.getLogger(__name__)

TailCallback = Callable[[ParsedLogEntry], None]

DEFAULT_POLL_INTERVAL = 0.05


class EventLogReader:
    """
    Reads, queries and tails ``workflow.log``.

    Tailing is a fixed-interval poll on the running event loop:
    - Progress is tracked as a byte offset, so no byte is delivered twice
    - Only complete (newline-terminated) lines are consumed
    - A file that shrinks is treated as truncated and re-read from the start
    - Blank, ``#`` summary and malformed lines are skipped
    """

    def __init__(
        self,
        state_dir: Optional[Path] = None,
        log_path: Optional[Path] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        if log_path is None:
            if state_dir is None:
                raise ValueError("state_dir or log_path is required")
            log_path = Path(state_dir) / EVENT_LOG_FILENAME
        self.log_path = Path(log_path)
        self.poll_interval = poll_interval

        self._callback: Optional[TailCallback] = None
        self._offset = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def is_tailing(self) -> bool:
        return self._callback is not None

    # -- one-shot reads ----------------------------------------------------

    def read_from(self, offset: int = 0) -> tuple[list[ParsedLogEntry], int]:
        """Parse complete lines after ``offset``.

        Returns the entries and the offset just past the last complete line.
        """
        entries = []
        end = offset
        for entry, line_end in self._read_lines(offset):
            if entry is not None:
                entries.append(entry)
            end = line_end
        return entries, end

    def read_all(self) -> list[ParsedLogEntry]:
        """Every parseable entry in the log, in file order.

        Unlike ``read_from``, a final record with no trailing newline is
        included.
        """
        return [entry for entry, _ in self._read_lines(0, include_partial=True) if entry is not None]

    def query_last(
        self,
        query: Optional[QueryFilter] = None,
        **criteria,
    ) -> Optional[ParsedLogEntry]:
        """Most recent entry matching ``query`` (or keyword criteria), if any."""
        query = query or QueryFilter(**criteria)
        for entry in reversed(self.read_all()):
            if query.matches(entry):
                return entry
        return None

    def _read_lines(
        self,
        offset: int,
        include_partial: bool = False,
    ) -> list[tuple[Optional[ParsedLogEntry], int]]:
        try:
            with open(self.log_path, "rb") as f:
                f.seek(offset)
                chunk = f.read()
        except FileNotFoundError:
            return []

        segments = chunk.split(b"\n")
        # the last segment is whatever follows the final newline
        if not include_partial or not segments[-1].strip():
            segments = segments[:-1]

        results = []
        position = offset
        for raw in segments:
            position = min(position + len(raw) + 1, offset + len(chunk))
            line = raw.decode("utf-8", errors="replace")
            results.append((parse_jsonl_line(line, ParsedLogEntry), position))
        return results

    # -- tailing -----------------------------------------------------------

    def start_tailing(self, callback: TailCallback, offset: Optional[int] = None) -> None:
        """Begin delivering new entries to ``callback``.

        Must be called from a running event loop. Starts at ``offset`` when
        given, otherwise at the current end of the file.
        """
        if self._task is not None and not self._task.done():
            self.stop_tailing()

        if offset is None:
            try:
                offset = self.log_path.stat().st_size
            except FileNotFoundError:
                offset = 0

        self._offset = offset
        self._callback = callback
        self._task = asyncio.get_running_loop().create_task(self._tail_loop())
        logger.debug(f"Tailing {self.log_path} from offset {offset}")

    def stop_tailing(self) -> None:
        """Stop delivering entries. Safe to call repeatedly or mid-poll."""
        self._callback = None
        if self._task is not None:
            if not self._task.done() and self._task is not asyncio.current_task():
                self._task.cancel()
            self._task = None

    async def _tail_loop(self) -> None:
        while self._callback is not None:
            try:
                self.poll()
            except OSError as e:
                logger.warning(f"Failed to read {self.log_path}: {e}")
            await asyncio.sleep(self.poll_interval)

    def poll(self) -> int:
        """Deliver any complete lines appended since the last poll.

        Returns the number of entries delivered.
        """
        if self._callback is None:
            return 0

        try:
            size = self.log_path.stat().st_size
        except FileNotFoundError:
            return 0

        if size < self._offset:
            logger.info(f"{self.log_path} was truncated; re-reading from the start")
            self._offset = 0
        if size == self._offset:
            return 0

        delivered = 0
        for entry, line_end in self._read_lines(self._offset):
            callback = self._callback
            if callback is None:
                # stopped from inside a callback; resume here next time
                break
            self._offset = line_end
            if entry is None:
                continue
            try:
                callback(entry)
            except Exception as e:
                logger.error(f"Tail callback failed for {entry.cmd}:{entry.event}: {e}")
            delivered += 1
        return delivered
