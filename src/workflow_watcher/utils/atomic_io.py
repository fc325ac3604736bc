"""Atomic file I/O operations."""

import logging
import os
import tempfile
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)


def atomic_write_text(file_path: Path, content: str) -> None:
    """
    Replace ``file_path`` with ``content`` via a sibling temp file and rename.

    Readers see either the previous document or the new one, never a
    truncated mix. The temp file is removed if anything fails.

    Raises:
        OSError: the directory is not writable or the rename failed
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{file_path.name}.", suffix=".tmp", dir=file_path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, file_path)
    except OSError as e:
        logger.error(f"Failed to write {file_path}: {e}")
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def atomic_write_model(file_path: Path, model: BaseModel, indent: int = 2) -> None:
    """Atomically write a Pydantic model to a JSON file."""
    atomic_write_text(file_path, model.model_dump_json(indent=indent))
