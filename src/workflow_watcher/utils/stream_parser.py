"""Utilities for parsing JSONL (JSON Lines) streams."""

import json
import logging
from typing import Optional, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def parse_jsonl_line(line: str, model_class: type[T]) -> Optional[T]:
    """Parse one JSONL line into a model.

    Blank lines and ``#`` summary lines yield None, as does anything that is
    not a JSON object matching the model.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None

    try:
        data = json.loads(stripped)
        if not isinstance(data, dict):
            return None
        return model_class.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.debug(f"Skipping unparseable JSONL line: {e}")
        return None

