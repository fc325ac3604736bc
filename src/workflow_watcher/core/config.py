"""Configuration loading and validation."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"


class MonitorToggles(BaseModel):
    """Per-monitor on/off switches."""
    logs: bool = True
    tests: bool = True
    git: bool = True


class AnalyzerThresholds(BaseModel):
    """Timing thresholds for the workflow health analyzer (seconds)."""
    silence_seconds: float = 90          # no entries while a command is active
    phase_stuck_seconds: float = 240     # phase running without PHASE_COMPLETE
    abrupt_stop_seconds: float = 150     # progress made, then nothing
    agent_silence_seconds: float = 50    # spawned agent never produced activity
    agent_abandoned_seconds: float = 90  # agent active but never completed

    @field_validator("*")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"threshold must be positive, got {v}")
        return v


class AdvisoryLLMConfig(BaseModel):
    """Backend settings for the optional advisory analysis pass."""
    model: str = "claude-haiku-4-5-20251001"
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    timeout: int = 30
    max_tokens: int = 1024
    max_log_chars: int = 4000  # recent context sent per request


class WatcherConfig(BaseSettings):
    """Main watcher configuration."""

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_WATCHER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    version: str = "1.0"
    enabled: bool = True
    monitors: MonitorToggles = Field(default_factory=MonitorToggles)
    loop_detection_threshold: int = 5
    stuck_timeout_seconds: int = 60
    task_expiry_hours: int = 24
    max_queue_size: int = 50
    use_llm_analysis: bool = False
    llm_confidence_threshold: float = 0.7

    # Health check
    test_command: str = "pytest"
    health_check_timeout_seconds: int = 300

    # Loop timing
    tail_interval_ms: int = 50
    check_interval_seconds: int = 15

    analyzer: AnalyzerThresholds = Field(default_factory=AnalyzerThresholds)
    llm: AdvisoryLLMConfig = Field(default_factory=AdvisoryLLMConfig)
    notify_script: Optional[Path] = None

    @field_validator("loop_detection_threshold")
    @classmethod
    def validate_loop_threshold(cls, v: int) -> int:
        if v < 2:
            raise ValueError(f"loop_detection_threshold must be >= 2, got {v}")
        return v

    @field_validator("max_queue_size", "task_expiry_hours", "stuck_timeout_seconds",
                     "health_check_timeout_seconds", "tail_interval_ms",
                     "check_interval_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v

    @field_validator("llm_confidence_threshold")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"llm_confidence_threshold must be within [0, 1], got {v}")
        return v


def _read_document(config_path: Path) -> Optional[Dict[str, Any]]:
    """Read the YAML (or JSON) config document; None when unusable."""
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not read config {config_path}: {e}. Using defaults.")
        return None

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Config {config_path} is not a mapping. Using defaults.")
        return None
    return data


def build_config(data: Dict[str, Any]) -> WatcherConfig:
    """Validate a config mapping, falling back to defaults field by field.

    Any top-level field that fails validation is dropped and its default used,
    so one bad value never discards the rest of the user's settings.
    """
    data = dict(data)
    while True:
        try:
            return WatcherConfig(**data)
        except ValidationError as e:
            bad_fields = {err["loc"][0] for err in e.errors() if err["loc"]}
            bad_fields &= set(data)
            if not bad_fields:
                logger.warning(f"Invalid config ({e.error_count()} errors). Using defaults.")
                return WatcherConfig()
            for name in sorted(bad_fields):
                logger.warning(f"Ignoring invalid config value for '{name}': {data[name]!r}")
                data.pop(name)


def load_config(config_path: Path) -> WatcherConfig:
    """Load watcher configuration from a YAML file.

    Missing file => built-in defaults; partial file => defaults merged under
    the explicit values.
    """
    if not config_path.exists():
        logger.info(f"Config file not found: {config_path}. Using default configuration.")
        return WatcherConfig()

    data = _read_document(config_path)
    if data is None:
        return WatcherConfig()
    return build_config(data)
