"""Configuration parser for the shell runtime.

Parses and validates a YAML configuration file describing the session,
scheduler, device and persistence settings of an embedded shell.
"""

from __future__ import annotations

import yaml
from pathlib import Path
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, Field, field_validator


class HistoryConfig(BaseModel):
    """Interactive history configuration."""
    enabled: bool = True
    max_lines: int = 500

    @field_validator('max_lines')
    @classmethod
    def validate_max_lines(cls, v: int) -> int:
        """Ensure the history cap is positive."""
        if v <= 0:
            raise ValueError(f"max_lines must be positive, got {v}")
        return v


class SchedulerConfig(BaseModel):
    """Cooperative scheduling configuration."""
    loop_min_iteration_ms: float = 300
    pipeline_grace_ms: float = 0
    poll_min_seconds: float = 0.5

    @field_validator('loop_min_iteration_ms', 'pipeline_grace_ms', 'poll_min_seconds')
    @classmethod
    def non_negative(cls, v: float) -> float:
        """Durations cannot be negative."""
        if v < 0:
            raise ValueError(f"Duration must be non-negative, got {v}")
        return v


class DeviceConfig(BaseModel):
    """Device layer configuration."""
    fifo_size: int = 1000
    voices: list[str] = Field(default_factory=lambda: ["default"])

    @field_validator('fifo_size')
    @classmethod
    def validate_fifo_size(cls, v: int) -> int:
        """Pipeline FIFOs must hold at least one item."""
        if v <= 0:
            raise ValueError(f"fifo_size must be positive, got {v}")
        return v


class StorageConfig(BaseModel):
    """Persistence configuration.

    When ``directory`` is unset, history and variables are kept in memory.
    """
    directory: Optional[Path] = None


class ShellConfig(BaseModel):
    """Top-level configuration."""
    session_key: str = "tty-1"
    prompt: str = "$"
    continuation_prompt: str = ">"
    profile: Optional[str] = None
    env: Dict[str, Any] = Field(default_factory=dict)
    max_stringify_length: int = 200
    columns: int = 80
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    devices: DeviceConfig = Field(default_factory=DeviceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator('session_key')
    @classmethod
    def validate_session_key(cls, v: str) -> str:
        """Session keys become part of device keys, so reject separators."""
        if not v or '/' in v or ' ' in v:
            raise ValueError(f"Invalid session key '{v}'")
        return v


class ConfigParser:
    """Parse and validate shell configuration."""

    def __init__(self, config_path: Union[str, Path]):
        """Initialize parser with config file path.

        Args:
            config_path: Path to a YAML configuration file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        self.config: Optional[ShellConfig] = None
        self._raw_config: Optional[Dict[str, Any]] = None

    def parse(self) -> ShellConfig:
        """Parse and validate configuration.

        Returns:
            Validated configuration object

        Raises:
            yaml.YAMLError: If YAML parsing fails
            pydantic.ValidationError: If validation fails
        """
        with open(self.config_path) as f:
            self._raw_config = yaml.safe_load(f) or {}

        self.config = ShellConfig(**self._raw_config)
        return self.config


def load_config(config_path: Optional[Union[str, Path]] = None) -> ShellConfig:
    """Load and parse a configuration file.

    Args:
        config_path: Path to the YAML file, or None for defaults

    Returns:
        Parsed configuration

    Example:
        >>> config = load_config("jobshell.yaml")
        >>> config.scheduler.loop_min_iteration_ms
        300.0
    """
    if config_path is None:
        return ShellConfig()
    return ConfigParser(config_path).parse()
