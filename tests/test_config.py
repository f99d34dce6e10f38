"""Tests for configuration loading."""

import pytest
import yaml
from pydantic import ValidationError

from jobshell.lib.config_parser import ConfigParser, ShellConfig, load_config


class TestShellConfig:
    """Test configuration defaults and validation."""

    def test_defaults(self):
        """Test that an empty configuration is usable."""
        config = ShellConfig()
        assert config.session_key == "tty-1"
        assert config.prompt == "$"
        assert config.history.max_lines == 500
        assert config.scheduler.loop_min_iteration_ms == 300
        assert config.scheduler.pipeline_grace_ms == 0
        assert config.devices.fifo_size == 1000
        assert config.storage.directory is None

    def test_invalid_session_key(self):
        """Test that session keys cannot contain separators."""
        with pytest.raises(ValidationError):
            ShellConfig(session_key="a/b")

    def test_negative_durations_rejected(self):
        """Test that scheduler durations must be non-negative."""
        with pytest.raises(ValidationError):
            ShellConfig(scheduler={"pipeline_grace_ms": -1})

    def test_fifo_size_must_be_positive(self):
        """Test that pipeline FIFOs hold at least one value."""
        with pytest.raises(ValidationError):
            ShellConfig(devices={"fifo_size": 0})


class TestConfigParser:
    """Test YAML configuration files."""

    def test_load_yaml(self, tmp_path):
        """Test loading a configuration file."""
        path = tmp_path / "jobshell.yaml"
        path.write_text(yaml.safe_dump({
            "session_key": "main",
            "env": {"GREETING": "hello"},
            "history": {"max_lines": 10},
            "scheduler": {"loop_min_iteration_ms": 5},
            "storage": {"directory": str(tmp_path / "state")},
        }))

        config = load_config(path)

        assert config.session_key == "main"
        assert config.env == {"GREETING": "hello"}
        assert config.history.max_lines == 10
        assert config.scheduler.loop_min_iteration_ms == 5
        assert config.storage.directory == tmp_path / "state"

    def test_empty_file(self, tmp_path):
        """Test that an empty file yields the defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert ConfigParser(path).parse() == ShellConfig()

    def test_missing_file(self, tmp_path):
        """Test that a missing file is reported."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_values(self, tmp_path):
        """Test that invalid values fail validation."""
        path = tmp_path / "bad.yaml"
        path.write_text("history:\n  max_lines: 0\n")
        with pytest.raises(ValidationError):
            load_config(path)

    def test_no_path_gives_defaults(self):
        """Test load_config without a file."""
        assert load_config() == ShellConfig()
