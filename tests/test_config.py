"""Tests for config module."""

from pathlib import Path
from unittest.mock import Mock

import yaml

from ourmem.config import Config, get_config_path, load_config


class TestConfigDefaults:
    """Test default configuration values."""

    def test_default_config_values(self):
        """Config has sensible defaults when no file exists."""
        config = Config()

        assert config.port == 3000
        assert config.bind_address == "0.0.0.0"
        assert config.log_level == "INFO"
        assert config.log_file is None
        assert config.server_url == "http://127.0.0.1:3000"

    def test_default_section_values(self):
        """Nested sections carry the relay's default limits."""
        config = Config()

        assert config.pairing.ttl_seconds == 86400
        assert config.signals.ttl_seconds == 300
        assert config.signals.max_queue_per_device == 256
        assert config.hub.send_timeout == 5.0
        assert config.backup.max_bytes == 100 * 1024 * 1024
        assert config.backup.inline_max_bytes == 10 * 1024 * 1024
        assert config.backup.storage_dir is None
        assert config.backup.keep_per_couple == 3
        assert config.rate_limit.enabled is True
        assert config.rate_limit.max_requests == 100
        assert config.rate_limit.window_seconds == 900
        assert config.sweeper.interval_seconds == 60.0
        assert config.sweeper.enabled is True


class TestGetConfigPath:
    """Test config path resolution."""

    def test_get_config_path_default(self):
        """Default config path is ~/.config/ourmem/config.yaml."""
        path = get_config_path()
        assert path == Path.home() / ".config" / "ourmem" / "config.yaml"

    def test_get_config_path_custom(self):
        """Can override config path."""
        custom = Path("/custom/config.yaml")
        assert get_config_path(custom) == custom


class TestLoadConfig:
    """Test config loading."""

    def test_load_config_no_file_returns_defaults(self, tmp_path):
        """Config returns defaults when no file exists."""
        config = load_config(tmp_path / "nonexistent.yaml")

        assert config.port == 3000
        assert config.log_level == "INFO"

    def test_load_config_from_file(self, tmp_path):
        """Config loads values from YAML file."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            yaml.dump(
                {
                    "port": 9000,
                    "bind_address": "127.0.0.1",
                    "log_level": "DEBUG",
                    "pairing": {"ttl_seconds": 600},
                    "signals": {"ttl_seconds": 60, "max_queue_per_device": 8},
                    "backup": {"max_bytes": 1024, "keep_per_couple": 0},
                    "rate_limit": {"enabled": False},
                }
            )
        )

        config = load_config(config_file)

        assert config.port == 9000
        assert config.bind_address == "127.0.0.1"
        assert config.log_level == "DEBUG"
        assert config.pairing.ttl_seconds == 600
        assert config.signals.ttl_seconds == 60
        assert config.signals.max_queue_per_device == 8
        assert config.backup.max_bytes == 1024
        assert config.backup.keep_per_couple == 0
        assert config.rate_limit.enabled is False

    def test_missing_keys_use_defaults(self, tmp_path):
        """File values override defaults, missing values use defaults."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({"port": 4000, "backup": {"max_bytes": 10}}))

        config = load_config(config_file)

        assert config.port == 4000
        assert config.backup.max_bytes == 10
        assert config.backup.inline_max_bytes == 10 * 1024 * 1024
        assert config.signals.ttl_seconds == 300

    def test_malformed_yaml_returns_defaults(self, tmp_path):
        """Malformed YAML falls back to defaults."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("port: [unclosed\n  - nope: {")

        config = load_config(config_file)

        assert config.port == 3000

    def test_empty_file_returns_defaults(self, tmp_path):
        """Empty file falls back to defaults."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("   \n")

        assert load_config(config_file).port == 3000

    def test_non_mapping_returns_defaults(self):
        """A YAML list instead of a mapping yields defaults."""
        reader = Mock(return_value=["port", 9000])

        config = load_config(Path("/fake/config.yaml"), file_reader=reader)

        assert config.port == 3000

    def test_null_section_uses_defaults(self):
        """A section present but empty keeps its defaults."""
        reader = Mock(return_value={"signals": None, "hub": None})

        config = load_config(Path("/fake/config.yaml"), file_reader=reader)

        assert config.signals.ttl_seconds == 300
        assert config.hub.send_timeout == 5.0

    def test_injected_reader_receives_path(self):
        """Injectable reader is called with the resolved path."""
        reader = Mock(return_value={"port": 1234})
        path = Path("/fake/config.yaml")

        config = load_config(path, file_reader=reader)

        reader.assert_called_once_with(path)
        assert config.port == 1234
