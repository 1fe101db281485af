"""Configuration management for the Our Memories relay."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml


@dataclass
class PairingConfig:
    """Pairing request configuration."""

    ttl_seconds: float = 24 * 60 * 60  # 24 hours


@dataclass
class SignalsConfig:
    """Signal mailbox configuration."""

    ttl_seconds: float = 5 * 60  # 5 minutes
    max_queue_per_device: int = 256


@dataclass
class HubConfig:
    """Live channel fan-out configuration."""

    send_timeout: float = 5.0  # seconds per subscriber


@dataclass
class BackupConfig:
    """Backup vault configuration."""

    max_bytes: int = 100 * 1024 * 1024  # 100MB
    inline_max_bytes: int = 10 * 1024 * 1024  # Above this, use storage_dir
    storage_dir: str | None = None  # Object store directory (optional)
    index_file: str | None = None  # JSON index for persistence (optional)
    keep_per_couple: int = 3  # 0 keeps every backup


@dataclass
class RateLimitConfig:
    """Per-IP rate limiting configuration."""

    enabled: bool = True
    max_requests: int = 100
    window_seconds: int = 15 * 60  # 15 minutes


@dataclass
class SweeperConfig:
    """Background expiry sweeper configuration."""

    interval_seconds: float = 60.0
    enabled: bool = True


@dataclass
class Config:
    """Relay configuration."""

    port: int = 3000
    bind_address: str = "0.0.0.0"
    log_level: str = "INFO"
    log_file: str | None = None
    server_url: str = "http://127.0.0.1:3000"
    pairing: PairingConfig = field(default_factory=PairingConfig)
    signals: SignalsConfig = field(default_factory=SignalsConfig)
    hub: HubConfig = field(default_factory=HubConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    sweeper: SweeperConfig = field(default_factory=SweeperConfig)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "ourmem" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        return yaml.safe_load(content)
    except yaml.YAMLError:
        return None


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if not isinstance(data, dict):
        return Config()

    pairing_data = data.get("pairing") or {}
    pairing_config = PairingConfig(
        ttl_seconds=pairing_data.get("ttl_seconds", PairingConfig.ttl_seconds),
    )

    signals_data = data.get("signals") or {}
    signals_config = SignalsConfig(
        ttl_seconds=signals_data.get("ttl_seconds", SignalsConfig.ttl_seconds),
        max_queue_per_device=signals_data.get(
            "max_queue_per_device", SignalsConfig.max_queue_per_device
        ),
    )

    hub_data = data.get("hub") or {}
    hub_config = HubConfig(
        send_timeout=hub_data.get("send_timeout", HubConfig.send_timeout),
    )

    backup_data = data.get("backup") or {}
    backup_config = BackupConfig(
        max_bytes=backup_data.get("max_bytes", BackupConfig.max_bytes),
        inline_max_bytes=backup_data.get(
            "inline_max_bytes", BackupConfig.inline_max_bytes
        ),
        storage_dir=backup_data.get("storage_dir", BackupConfig.storage_dir),
        index_file=backup_data.get("index_file", BackupConfig.index_file),
        keep_per_couple=backup_data.get(
            "keep_per_couple", BackupConfig.keep_per_couple
        ),
    )

    rate_limit_data = data.get("rate_limit") or {}
    rate_limit_config = RateLimitConfig(
        enabled=rate_limit_data.get("enabled", RateLimitConfig.enabled),
        max_requests=rate_limit_data.get(
            "max_requests", RateLimitConfig.max_requests
        ),
        window_seconds=rate_limit_data.get(
            "window_seconds", RateLimitConfig.window_seconds
        ),
    )

    sweeper_data = data.get("sweeper") or {}
    sweeper_config = SweeperConfig(
        interval_seconds=sweeper_data.get(
            "interval_seconds", SweeperConfig.interval_seconds
        ),
        enabled=sweeper_data.get("enabled", SweeperConfig.enabled),
    )

    return Config(
        port=data.get("port", Config.port),
        bind_address=data.get("bind_address", Config.bind_address),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        server_url=data.get("server_url", Config.server_url),
        pairing=pairing_config,
        signals=signals_config,
        hub=hub_config,
        backup=backup_config,
        rate_limit=rate_limit_config,
        sweeper=sweeper_config,
    )
