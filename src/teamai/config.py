"""Configuration system for Team AI.

This module provides the configuration layer that:
- Defines configuration schema using dataclasses
- Supports loading from YAML and TOML files
- Provides sensible defaults for all settings
- Validates configuration values
- Implements thread-safe singleton pattern
- Supports configuration reload

Configuration files are searched in the following order:
1. Explicit path provided to load_config()
2. .teamai.yaml / .teamai.yml in the working directory or a parent
3. .teamai.toml in the working directory or a parent
4. Default values

Example configuration (.teamai.yaml):
    storage:
      root: ~/.team-ai
      lock_timeout: 5

    liveness:
      heartbeat_timeout: 600
      heartbeat_interval: 300

    messaging:
      watch_interval: 5
      operation_timeout: 30

    directory:
      strict_names: false

Example configuration (.teamai.toml):
    [storage]
    root = "~/.team-ai"

    [liveness]
    heartbeat_timeout = 600
    heartbeat_interval = 300
"""

from __future__ import annotations

import math
import threading
import tomllib
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

# YAML DoS prevention limits
MAX_CONFIG_FILE_SIZE_BYTES = 1 * 1024 * 1024  # 1MB
MAX_YAML_NESTING_DEPTH = 10

CONFIG_FILE_NAMES = (".teamai.yaml", ".teamai.yml", ".teamai.toml")

__all__ = [
    "StorageConfig",
    "LivenessConfig",
    "MessagingConfig",
    "DirectoryConfig",
    "DashboardConfig",
    "TeamAIConfig",
    "load_config",
    "get_config",
    "reload_config",
    "ConfigValidationError",
]


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


@dataclass
class StorageConfig:
    """Where the shared coordination tree lives.

    Attributes:
        root: Shared root directory (None = TEAMAI_ROOT or ~/.team-ai)
        lock_timeout: Seconds to wait for a per-agent record lock
    """

    root: Optional[str] = None
    lock_timeout: float = 5.0

    def validate(self) -> None:
        if self.root is not None and (not isinstance(self.root, str) or not self.root.strip()):
            raise ConfigValidationError("storage.root must be a non-empty string")
        if not _is_number(self.lock_timeout) or self.lock_timeout <= 0:
            raise ConfigValidationError(f"lock_timeout must be > 0, got {self.lock_timeout}")
        if self.lock_timeout > 300:
            raise ConfigValidationError(
                f"lock_timeout too high (max 300s), got {self.lock_timeout}"
            )


@dataclass
class LivenessConfig:
    """Heartbeat settings.

    Attributes:
        heartbeat_timeout: Seconds without heartbeat after which an agent is stale
        heartbeat_interval: Seconds between automatic heartbeats
    """

    heartbeat_timeout: float = 600.0
    heartbeat_interval: float = 300.0

    def validate(self) -> None:
        """Validate liveness configuration.

        Raises:
            ConfigValidationError: If validation fails
        """
        if not _is_number(self.heartbeat_timeout) or self.heartbeat_timeout <= 0:
            raise ConfigValidationError(
                f"heartbeat_timeout must be > 0, got {self.heartbeat_timeout}"
            )
        if not _is_number(self.heartbeat_interval) or self.heartbeat_interval <= 0:
            raise ConfigValidationError(
                f"heartbeat_interval must be > 0, got {self.heartbeat_interval}"
            )
        if self.heartbeat_timeout <= self.heartbeat_interval:
            raise ConfigValidationError(
                f"heartbeat_timeout ({self.heartbeat_timeout}) must exceed "
                f"heartbeat_interval ({self.heartbeat_interval})"
            )
        if self.heartbeat_timeout > 86400:
            raise ConfigValidationError(
                f"heartbeat_timeout too high (max 24h), got {self.heartbeat_timeout}"
            )


@dataclass
class MessagingConfig:
    """Mailbox and tool-call settings.

    Attributes:
        watch_interval: Default polling interval for message watchers (seconds)
        operation_timeout: Upper bound for a single tool call (seconds)
        max_subject_length: Maximum subject length in characters
        max_body_bytes: Maximum message body size in bytes
        max_artifact_bytes: Maximum size of an attached artifact in bytes
    """

    watch_interval: float = 5.0
    operation_timeout: float = 30.0
    max_subject_length: int = 200
    max_body_bytes: int = 64 * 1024
    max_artifact_bytes: int = 10 * 1024 * 1024

    def validate(self) -> None:
        """Validate messaging configuration.

        Raises:
            ConfigValidationError: If validation fails
        """
        if not _is_number(self.watch_interval) or self.watch_interval <= 0:
            raise ConfigValidationError(f"watch_interval must be > 0, got {self.watch_interval}")
        if self.watch_interval > 3600:
            raise ConfigValidationError(
                f"watch_interval too high (max 1h), got {self.watch_interval}"
            )
        if not _is_number(self.operation_timeout) or self.operation_timeout <= 0:
            raise ConfigValidationError(
                f"operation_timeout must be > 0, got {self.operation_timeout}"
            )
        for name in ("max_subject_length", "max_body_bytes", "max_artifact_bytes"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigValidationError(f"{name} must be a positive integer, got {value}")


@dataclass
class DirectoryConfig:
    """Name resolution settings.

    Attributes:
        strict_names: Raise AmbiguousName instead of picking the most recently
            seen agent when several live agents share a name
    """

    strict_names: bool = False

    def validate(self) -> None:
        if not isinstance(self.strict_names, bool):
            raise ConfigValidationError(
                f"strict_names must be a boolean, got {type(self.strict_names).__name__}"
            )


@dataclass
class DashboardConfig:
    """Configuration for web dashboard.

    Attributes:
        host: Default host to bind to
        port: Default port for dashboard server
    """

    host: str = "localhost"
    port: int = 8080

    def validate(self) -> None:
        """Validate dashboard configuration.

        Raises:
            ConfigValidationError: If validation fails
        """
        if not isinstance(self.port, int) or self.port < 1024 or self.port > 65535:
            raise ConfigValidationError(f"port must be between 1024-65535, got {self.port}")
        if not isinstance(self.host, str) or not self.host.strip():
            raise ConfigValidationError("host cannot be empty")


@dataclass
class TeamAIConfig:
    """Complete configuration for Team AI."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    liveness: LivenessConfig = field(default_factory=LivenessConfig)
    messaging: MessagingConfig = field(default_factory=MessagingConfig)
    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    source: Optional[Path] = None

    def validate(self) -> None:
        """Validate all configuration sections.

        Raises:
            ConfigValidationError: If any validation fails
        """
        self.storage.validate()
        self.liveness.validate()
        self.messaging.validate()
        self.directory.validate()
        self.dashboard.validate()

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary (without the source path)."""
        return {
            "storage": asdict(self.storage),
            "liveness": asdict(self.liveness),
            "messaging": asdict(self.messaging),
            "directory": asdict(self.directory),
            "dashboard": asdict(self.dashboard),
        }


_SECTIONS = {
    "storage": StorageConfig,
    "liveness": LivenessConfig,
    "messaging": MessagingConfig,
    "directory": DirectoryConfig,
    "dashboard": DashboardConfig,
}


def _check_yaml_nesting_depth(
    obj: Any, current_depth: int = 0, max_depth: int = MAX_YAML_NESTING_DEPTH
) -> None:
    """Check that a parsed YAML object doesn't exceed maximum nesting depth.

    Raises:
        ConfigValidationError: If nesting depth exceeds max_depth
    """
    if current_depth > max_depth:
        raise ConfigValidationError(f"YAML nesting depth exceeds maximum of {max_depth} levels")

    if isinstance(obj, dict):
        for value in obj.values():
            _check_yaml_nesting_depth(value, current_depth + 1, max_depth)
    elif isinstance(obj, list):
        for item in obj:
            _check_yaml_nesting_depth(item, current_depth + 1, max_depth)


def _find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """Find the nearest configuration file walking up from start_path.

    Returns:
        Path to configuration file if found, None otherwise
    """
    search_path = (start_path or Path.cwd()).resolve()

    for directory in [search_path] + list(search_path.parents):
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate

    return None


def _check_file_size(path: Path) -> None:
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ConfigValidationError(f"Failed to check file size for {path}: {e}") from e
    if file_size > MAX_CONFIG_FILE_SIZE_BYTES:
        raise ConfigValidationError(
            f"Configuration file too large: {file_size} bytes "
            f"(max {MAX_CONFIG_FILE_SIZE_BYTES} bytes)"
        )


def _load_yaml_config(path: Path) -> dict[str, Any]:
    """Load configuration from YAML file.

    Raises:
        ConfigValidationError: If YAML parsing fails
    """
    _check_file_size(path)

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Failed to parse YAML file {path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(f"Failed to load YAML file {path}: {e}") from e

    if data is None:
        return {}
    _check_yaml_nesting_depth(data)
    if not isinstance(data, dict):
        raise ConfigValidationError(f"Configuration root must be a mapping in {path}")
    return data


def _load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file.

    Raises:
        ConfigValidationError: If TOML parsing fails
    """
    _check_file_size(path)

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigValidationError(f"Failed to parse TOML file {path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(f"Failed to load TOML file {path}: {e}") from e


def _build_section(name: str, data: Any) -> Any:
    cls = _SECTIONS[name]
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigValidationError(f"Section '{name}' must be a mapping, got {type(data).__name__}")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigValidationError(f"Unknown key(s) in section '{name}': {', '.join(unknown)}")
    return cls(**data)


def _dict_to_config(data: dict[str, Any]) -> TeamAIConfig:
    """Convert dictionary to TeamAIConfig.

    Raises:
        ConfigValidationError: If an unknown section or key is present
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ConfigValidationError(f"Unknown configuration section(s): {', '.join(unknown)}")

    return TeamAIConfig(**{name: _build_section(name, data.get(name)) for name in _SECTIONS})


def load_config(config_path: Optional[Path] = None) -> TeamAIConfig:
    """Load configuration from file or use defaults.

    Configuration loading order:
    1. If config_path provided, load from that file
    2. Otherwise, search for .teamai.yaml/.teamai.yml/.teamai.toml
    3. If no file found, use defaults

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    config_dict: dict[str, Any] = {}

    if config_path is not None:
        file_to_load: Optional[Path] = Path(config_path)
        if not file_to_load.exists():
            raise ConfigValidationError(f"Configuration file not found: {file_to_load}")
    else:
        file_to_load = _find_config_file()

    if file_to_load is not None:
        suffix = file_to_load.suffix.lower()

        if suffix in (".yaml", ".yml"):
            config_dict = _load_yaml_config(file_to_load)
        elif suffix == ".toml":
            config_dict = _load_toml_config(file_to_load)
        else:
            raise ConfigValidationError(
                f"Unsupported configuration file format: {suffix}. "
                "Supported formats: .yaml, .yml, .toml"
            )

    config = _dict_to_config(config_dict)
    config.source = file_to_load
    config.validate()

    return config


# Global configuration singleton
_config_instance: Optional[TeamAIConfig] = None
_config_lock = threading.Lock()


def get_config() -> TeamAIConfig:
    """Get singleton configuration instance.

    Lazy-loads configuration on first access. Thread-safe.
    """
    global _config_instance

    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = load_config()

    return _config_instance


def reload_config(config_path: Optional[Path] = None) -> TeamAIConfig:
    """Force reload configuration from disk.

    Thread-safe. Useful for testing or when configuration file changes.

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    global _config_instance

    with _config_lock:
        _config_instance = load_config(config_path)
        return _config_instance
