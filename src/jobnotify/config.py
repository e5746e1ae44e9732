"""
Configuration management for job-notify.

This module handles loading and merging configuration from multiple sources:
1. Built-in defaults (lowest priority)
2. Project-level config file (.job-notify/config.yaml)
3. Environment variables
4. CLI arguments (highest priority, handled at CLI level)

Environment Variables:
    JOBNOTIFY_CONFIG: Path to config file (default: .job-notify/config.yaml)
    SLACK_WEBHOOK_URL: Channel webhook URL (required unless set in the file)
    NAMESPACE: Namespace to watch (empty means all namespaces)
    IN_CLUSTER: Use in-cluster credentials (true/false)
    KUBECONFIG: Read by the Kubernetes client itself when no kubeconfig
        path is configured (may list several files)
    RESYNC_PERIOD: Watch resync period in whole seconds
    NOTIFICATION_LEVEL: 'all' or 'failed'
    LOG_LEVEL: Logging level name
    JOBNOTIFY_CHANNEL_TYPE: slack, discord or webhook
    JOBNOTIFY_DELIVERY_TIMEOUT: Per-notification deadline in seconds
"""

from __future__ import annotations

import copy
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml


# =============================================================================
# Default Configuration
# =============================================================================

DEFAULT_CONFIG = {
    # Which completions are sent: "all" or "failed"
    "notification_level": "all",

    # Empty string watches every namespace
    "namespace": "",

    # Cluster access
    "in_cluster": True,
    "kubeconfig": None,

    # Watch resync period (seconds)
    "resync_period_seconds": 30,

    # Deadline for a single delivery attempt (seconds)
    "delivery_timeout_seconds": 10,

    "log_level": "INFO",

    # Outbound channel
    "channel": {
        "type": "slack",
        "url": None,
        "headers": {},
    },
}

CONFIG_DIRNAME = ".job-notify"
CONFIG_FILENAME = "config.yaml"

CHANNEL_TYPES = {"slack", "discord", "webhook"}

# Mapping of environment variables to config paths
ENV_VAR_MAP = {
    "JOBNOTIFY_CONFIG": None,  # Special: path to config file itself
    "SLACK_WEBHOOK_URL": "channel.url",
    "JOBNOTIFY_CHANNEL_TYPE": "channel.type",
    "NAMESPACE": "namespace",
    "IN_CLUSTER": "in_cluster",
    "RESYNC_PERIOD": "resync_period_seconds",
    "NOTIFICATION_LEVEL": "notification_level",
    "LOG_LEVEL": "log_level",
    "JOBNOTIFY_DELIVERY_TIMEOUT": "delivery_timeout_seconds",
}

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


class NotificationLevel(str, Enum):
    """Which job completions produce a notification."""

    ALL = "all"
    FAILED = "failed"

    def should_notify_success(self) -> bool:
        return self is NotificationLevel.ALL

    def should_notify_failure(self) -> bool:
        # Failures are notified under every level.
        return True


# =============================================================================
# Configuration Class
# =============================================================================

class Config:
    """
    Configuration manager for job-notify.

    Loads configuration from multiple sources and provides access to settings.
    Configuration precedence (highest to lowest):
    1. Explicit overrides (passed to the constructor)
    2. Environment variables
    3. Project config file
    4. Built-in defaults

    Attributes:
        config_path: Path to the config file (may not exist)
        project_root: Root directory of the project (where .job-notify/ lives)

    Example:
        >>> config = Config()
        >>> config.get("notification_level")
        'all'
        >>> config.get("channel.type")
        'slack'
    """

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        project_root: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize configuration.

        Args:
            config_path: Explicit path to config file. If None, searches for
                .job-notify/config.yaml in project_root or current directory.
            project_root: Project root directory. If None, uses current directory.
            overrides: Dot-path keys applied last (e.g. from CLI flags).
                None values are ignored.
        """
        self.project_root = Path(project_root) if project_root else Path.cwd()

        if config_path:
            self.config_path = Path(config_path)
        else:
            env_config = os.environ.get("JOBNOTIFY_CONFIG")
            if env_config:
                self.config_path = Path(env_config)
            else:
                self.config_path = self.project_root / CONFIG_DIRNAME / CONFIG_FILENAME

        self._config = self._load_config()

        for key, value in (overrides or {}).items():
            if value is not None:
                _set_nested(self._config, key, value)

    def _load_config(self) -> Dict[str, Any]:
        """
        Load and merge configuration from all sources.

        Returns:
            Merged configuration dictionary.
        """
        config = _deep_copy(DEFAULT_CONFIG)

        if self.config_path.exists():
            with open(self.config_path, "r") as f:
                file_config = yaml.safe_load(f) or {}
            if not isinstance(file_config, dict):
                raise ConfigError(f"Config file must contain a mapping: {self.config_path}")
            config = _deep_merge(config, file_config)

        return self._apply_env_overrides(config)

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to config."""
        for env_var, config_path in ENV_VAR_MAP.items():
            if config_path is None:
                continue

            value = os.environ.get(env_var)
            if value is not None and value != "":
                _set_nested(config, config_path, value)

        return config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by dot-separated key path.

        Example:
            >>> config.get("channel.type")
            'slack'
            >>> config.get("nonexistent", "fallback")
            'fallback'
        """
        return _get_nested(self._config, key, default)

    def __repr__(self) -> str:
        return f"Config(config_path={self.config_path}, project_root={self.project_root})"


# =============================================================================
# Validated Settings
# =============================================================================

@dataclass(frozen=True)
class Settings:
    """Validated, typed view of the configuration used at runtime."""

    channel_url: str
    channel_type: str = "slack"
    channel_headers: Dict[str, str] = field(default_factory=dict)
    notification_level: NotificationLevel = NotificationLevel.ALL
    namespace: str = ""
    in_cluster: bool = True
    kubeconfig: Optional[str] = None
    resync_period: float = 30.0
    delivery_timeout: float = 10.0
    log_level: str = "INFO"

    @property
    def namespace_label(self) -> str:
        """Namespace as shown in logs and tables."""
        return self.namespace or "all"


def parse_notification_level(value: Any) -> NotificationLevel:
    """Parse a notification level, defaulting to 'all' when empty."""
    if value is None or str(value).strip() == "":
        return NotificationLevel.ALL
    if isinstance(value, NotificationLevel):
        return value
    try:
        return NotificationLevel(str(value).strip())
    except ValueError:
        raise ConfigError(
            f"NOTIFICATION_LEVEL must be 'all' or 'failed', got: {value}"
        ) from None


TRUE_STRINGS = {"1", "t", "T", "true", "TRUE", "True"}
FALSE_STRINGS = {"0", "f", "F", "false", "FALSE", "False"}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip()
    if text in TRUE_STRINGS:
        return True
    if text in FALSE_STRINGS:
        return False
    raise ConfigError("IN_CLUSTER must be a boolean value")


def _parse_resync_period(value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError("RESYNC_PERIOD must be an integer (seconds)")
    try:
        seconds = int(str(value).strip())
    except ValueError:
        raise ConfigError("RESYNC_PERIOD must be an integer (seconds)") from None
    if seconds <= 0:
        raise ConfigError("RESYNC_PERIOD must be a positive integer (seconds)")
    return float(seconds)


def _parse_timeout(value: Any) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ConfigError("delivery_timeout_seconds must be a number") from None
    if seconds <= 0:
        raise ConfigError("delivery_timeout_seconds must be positive")
    return seconds


def _interpolate_env_string(value: str) -> str:
    """Resolve ${VAR} placeholders from environment variables."""

    def replace(match: re.Match) -> str:
        var_name = match.group(1)
        var_value = os.environ.get(var_name)
        if var_value is None:
            raise ConfigError(
                f"Missing environment variable '{var_name}' required by channel config."
            )
        return var_value

    return _ENV_PATTERN.sub(replace, value)


def resolve_settings(config: Config) -> Settings:
    """
    Validate configuration and build runtime Settings.

    Raises:
        ConfigError: If any value is missing or malformed.
    """
    raw_url = config.get("channel.url")
    if raw_url is None or str(raw_url).strip() == "":
        raise ConfigError("channel url is required (set SLACK_WEBHOOK_URL)")
    channel_url = _interpolate_env_string(str(raw_url).strip())

    channel_type = str(config.get("channel.type") or "slack").strip().lower()
    if channel_type not in CHANNEL_TYPES:
        raise ConfigError(
            f"Unsupported channel type '{channel_type}'. "
            f"Supported: {', '.join(sorted(CHANNEL_TYPES))}."
        )

    raw_headers = config.get("channel.headers") or {}
    if not isinstance(raw_headers, dict):
        raise ConfigError("channel.headers must be a mapping")
    headers = {
        str(key): _interpolate_env_string(str(value))
        for key, value in raw_headers.items()
    }

    kubeconfig = config.get("kubeconfig")

    return Settings(
        channel_url=channel_url,
        channel_type=channel_type,
        channel_headers=headers,
        notification_level=parse_notification_level(config.get("notification_level")),
        namespace=str(config.get("namespace") or "").strip(),
        in_cluster=_parse_bool(config.get("in_cluster", True)),
        kubeconfig=str(kubeconfig) if kubeconfig else None,
        resync_period=_parse_resync_period(config.get("resync_period_seconds", 30)),
        delivery_timeout=_parse_timeout(config.get("delivery_timeout_seconds", 10)),
        log_level=str(config.get("log_level") or "INFO").upper(),
    )


# =============================================================================
# Module-level convenience functions
# =============================================================================

def init_config(
    project_root: Optional[Union[str, Path]] = None,
    overwrite: bool = False,
    **kwargs: Any,
) -> Path:
    """
    Initialize a new project configuration file.

    Creates .job-notify/config.yaml with default values, optionally
    customized with provided kwargs.

    Raises:
        FileExistsError: If config file exists and overwrite=False.

    Example:
        >>> init_config(namespace="batch", channel={"type": "discord"})
        PosixPath('.job-notify/config.yaml')
    """
    root = Path(project_root) if project_root else Path.cwd()
    config_path = root / CONFIG_DIRNAME / CONFIG_FILENAME

    if config_path.exists() and not overwrite:
        raise FileExistsError(
            f"Config file already exists: {config_path}. "
            "Use overwrite=True to replace."
        )

    config_data = _deep_copy(DEFAULT_CONFIG)
    config_data["channel"]["url"] = "${SLACK_WEBHOOK_URL}"
    for key, value in kwargs.items():
        if isinstance(value, dict) and key in config_data:
            config_data[key] = _deep_merge(config_data[key], value)
        else:
            config_data[key] = value

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        yaml.dump(config_data, f, default_flow_style=False, sort_keys=False)

    return config_path


# =============================================================================
# Helper Functions
# =============================================================================

def _deep_copy(d: Dict[str, Any]) -> Dict[str, Any]:
    return copy.deepcopy(d)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries, with override taking precedence.

    Args:
        base: Base dictionary.
        override: Dictionary with values to override.

    Returns:
        Merged dictionary.
    """
    result = _deep_copy(base)

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _get_nested(d: Dict[str, Any], key: str, default: Any = None) -> Any:
    """Get a nested dictionary value using dot notation."""
    keys = key.split(".")
    value = d

    for k in keys:
        if isinstance(value, dict) and k in value:
            value = value[k]
        else:
            return default

    return value


def _set_nested(d: Dict[str, Any], key: str, value: Any) -> None:
    """Set a nested dictionary value using dot notation."""
    keys = key.split(".")

    for k in keys[:-1]:
        if not isinstance(d.get(k), dict):
            d[k] = {}
        d = d[k]

    d[keys[-1]] = value
