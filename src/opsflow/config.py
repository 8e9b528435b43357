"""
Configuration management with YAML loading and environment variable support.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


def _get_default_data_dir() -> Path:
    """Get default data directory from XDG_DATA_HOME or ~/.local/share."""
    if xdg_data := os.environ.get("XDG_DATA_HOME"):
        return Path(xdg_data) / "opsflow"
    return Path.home() / ".local" / "share" / "opsflow"


def _env_path(env_var: str, default: Path | None = None) -> Path | None:
    """Get path from environment variable or return default."""
    if value := os.environ.get(env_var):
        return Path(value)
    return default


@dataclass
class PathsConfig:
    """Paths configuration - all paths can be overridden via environment variables."""

    workflows_dir: Path | None = field(default_factory=lambda: _env_path("OPSFLOW_WORKFLOWS_DIR"))
    audit_log: Path | None = field(default_factory=lambda: _env_path("OPSFLOW_AUDIT_LOG"))
    logs_dir: Path | None = None

    def resolved_workflows_dir(self) -> Path:
        return self.workflows_dir or _get_default_data_dir() / "workflows"

    def resolved_audit_log(self) -> Path:
        return self.audit_log or _get_default_data_dir() / "audit" / "security.jsonl"


@dataclass
class ExecutionConfig:
    # Seconds; None waits for each step indefinitely
    step_timeout: float | None = None
    check_commands: bool = False


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file_logging: bool = False
    console_logging: bool = True


@dataclass
class AppConfig:
    paths: PathsConfig = field(default_factory=PathsConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> AppConfig:
        """Load configuration from YAML file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> AppConfig:
        """Create config from dictionary."""
        config = cls()

        if "paths" in data:
            for key, value in data["paths"].items():
                if hasattr(config.paths, key):
                    setattr(config.paths, key, Path(value).expanduser() if isinstance(value, str) else value)

        if "execution" in data:
            for key, value in data["execution"].items():
                if hasattr(config.execution, key):
                    setattr(config.execution, key, value)

        if "logging" in data:
            for key, value in data["logging"].items():
                if hasattr(config.logging, key):
                    setattr(config.logging, key, value)

        return config


def _get_default_config_dir() -> Path:
    """Get default config directory."""
    # Check environment variable first
    if config_dir := os.environ.get("OPSFLOW_CONFIG_DIR"):
        return Path(config_dir)

    # Check XDG config home
    if xdg_config := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_config) / "opsflow"

    # Fall back to ~/.config
    return Path.home() / ".config" / "opsflow"


def load_config(config_path: Path | None = None, config_dir: Path | None = None) -> AppConfig:
    """
    Load configuration.

    Args:
        config_path: Path to config file (default: searches standard locations)
        config_dir: Config directory to search

    Returns:
        AppConfig (defaults when no file is found)
    """
    if config_dir is None:
        config_dir = _get_default_config_dir()

    if config_path is None:
        search_paths = [
            config_dir / "config.yaml",
            Path.cwd() / "opsflow.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    return AppConfig.from_yaml(config_path) if config_path else AppConfig()


def validate_config(config: AppConfig) -> list[str]:
    """
    Validate configuration values.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []
    timeout = config.execution.step_timeout
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        errors.append(f"execution.step_timeout must be a positive number of seconds, got {timeout!r}")

    workflows_dir = config.paths.resolved_workflows_dir()
    if workflows_dir.exists() and not workflows_dir.is_dir():
        errors.append(f"workflows_dir is not a directory: {workflows_dir}")

    return errors
