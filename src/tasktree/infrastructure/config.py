"""Configuration management with hierarchical loading."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from tasktree.infrastructure.logger import get_logger

logger = get_logger(__name__)


class DatabaseConfig(BaseModel):
    """Task store configuration."""

    path: Path | None = None  # None = <project>/.tasktree/tasktree.db
    busy_timeout_ms: int = Field(default=5000, ge=0)


class HierarchyConfig(BaseModel):
    """Subtask hierarchy configuration."""

    # Parent edges allowed between a root and its deepest descendant; None = no cap
    max_depth: int | None = Field(default=None, ge=1)


class QueueConfig(BaseModel):
    """Queue label configuration."""

    max_name_length: int = Field(default=255, ge=1)


class Config(BaseModel):
    """Main configuration model."""

    version: str = "0.1.0"
    log_level: str = "INFO"
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    hierarchy: HierarchyConfig = Field(default_factory=HierarchyConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)


class ConfigManager:
    """Manage configuration loading from multiple sources with hierarchy."""

    def __init__(self, project_root: Path | None = None) -> None:
        """Initialize config manager.

        Args:
            project_root: Root directory of the project (default: current directory)
        """
        self.project_root = project_root or Path.cwd()
        self._config: Config | None = None

    def load_config(self) -> Config:
        """Load configuration from all sources in hierarchy order.

        Configuration hierarchy (highest priority last):
        1. System defaults (embedded in Config model)
        2. Project defaults (.tasktree/config.yaml)
        3. User overrides (~/.tasktree/config.yaml)
        4. Project-local overrides (.tasktree/local.yaml)
        5. Environment variables (TASKTREE_* prefix)

        Returns:
            Merged configuration
        """
        if self._config is not None:
            return self._config

        config_dict: dict[str, Any] = {}

        for path in (
            self.project_root / ".tasktree" / "config.yaml",
            Path.home() / ".tasktree" / "config.yaml",
            self.project_root / ".tasktree" / "local.yaml",
        ):
            if path.exists():
                config_dict = self._merge_dicts(config_dict, self._load_yaml(path))
                logger.debug("config_file_loaded", path=str(path))

        config_dict = self._apply_env_vars(config_dict)

        self._config = Config(**config_dict)
        return self._config

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        """Load YAML configuration file."""
        with open(path) as f:
            return yaml.safe_load(f) or {}

    def _merge_dicts(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_vars(self, config_dict: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variables with TASKTREE_ prefix."""
        env_mappings = {
            "TASKTREE_LOG_LEVEL": ["log_level"],
            "TASKTREE_DB_PATH": ["database", "path"],
            "TASKTREE_BUSY_TIMEOUT_MS": ["database", "busy_timeout_ms"],
            "TASKTREE_MAX_DEPTH": ["hierarchy", "max_depth"],
        }

        for env_var, path in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                current = config_dict
                for key in path[:-1]:
                    if key not in current:
                        current[key] = {}
                    current = current[key]
                current[path[-1]] = _coerce_env_value(env_var, value)

        return config_dict

    def get_database_path(self) -> Path:
        """Get path to SQLite database."""
        configured = self.load_config().database.path
        if configured is not None:
            return configured
        db_dir = self.project_root / ".tasktree"
        db_dir.mkdir(exist_ok=True)
        return db_dir / "tasktree.db"

    def get_log_dir(self) -> Path:
        """Get path to log directory."""
        log_dir = self.project_root / ".tasktree" / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir


# Env vars holding counts; everything else (paths, level names) stays a string
_INT_ENV_VARS = frozenset({"TASKTREE_BUSY_TIMEOUT_MS", "TASKTREE_MAX_DEPTH"})


def _coerce_env_value(env_var: str, value: str) -> int | str:
    if env_var not in _INT_ENV_VARS:
        return value
    try:
        return int(value)
    except ValueError:
        # left for pydantic to report
        return value
