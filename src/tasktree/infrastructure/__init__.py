"""Infrastructure layer for Tasktree."""

from tasktree.infrastructure.config import Config, ConfigManager
from tasktree.infrastructure.database import Database
from tasktree.infrastructure.exceptions import (
    CircularReferenceError,
    InvalidReferenceError,
    TaskNotFoundError,
    TaskTreeError,
    TaskValidationError,
)
from tasktree.infrastructure.logger import get_logger, setup_logging

__all__ = [
    "CircularReferenceError",
    "Config",
    "ConfigManager",
    "Database",
    "InvalidReferenceError",
    "TaskNotFoundError",
    "TaskTreeError",
    "TaskValidationError",
    "get_logger",
    "setup_logging",
]
