"""Domain models for Tasktree."""

from tasktree.domain.models import (
    QueueFilters,
    QueueStats,
    QueueSummary,
    StatusCounts,
    Task,
    TaskCreate,
    TaskStatus,
    TaskUpdate,
    TaskWithSubtasks,
    compute_parent_status,
)

__all__ = [
    "QueueFilters",
    "QueueStats",
    "QueueSummary",
    "StatusCounts",
    "Task",
    "TaskCreate",
    "TaskStatus",
    "TaskUpdate",
    "TaskWithSubtasks",
    "compute_parent_status",
]
