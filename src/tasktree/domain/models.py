"""Core domain models for Tasktree."""

from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    IDLE = "idle"
    WORKING = "working"
    COMPLETE = "complete"


def compute_parent_status(child_statuses: Iterable[TaskStatus]) -> TaskStatus | None:
    """Derive a parent's status from the statuses of its non-archived children.

    Any working child makes the parent working; otherwise the parent is
    complete only when every child is complete, and idle in every other case.

    Args:
        child_statuses: Statuses of the parent's non-archived children

    Returns:
        Derived status, or None when there are no children (a leaf owns its status)
    """
    statuses = list(child_statuses)
    if not statuses:
        return None
    if TaskStatus.WORKING in statuses:
        return TaskStatus.WORKING
    if all(status == TaskStatus.COMPLETE for status in statuses):
        return TaskStatus.COMPLETE
    return TaskStatus.IDLE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_tags(tags: list[str] | None) -> list[str] | None:
    if tags is None:
        return None
    # Set semantics, first occurrence wins the position
    return list(dict.fromkeys(tag.strip() for tag in tags if tag.strip()))


class Task(BaseModel):
    """A work item shared between agents.

    Attributes:
        id: Store-assigned integer identity
        parent_task_id: Parent in the subtask forest (None = top-level)
        blocked_by_task_id: The single task this one waits on (None = unblocked)
        queue_name: Free-form grouping label
        archived_at: Soft-delete marker
        is_currently_blocked: Derived on read; True while the blocker is not complete
    """

    id: int
    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.IDLE
    assigned_to: str | None = None
    previous_assigned_to: str | None = None
    created_by: str | None = None
    priority: int = 0
    tags: list[str] = Field(default_factory=list)
    parent_task_id: int | None = None
    blocked_by_task_id: int | None = None
    queue_name: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    archived_at: datetime | None = None
    is_currently_blocked: bool = False

    model_config = ConfigDict(
        # Use model_dump(mode='json') for JSON output (datetime -> ISO string)
    )

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


class TaskCreate(BaseModel):
    """Validated input for creating a task."""

    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.IDLE
    assigned_to: str | None = None
    created_by: str | None = None
    priority: int = 0
    tags: list[str] = Field(default_factory=list)
    parent_task_id: int | None = None
    queue_name: str | None = None
    blocked_by_task_id: int | None = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Strip the title and reject empty values."""
        v = v.strip()
        if not v:
            raise ValueError("Task title is required")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        return _normalize_tags(v) or []

    @field_validator("description", "assigned_to", "created_by", "queue_name")
    @classmethod
    def empty_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class TaskUpdate(BaseModel):
    """Validated partial update.

    Only fields present in ``model_fields_set`` are applied, so an explicit
    ``None`` (clear the value) differs from an omitted field (leave it alone).
    """

    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    assigned_to: str | None = None
    priority: int | None = None
    tags: list[str] | None = None
    parent_task_id: int | None = None
    queue_name: str | None = None
    blocked_by_task_id: int | None = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str | None) -> str:
        if v is None or not v.strip():
            raise ValueError("Task title cannot be empty")
        return v.strip()

    @field_validator("status", "priority")
    @classmethod
    def reject_null(cls, v: object) -> object:
        if v is None:
            raise ValueError("value cannot be null")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str]:
        return _normalize_tags(v) or []

    @field_validator("description", "assigned_to", "queue_name")
    @classmethod
    def empty_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    def changes(self) -> dict[str, object]:
        """Return only the explicitly provided fields."""
        return self.model_dump(exclude_unset=True)


class TaskWithSubtasks(Task):
    """A task together with its (immediate or full) subtree."""

    subtasks: list[Task] = Field(default_factory=list)
    subtask_count: int = 0


class QueueFilters(BaseModel):
    """Equality / boolean filters for queue listings."""

    assigned_to: str | None = None
    status: TaskStatus | None = None
    parent_task_id: int | None = None  # explicit None = top-level tasks only
    exclude_subtasks: bool = False
    include_archived: bool = False
    limit: int | None = Field(default=None, ge=1)
    offset: int | None = Field(default=None, ge=0)

    model_config = ConfigDict(extra="forbid")


class StatusCounts(BaseModel):
    """Per-status task counts."""

    idle: int = 0
    working: int = 0
    complete: int = 0


class QueueStats(BaseModel):
    """Aggregate view of one queue."""

    queue_name: str
    total_tasks: int = 0
    by_status: StatusCounts = Field(default_factory=StatusCounts)
    assigned: int = 0
    unassigned: int = 0
    agents: list[str] = Field(default_factory=list)


class QueueSummary(BaseModel):
    """A queue label and how many live tasks carry it."""

    queue_name: str
    task_count: int
