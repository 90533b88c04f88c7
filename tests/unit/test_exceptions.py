"""Unit tests for the error taxonomy."""

import pytest
from tasktree.infrastructure.exceptions import (
    CircularReferenceError,
    InvalidReferenceError,
    TaskNotFoundError,
    TaskTreeError,
    TaskValidationError,
)


class TestErrorKinds:
    """Each error carries the kind reported by the tool surface."""

    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            (TaskNotFoundError(1), "NotFound"),
            (InvalidReferenceError("self"), "InvalidReference"),
            (CircularReferenceError("parent", 1, 2), "CircularReference"),
            (TaskValidationError("bad"), "ValidationError"),
        ],
    )
    def test_kind(self, error: TaskTreeError, kind: str) -> None:
        assert isinstance(error, TaskTreeError)
        assert error.error_kind == kind


class TestMessages:
    """Tests for error messages and attributes."""

    def test_not_found_task(self) -> None:
        error = TaskNotFoundError(42)
        assert str(error) == "Task not found: 42"
        assert error.task_id == 42
        assert error.role == "task"

    @pytest.mark.parametrize(
        ("role", "message"),
        [("parent", "Parent task not found: 7"), ("blocker", "Blocker task not found: 7")],
    )
    def test_not_found_roles(self, role: str, message: str) -> None:
        assert str(TaskNotFoundError(7, role=role)) == message

    def test_circular_parent(self) -> None:
        error = CircularReferenceError("parent", 1, 3)
        assert "circular parent-child relationship" in str(error)
        assert (error.relation, error.task_id, error.target_id) == ("parent", 1, 3)

    def test_circular_blocking(self) -> None:
        error = CircularReferenceError("blocking", 1, 2)
        assert "circular blocking relationship" in str(error)
