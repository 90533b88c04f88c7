"""Integration tests for blocking relationships.

Tests:
- Cycle rejection leaves both tasks untouched
- Blocked flag derived from the blocker's live status
- Deleting a blocker detaches its dependents
- Self-block and missing-blocker validation
"""

import pytest
from tasktree.infrastructure.exceptions import (
    CircularReferenceError,
    InvalidReferenceError,
    TaskNotFoundError,
)
from tasktree.services import BlockingManager, TaskService


class TestBlockingCycles:
    """Blocking edges must never form a cycle."""

    @pytest.mark.asyncio
    async def test_two_task_cycle_rejected(
        self, task_service: TaskService, blocking_manager: BlockingManager
    ) -> None:
        a = await task_service.create_task("A")
        b = await task_service.create_task("B", blocked_by_task_id=a.id)

        with pytest.raises(CircularReferenceError, match="circular blocking relationship"):
            await blocking_manager.set_blocked_by(a.id, b.id)

        assert await task_service.get_task(a.id) == a
        assert await task_service.get_task(b.id) == b

    @pytest.mark.asyncio
    async def test_long_chain_cycle_rejected(
        self, task_service: TaskService, blocking_manager: BlockingManager
    ) -> None:
        first = await task_service.create_task("T0")
        previous = first
        for i in range(1, 6):
            previous = await task_service.create_task(f"T{i}", blocked_by_task_id=previous.id)

        with pytest.raises(CircularReferenceError):
            await blocking_manager.set_blocked_by(first.id, previous.id)

    @pytest.mark.asyncio
    async def test_cycle_via_update_task_rejected(self, task_service: TaskService) -> None:
        a = await task_service.create_task("A")
        b = await task_service.create_task("B", blocked_by_task_id=a.id)

        with pytest.raises(CircularReferenceError):
            await task_service.update_task(a.id, blocked_by_task_id=b.id, priority=9)

        # The whole update is rejected, including the unrelated field
        assert (await task_service.get_task(a.id)).priority == 0

    @pytest.mark.asyncio
    async def test_chain_without_cycle_allowed(
        self, task_service: TaskService, blocking_manager: BlockingManager
    ) -> None:
        a = await task_service.create_task("A")
        b = await task_service.create_task("B", blocked_by_task_id=a.id)
        c = await task_service.create_task("C")

        updated = await blocking_manager.set_blocked_by(c.id, b.id)

        assert updated.blocked_by_task_id == b.id
        assert updated.is_currently_blocked is True


class TestBlockerValidation:
    """Tests for blocker reference checks."""

    @pytest.mark.asyncio
    async def test_self_block_rejected(
        self, task_service: TaskService, blocking_manager: BlockingManager
    ) -> None:
        task = await task_service.create_task("Solo")

        with pytest.raises(InvalidReferenceError, match="cannot block itself"):
            await blocking_manager.set_blocked_by(task.id, task.id)

    @pytest.mark.asyncio
    async def test_missing_blocker_rejected(
        self, task_service: TaskService, blocking_manager: BlockingManager
    ) -> None:
        task = await task_service.create_task("Waiting")

        with pytest.raises(TaskNotFoundError, match="Blocker task not found: 404"):
            await blocking_manager.set_blocked_by(task.id, 404)

    @pytest.mark.asyncio
    async def test_missing_blocker_at_create(self, task_service: TaskService) -> None:
        with pytest.raises(TaskNotFoundError):
            await task_service.create_task("Waiting", blocked_by_task_id=404)

        assert await task_service.list_tasks() == []

    @pytest.mark.asyncio
    async def test_missing_task_rejected(self, blocking_manager: BlockingManager) -> None:
        with pytest.raises(TaskNotFoundError, match="Task not found: 7"):
            await blocking_manager.set_blocked_by(7, None)

    @pytest.mark.asyncio
    async def test_clear_blocker(
        self, task_service: TaskService, blocking_manager: BlockingManager
    ) -> None:
        blocker = await task_service.create_task("Blocker")
        dependent = await task_service.create_task("Dependent", blocked_by_task_id=blocker.id)

        cleared = await blocking_manager.set_blocked_by(dependent.id, None)

        assert cleared.blocked_by_task_id is None
        assert cleared.is_currently_blocked is False
        assert await blocking_manager.get_blockers(dependent.id) == []


class TestBlockedState:
    """The blocked flag follows the blocker's status on every read."""

    @pytest.mark.asyncio
    async def test_complete_and_reopen_blocker(
        self, task_service: TaskService, blocking_manager: BlockingManager
    ) -> None:
        blocker = await task_service.create_task("Blocker")
        dependent = await task_service.create_task("Dependent", blocked_by_task_id=blocker.id)
        assert dependent.is_currently_blocked is True

        await task_service.update_task(blocker.id, status="complete")
        assert (await task_service.get_task(dependent.id)).is_currently_blocked is False
        assert await blocking_manager.is_currently_blocked(dependent.id) is False

        await task_service.update_task(blocker.id, status="idle")
        assert (await task_service.get_task(dependent.id)).is_currently_blocked is True
        assert await blocking_manager.is_currently_blocked(dependent.id) is True

    @pytest.mark.asyncio
    async def test_parent_blocker_completes_through_children(
        self, task_service: TaskService
    ) -> None:
        """A parent blocker unblocks once its derived status becomes complete."""
        blocker = await task_service.create_task("Epic")
        child = await task_service.create_subtask(blocker.id, "Step")
        dependent = await task_service.create_task("Follow-up", blocked_by_task_id=blocker.id)

        await task_service.update_task(child.id, status="complete")

        assert (await task_service.get_task(dependent.id)).is_currently_blocked is False

    @pytest.mark.asyncio
    async def test_delete_blocker_detaches_dependent(
        self, task_service: TaskService, blocking_manager: BlockingManager
    ) -> None:
        blocker = await task_service.create_task("Blocker")
        dependent = await task_service.create_task("Dependent", blocked_by_task_id=blocker.id)

        await task_service.delete_task(blocker.id)

        refreshed = await task_service.get_task(dependent.id)
        assert refreshed.blocked_by_task_id is None
        assert refreshed.is_currently_blocked is False
        assert await blocking_manager.get_blockers(dependent.id) == []

    @pytest.mark.asyncio
    async def test_archiving_blocker_keeps_edge(self, task_service: TaskService) -> None:
        blocker = await task_service.create_task("Blocker")
        dependent = await task_service.create_task("Dependent", blocked_by_task_id=blocker.id)

        await task_service.archive_task(blocker.id)

        refreshed = await task_service.get_task(dependent.id)
        assert refreshed.blocked_by_task_id == blocker.id
        assert refreshed.is_currently_blocked is True


class TestBlockingQueries:
    """Tests for blocker and dependent lookups."""

    @pytest.mark.asyncio
    async def test_get_blocked_tasks(
        self, task_service: TaskService, blocking_manager: BlockingManager
    ) -> None:
        blocker = await task_service.create_task("Blocker")
        first = await task_service.create_task("First", blocked_by_task_id=blocker.id)
        second = await task_service.create_task("Second", blocked_by_task_id=blocker.id, priority=5)
        archived = await task_service.create_task("Archived", blocked_by_task_id=blocker.id)
        await task_service.archive_task(archived.id)

        blocked = await blocking_manager.get_blocked_tasks(blocker.id)

        assert [t.id for t in blocked] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_get_blocked_tasks_missing_blocker(self, blocking_manager: BlockingManager) -> None:
        with pytest.raises(TaskNotFoundError):
            await blocking_manager.get_blocked_tasks(99)

    @pytest.mark.asyncio
    async def test_get_blockers(
        self, task_service: TaskService, blocking_manager: BlockingManager
    ) -> None:
        blocker = await task_service.create_task("Blocker")
        dependent = await task_service.create_task("Dependent", blocked_by_task_id=blocker.id)

        blockers = await blocking_manager.get_blockers(dependent.id)

        assert [t.id for t in blockers] == [blocker.id]
        assert await blocking_manager.get_blockers(blocker.id) == []

    @pytest.mark.asyncio
    async def test_list_tasks_by_blocker(self, task_service: TaskService) -> None:
        blocker = await task_service.create_task("Blocker")
        dependent = await task_service.create_task("Dependent", blocked_by_task_id=blocker.id)
        await task_service.create_task("Unrelated")

        tasks = await task_service.list_tasks(blocked_by_task_id=blocker.id)

        assert [t.id for t in tasks] == [dependent.id]
