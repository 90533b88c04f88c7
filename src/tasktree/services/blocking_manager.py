"""Blocking dependency management.

Each task has at most one outgoing blocking edge (``blocked_by_task_id``),
so the blocking relation is a set of chains and cycle detection is a
bounded linear walk rather than a general graph search.
"""

from aiosqlite import Connection

from tasktree.domain.models import Task, TaskStatus
from tasktree.infrastructure.database import Database
from tasktree.infrastructure.exceptions import (
    CircularReferenceError,
    InvalidReferenceError,
    TaskNotFoundError,
)
from tasktree.infrastructure.logger import get_logger

logger = get_logger(__name__)


class BlockingManager:
    """Sets, validates and queries blocking relationships.

    The "currently blocked" flag is never stored: it is derived on every
    read from the live status of the blocker (see ``Database.TASK_SELECT``).
    Completing a blocker therefore unblocks its dependents immediately and
    reopening it blocks them again, with no write to the dependents.
    """

    def __init__(self, database: Database):
        """Initialize blocking manager.

        Args:
            database: Task store
        """
        self.db = database

    async def validate_blocker(self, conn: Connection, task_id: int | None, blocker_id: int) -> None:
        """Check that ``blocker_id`` may block ``task_id``.

        Args:
            conn: Connection of the open transaction
            task_id: Dependent task (None while the task is being created)
            blocker_id: Proposed blocker

        Raises:
            InvalidReferenceError: Task would block itself
            TaskNotFoundError: Blocker does not exist
            CircularReferenceError: The blocker is already (transitively) blocked by the task
        """
        if task_id is not None and blocker_id == task_id:
            raise InvalidReferenceError(f"Task {task_id} cannot block itself")

        cursor = await conn.execute("SELECT id FROM tasks WHERE id = ?", (blocker_id,))
        if await cursor.fetchone() is None:
            raise TaskNotFoundError(blocker_id, role="blocker")

        if task_id is not None and await self.would_create_cycle(conn, task_id, blocker_id):
            logger.warning("blocking_cycle_rejected", task_id=task_id, blocker_id=blocker_id)
            raise CircularReferenceError("blocking", task_id, blocker_id)

    async def would_create_cycle(self, conn: Connection, task_id: int, blocker_id: int) -> bool:
        """Walk the blocking chain from ``blocker_id`` looking for ``task_id``.

        The chain has at most one edge per task, so the walk is bounded by
        the number of tasks. A chain that loops without reaching ``task_id``
        (pre-existing corruption) ends the walk.
        """
        seen: set[int] = set()
        current: int | None = blocker_id
        while current is not None and current not in seen:
            if current == task_id:
                return True
            seen.add(current)
            cursor = await conn.execute(
                "SELECT blocked_by_task_id FROM tasks WHERE id = ?", (current,)
            )
            row = await cursor.fetchone()
            current = row["blocked_by_task_id"] if row else None
        return False

    async def set_blocked_by(self, task_id: int, blocker_id: int | None) -> Task:
        """Set or clear the task that blocks ``task_id``.

        Args:
            task_id: Dependent task
            blocker_id: New blocker, or None to clear

        Returns:
            The updated task with a freshly derived blocked flag

        Raises:
            TaskNotFoundError: Task or blocker does not exist
            InvalidReferenceError: Self-block
            CircularReferenceError: Edge would close a blocking cycle
        """
        async with self.db.transaction() as conn:
            task = await self.db.fetch_task(conn, task_id)
            if task is None:
                raise TaskNotFoundError(task_id)

            if blocker_id is not None:
                await self.validate_blocker(conn, task_id, blocker_id)

            await self.db.update_task_fields(conn, task_id, {"blocked_by_task_id": blocker_id})
            updated = await self.db.fetch_task(conn, task_id)

        logger.info(
            "blocker_set" if blocker_id is not None else "blocker_cleared",
            task_id=task_id,
            blocker_id=blocker_id,
        )
        assert updated is not None
        return updated

    async def get_blocked_tasks(self, blocker_id: int) -> list[Task]:
        """Non-archived tasks whose ``blocked_by_task_id`` is ``blocker_id``.

        Raises:
            TaskNotFoundError: Blocker does not exist
        """
        async with self.db.reader() as conn:
            if await self.db.fetch_task(conn, blocker_id) is None:
                raise TaskNotFoundError(blocker_id, role="blocker")
            return await self.db.fetch_tasks(
                conn,
                ["t.blocked_by_task_id = ?", "t.archived_at IS NULL"],
                (blocker_id,),
            )

    async def get_blockers(self, task_id: int) -> list[Task]:
        """Tasks blocking ``task_id``: its single blocker, or nothing.

        Raises:
            TaskNotFoundError: Task does not exist
        """
        async with self.db.reader() as conn:
            task = await self.db.fetch_task(conn, task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.blocked_by_task_id is None:
                return []
            blocker = await self.db.fetch_task(conn, task.blocked_by_task_id)
            return [blocker] if blocker else []

    async def is_currently_blocked(self, task_id: int) -> bool:
        """Whether the task's blocker exists and is not complete."""
        blockers = await self.get_blockers(task_id)
        return any(blocker.status != TaskStatus.COMPLETE for blocker in blockers)
