"""Queue index: grouping and reporting over the free-form queue label.

Queues have no table of their own. A queue exists while at least one task
carries its name, so an unknown queue is simply empty.
"""

from typing import Any

from tasktree.domain.models import QueueFilters, QueueStats, QueueSummary, StatusCounts, Task
from tasktree.infrastructure.database import Database, utcnow_iso
from tasktree.infrastructure.exceptions import TaskNotFoundError, TaskValidationError
from tasktree.infrastructure.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_NAME_LENGTH = 255


def validate_queue_name(queue_name: str | None, max_length: int = DEFAULT_MAX_NAME_LENGTH) -> str:
    """Strip a queue name and check it is usable.

    Raises:
        TaskValidationError: Name is empty or longer than ``max_length``
    """
    name = (queue_name or "").strip()
    if not name:
        raise TaskValidationError("Queue name cannot be empty")
    if len(name) > max_length:
        raise TaskValidationError(f"Queue name is too long (max {max_length} characters)")
    return name


class QueueService:
    """Queue membership mutations and queue-level queries."""

    def __init__(self, database: Database, max_name_length: int = DEFAULT_MAX_NAME_LENGTH):
        """Initialize queue service.

        Args:
            database: Task store
            max_name_length: Longest accepted queue name after stripping
        """
        self.db = database
        self.max_name_length = max_name_length

    def validate_queue_name(self, queue_name: str) -> str:
        """Strip a queue name and check it against this service's length limit."""
        return validate_queue_name(queue_name, self.max_name_length)

    async def list_queues(self) -> list[QueueSummary]:
        """Queue names in use by live tasks, alphabetically, with task counts."""
        async with self.db.reader() as conn:
            cursor = await conn.execute(
                """
                SELECT queue_name, COUNT(*) AS task_count
                FROM tasks
                WHERE queue_name IS NOT NULL AND archived_at IS NULL
                GROUP BY queue_name
                ORDER BY queue_name ASC
                """
            )
            rows = await cursor.fetchall()

        return [
            QueueSummary(queue_name=row["queue_name"], task_count=row["task_count"])
            for row in rows
        ]

    async def get_queue_stats(self, queue_name: str) -> QueueStats:
        """Status and assignment counts for the live tasks of one queue."""
        name = self.validate_queue_name(queue_name)

        async with self.db.reader() as conn:
            cursor = await conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN status = 'idle' THEN 1 ELSE 0 END) AS idle,
                    SUM(CASE WHEN status = 'working' THEN 1 ELSE 0 END) AS working,
                    SUM(CASE WHEN status = 'complete' THEN 1 ELSE 0 END) AS complete,
                    SUM(CASE WHEN assigned_to IS NULL THEN 1 ELSE 0 END) AS unassigned,
                    SUM(CASE WHEN assigned_to IS NOT NULL THEN 1 ELSE 0 END) AS assigned
                FROM tasks
                WHERE queue_name = ? AND archived_at IS NULL
                """,
                (name,),
            )
            stats = await cursor.fetchone()

            cursor = await conn.execute(
                """
                SELECT DISTINCT assigned_to
                FROM tasks
                WHERE queue_name = ? AND assigned_to IS NOT NULL AND archived_at IS NULL
                ORDER BY assigned_to ASC
                """,
                (name,),
            )
            agents = [row["assigned_to"] for row in await cursor.fetchall()]

        # SUM over zero rows is NULL
        return QueueStats(
            queue_name=name,
            total_tasks=stats["total"] or 0,
            by_status=StatusCounts(
                idle=stats["idle"] or 0,
                working=stats["working"] or 0,
                complete=stats["complete"] or 0,
            ),
            assigned=stats["assigned"] or 0,
            unassigned=stats["unassigned"] or 0,
            agents=agents,
        )

    async def get_queue_tasks(
        self, queue_name: str, filters: QueueFilters | None = None
    ) -> list[Task]:
        """Tasks of one queue in queue order, narrowed by equality filters.

        ``filters.parent_task_id`` given explicitly as None selects top-level
        tasks only; leaving it unset applies no parent filter.
        """
        name = self.validate_queue_name(queue_name)
        filters = filters or QueueFilters()

        where = ["t.queue_name = ?"]
        params: list[Any] = [name]
        if filters.assigned_to is not None:
            where.append("t.assigned_to = ?")
            params.append(filters.assigned_to)
        if filters.status is not None:
            where.append("t.status = ?")
            params.append(filters.status.value)
        if "parent_task_id" in filters.model_fields_set:
            if filters.parent_task_id is None:
                where.append("t.parent_task_id IS NULL")
            else:
                where.append("t.parent_task_id = ?")
                params.append(filters.parent_task_id)
        if filters.exclude_subtasks:
            where.append("t.parent_task_id IS NULL")
        if not filters.include_archived:
            where.append("t.archived_at IS NULL")

        async with self.db.reader() as conn:
            return await self.db.fetch_tasks(
                conn, where, params, limit=filters.limit, offset=filters.offset
            )

    async def add_task_to_queue(self, task_id: int, queue_name: str) -> Task:
        """Put a task into a queue, replacing any queue it was in."""
        name = self.validate_queue_name(queue_name)
        task = await self._set_queue(task_id, name)
        logger.info("task_queued", task_id=task_id, queue_name=name)
        return task

    async def move_task_to_queue(self, task_id: int, queue_name: str) -> Task:
        """Move a task to another queue."""
        name = self.validate_queue_name(queue_name)
        task = await self._set_queue(task_id, name)
        logger.info("task_queue_moved", task_id=task_id, queue_name=name)
        return task

    async def remove_task_from_queue(self, task_id: int) -> Task:
        """Take a task out of its queue."""
        task = await self._set_queue(task_id, None)
        logger.info("task_unqueued", task_id=task_id)
        return task

    async def clear_queue(self, queue_name: str) -> int:
        """Detach every live task from a queue without deleting any.

        Returns:
            Number of tasks detached
        """
        name = self.validate_queue_name(queue_name)

        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE tasks SET queue_name = NULL, updated_at = ?
                WHERE queue_name = ? AND archived_at IS NULL
                """,
                (utcnow_iso(), name),
            )
            cleared = cursor.rowcount

        logger.info("queue_cleared", queue_name=name, cleared=cleared)
        return cleared

    async def _set_queue(self, task_id: int, queue_name: str | None) -> Task:
        async with self.db.transaction() as conn:
            if await self.db.fetch_task(conn, task_id) is None:
                raise TaskNotFoundError(task_id)
            await self.db.update_task_fields(conn, task_id, {"queue_name": queue_name})
            task = await self.db.fetch_task(conn, task_id)

        assert task is not None
        return task
