"""Task service: task CRUD, subtask hierarchy and agent inbox operations.

Every mutating operation is one unit of work: invariant checks, the write
itself and ancestor status propagation all run on the same transaction, so
a failed check leaves the store untouched and readers never see a parent
whose derived status lags behind its children.

Usage:
    db = Database(Path("tasktree.db"))
    await db.initialize()

    propagator = StatusPropagator(db)
    blocking = BlockingManager(db)
    service = TaskService(db, blocking, propagator)

    epic = await service.create_task("Ship release", queue_name="dev")
    step = await service.create_subtask(epic.id, "Write changelog")
    await service.update_task(step.id, status="complete")
"""

from collections import deque
from typing import Any, TypeVar

from aiosqlite import Connection
from pydantic import BaseModel, ValidationError

from tasktree.domain.models import (
    Task,
    TaskCreate,
    TaskStatus,
    TaskUpdate,
    TaskWithSubtasks,
    compute_parent_status,
)
from tasktree.infrastructure.database import Database, utcnow_iso
from tasktree.infrastructure.exceptions import (
    CircularReferenceError,
    InvalidReferenceError,
    TaskNotFoundError,
    TaskValidationError,
)
from tasktree.infrastructure.logger import get_logger
from tasktree.services.blocking_manager import BlockingManager
from tasktree.services.queue_service import DEFAULT_MAX_NAME_LENGTH, validate_queue_name
from tasktree.services.status_propagator import StatusPropagator

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_input(model: type[ModelT], data: dict[str, Any]) -> ModelT:
    """Validate raw input with a pydantic model.

    Raises:
        TaskValidationError: With one "field: reason" entry per failure
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        problems = []
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]) or "input"
            message = str(error["msg"]).removeprefix("Value error, ")
            problems.append(f"{field}: {message}")
        raise TaskValidationError("; ".join(problems)) from e


def coerce_status(status: TaskStatus | str | None) -> TaskStatus | None:
    """Parse an optional status filter value."""
    if status is None or isinstance(status, TaskStatus):
        return status
    try:
        return TaskStatus(status)
    except ValueError as e:
        valid = ", ".join(s.value for s in TaskStatus)
        raise TaskValidationError(f"Invalid status: {status}. Must be one of {valid}") from e


class TaskService:
    """Hierarchy manager and task lifecycle operations.

    Hierarchy rules:
        - parent_task_id forms a forest: a task can never become its own ancestor
        - a task with non-archived children has a derived status
        - deleting a task cascades to its whole subtree
        - archiving keeps every relationship in place
    """

    def __init__(
        self,
        database: Database,
        blocking_manager: BlockingManager | None = None,
        status_propagator: StatusPropagator | None = None,
        max_depth: int | None = None,
        max_queue_name_length: int = DEFAULT_MAX_NAME_LENGTH,
    ):
        """Initialize task service.

        Args:
            database: Task store
            blocking_manager: Validates blocked_by_task_id changes
            status_propagator: Recomputes derived ancestor status
            max_depth: Maximum parent edges between a root and any descendant (None = no cap)
            max_queue_name_length: Longest accepted queue name after stripping
        """
        self.db = database
        self.blocking = blocking_manager or BlockingManager(database)
        self.propagator = status_propagator or StatusPropagator(database)
        self.max_depth = max_depth
        self.max_queue_name_length = max_queue_name_length

    # Creation

    async def create_task(
        self,
        title: str,
        description: str | None = None,
        status: TaskStatus | str | None = None,
        assigned_to: str | None = None,
        created_by: str | None = None,
        priority: int | None = None,
        tags: list[str] | None = None,
        parent_task_id: int | None = None,
        queue_name: str | None = None,
        blocked_by_task_id: int | None = None,
    ) -> Task:
        """Create a task, optionally as a subtask of an existing task.

        A subtask inherits its parent's queue unless one is given. Adding a
        child can change the parent's derived status, so the parent chain is
        recomputed before the transaction commits.

        Raises:
            TaskValidationError: Invalid input, or the depth cap would be exceeded
            TaskNotFoundError: Parent or blocker does not exist
        """
        raw = {
            "title": title,
            "description": description,
            "status": status,
            "assigned_to": assigned_to,
            "created_by": created_by,
            "priority": priority,
            "tags": tags,
            "parent_task_id": parent_task_id,
            "queue_name": queue_name,
            "blocked_by_task_id": blocked_by_task_id,
        }
        params = parse_input(TaskCreate, {k: v for k, v in raw.items() if v is not None})
        values = params.model_dump()
        if params.queue_name is not None:
            values["queue_name"] = validate_queue_name(
                params.queue_name, self.max_queue_name_length
            )

        async with self.db.transaction() as conn:
            if params.parent_task_id is not None:
                parent = await self.db.fetch_task(conn, params.parent_task_id)
                if parent is None:
                    raise TaskNotFoundError(params.parent_task_id, role="parent")
                if params.queue_name is None:
                    values["queue_name"] = parent.queue_name
                await self._check_depth(conn, params.parent_task_id, subtree_height=0)

            if params.blocked_by_task_id is not None:
                await self.blocking.validate_blocker(conn, None, params.blocked_by_task_id)

            task_id = await self.db.insert_task_row(conn, values)
            changed = await self.propagator.recompute_ancestors(conn, task_id)
            task = await self.db.fetch_task(conn, task_id)

        logger.info(
            "task_created",
            task_id=task_id,
            parent_task_id=params.parent_task_id,
            queue_name=values["queue_name"],
            propagated=changed,
        )
        assert task is not None
        return task

    async def create_subtask(self, parent_task_id: int, title: str, **fields: Any) -> Task:
        """Create a task directly under ``parent_task_id``."""
        return await self.create_task(title, parent_task_id=parent_task_id, **fields)

    # Reads

    async def get_task(self, task_id: int) -> Task:
        """Get a task by id.

        Raises:
            TaskNotFoundError: Task does not exist
        """
        task = await self.db.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def list_tasks(
        self,
        assigned_to: str | None = None,
        status: TaskStatus | str | None = None,
        include_archived: bool = False,
        blocked_by_task_id: int | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Task]:
        """List tasks in queue order (priority desc, then oldest first)."""
        if limit is not None and limit < 1:
            raise TaskValidationError(f"limit must be a positive integer, got {limit}")
        if offset is not None and offset < 0:
            raise TaskValidationError(f"offset cannot be negative, got {offset}")

        where: list[str] = []
        params: list[Any] = []
        if assigned_to is not None:
            where.append("t.assigned_to = ?")
            params.append(assigned_to)
        status_filter = coerce_status(status)
        if status_filter is not None:
            where.append("t.status = ?")
            params.append(status_filter.value)
        if blocked_by_task_id is not None:
            where.append("t.blocked_by_task_id = ?")
            params.append(blocked_by_task_id)
        if not include_archived:
            where.append("t.archived_at IS NULL")

        async with self.db.reader() as conn:
            return await self.db.fetch_tasks(conn, where, params, limit=limit, offset=offset)

    async def get_subtasks(
        self, parent_task_id: int, recursive: bool = False, include_archived: bool = False
    ) -> list[Task]:
        """Children of a task, or its whole subtree when ``recursive``.

        Recursive results are in breadth-first order. Archived tasks are
        still walked through (their descendants stay in the tree) but are
        only returned when ``include_archived`` is set.

        Raises:
            TaskNotFoundError: Parent does not exist
        """
        async with self.db.reader() as conn:
            if await self.db.fetch_task(conn, parent_task_id) is None:
                raise TaskNotFoundError(parent_task_id, role="parent")
            return await self._subtasks(conn, parent_task_id, recursive, include_archived)

    async def get_task_with_subtasks(
        self, task_id: int, recursive: bool = False
    ) -> TaskWithSubtasks:
        """A task together with its non-archived children (or subtree)."""
        async with self.db.reader() as conn:
            task = await self.db.fetch_task(conn, task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            subtasks = await self._subtasks(conn, task_id, recursive, include_archived=False)

        return TaskWithSubtasks(
            **task.model_dump(), subtasks=subtasks, subtask_count=len(subtasks)
        )

    async def get_task_path(self, task_id: int) -> list[Task]:
        """Ancestor chain ordered from the root down to ``task_id``.

        Raises:
            TaskNotFoundError: Task does not exist
            CircularReferenceError: The stored parent chain loops
        """
        path: list[Task] = []
        seen: set[int] = set()

        async with self.db.reader() as conn:
            current: int | None = task_id
            while current is not None:
                if current in seen:
                    raise CircularReferenceError("parent", task_id, current)
                seen.add(current)

                task = await self.db.fetch_task(conn, current)
                if task is None:
                    if current == task_id:
                        raise TaskNotFoundError(task_id)
                    break
                path.append(task)
                current = task.parent_task_id

        path.reverse()
        return path

    # Updates

    async def update_task(self, task_id: int, **fields: Any) -> Task:
        """Apply a partial update.

        Only the given fields change; passing ``None`` clears a nullable
        field. Reparenting and blocker changes go through the same checks as
        ``move_subtask`` and ``BlockingManager.set_blocked_by``.

        Raises:
            TaskNotFoundError: Task, new parent or blocker does not exist
            InvalidReferenceError: Self-parent or self-block
            CircularReferenceError: New parent is a descendant, or blocking cycle
            TaskValidationError: Invalid values, or a direct edit of a derived status
        """
        changes = parse_input(TaskUpdate, fields).changes()
        if changes.get("queue_name") is not None:
            changes["queue_name"] = validate_queue_name(
                changes["queue_name"], self.max_queue_name_length
            )

        async with self.db.transaction() as conn:
            task = await self.db.fetch_task(conn, task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if not changes:
                return task

            old_parent_id = task.parent_task_id
            reparented = (
                "parent_task_id" in changes and changes["parent_task_id"] != old_parent_id
            )
            if reparented:
                await self._check_reparent(conn, task_id, changes["parent_task_id"])
            else:
                changes.pop("parent_task_id", None)

            if changes.get("blocked_by_task_id") is not None:
                await self.blocking.validate_blocker(conn, task_id, changes["blocked_by_task_id"])

            if "assigned_to" in changes:
                if changes["assigned_to"] != task.assigned_to:
                    changes["previous_assigned_to"] = task.assigned_to
                else:
                    changes.pop("assigned_to")

            if "status" in changes:
                derived = compute_parent_status(await self.db.fetch_child_statuses(conn, task_id))
                if derived is not None and changes["status"] != derived:
                    logger.warning(
                        "derived_status_edit_rejected",
                        task_id=task_id,
                        requested=changes["status"].value,
                        derived=derived.value,
                    )
                    raise TaskValidationError(
                        f"Task {task_id} has subtasks; its status is derived "
                        f"from them and is currently '{derived.value}'"
                    )

            await self.db.update_task_fields(conn, task_id, changes)

            changed: list[int] = []
            if reparented:
                changed += await self.propagator.propagate_from(conn, old_parent_id)
                changed += await self.propagator.recompute_ancestors(conn, task_id)
            elif "status" in changes:
                changed += await self.propagator.recompute_ancestors(conn, task_id)

            updated = await self.db.fetch_task(conn, task_id)

        if reparented:
            logger.info(
                "task_moved",
                task_id=task_id,
                old_parent_id=old_parent_id,
                new_parent_id=changes["parent_task_id"],
            )
        logger.info("task_updated", task_id=task_id, fields=sorted(changes), propagated=changed)
        assert updated is not None
        return updated

    async def move_subtask(self, subtask_id: int, new_parent_id: int | None) -> Task:
        """Move a task under a new parent; ``None`` detaches it to top level."""
        return await self.update_task(subtask_id, parent_task_id=new_parent_id)

    # Removal

    async def delete_task(self, task_id: int) -> int:
        """Hard-delete a task and, through the store's cascade, its subtree.

        Tasks blocked by any removed task are detached by the store. The
        former parent loses a child, so its chain is recomputed.

        Returns:
            Number of tasks removed (the task plus its descendants)

        Raises:
            TaskNotFoundError: Task does not exist
        """
        async with self.db.transaction() as conn:
            task = await self.db.fetch_task(conn, task_id)
            if task is None:
                raise TaskNotFoundError(task_id)

            before = await self.db.count_tasks(conn)
            await self.db.delete_task_row(conn, task_id)
            removed = before - await self.db.count_tasks(conn)
            changed = await self.propagator.propagate_from(conn, task.parent_task_id)

        logger.info("task_deleted", task_id=task_id, removed=removed, propagated=changed)
        return removed

    async def archive_task(self, task_id: int) -> Task:
        """Soft-delete a task. Archiving an archived task is a no-op.

        Raises:
            TaskNotFoundError: Task does not exist
        """
        async with self.db.transaction() as conn:
            task = await self.db.fetch_task(conn, task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.is_archived:
                return task

            await self.db.update_task_fields(conn, task_id, {"archived_at": utcnow_iso()})
            changed = await self.propagator.recompute_ancestors(conn, task_id)
            archived = await self.db.fetch_task(conn, task_id)

        logger.info("task_archived", task_id=task_id, propagated=changed)
        assert archived is not None
        return archived

    # Agent inbox

    async def get_agent_queue(self, agent: str) -> list[Task]:
        """Open (idle or working) tasks assigned to an agent, in queue order."""
        async with self.db.reader() as conn:
            return await self.db.fetch_tasks(
                conn,
                [
                    "t.assigned_to = ?",
                    "t.status IN ('idle', 'working')",
                    "t.archived_at IS NULL",
                ],
                (agent,),
            )

    async def signup_for_task(self, agent: str) -> Task | None:
        """Claim the agent's next idle leaf task and mark it working.

        Parent tasks are skipped: their status follows their subtasks.

        Returns:
            The claimed task, or None when the agent has nothing idle
        """
        async with self.db.transaction() as conn:
            candidates = await self.db.fetch_tasks(
                conn,
                [
                    "t.assigned_to = ?",
                    "t.status = 'idle'",
                    "t.archived_at IS NULL",
                    "NOT EXISTS (SELECT 1 FROM tasks c "
                    "WHERE c.parent_task_id = t.id AND c.archived_at IS NULL)",
                ],
                (agent,),
                limit=1,
            )
            if not candidates:
                return None

            task_id = candidates[0].id
            await self.db.update_task_fields(conn, task_id, {"status": TaskStatus.WORKING})
            changed = await self.propagator.recompute_ancestors(conn, task_id)
            claimed = await self.db.fetch_task(conn, task_id)

        logger.info("task_signed_up", task_id=task_id, agent=agent, propagated=changed)
        return claimed

    async def transfer_task(self, task_id: int, current_agent: str, new_agent: str) -> Task:
        """Hand a task from one agent to another.

        A leaf task is reset to idle for its new owner; a parent keeps its
        derived status.

        Raises:
            TaskNotFoundError: Task does not exist
            InvalidReferenceError: Task is not assigned to ``current_agent``
            TaskValidationError: Task is already complete, or no new agent given
        """
        new_agent = new_agent.strip()
        if not new_agent:
            raise TaskValidationError("new_agent is required")

        async with self.db.transaction() as conn:
            task = await self.db.fetch_task(conn, task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.assigned_to != current_agent:
                raise InvalidReferenceError(
                    f"Task {task_id} is not assigned to {current_agent} "
                    f"(currently assigned to: {task.assigned_to or 'no one'})"
                )
            if task.status == TaskStatus.COMPLETE:
                raise TaskValidationError(f"Task {task_id} is complete and cannot be transferred")

            fields: dict[str, Any] = {
                "assigned_to": new_agent,
                "previous_assigned_to": current_agent,
            }
            is_leaf = not await self.db.fetch_child_statuses(conn, task_id)
            if is_leaf:
                fields["status"] = TaskStatus.IDLE
            await self.db.update_task_fields(conn, task_id, fields)

            changed: list[int] = []
            if is_leaf:
                changed = await self.propagator.recompute_ancestors(conn, task_id)
            transferred = await self.db.fetch_task(conn, task_id)

        logger.info(
            "task_transferred",
            task_id=task_id,
            from_agent=current_agent,
            to_agent=new_agent,
            propagated=changed,
        )
        assert transferred is not None
        return transferred

    # Hierarchy helpers

    async def _subtasks(
        self, conn: Connection, parent_task_id: int, recursive: bool, include_archived: bool
    ) -> list[Task]:
        if not recursive:
            return await self.db.fetch_children(conn, parent_task_id, include_archived)

        tasks = [task for level in await self._descendant_levels(conn, parent_task_id) for task in level]
        if include_archived:
            return tasks
        return [task for task in tasks if not task.is_archived]

    async def _descendant_levels(self, conn: Connection, root_id: int) -> list[list[Task]]:
        """Breadth-first descendants of ``root_id``, one list per level.

        Uses an explicit frontier so arbitrarily deep chains never recurse.
        Archived tasks are included.
        """
        levels: list[list[Task]] = []
        seen: set[int] = {root_id}
        frontier: deque[int] = deque([root_id])

        while frontier:
            parent_ids = list(frontier)
            frontier.clear()
            level = [
                child
                for child in await self.db.fetch_children_of_many(conn, parent_ids)
                if child.id not in seen
            ]
            if not level:
                break
            for child in level:
                seen.add(child.id)
                frontier.append(child.id)
            levels.append(level)

        return levels

    async def _depth_of(self, conn: Connection, task_id: int) -> int:
        """Number of parent edges between ``task_id`` and its root."""
        depth = 0
        seen: set[int] = {task_id}
        cursor = await conn.execute("SELECT parent_task_id FROM tasks WHERE id = ?", (task_id,))
        row = await cursor.fetchone()
        while row is not None and row["parent_task_id"] is not None:
            parent_id = row["parent_task_id"]
            if parent_id in seen:
                raise CircularReferenceError("parent", task_id, parent_id)
            seen.add(parent_id)
            depth += 1
            cursor = await conn.execute(
                "SELECT parent_task_id FROM tasks WHERE id = ?", (parent_id,)
            )
            row = await cursor.fetchone()
        return depth

    async def _check_depth(self, conn: Connection, new_parent_id: int, subtree_height: int) -> None:
        if self.max_depth is None:
            return
        depth = await self._depth_of(conn, new_parent_id) + 1 + subtree_height
        if depth > self.max_depth:
            logger.warning(
                "max_depth_exceeded",
                parent_task_id=new_parent_id,
                depth=depth,
                max_depth=self.max_depth,
            )
            raise TaskValidationError(
                f"Maximum subtask depth of {self.max_depth} exceeded (would be {depth})"
            )

    async def _check_reparent(self, conn: Connection, task_id: int, new_parent_id: int | None) -> None:
        """Validate moving ``task_id`` under ``new_parent_id``."""
        if new_parent_id is None:
            return
        if new_parent_id == task_id:
            raise InvalidReferenceError(f"Task {task_id} cannot be its own parent")
        if await self.db.fetch_task(conn, new_parent_id) is None:
            raise TaskNotFoundError(new_parent_id, role="parent")

        levels = await self._descendant_levels(conn, task_id)
        if any(child.id == new_parent_id for level in levels for child in level):
            logger.warning("hierarchy_cycle_rejected", task_id=task_id, new_parent_id=new_parent_id)
            raise CircularReferenceError("parent", task_id, new_parent_id)

        await self._check_depth(conn, new_parent_id, subtree_height=len(levels))
