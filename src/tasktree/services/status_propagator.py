"""Upward recomputation of derived parent status.

A task with non-archived children does not own its status; it is derived
from the children by ``compute_parent_status``. After any mutation that can
change a child's effective status (status edit, child created, moved,
archived or deleted) the affected parent chain is walked bottom-up and each
changed status is persisted, inside the caller's transaction.
"""

from aiosqlite import Connection

from tasktree.domain.models import compute_parent_status
from tasktree.infrastructure.database import Database
from tasktree.infrastructure.exceptions import CircularReferenceError
from tasktree.infrastructure.logger import get_logger

logger = get_logger(__name__)


class StatusPropagator:
    """Keeps ancestor status consistent with descendant status.

    The walk only ever reads children and writes the node being visited;
    descendants are never modified. It stops at the first node whose
    derived status is already stored, since nothing above it can change.
    """

    def __init__(self, database: Database):
        """Initialize status propagator.

        Args:
            database: Task store used for child lookups and status writes
        """
        self.db = database

    async def recompute_ancestors(self, conn: Connection, task_id: int) -> list[int]:
        """Recompute every ancestor of a task after the task changed.

        Args:
            conn: Connection of the open transaction
            task_id: The mutated task

        Returns:
            Ids of ancestors whose stored status changed, bottom-up
        """
        cursor = await conn.execute("SELECT parent_task_id FROM tasks WHERE id = ?", (task_id,))
        row = await cursor.fetchone()
        if row is None or row["parent_task_id"] is None:
            return []
        return await self.propagate_from(conn, row["parent_task_id"])

    async def propagate_from(self, conn: Connection, node_id: int | None) -> list[int]:
        """Recompute ``node_id`` and then its ancestors until nothing changes.

        Used directly when the mutated child no longer points at the node
        (deleted child, child moved away).

        Args:
            conn: Connection of the open transaction
            node_id: First node to recompute (None is a no-op)

        Returns:
            Ids whose stored status changed, bottom-up
        """
        changed: list[int] = []
        visited: set[int] = set()
        current = node_id

        while current is not None:
            if current in visited:
                raise CircularReferenceError("parent", current, current)
            visited.add(current)

            cursor = await conn.execute(
                "SELECT status, parent_task_id FROM tasks WHERE id = ?", (current,)
            )
            row = await cursor.fetchone()
            if row is None:
                break

            derived = compute_parent_status(await self.db.fetch_child_statuses(conn, current))
            if derived is None or derived.value == row["status"]:
                break

            await self.db.update_task_fields(conn, current, {"status": derived})
            changed.append(current)
            logger.debug(
                "status_propagated",
                task_id=current,
                old_status=row["status"],
                new_status=derived.value,
            )
            current = row["parent_task_id"]

        return changed
