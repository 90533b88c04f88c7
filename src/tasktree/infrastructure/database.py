"""Task store using SQLite with WAL mode."""

import asyncio
import json
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager, nullcontext
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
from aiosqlite import Connection

from tasktree.domain.models import Task, TaskStatus
from tasktree.infrastructure.logger import get_logger

logger = get_logger(__name__)

# Columns a pre-hierarchy tasks table may be missing, in the order they were introduced
_ADDED_COLUMNS: tuple[tuple[str, str], ...] = (
    ("parent_task_id", "INTEGER REFERENCES tasks(id) ON DELETE CASCADE"),
    ("queue_name", "TEXT"),
    ("previous_assigned_to", "TEXT"),
    ("blocked_by_task_id", "INTEGER REFERENCES tasks(id) ON DELETE SET NULL"),
)

# Every read goes through this projection so the blocked flag is always live
TASK_SELECT = """
    SELECT
        t.*,
        CASE
            WHEN b.id IS NOT NULL AND b.status != 'complete' THEN 1
            ELSE 0
        END AS is_currently_blocked
    FROM tasks t
    LEFT JOIN tasks b ON b.id = t.blocked_by_task_id
"""

TASK_ORDER = "ORDER BY t.priority DESC, t.created_at ASC, t.id ASC"


def utcnow_iso() -> str:
    """Current UTC time as the ISO string stored in timestamp columns."""
    return datetime.now(timezone.utc).isoformat()


class Database:
    """SQLite task store with WAL mode for concurrent access.

    Writers are serialized: file databases take the SQLite write lock up
    front with ``BEGIN IMMEDIATE``; the shared ``:memory:`` connection is
    additionally guarded by an asyncio lock so two coroutines never
    interleave statements inside one transaction.
    """

    def __init__(self, db_path: Path, busy_timeout_ms: int = 5000) -> None:
        """Initialize database.

        Args:
            db_path: Path to SQLite database file, or Path(":memory:")
            busy_timeout_ms: How long a writer waits for the write lock
        """
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self._initialized = False
        self._shared_conn: Connection | None = None  # For :memory: databases
        self._write_lock = asyncio.Lock()

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    async def initialize(self) -> None:
        """Initialize database schema and settings."""
        if self._initialized:
            return

        if not self.is_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._get_connection() as conn:
            if not self.is_memory:
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous=NORMAL")
                await conn.execute("PRAGMA wal_autocheckpoint=1000")

            await self._create_tables(conn)
            await self._run_migrations(conn)
            await self._create_indexes(conn)

        self._initialized = True
        logger.debug("database_initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection.

        Only needed for :memory: databases to clean up the shared connection.
        File-based databases close connections automatically.
        """
        if self._shared_conn is not None:
            await self._shared_conn.close()
            self._shared_conn = None
            self._initialized = False

    async def _connect(self, target: str) -> Connection:
        # isolation_level=None: transactions are opened explicitly by transaction()
        conn = await aiosqlite.connect(target, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        # SQLite defaults to foreign_keys=OFF; cascades depend on it
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
        return conn

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[Connection]:
        """Get database connection with proper settings.

        For :memory: databases, maintains a shared connection to preserve data
        across multiple operations. For file databases, creates a new connection
        each time.
        """
        if self.is_memory:
            if self._shared_conn is None:
                self._shared_conn = await self._connect(":memory:")
            yield self._shared_conn
        else:
            conn = await self._connect(str(self.db_path))
            try:
                yield conn
            finally:
                await conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Connection]:
        """Run a unit of work atomically.

        Every invariant check and every write of one operation happens on the
        yielded connection. Any exception rolls the whole unit back and is
        re-raised unchanged.
        """
        async with self._write_lock if self.is_memory else nullcontext():
            async with self._get_connection() as conn:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    await conn.execute("ROLLBACK")
                    raise
                else:
                    await conn.execute("COMMIT")

    @asynccontextmanager
    async def reader(self) -> AsyncIterator[Connection]:
        """Connection for read-only queries.

        On the shared in-memory connection reads wait for any open write
        transaction so they never observe it half-applied. On a file
        database the reads run inside one deferred transaction, so every
        statement sees the same WAL snapshot.
        """
        if self.is_memory:
            async with self._write_lock:
                async with self._get_connection() as conn:
                    yield conn
            return

        async with self._get_connection() as conn:
            await conn.execute("BEGIN")
            try:
                yield conn
            finally:
                await conn.execute("ROLLBACK")

    async def validate_foreign_keys(self) -> list[tuple[Any, ...]]:
        """Run PRAGMA foreign_key_check and return violations.

        Returns:
            List of foreign key violations (empty if valid)
        """
        async with self.reader() as conn:
            cursor = await conn.execute("PRAGMA foreign_key_check")
            violations = await cursor.fetchall()
            return [tuple(row) for row in violations]

    async def _create_tables(self, conn: Connection) -> None:
        """Create the tasks table."""
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                description TEXT,
                status TEXT NOT NULL CHECK(status IN ('idle', 'working', 'complete')),
                assigned_to TEXT,
                previous_assigned_to TEXT,
                created_by TEXT,
                priority INTEGER NOT NULL DEFAULT 0,
                tags TEXT,
                parent_task_id INTEGER,
                queue_name TEXT,
                blocked_by_task_id INTEGER,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                archived_at TIMESTAMP,
                FOREIGN KEY (parent_task_id) REFERENCES tasks(id) ON DELETE CASCADE,
                FOREIGN KEY (blocked_by_task_id) REFERENCES tasks(id) ON DELETE SET NULL,
                CHECK(parent_task_id IS NULL OR parent_task_id != id),
                CHECK(blocked_by_task_id IS NULL OR blocked_by_task_id != id)
            )
            """
        )

    async def _run_migrations(self, conn: Connection) -> None:
        """Add relationship columns missing from tables created by older releases."""
        cursor = await conn.execute("PRAGMA table_info(tasks)")
        column_names = {col["name"] for col in await cursor.fetchall()}

        for column, definition in _ADDED_COLUMNS:
            if column not in column_names:
                logger.info("migrating_tasks_table", added_column=column)
                await conn.execute(f"ALTER TABLE tasks ADD COLUMN {column} {definition}")

    async def _create_indexes(self, conn: Connection) -> None:
        """Create lookup indexes (parent, blocker, queue, assignee)."""
        indexes = {
            "idx_tasks_assigned_to": "tasks(assigned_to)",
            "idx_tasks_status": "tasks(status)",
            "idx_tasks_assigned_status": "tasks(assigned_to, status)",
            "idx_tasks_archived": "tasks(archived_at)",
            "idx_tasks_parent_task_id": "tasks(parent_task_id)",
            "idx_tasks_queue_name": "tasks(queue_name)",
            "idx_tasks_queue_status": "tasks(queue_name, status)",
            "idx_tasks_queue_assigned": "tasks(queue_name, assigned_to)",
            "idx_tasks_blocked_by_task_id": "tasks(blocked_by_task_id)",
            "idx_tasks_priority_created": "tasks(priority DESC, created_at ASC)",
        }
        for name, target in indexes.items():
            await conn.execute(f"CREATE INDEX IF NOT EXISTS {name} ON {target}")

    # Row-level helpers. They take the caller's connection so that a whole
    # operation (checks + writes + propagation) shares one transaction.

    async def fetch_task(self, conn: Connection, task_id: int) -> Task | None:
        """Fetch one task by id."""
        cursor = await conn.execute(f"{TASK_SELECT} WHERE t.id = ?", (task_id,))
        row = await cursor.fetchone()
        return self._row_to_task(row) if row else None

    async def fetch_tasks(
        self,
        conn: Connection,
        where: Sequence[str] = (),
        params: Sequence[Any] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Task]:
        """Fetch tasks matching AND-ed WHERE fragments in queue order."""
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        query = f"{TASK_SELECT} {where_sql} {TASK_ORDER}"
        values = list(params)
        if limit is not None:
            query += " LIMIT ?"
            values.append(limit)
        if offset:
            if limit is None:
                query += " LIMIT -1"
            query += " OFFSET ?"
            values.append(offset)

        cursor = await conn.execute(query, tuple(values))
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def fetch_children(
        self, conn: Connection, parent_id: int, include_archived: bool = False
    ) -> list[Task]:
        """Immediate children of one task."""
        where = ["t.parent_task_id = ?"]
        if not include_archived:
            where.append("t.archived_at IS NULL")
        return await self.fetch_tasks(conn, where, (parent_id,))

    async def fetch_children_of_many(
        self, conn: Connection, parent_ids: Sequence[int]
    ) -> list[Task]:
        """All children (archived included) of any of the given parents.

        Args:
            parent_ids: Parent task ids to expand

        Raises:
            ValueError: If parent_ids is empty
        """
        if not parent_ids:
            raise ValueError("parent_ids cannot be empty")
        placeholders = ",".join("?" * len(parent_ids))
        return await self.fetch_tasks(
            conn, [f"t.parent_task_id IN ({placeholders})"], tuple(parent_ids)
        )

    async def fetch_child_statuses(self, conn: Connection, parent_id: int) -> list[TaskStatus]:
        """Statuses of the non-archived children of a task."""
        cursor = await conn.execute(
            "SELECT status FROM tasks WHERE parent_task_id = ? AND archived_at IS NULL",
            (parent_id,),
        )
        return [TaskStatus(row["status"]) for row in await cursor.fetchall()]

    async def insert_task_row(self, conn: Connection, values: dict[str, Any]) -> int:
        """Insert a task row and return its new id."""
        now = utcnow_iso()
        cursor = await conn.execute(
            """
            INSERT INTO tasks (
                title, description, status, assigned_to, created_by, priority,
                tags, parent_task_id, queue_name, blocked_by_task_id,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                values["title"],
                values.get("description"),
                TaskStatus(values.get("status", TaskStatus.IDLE)).value,
                values.get("assigned_to"),
                values.get("created_by"),
                values.get("priority", 0),
                json.dumps(values.get("tags") or []),
                values.get("parent_task_id"),
                values.get("queue_name"),
                values.get("blocked_by_task_id"),
                now,
                now,
            ),
        )
        task_id = cursor.lastrowid
        if task_id is None:
            raise RuntimeError("Failed to retrieve id of created task")
        return task_id

    async def update_task_fields(
        self, conn: Connection, task_id: int, fields: dict[str, Any]
    ) -> None:
        """Write the given columns and bump updated_at."""
        assignments: list[str] = []
        values: list[Any] = []
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            if column == "tags":
                value = json.dumps(value or [])
            elif isinstance(value, TaskStatus):
                value = value.value
            values.append(value)
        assignments.append("updated_at = ?")
        values.append(utcnow_iso())
        values.append(task_id)

        await conn.execute(
            f"UPDATE tasks SET {', '.join(assignments)} WHERE id = ?", tuple(values)
        )

    async def delete_task_row(self, conn: Connection, task_id: int) -> bool:
        """Delete a task; the store cascades to descendants and detaches dependents."""
        cursor = await conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return cursor.rowcount > 0

    async def count_tasks(self, conn: Connection) -> int:
        cursor = await conn.execute("SELECT COUNT(*) AS n FROM tasks")
        row = await cursor.fetchone()
        return int(row["n"]) if row else 0

    # Convenience read used outside a unit of work

    async def get_task(self, task_id: int) -> Task | None:
        """Get task by ID."""
        async with self.reader() as conn:
            return await self.fetch_task(conn, task_id)

    def _row_to_task(self, row: aiosqlite.Row) -> Task:
        """Convert database row to Task model."""
        row_dict = dict(row)

        return Task(
            id=row_dict["id"],
            title=row_dict["title"],
            description=row_dict["description"],
            status=TaskStatus(row_dict["status"]),
            assigned_to=row_dict["assigned_to"],
            previous_assigned_to=row_dict.get("previous_assigned_to"),
            created_by=row_dict["created_by"],
            priority=row_dict["priority"] or 0,
            tags=json.loads(row_dict["tags"]) if row_dict["tags"] else [],
            parent_task_id=row_dict.get("parent_task_id"),
            blocked_by_task_id=row_dict.get("blocked_by_task_id"),
            queue_name=row_dict.get("queue_name"),
            created_at=datetime.fromisoformat(row_dict["created_at"]),
            updated_at=datetime.fromisoformat(row_dict["updated_at"]),
            archived_at=datetime.fromisoformat(row_dict["archived_at"])
            if row_dict["archived_at"]
            else None,
            is_currently_blocked=bool(row_dict.get("is_currently_blocked", 0)),
        )
