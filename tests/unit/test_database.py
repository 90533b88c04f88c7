"""Unit tests for the SQLite task store."""

from pathlib import Path

import aiosqlite
import pytest
from tasktree.domain.models import TaskStatus
from tasktree.infrastructure.database import Database


async def _insert(db: Database, **values: object) -> int:
    async with db.transaction() as conn:
        return await db.insert_task_row(conn, {"title": "task", **values})


class TestSchema:
    """Tests for schema creation and pragmas."""

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, memory_db: Database) -> None:
        await memory_db.initialize()
        assert await memory_db.validate_foreign_keys() == []

    @pytest.mark.asyncio
    async def test_foreign_keys_enabled(self, memory_db: Database) -> None:
        async with memory_db.reader() as conn:
            cursor = await conn.execute("PRAGMA foreign_keys")
            row = await cursor.fetchone()
        assert row[0] == 1

    @pytest.mark.asyncio
    async def test_file_database_uses_wal(self, file_db: Database) -> None:
        async with file_db.reader() as conn:
            cursor = await conn.execute("PRAGMA journal_mode")
            row = await cursor.fetchone()
        assert row[0].lower() == "wal"

    @pytest.mark.asyncio
    async def test_file_reader_holds_one_snapshot(self, file_db: Database) -> None:
        """A commit landing mid-read is invisible until the reader exits."""
        await _insert(file_db, title="first")

        async with file_db.reader() as conn:
            assert conn.in_transaction
            before = await file_db.count_tasks(conn)
            await _insert(file_db, title="second")
            during = await file_db.count_tasks(conn)

        async with file_db.reader() as conn:
            after = await file_db.count_tasks(conn)

        assert (before, during, after) == (1, 1, 2)

    @pytest.mark.asyncio
    async def test_indexes_created(self, memory_db: Database) -> None:
        async with memory_db.reader() as conn:
            cursor = await conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'tasks'"
            )
            names = {row["name"] for row in await cursor.fetchall()}
        assert {
            "idx_tasks_parent_task_id",
            "idx_tasks_blocked_by_task_id",
            "idx_tasks_queue_name",
        } <= names

    @pytest.mark.asyncio
    async def test_invalid_status_rejected_by_store(self, memory_db: Database) -> None:
        with pytest.raises(aiosqlite.IntegrityError):
            async with memory_db.transaction() as conn:
                await conn.execute(
                    "INSERT INTO tasks (title, status, created_at, updated_at) "
                    "VALUES ('t', 'done', 'x', 'x')"
                )


class TestMigrations:
    """Tests for additive column migrations."""

    @pytest.mark.asyncio
    async def test_old_table_gains_relationship_columns(self, temp_db_path: Path) -> None:
        """A tasks table from before subtasks and queues is upgraded in place."""
        async with aiosqlite.connect(temp_db_path) as conn:
            await conn.execute(
                """
                CREATE TABLE tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL,
                    assigned_to TEXT,
                    created_by TEXT,
                    priority INTEGER DEFAULT 0,
                    tags TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    archived_at DATETIME
                )
                """
            )
            await conn.execute("INSERT INTO tasks (title, status) VALUES ('legacy', 'idle')")
            await conn.commit()

        db = Database(temp_db_path)
        await db.initialize()

        async with db.reader() as conn:
            cursor = await conn.execute("PRAGMA table_info(tasks)")
            columns = {row["name"] for row in await cursor.fetchall()}
            legacy = await db.fetch_task(conn, 1)

        assert {"parent_task_id", "queue_name", "previous_assigned_to", "blocked_by_task_id"} <= columns
        assert legacy is not None
        assert legacy.title == "legacy"
        assert legacy.parent_task_id is None
        assert legacy.is_currently_blocked is False


class TestRowHelpers:
    """Tests for row-level helpers."""

    @pytest.mark.asyncio
    async def test_insert_and_fetch(self, memory_db: Database) -> None:
        task_id = await _insert(memory_db, title="Write docs", tags=["docs"], priority=2)

        task = await memory_db.get_task(task_id)

        assert task is not None
        assert task.title == "Write docs"
        assert task.status == TaskStatus.IDLE
        assert task.tags == ["docs"]
        assert task.priority == 2

    @pytest.mark.asyncio
    async def test_get_missing_task(self, memory_db: Database) -> None:
        assert await memory_db.get_task(999) is None

    @pytest.mark.asyncio
    async def test_update_fields_serializes_values(self, memory_db: Database) -> None:
        task_id = await _insert(memory_db)
        before = await memory_db.get_task(task_id)

        async with memory_db.transaction() as conn:
            await memory_db.update_task_fields(
                conn, task_id, {"status": TaskStatus.COMPLETE, "tags": ["a", "b"]}
            )

        after = await memory_db.get_task(task_id)
        assert after is not None and before is not None
        assert after.status == TaskStatus.COMPLETE
        assert after.tags == ["a", "b"]
        assert after.updated_at >= before.updated_at

    @pytest.mark.asyncio
    async def test_queue_order(self, memory_db: Database) -> None:
        """Priority descending, then oldest first."""
        low = await _insert(memory_db, title="low", priority=1)
        high_old = await _insert(memory_db, title="high-old", priority=5)
        high_new = await _insert(memory_db, title="high-new", priority=5)

        async with memory_db.reader() as conn:
            tasks = await memory_db.fetch_tasks(conn)

        assert [t.id for t in tasks] == [high_old, high_new, low]

    @pytest.mark.asyncio
    async def test_limit_and_offset(self, memory_db: Database) -> None:
        ids = [await _insert(memory_db, title=f"t{i}") for i in range(5)]

        async with memory_db.reader() as conn:
            page = await memory_db.fetch_tasks(conn, limit=2, offset=1)
            tail = await memory_db.fetch_tasks(conn, offset=3)

        assert [t.id for t in page] == ids[1:3]
        assert [t.id for t in tail] == ids[3:]

    @pytest.mark.asyncio
    async def test_fetch_children_of_many_requires_ids(self, memory_db: Database) -> None:
        async with memory_db.reader() as conn:
            with pytest.raises(ValueError):
                await memory_db.fetch_children_of_many(conn, [])


class TestDerivedBlockedFlag:
    """The blocked flag is computed from the live blocker row."""

    @pytest.mark.asyncio
    async def test_flag_follows_blocker_status(self, memory_db: Database) -> None:
        blocker = await _insert(memory_db, title="blocker")
        dependent = await _insert(memory_db, title="dependent", blocked_by_task_id=blocker)

        task = await memory_db.get_task(dependent)
        assert task is not None and task.is_currently_blocked is True

        async with memory_db.transaction() as conn:
            await memory_db.update_task_fields(conn, blocker, {"status": TaskStatus.COMPLETE})

        task = await memory_db.get_task(dependent)
        assert task is not None and task.is_currently_blocked is False


class TestForeignKeys:
    """Tests for cascade and set-null semantics enforced by the store."""

    @pytest.mark.asyncio
    async def test_delete_cascades_to_descendants(self, memory_db: Database) -> None:
        root = await _insert(memory_db, title="root")
        child = await _insert(memory_db, title="child", parent_task_id=root)
        grandchild = await _insert(memory_db, title="grandchild", parent_task_id=child)

        async with memory_db.transaction() as conn:
            assert await memory_db.delete_task_row(conn, root) is True

        assert await memory_db.get_task(child) is None
        assert await memory_db.get_task(grandchild) is None

    @pytest.mark.asyncio
    async def test_delete_detaches_dependents(self, memory_db: Database) -> None:
        blocker = await _insert(memory_db, title="blocker")
        dependent = await _insert(memory_db, title="dependent", blocked_by_task_id=blocker)

        async with memory_db.transaction() as conn:
            await memory_db.delete_task_row(conn, blocker)

        task = await memory_db.get_task(dependent)
        assert task is not None
        assert task.blocked_by_task_id is None

    @pytest.mark.asyncio
    async def test_missing_parent_rejected(self, memory_db: Database) -> None:
        with pytest.raises(aiosqlite.IntegrityError):
            await _insert(memory_db, parent_task_id=12345)


class TestTransactions:
    """Tests for unit-of-work atomicity."""

    @pytest.mark.asyncio
    async def test_exception_rolls_back(self, memory_db: Database) -> None:
        with pytest.raises(RuntimeError):
            async with memory_db.transaction() as conn:
                await memory_db.insert_task_row(conn, {"title": "doomed"})
                raise RuntimeError("boom")

        async with memory_db.reader() as conn:
            assert await memory_db.count_tasks(conn) == 0

    @pytest.mark.asyncio
    async def test_commit_visible_to_new_connection(self, file_db: Database) -> None:
        task_id = await _insert(file_db, title="durable")

        reopened = Database(file_db.db_path)
        await reopened.initialize()
        task = await reopened.get_task(task_id)

        assert task is not None
        assert task.title == "durable"
