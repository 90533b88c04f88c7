"""Pytest configuration and fixtures."""

import tempfile
from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
from tasktree.infrastructure.database import Database
from tasktree.services import BlockingManager, QueueService, StatusPropagator, TaskService


# Database fixtures
@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    # Cleanup, including WAL files
    for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        if path.exists():
            path.unlink()


@pytest.fixture
async def memory_db() -> AsyncGenerator[Database, None]:
    """Create in-memory database for fast tests."""
    db = Database(Path(":memory:"))
    await db.initialize()
    yield db
    # Cleanup: close the shared connection for :memory: databases
    await db.close()


@pytest.fixture
async def file_db(temp_db_path: Path) -> AsyncGenerator[Database, None]:
    """Create file-based database for persistence and concurrency tests."""
    db = Database(temp_db_path)
    await db.initialize()
    yield db
    # File-based databases close connections automatically, no cleanup needed


# Service fixtures
@pytest.fixture
def blocking_manager(memory_db: Database) -> BlockingManager:
    """Create BlockingManager with in-memory database."""
    return BlockingManager(memory_db)


@pytest.fixture
def status_propagator(memory_db: Database) -> StatusPropagator:
    """Create StatusPropagator with in-memory database."""
    return StatusPropagator(memory_db)


@pytest.fixture
def task_service(
    memory_db: Database, blocking_manager: BlockingManager, status_propagator: StatusPropagator
) -> TaskService:
    """Create TaskService with in-memory database."""
    return TaskService(memory_db, blocking_manager, status_propagator)


@pytest.fixture
def queue_service(memory_db: Database) -> QueueService:
    """Create QueueService with in-memory database."""
    return QueueService(memory_db)
