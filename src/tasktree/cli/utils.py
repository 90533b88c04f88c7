"""Shared helpers for CLI commands: service wiring, error exits and output."""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from tasktree.cli.tree_formatter import get_status_color
from tasktree.domain.models import Task
from tasktree.infrastructure.exceptions import TaskTreeError

console = Console()

T = TypeVar("T")


async def get_services() -> dict[str, Any]:
    """Load configuration, set up logging and wire the services."""
    from tasktree.infrastructure import ConfigManager, Database
    from tasktree.infrastructure.logger import setup_logging
    from tasktree.services import BlockingManager, QueueService, StatusPropagator, TaskService

    config_manager = ConfigManager()
    config = config_manager.load_config()

    # Setup logging to both console and file
    setup_logging(log_level=config.log_level, log_dir=config_manager.get_log_dir())

    database = Database(
        config_manager.get_database_path(), busy_timeout_ms=config.database.busy_timeout_ms
    )
    await database.initialize()

    blocking_manager = BlockingManager(database)
    status_propagator = StatusPropagator(database)
    task_service = TaskService(
        database,
        blocking_manager,
        status_propagator,
        max_depth=config.hierarchy.max_depth,
        max_queue_name_length=config.queue.max_name_length,
    )
    queue_service = QueueService(database, max_name_length=config.queue.max_name_length)

    return {
        "database": database,
        "task_service": task_service,
        "blocking_manager": blocking_manager,
        "queue_service": queue_service,
        "config_manager": config_manager,
    }


def run_with_services(action: Callable[[dict[str, Any]], Awaitable[T]]) -> T:
    """Run one async command body against freshly wired services.

    Tasktree errors are printed in red and exit with status 1.
    """

    async def _run() -> T:
        services = await get_services()
        try:
            return await action(services)
        finally:
            await services["database"].close()

    try:
        return asyncio.run(_run())
    except TaskTreeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def echo_json(data: Any) -> None:
    """Print machine-readable output on stdout."""
    typer.echo(json.dumps(data, indent=2, default=str))


def task_to_json(task: Task) -> dict[str, Any]:
    return task.model_dump(mode="json")


def status_text(task: Task) -> str:
    color = get_status_color(task.status)
    return f"[{color}]{task.status.value}[/{color}]"


def print_task_table(tasks: list[Task], title: str = "Tasks") -> None:
    """Render tasks as a Rich table."""
    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        return

    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Status")
    table.add_column("Priority", justify="right")
    table.add_column("Assigned", style="green")
    table.add_column("Queue", style="blue")
    table.add_column("Parent", style="dim")
    table.add_column("Blocked", style="yellow")

    for task in tasks:
        table.add_row(
            str(task.id),
            task.title,
            status_text(task),
            str(task.priority),
            task.assigned_to or "-",
            task.queue_name or "-",
            str(task.parent_task_id) if task.parent_task_id is not None else "-",
            f"by {task.blocked_by_task_id}" if task.is_currently_blocked else "-",
        )

    console.print(table)


def print_task_detail(task: Task) -> None:
    """Render one task as a field listing."""
    console.print(f"[bold]Task #{task.id}[/bold] {task.title}")
    console.print(f"Status: {status_text(task)}")
    console.print(f"Priority: {task.priority}")
    if task.description:
        console.print(f"Description: {task.description}")
    console.print(f"Assigned to: {task.assigned_to or '-'}")
    if task.previous_assigned_to:
        console.print(f"Previously assigned to: {task.previous_assigned_to}")
    if task.created_by:
        console.print(f"Created by: {task.created_by}")
    if task.tags:
        console.print(f"Tags: {', '.join(task.tags)}")
    console.print(f"Queue: {task.queue_name or '-'}")
    if task.parent_task_id is not None:
        console.print(f"Parent: #{task.parent_task_id}")
    if task.blocked_by_task_id is not None:
        state = "[yellow]blocked[/yellow]" if task.is_currently_blocked else "[green]unblocked[/green]"
        console.print(f"Blocked by: #{task.blocked_by_task_id} ({state})")
    console.print(f"Created: {task.created_at.isoformat()}")
    console.print(f"Updated: {task.updated_at.isoformat()}")
    if task.archived_at:
        console.print(f"[dim]Archived: {task.archived_at.isoformat()}[/dim]")
