"""Queue commands."""

from typing import Any

import typer
from rich.table import Table

from tasktree.cli.utils import console, echo_json, print_task_table, run_with_services, task_to_json
from tasktree.domain.models import QueueFilters, TaskStatus
from tasktree.services.task_service import parse_input

queue_app = typer.Typer(help="Queue management", no_args_is_help=True)


@queue_app.command("list")
def list_queues() -> None:
    """List queues in use with their task counts."""

    async def _action(services: dict[str, Any]) -> None:
        queues = await services["queue_service"].list_queues()
        if not queues:
            console.print("[yellow]No queues found[/yellow]")
            return

        table = Table(title="Queues")
        table.add_column("Queue", style="blue")
        table.add_column("Tasks", justify="right")
        for queue in queues:
            table.add_row(queue.queue_name, str(queue.task_count))
        console.print(table)

    run_with_services(_action)


@queue_app.command("show")
def show(
    queue_name: str = typer.Argument(..., help="Queue name"),
    assigned_to: str | None = typer.Option(None, "--assigned-to", "-a", help="Filter by assignee"),
    status: TaskStatus | None = typer.Option(None, help="Filter by status"),
    parent: int | None = typer.Option(None, "--parent", help="Only children of this task"),
    exclude_subtasks: bool = typer.Option(False, "--exclude-subtasks", help="Top-level tasks only"),
    include_archived: bool = typer.Option(False, "--include-archived", help="Include archived tasks"),
    limit: int | None = typer.Option(None, help="Maximum number of tasks"),
    offset: int | None = typer.Option(None, help="Number of tasks to skip"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show the tasks of a queue."""
    filter_values: dict[str, Any] = {
        "assigned_to": assigned_to,
        "status": status,
        "exclude_subtasks": exclude_subtasks,
        "include_archived": include_archived,
        "limit": limit,
        "offset": offset,
    }
    if parent is not None:
        filter_values["parent_task_id"] = parent

    async def _action(services: dict[str, Any]) -> None:
        filters = parse_input(QueueFilters, filter_values)
        tasks = await services["queue_service"].get_queue_tasks(queue_name, filters)
        if as_json:
            echo_json([task_to_json(task) for task in tasks])
        else:
            print_task_table(tasks, title=f"Queue {queue_name.strip()}")

    run_with_services(_action)


@queue_app.command("stats")
def stats(
    queue_name: str = typer.Argument(..., help="Queue name"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show status and assignment counts for a queue."""

    async def _action(services: dict[str, Any]) -> None:
        queue_stats = await services["queue_service"].get_queue_stats(queue_name)
        if as_json:
            echo_json(queue_stats.model_dump(mode="json"))
            return

        table = Table(title=f"Queue {queue_stats.queue_name}")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Total", str(queue_stats.total_tasks))
        table.add_row("Idle", str(queue_stats.by_status.idle))
        table.add_row("Working", str(queue_stats.by_status.working))
        table.add_row("Complete", str(queue_stats.by_status.complete))
        table.add_row("Assigned", str(queue_stats.assigned))
        table.add_row("Unassigned", str(queue_stats.unassigned))
        console.print(table)
        if queue_stats.agents:
            console.print(f"Agents: {', '.join(queue_stats.agents)}")

    run_with_services(_action)


@queue_app.command("add")
def add(
    task_id: int = typer.Argument(..., help="Task ID"),
    queue_name: str = typer.Argument(..., help="Queue name"),
) -> None:
    """Add a task to a queue."""

    async def _action(services: dict[str, Any]) -> None:
        task = await services["queue_service"].add_task_to_queue(task_id, queue_name)
        console.print(f"[green]✓[/green] Task [cyan]#{task.id}[/cyan] added to queue {task.queue_name}")

    run_with_services(_action)


@queue_app.command("remove")
def remove(task_id: int = typer.Argument(..., help="Task ID")) -> None:
    """Remove a task from its queue."""

    async def _action(services: dict[str, Any]) -> None:
        await services["queue_service"].remove_task_from_queue(task_id)
        console.print(f"[green]✓[/green] Task [cyan]#{task_id}[/cyan] removed from its queue")

    run_with_services(_action)


@queue_app.command("move")
def move(
    task_id: int = typer.Argument(..., help="Task ID"),
    queue_name: str = typer.Argument(..., help="New queue name"),
) -> None:
    """Move a task to another queue."""

    async def _action(services: dict[str, Any]) -> None:
        task = await services["queue_service"].move_task_to_queue(task_id, queue_name)
        console.print(f"[green]✓[/green] Task [cyan]#{task.id}[/cyan] moved to queue {task.queue_name}")

    run_with_services(_action)


@queue_app.command("clear")
def clear(
    queue_name: str = typer.Argument(..., help="Queue name"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
) -> None:
    """Detach every task from a queue. Tasks are not deleted."""
    if not force and not typer.confirm(f"Remove all tasks from queue '{queue_name}'?"):
        console.print("[yellow]Aborted[/yellow]")
        raise typer.Exit(0)

    async def _action(services: dict[str, Any]) -> None:
        cleared = await services["queue_service"].clear_queue(queue_name)
        console.print(f"[green]✓[/green] Cleared {cleared} task(s) from queue {queue_name.strip()}")

    run_with_services(_action)
