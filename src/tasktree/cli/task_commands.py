"""Task, subtask and blocking commands."""

from typing import Any

import typer

from tasktree.cli.tree_formatter import format_hierarchy_tree, supports_unicode
from tasktree.cli.utils import (
    console,
    echo_json,
    print_task_detail,
    print_task_table,
    run_with_services,
    task_to_json,
)
from tasktree.domain.models import TaskStatus

task_app = typer.Typer(help="Task management", no_args_is_help=True)
subtask_app = typer.Typer(help="Subtask hierarchy", no_args_is_help=True)


@task_app.command("create")
def create(
    title: str = typer.Argument(..., help="Task title"),
    description: str | None = typer.Option(None, "--description", "-d", help="Task description"),
    status: TaskStatus | None = typer.Option(None, help="Initial status"),
    assigned_to: str | None = typer.Option(None, "--assign", "-a", help="Assignee agent"),
    created_by: str | None = typer.Option(None, help="Creating agent"),
    priority: int = typer.Option(0, "--priority", "-p", help="Priority (higher runs first)"),
    tag: list[str] | None = typer.Option(None, "--tag", "-t", help="Tag (repeatable)"),
    parent: int | None = typer.Option(None, "--parent", help="Parent task ID"),
    queue: str | None = typer.Option(None, "--queue", "-q", help="Queue name"),
    blocked_by: int | None = typer.Option(None, "--blocked-by", help="Blocking task ID"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Create a new task.

    Examples:
        tasktree task create "Write release notes" --queue docs -p 5
        tasktree task create "Fix login" --parent 12 --blocked-by 9
    """

    async def _action(services: dict[str, Any]) -> None:
        task = await services["task_service"].create_task(
            title,
            description=description,
            status=status,
            assigned_to=assigned_to,
            created_by=created_by,
            priority=priority,
            tags=tag,
            parent_task_id=parent,
            queue_name=queue,
            blocked_by_task_id=blocked_by,
        )
        if as_json:
            echo_json(task_to_json(task))
        else:
            console.print(f"[green]✓[/green] Created task [cyan]#{task.id}[/cyan] {task.title}")

    run_with_services(_action)


@task_app.command("show")
def show(
    task_id: int = typer.Argument(..., help="Task ID"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show task details."""

    async def _action(services: dict[str, Any]) -> None:
        task = await services["task_service"].get_task(task_id)
        if as_json:
            echo_json(task_to_json(task))
        else:
            print_task_detail(task)

    run_with_services(_action)


@task_app.command("list")
def list_tasks(
    assigned_to: str | None = typer.Option(None, "--assigned-to", "-a", help="Filter by assignee"),
    status: TaskStatus | None = typer.Option(None, help="Filter by status"),
    blocked_by: int | None = typer.Option(None, "--blocked-by", help="Filter by blocking task"),
    include_archived: bool = typer.Option(False, "--include-archived", help="Include archived tasks"),
    limit: int | None = typer.Option(None, help="Maximum number of tasks"),
    offset: int | None = typer.Option(None, help="Number of tasks to skip"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List tasks ordered by priority, then age."""

    async def _action(services: dict[str, Any]) -> None:
        tasks = await services["task_service"].list_tasks(
            assigned_to=assigned_to,
            status=status,
            include_archived=include_archived,
            blocked_by_task_id=blocked_by,
            limit=limit,
            offset=offset,
        )
        if as_json:
            echo_json([task_to_json(task) for task in tasks])
        else:
            print_task_table(tasks)

    run_with_services(_action)


@task_app.command("update")
def update(
    task_id: int = typer.Argument(..., help="Task ID"),
    title: str | None = typer.Option(None, help="New title"),
    description: str | None = typer.Option(None, "--description", "-d", help="New description"),
    status: TaskStatus | None = typer.Option(None, help="New status"),
    assigned_to: str | None = typer.Option(None, "--assign", "-a", help="New assignee"),
    unassign: bool = typer.Option(False, "--unassign", help="Clear the assignee"),
    priority: int | None = typer.Option(None, "--priority", "-p", help="New priority"),
    tag: list[str] | None = typer.Option(None, "--tag", "-t", help="Replace tags (repeatable)"),
    queue: str | None = typer.Option(None, "--queue", "-q", help="New queue name"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Update task fields. Parent and blocker have their own commands."""
    fields: dict[str, Any] = {}
    if title is not None:
        fields["title"] = title
    if description is not None:
        fields["description"] = description
    if status is not None:
        fields["status"] = status
    if unassign:
        fields["assigned_to"] = None
    elif assigned_to is not None:
        fields["assigned_to"] = assigned_to
    if priority is not None:
        fields["priority"] = priority
    if tag:
        fields["tags"] = tag
    if queue is not None:
        fields["queue_name"] = queue

    async def _action(services: dict[str, Any]) -> None:
        task = await services["task_service"].update_task(task_id, **fields)
        if as_json:
            echo_json(task_to_json(task))
        else:
            console.print(f"[green]✓[/green] Updated task [cyan]#{task.id}[/cyan] ({task.status.value})")

    run_with_services(_action)


@task_app.command("delete")
def delete(
    task_id: int = typer.Argument(..., help="Task ID"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
) -> None:
    """Permanently delete a task and all of its subtasks."""
    if not force and not typer.confirm(f"Delete task #{task_id} and all of its subtasks?"):
        console.print("[yellow]Aborted[/yellow]")
        raise typer.Exit(0)

    async def _action(services: dict[str, Any]) -> None:
        removed = await services["task_service"].delete_task(task_id)
        console.print(f"[green]✓[/green] Deleted {removed} task(s)")

    run_with_services(_action)


@task_app.command("archive")
def archive(task_id: int = typer.Argument(..., help="Task ID")) -> None:
    """Archive a task (soft delete, relationships are kept)."""

    async def _action(services: dict[str, Any]) -> None:
        task = await services["task_service"].archive_task(task_id)
        console.print(f"[green]✓[/green] Archived task [cyan]#{task.id}[/cyan]")

    run_with_services(_action)


@task_app.command("tree")
def tree(
    task_id: int = typer.Argument(..., help="Root task ID"),
    include_archived: bool = typer.Option(False, "--include-archived", help="Show archived subtasks"),
) -> None:
    """Show a task and its whole subtree."""

    async def _action(services: dict[str, Any]) -> None:
        task_service = services["task_service"]
        root = await task_service.get_task(task_id)
        descendants = await task_service.get_subtasks(
            task_id, recursive=True, include_archived=include_archived
        )
        console.print(
            format_hierarchy_tree(
                [root, *descendants], title=f"Subtree of #{task_id}", use_unicode=supports_unicode()
            )
        )

    run_with_services(_action)


@task_app.command("path")
def path(task_id: int = typer.Argument(..., help="Task ID")) -> None:
    """Show the ancestor chain of a task, root first."""

    async def _action(services: dict[str, Any]) -> None:
        chain = await services["task_service"].get_task_path(task_id)
        console.print(" > ".join(f"#{task.id} {task.title}" for task in chain))

    run_with_services(_action)


@task_app.command("block")
def block(
    task_id: int = typer.Argument(..., help="Dependent task ID"),
    blocker_id: int = typer.Argument(..., help="Blocking task ID"),
) -> None:
    """Mark a task as blocked by another task."""

    async def _action(services: dict[str, Any]) -> None:
        task = await services["blocking_manager"].set_blocked_by(task_id, blocker_id)
        state = "blocked" if task.is_currently_blocked else "not blocked (blocker complete)"
        console.print(f"[green]✓[/green] Task #{task_id} now waits on #{blocker_id}: {state}")

    run_with_services(_action)


@task_app.command("unblock")
def unblock(task_id: int = typer.Argument(..., help="Task ID")) -> None:
    """Clear the blocking relationship of a task."""

    async def _action(services: dict[str, Any]) -> None:
        await services["blocking_manager"].set_blocked_by(task_id, None)
        console.print(f"[green]✓[/green] Task #{task_id} is no longer blocked")

    run_with_services(_action)


@task_app.command("blockers")
def blockers(task_id: int = typer.Argument(..., help="Task ID")) -> None:
    """Show what blocks a task and what the task blocks."""

    async def _action(services: dict[str, Any]) -> None:
        blocking_manager = services["blocking_manager"]
        print_task_table(await blocking_manager.get_blockers(task_id), title=f"Blocking #{task_id}")
        print_task_table(
            await blocking_manager.get_blocked_tasks(task_id), title=f"Blocked by #{task_id}"
        )

    run_with_services(_action)


@task_app.command("inbox")
def inbox(agent: str = typer.Argument(..., help="Agent name")) -> None:
    """Show the open tasks assigned to an agent."""

    async def _action(services: dict[str, Any]) -> None:
        tasks = await services["task_service"].get_agent_queue(agent)
        print_task_table(tasks, title=f"Queue of {agent}")

    run_with_services(_action)


@task_app.command("signup")
def signup(agent: str = typer.Argument(..., help="Agent name")) -> None:
    """Claim the agent's next idle task and mark it working."""

    async def _action(services: dict[str, Any]) -> None:
        task = await services["task_service"].signup_for_task(agent)
        if task is None:
            console.print(f"[yellow]No idle tasks for {agent}[/yellow]")
        else:
            console.print(f"[green]✓[/green] {agent} is now working on [cyan]#{task.id}[/cyan] {task.title}")

    run_with_services(_action)


@task_app.command("transfer")
def transfer(
    task_id: int = typer.Argument(..., help="Task ID"),
    current_agent: str = typer.Argument(..., help="Agent currently assigned"),
    new_agent: str = typer.Argument(..., help="Agent to hand the task to"),
) -> None:
    """Hand a task from one agent to another."""

    async def _action(services: dict[str, Any]) -> None:
        task = await services["task_service"].transfer_task(task_id, current_agent, new_agent)
        console.print(
            f"[green]✓[/green] Task [cyan]#{task.id}[/cyan] transferred "
            f"from {current_agent} to {task.assigned_to}"
        )

    run_with_services(_action)


# ===== Subtasks =====


@subtask_app.command("add")
def add_subtask(
    parent_id: int = typer.Argument(..., help="Parent task ID"),
    title: str = typer.Argument(..., help="Subtask title"),
    description: str | None = typer.Option(None, "--description", "-d", help="Subtask description"),
    assigned_to: str | None = typer.Option(None, "--assign", "-a", help="Assignee agent"),
    priority: int = typer.Option(0, "--priority", "-p", help="Priority"),
    queue: str | None = typer.Option(None, "--queue", "-q", help="Queue (default: parent's queue)"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Create a subtask under an existing task."""

    async def _action(services: dict[str, Any]) -> None:
        task = await services["task_service"].create_subtask(
            parent_id,
            title,
            description=description,
            assigned_to=assigned_to,
            priority=priority,
            queue_name=queue,
        )
        if as_json:
            echo_json(task_to_json(task))
        else:
            console.print(
                f"[green]✓[/green] Created subtask [cyan]#{task.id}[/cyan] under #{parent_id}"
            )

    run_with_services(_action)


@subtask_app.command("move")
def move_subtask(
    task_id: int = typer.Argument(..., help="Task to move"),
    parent: int | None = typer.Option(None, "--parent", help="New parent task ID"),
    top_level: bool = typer.Option(False, "--top-level", help="Detach to top level"),
) -> None:
    """Move a task under another parent, or detach it to top level."""
    if parent is None and not top_level:
        console.print("[red]Error:[/red] Pass --parent <id> or --top-level")
        raise typer.Exit(1)

    async def _action(services: dict[str, Any]) -> None:
        task = await services["task_service"].move_subtask(task_id, None if top_level else parent)
        where = f"under #{task.parent_task_id}" if task.parent_task_id is not None else "to top level"
        console.print(f"[green]✓[/green] Moved task [cyan]#{task.id}[/cyan] {where}")

    run_with_services(_action)
