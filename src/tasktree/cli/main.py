"""Tasktree CLI - shared task store for cooperating agents."""

import asyncio
from pathlib import Path

import typer

from tasktree import __version__
from tasktree.cli.queue_commands import queue_app
from tasktree.cli.task_commands import subtask_app, task_app
from tasktree.cli.utils import console

# Initialize Typer app
app = typer.Typer(
    name="tasktree",
    help="Shared task store with subtasks, blocking and queues",
    no_args_is_help=True,
)


# ===== Version =====
@app.command()
def version() -> None:
    """Show Tasktree version."""
    console.print(f"[bold]Tasktree[/bold] version [cyan]{__version__}[/cyan]")


# ===== MCP Server =====
@app.command()
def serve(
    db_path: Path | None = typer.Option(None, help="SQLite database path (default from config)"),
) -> None:
    """Run the MCP server on stdio."""
    from tasktree.mcp.task_server import main as mcp_main

    asyncio.run(mcp_main(["--db-path", str(db_path)] if db_path else []))


app.add_typer(task_app, name="task")
app.add_typer(subtask_app, name="subtask")
app.add_typer(queue_app, name="queue")


if __name__ == "__main__":
    app()
