"""Tree Formatter - Stdout tree display for the subtask hierarchy.

Provides Rich library-based tree formatting matching Unix 'tree' command style.
Features: parent_task_id hierarchy, status color coding, blocked markers.
"""

import locale
import os
import sys
from collections import defaultdict

from rich.text import Text
from rich.tree import Tree as RichTree

from tasktree.domain.models import Task, TaskStatus

TASK_STATUS_COLORS: dict[TaskStatus, str] = {
    TaskStatus.IDLE: "blue",
    TaskStatus.WORKING: "magenta",
    TaskStatus.COMPLETE: "bright_green",
}


def get_status_color(status: TaskStatus) -> str:
    """Map TaskStatus to Rich color name ('white' for anything unknown)."""
    return TASK_STATUS_COLORS.get(status, "white")


def supports_unicode() -> bool:
    """Detect if terminal supports Unicode box-drawing characters.

    Returns:
        True if UTF-8 encoding detected, False for ASCII fallback.
    """
    encoding = sys.stdout.encoding or locale.getpreferredencoding()
    if encoding.lower() not in ("utf-8", "utf8"):
        return False

    lang = os.environ.get("LANG", "")
    return "UTF-8" in lang or "utf8" in lang.lower()


def format_task_line(task: Task) -> Text:
    """Format single task as Rich Text: '#<id> <title> [<status>] (p<priority>)'.

    Titles longer than 60 characters are truncated. Blocked tasks get a
    trailing marker naming their blocker; archived tasks are dimmed.
    """
    title = task.title if len(task.title) <= 60 else task.title[:60] + "..."
    text = Text(f"#{task.id} {title} ", style="dim" if task.is_archived else None)
    text.append(f"[{task.status.value}]", style=get_status_color(task.status))
    text.append(f" (p{task.priority})", style="dim")
    if task.is_currently_blocked:
        text.append(f" blocked by #{task.blocked_by_task_id}", style="yellow")
    if task.is_archived:
        text.append(" archived", style="dim")
    return text


def format_hierarchy_tree(
    tasks: list[Task], title: str = "Tasks", use_unicode: bool = True
) -> RichTree:
    """Build a subtask tree from a flat task list using parent_task_id.

    Tasks whose parent is not in the list are shown at the top level.
    Children keep the order they have in ``tasks``.

    Args:
        tasks: Tasks to render
        title: Label of the tree root
        use_unicode: Use Unicode box-drawing vs ASCII guide style

    Returns:
        Rich Tree ready for console.print()
    """
    guide_style = "tree.line" if use_unicode else "dim"
    root_tree = RichTree(title, guide_style=guide_style)

    if not tasks:
        root_tree.add(Text("No tasks found", style="dim"))
        return root_tree

    task_ids = {task.id for task in tasks}
    children_map: dict[int, list[Task]] = defaultdict(list)
    for task in tasks:
        if task.parent_task_id is not None and task.parent_task_id in task_ids:
            children_map[task.parent_task_id].append(task)

    roots = [
        task for task in tasks
        if task.parent_task_id is None or task.parent_task_id not in task_ids
    ]

    # Explicit stack of (widget, task) pairs; deep chains never recurse
    visited: set[int] = set()
    stack: list[tuple[RichTree, Task]] = [(root_tree, task) for task in reversed(roots)]
    while stack:
        widget, task = stack.pop()
        if task.id in visited:
            continue
        visited.add(task.id)
        subtree = widget.add(format_task_line(task))
        for child in reversed(children_map.get(task.id, [])):
            stack.append((subtree, child))

    return root_tree
