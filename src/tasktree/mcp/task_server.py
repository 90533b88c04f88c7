"""MCP server exposing Tasktree task, subtask, blocking and queue tools."""

import asyncio
import json
import re
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any
from urllib.parse import unquote

from mcp.server import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.types import Resource, ResourceTemplate, TextContent, Tool
from pydantic import AnyUrl

from tasktree.domain.models import QueueFilters, Task, TaskCreate, TaskStatus
from tasktree.infrastructure.config import Config, ConfigManager
from tasktree.infrastructure.database import Database
from tasktree.infrastructure.exceptions import TaskTreeError, TaskValidationError
from tasktree.infrastructure.logger import get_logger, setup_logging
from tasktree.services.blocking_manager import BlockingManager
from tasktree.services.queue_service import QueueService
from tasktree.services.status_propagator import StatusPropagator
from tasktree.services.task_service import TaskService, parse_input

logger = get_logger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]

_STATUS_VALUES = [status.value for status in TaskStatus]

# Writable task fields shared by create_task, create_subtask and update_task
_TASK_FIELDS: dict[str, Any] = {
    "title": {"type": "string", "description": "Task title"},
    "description": {"type": "string", "description": "Longer task description"},
    "status": {"type": "string", "enum": _STATUS_VALUES, "description": "Task status"},
    "assigned_to": {"type": "string", "description": "Agent the task is assigned to"},
    "priority": {"type": "integer", "description": "Higher runs first"},
    "tags": {"type": "array", "items": {"type": "string"}, "description": "Task tags"},
    "parent_task_id": {"type": "integer", "description": "Parent task ID (subtask)"},
    "queue_name": {"type": "string", "description": "Queue label"},
    "blocked_by_task_id": {"type": "integer", "description": "Task this one waits on"},
}

_TASK_ID = {"task_id": {"type": "integer", "description": "Task ID"}}
_AGENT = {"agent_name": {"type": "string", "description": "Agent name"}}


def _schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required or []}


def tool_definitions() -> list[Tool]:
    """All tools exposed by the server."""
    return [
        # Tasks
        Tool(
            name="create_task",
            description="Create a task, optionally as a subtask, in a queue, or blocked by another task",
            inputSchema=_schema(
                {**_TASK_FIELDS, "created_by": {"type": "string", "description": "Creating agent"}},
                ["title"],
            ),
        ),
        Tool(
            name="update_task",
            description="Update task fields; null clears a field. Parent and blocker changes are cycle-checked",
            inputSchema=_schema({**_TASK_ID, **_TASK_FIELDS}, ["task_id"]),
        ),
        Tool(
            name="get_task",
            description="Get a task by ID, including its computed blocked state",
            inputSchema=_schema(_TASK_ID, ["task_id"]),
        ),
        Tool(
            name="delete_task",
            description="Permanently delete a task and all of its subtasks",
            inputSchema=_schema(_TASK_ID, ["task_id"]),
        ),
        Tool(
            name="archive_task",
            description="Archive (soft-delete) a task, keeping its relationships",
            inputSchema=_schema(_TASK_ID, ["task_id"]),
        ),
        Tool(
            name="list_tasks",
            description="List tasks ordered by priority, then age",
            inputSchema=_schema(
                {
                    "assigned_to": {"type": "string"},
                    "status": {"type": "string", "enum": _STATUS_VALUES},
                    "blocked_by_task_id": {"type": "integer"},
                    "include_archived": {"type": "boolean", "default": False},
                    "limit": {"type": "integer", "minimum": 1},
                    "offset": {"type": "integer", "minimum": 0},
                }
            ),
        ),
        # Subtasks
        Tool(
            name="create_subtask",
            description="Create a subtask; it inherits the parent's queue unless one is given",
            inputSchema=_schema(
                {**_TASK_FIELDS, "created_by": {"type": "string", "description": "Creating agent"}},
                ["parent_task_id", "title"],
            ),
        ),
        Tool(
            name="get_subtasks",
            description="Get the subtasks of a task, optionally the whole subtree",
            inputSchema=_schema(
                {
                    "parent_task_id": {"type": "integer", "description": "Parent task ID"},
                    "recursive": {"type": "boolean", "default": False},
                    "include_archived": {"type": "boolean", "default": False},
                },
                ["parent_task_id"],
            ),
        ),
        Tool(
            name="get_task_with_subtasks",
            description="Get a task together with its subtasks and a subtask count",
            inputSchema=_schema(
                {**_TASK_ID, "recursive": {"type": "boolean", "default": False}}, ["task_id"]
            ),
        ),
        Tool(
            name="move_subtask",
            description="Move a task under a new parent, or to top level when new_parent_id is omitted",
            inputSchema=_schema(
                {
                    "subtask_id": {"type": "integer", "description": "Task to move"},
                    "new_parent_id": {"type": ["integer", "null"], "description": "New parent"},
                },
                ["subtask_id"],
            ),
        ),
        Tool(
            name="get_task_path",
            description="Get the ancestor chain of a task from the root down",
            inputSchema=_schema(_TASK_ID, ["task_id"]),
        ),
        # Blocking
        Tool(
            name="set_blocked_by",
            description="Set or clear (null) the task that blocks a task",
            inputSchema=_schema(
                {
                    **_TASK_ID,
                    "blocker_task_id": {"type": ["integer", "null"], "description": "Blocking task"},
                },
                ["task_id"],
            ),
        ),
        Tool(
            name="get_blockers",
            description="Get the task blocking a task",
            inputSchema=_schema(_TASK_ID, ["task_id"]),
        ),
        Tool(
            name="get_blocked_tasks",
            description="Get the live tasks blocked by a task",
            inputSchema=_schema(_TASK_ID, ["task_id"]),
        ),
        # Queues
        Tool(
            name="get_queue_tasks",
            description="Get tasks in a queue with optional filters",
            inputSchema=_schema(
                {
                    "queue_name": {"type": "string"},
                    "assigned_to": {"type": "string"},
                    "status": {"type": "string", "enum": _STATUS_VALUES},
                    "parent_task_id": {
                        "type": ["integer", "null"],
                        "description": "Parent filter; null selects top-level tasks",
                    },
                    "exclude_subtasks": {"type": "boolean", "default": False},
                    "include_archived": {"type": "boolean", "default": False},
                    "limit": {"type": "integer", "minimum": 1},
                    "offset": {"type": "integer", "minimum": 0},
                },
                ["queue_name"],
            ),
        ),
        Tool(
            name="get_queue_stats",
            description="Get status and assignment counts for a queue",
            inputSchema=_schema({"queue_name": {"type": "string"}}, ["queue_name"]),
        ),
        Tool(
            name="add_task_to_queue",
            description="Add a task to a queue",
            inputSchema=_schema({**_TASK_ID, "queue_name": {"type": "string"}}, ["task_id", "queue_name"]),
        ),
        Tool(
            name="remove_task_from_queue",
            description="Remove a task from its queue",
            inputSchema=_schema(_TASK_ID, ["task_id"]),
        ),
        Tool(
            name="move_task_to_queue",
            description="Move a task to another queue",
            inputSchema=_schema(
                {**_TASK_ID, "new_queue_name": {"type": "string"}}, ["task_id", "new_queue_name"]
            ),
        ),
        Tool(
            name="clear_queue",
            description="Detach every task from a queue without deleting them",
            inputSchema=_schema({"queue_name": {"type": "string"}}, ["queue_name"]),
        ),
        Tool(
            name="list_queues",
            description="List queues in use with their task counts",
            inputSchema=_schema({}),
        ),
        # Agent inbox
        Tool(
            name="get_my_queue",
            description="Get the open tasks assigned to an agent",
            inputSchema=_schema(_AGENT, ["agent_name"]),
        ),
        Tool(
            name="signup_for_task",
            description="Claim the agent's highest-priority idle task and mark it working",
            inputSchema=_schema(_AGENT, ["agent_name"]),
        ),
        Tool(
            name="transfer_task",
            description="Hand a task from its current agent to another agent",
            inputSchema=_schema(
                {
                    **_TASK_ID,
                    "current_agent": {"type": "string"},
                    "new_agent": {"type": "string"},
                },
                ["task_id", "current_agent", "new_agent"],
            ),
        ),
    ]


_JSON = "application/json"

_TASK_URI = re.compile(r"^task://(\d+)$")
_QUEUE_URI = re.compile(r"^queue://([^/]+)$")
_QUEUE_SUMMARY_URI = re.compile(r"^queue://([^/]+)/summary$")


def resource_definitions() -> list[Resource]:
    """Fixed-URI resources."""
    return [
        Resource(
            uri=AnyUrl("tasks://active"),
            name="Active Tasks",
            description="All non-archived tasks",
            mimeType=_JSON,
        ),
        Resource(
            uri=AnyUrl("tasks://archived"),
            name="Archived Tasks",
            description="All archived tasks",
            mimeType=_JSON,
        ),
    ]


def resource_template_definitions() -> list[ResourceTemplate]:
    """Parameterized resources."""
    return [
        ResourceTemplate(
            uriTemplate="task://{id}",
            name="Task by ID",
            description="A single task",
            mimeType=_JSON,
        ),
        ResourceTemplate(
            uriTemplate="queue://{agent_name}",
            name="Agent Queue",
            description="Open tasks assigned to an agent, in queue order",
            mimeType=_JSON,
        ),
        ResourceTemplate(
            uriTemplate="queue://{agent_name}/summary",
            name="Agent Queue Summary",
            description="Status and priority counts for an agent's open tasks",
            mimeType=_JSON,
        ),
    ]


def _require(arguments: dict[str, Any], *keys: str) -> None:
    for key in keys:
        if arguments.get(key) is None:
            raise TaskValidationError(f"{key} is required")


def _int_arg(arguments: dict[str, Any], key: str, required: bool = True) -> int | None:
    value = arguments.get(key)
    if value is None:
        if required:
            raise TaskValidationError(f"{key} is required")
        return None
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int):
        raise TaskValidationError(f"{key} must be an integer, got {value!r}")
    return value


def _serialize_task(task: Task) -> dict[str, Any]:
    return task.model_dump(mode="json")


def _task_list(tasks: list[Task]) -> list[dict[str, Any]]:
    return [_serialize_task(task) for task in tasks]


class TasktreeServer:
    """MCP server for Tasktree.

    Exposes tools for:
    - Task CRUD with derived parent status
    - Subtask hierarchy navigation and moves
    - Blocking relationships
    - Queue membership and statistics
    - Agent inbox (claim and hand-off)
    """

    def __init__(self, db_path: Path, config: Config | None = None) -> None:
        """Initialize task server.

        Args:
            db_path: Path to SQLite database
            config: Loaded configuration (defaults when None)
        """
        self.db_path = db_path
        self.config = config or Config()
        self._db: Database | None = None
        self._task_service: TaskService | None = None
        self._blocking: BlockingManager | None = None
        self._queue_service: QueueService | None = None
        self.server = Server("tasktree")

        self._handlers: dict[str, Handler] = {
            "create_task": self._handle_create_task,
            "update_task": self._handle_update_task,
            "get_task": self._handle_get_task,
            "delete_task": self._handle_delete_task,
            "archive_task": self._handle_archive_task,
            "list_tasks": self._handle_list_tasks,
            "create_subtask": self._handle_create_subtask,
            "get_subtasks": self._handle_get_subtasks,
            "get_task_with_subtasks": self._handle_get_task_with_subtasks,
            "move_subtask": self._handle_move_subtask,
            "get_task_path": self._handle_get_task_path,
            "set_blocked_by": self._handle_set_blocked_by,
            "get_blockers": self._handle_get_blockers,
            "get_blocked_tasks": self._handle_get_blocked_tasks,
            "get_queue_tasks": self._handle_get_queue_tasks,
            "get_queue_stats": self._handle_get_queue_stats,
            "add_task_to_queue": self._handle_add_task_to_queue,
            "remove_task_from_queue": self._handle_remove_task_from_queue,
            "move_task_to_queue": self._handle_move_task_to_queue,
            "clear_queue": self._handle_clear_queue,
            "list_queues": self._handle_list_queues,
            "get_my_queue": self._handle_get_my_queue,
            "signup_for_task": self._handle_signup_for_task,
            "transfer_task": self._handle_transfer_task,
        }

        # Register tools
        self._register_tools()

    def _register_tools(self) -> None:
        """Register all MCP tools and resources."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """List available tools."""
            return tool_definitions()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            """Handle tool calls."""
            result = await self.handle_tool(name, arguments or {})
            return [TextContent(type="text", text=json.dumps(result, default=str))]

        @self.server.list_resources()
        async def list_resources() -> list[Resource]:
            """List fixed-URI resources."""
            return resource_definitions()

        @self.server.list_resource_templates()
        async def list_resource_templates() -> list[ResourceTemplate]:
            """List parameterized resources."""
            return resource_template_definitions()

        @self.server.read_resource()
        async def read_resource(uri: AnyUrl) -> list[ReadResourceContents]:
            """Read one resource as JSON."""
            result = await self.read_resource_uri(str(uri))
            return [ReadResourceContents(content=json.dumps(result, default=str), mime_type=_JSON)]

    async def initialize(self) -> None:
        """Open the database and wire the services."""
        self._db = Database(self.db_path, busy_timeout_ms=self.config.database.busy_timeout_ms)
        await self._db.initialize()

        propagator = StatusPropagator(self._db)
        self._blocking = BlockingManager(self._db)
        self._task_service = TaskService(
            self._db,
            self._blocking,
            propagator,
            max_depth=self.config.hierarchy.max_depth,
            max_queue_name_length=self.config.queue.max_name_length,
        )
        self._queue_service = QueueService(
            self._db, max_name_length=self.config.queue.max_name_length
        )

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()

    @property
    def tasks(self) -> TaskService:
        assert self._task_service is not None, "server not initialized"
        return self._task_service

    @property
    def blocking(self) -> BlockingManager:
        assert self._blocking is not None, "server not initialized"
        return self._blocking

    @property
    def queues(self) -> QueueService:
        assert self._queue_service is not None, "server not initialized"
        return self._queue_service

    async def handle_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Dispatch one tool call and map failures to error payloads.

        Tasktree errors are reported with their kind verbatim; anything
        else is logged and reported as InternalError.
        """
        handler = self._handlers.get(name)
        if handler is None:
            return {"error": "UnknownTool", "message": f"Unknown tool: {name}"}

        try:
            return await handler(arguments)
        except TaskTreeError as e:
            logger.info("mcp_tool_rejected", tool=name, error=e.error_kind, message=str(e))
            return {"error": e.error_kind, "message": str(e)}
        except Exception as e:
            logger.error("mcp_tool_error", tool=name, error=str(e), exc_info=True)
            return {"error": "InternalError", "message": str(e), "tool": name}

    # Tasks

    async def _handle_create_task(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle create_task tool invocation."""
        _require(arguments, "title")
        fields = {key: value for key, value in arguments.items() if value is not None}
        unknown = sorted(set(fields) - set(TaskCreate.model_fields))
        if unknown:
            raise TaskValidationError(f"Unknown fields: {', '.join(unknown)}")
        task = await self.tasks.create_task(**fields)
        return _serialize_task(task)

    async def _handle_update_task(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle update_task tool invocation."""
        task_id = _int_arg(arguments, "task_id")
        fields = {key: value for key, value in arguments.items() if key != "task_id"}
        task = await self.tasks.update_task(task_id, **fields)
        return _serialize_task(task)

    async def _handle_get_task(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle get_task tool invocation."""
        task = await self.tasks.get_task(_int_arg(arguments, "task_id"))
        return _serialize_task(task)

    async def _handle_delete_task(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle delete_task tool invocation."""
        task_id = _int_arg(arguments, "task_id")
        removed = await self.tasks.delete_task(task_id)
        return {"deleted": True, "task_id": task_id, "removed": removed}

    async def _handle_archive_task(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle archive_task tool invocation."""
        task = await self.tasks.archive_task(_int_arg(arguments, "task_id"))
        return _serialize_task(task)

    async def _handle_list_tasks(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle list_tasks tool invocation."""
        tasks = await self.tasks.list_tasks(
            assigned_to=arguments.get("assigned_to"),
            status=arguments.get("status"),
            include_archived=bool(arguments.get("include_archived", False)),
            blocked_by_task_id=_int_arg(arguments, "blocked_by_task_id", required=False),
            limit=_int_arg(arguments, "limit", required=False),
            offset=_int_arg(arguments, "offset", required=False),
        )
        return {"tasks": _task_list(tasks), "count": len(tasks)}

    # Subtasks

    async def _handle_create_subtask(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle create_subtask tool invocation."""
        _int_arg(arguments, "parent_task_id")
        return await self._handle_create_task(arguments)

    async def _handle_get_subtasks(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle get_subtasks tool invocation."""
        parent_task_id = _int_arg(arguments, "parent_task_id")
        subtasks = await self.tasks.get_subtasks(
            parent_task_id,
            recursive=bool(arguments.get("recursive", False)),
            include_archived=bool(arguments.get("include_archived", False)),
        )
        return {
            "parent_task_id": parent_task_id,
            "subtasks": _task_list(subtasks),
            "count": len(subtasks),
        }

    async def _handle_get_task_with_subtasks(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle get_task_with_subtasks tool invocation."""
        task = await self.tasks.get_task_with_subtasks(
            _int_arg(arguments, "task_id"),
            recursive=bool(arguments.get("recursive", False)),
        )
        return task.model_dump(mode="json")

    async def _handle_move_subtask(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle move_subtask tool invocation."""
        task = await self.tasks.move_subtask(
            _int_arg(arguments, "subtask_id"),
            _int_arg(arguments, "new_parent_id", required=False),
        )
        return _serialize_task(task)

    async def _handle_get_task_path(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle get_task_path tool invocation."""
        task_id = _int_arg(arguments, "task_id")
        path = await self.tasks.get_task_path(task_id)
        return {"task_id": task_id, "path": _task_list(path), "depth": len(path) - 1}

    # Blocking

    async def _handle_set_blocked_by(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle set_blocked_by tool invocation."""
        task = await self.blocking.set_blocked_by(
            _int_arg(arguments, "task_id"),
            _int_arg(arguments, "blocker_task_id", required=False),
        )
        return _serialize_task(task)

    async def _handle_get_blockers(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle get_blockers tool invocation."""
        task_id = _int_arg(arguments, "task_id")
        blockers = await self.blocking.get_blockers(task_id)
        return {
            "task_id": task_id,
            "blockers": _task_list(blockers),
            "is_currently_blocked": any(b.status != TaskStatus.COMPLETE for b in blockers),
        }

    async def _handle_get_blocked_tasks(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle get_blocked_tasks tool invocation."""
        task_id = _int_arg(arguments, "task_id")
        blocked = await self.blocking.get_blocked_tasks(task_id)
        return {"blocker_task_id": task_id, "blocked_tasks": _task_list(blocked), "count": len(blocked)}

    # Queues

    async def _handle_get_queue_tasks(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle get_queue_tasks tool invocation."""
        _require(arguments, "queue_name")
        queue_name = arguments["queue_name"]
        filters = parse_input(
            QueueFilters, {key: value for key, value in arguments.items() if key != "queue_name"}
        )
        tasks = await self.queues.get_queue_tasks(queue_name, filters)
        return {"queue_name": queue_name.strip(), "tasks": _task_list(tasks), "count": len(tasks)}

    async def _handle_get_queue_stats(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle get_queue_stats tool invocation."""
        _require(arguments, "queue_name")
        stats = await self.queues.get_queue_stats(arguments["queue_name"])
        return stats.model_dump(mode="json")

    async def _handle_add_task_to_queue(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle add_task_to_queue tool invocation."""
        task_id = _int_arg(arguments, "task_id")
        _require(arguments, "queue_name")
        task = await self.queues.add_task_to_queue(task_id, arguments["queue_name"])
        return _serialize_task(task)

    async def _handle_remove_task_from_queue(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle remove_task_from_queue tool invocation."""
        task = await self.queues.remove_task_from_queue(_int_arg(arguments, "task_id"))
        return _serialize_task(task)

    async def _handle_move_task_to_queue(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle move_task_to_queue tool invocation."""
        task_id = _int_arg(arguments, "task_id")
        _require(arguments, "new_queue_name")
        task = await self.queues.move_task_to_queue(task_id, arguments["new_queue_name"])
        return _serialize_task(task)

    async def _handle_clear_queue(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle clear_queue tool invocation."""
        _require(arguments, "queue_name")
        cleared = await self.queues.clear_queue(arguments["queue_name"])
        return {"queue_name": arguments["queue_name"].strip(), "cleared": cleared}

    async def _handle_list_queues(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle list_queues tool invocation."""
        queues = await self.queues.list_queues()
        return {"queues": [q.model_dump() for q in queues], "count": len(queues)}

    # Agent inbox

    async def _handle_get_my_queue(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle get_my_queue tool invocation."""
        _require(arguments, "agent_name")
        tasks = await self.tasks.get_agent_queue(arguments["agent_name"])
        return {"agent_name": arguments["agent_name"], "tasks": _task_list(tasks), "count": len(tasks)}

    async def _handle_signup_for_task(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle signup_for_task tool invocation."""
        _require(arguments, "agent_name")
        task = await self.tasks.signup_for_task(arguments["agent_name"])
        return {"task": _serialize_task(task) if task else None}

    async def _handle_transfer_task(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Handle transfer_task tool invocation."""
        task_id = _int_arg(arguments, "task_id")
        _require(arguments, "current_agent", "new_agent")
        task = await self.tasks.transfer_task(
            task_id, arguments["current_agent"], arguments["new_agent"]
        )
        return _serialize_task(task)

    # Resources

    async def read_resource_uri(self, uri: str) -> dict[str, Any]:
        """Resolve a resource URI to its JSON payload.

        Raises:
            TaskValidationError: URI matches no resource
            TaskNotFoundError: ``task://{id}`` names a missing task
        """
        if uri == "tasks://active":
            tasks = await self.tasks.list_tasks()
            return {"count": len(tasks), "tasks": _task_list(tasks)}

        if uri == "tasks://archived":
            tasks = [t for t in await self.tasks.list_tasks(include_archived=True) if t.is_archived]
            return {"count": len(tasks), "tasks": _task_list(tasks)}

        match = _TASK_URI.match(uri)
        if match:
            return _serialize_task(await self.tasks.get_task(int(match.group(1))))

        match = _QUEUE_SUMMARY_URI.match(uri)
        if match:
            agent = unquote(match.group(1))
            tasks = await self.tasks.get_agent_queue(agent)
            return {
                "agent": agent,
                "total": len(tasks),
                "by_status": {
                    "idle": sum(1 for t in tasks if t.status == TaskStatus.IDLE),
                    "working": sum(1 for t in tasks if t.status == TaskStatus.WORKING),
                },
                "by_priority": {
                    "high": sum(1 for t in tasks if t.priority > 5),
                    "medium": sum(1 for t in tasks if 0 <= t.priority <= 5),
                    "low": sum(1 for t in tasks if t.priority < 0),
                },
            }

        match = _QUEUE_URI.match(uri)
        if match:
            agent = unquote(match.group(1))
            tasks = await self.tasks.get_agent_queue(agent)
            return {"agent": agent, "count": len(tasks), "tasks": _task_list(tasks)}

        logger.info("mcp_resource_unknown", uri=uri)
        raise TaskValidationError(f"Unknown resource: {uri}")

    async def run(self) -> None:
        """Run the MCP server."""
        await self.initialize()
        logger.info("tasktree_mcp_server_started", db_path=str(self.db_path))

        try:
            # Run stdio server
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream, write_stream, self.server.create_initialization_options()
                )
        finally:
            await self.close()


async def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Tasktree MCP Server")
    parser.add_argument(
        "--db-path",
        type=Path,
        default=None,
        help="Path to SQLite database (default: ./.tasktree/tasktree.db)",
    )

    args = parser.parse_args(argv)

    config_manager = ConfigManager()
    config = config_manager.load_config()
    setup_logging(log_level=config.log_level, log_dir=config_manager.get_log_dir())

    server = TasktreeServer(args.db_path or config_manager.get_database_path(), config)
    await server.run()


def cli_main() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli_main()
