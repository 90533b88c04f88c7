"""Exception hierarchy for task store invariant violations."""


class TaskTreeError(Exception):
    """Base exception for all Tasktree errors.

    Attributes:
        error_kind: Stable error name reported verbatim by the tool surface
    """

    error_kind = "TaskTreeError"


class TaskNotFoundError(TaskTreeError):
    """Referenced task, parent or blocker does not exist.

    Attributes:
        task_id: The id that could not be resolved
        role: What the id was used as ("task", "parent", "blocker")
    """

    error_kind = "NotFound"

    def __init__(self, task_id: int, role: str = "task"):
        """Initialize not found error.

        Args:
            task_id: Missing task id
            role: Role of the missing task in the requested operation
        """
        label = "Task" if role == "task" else f"{role.capitalize()} task"
        super().__init__(f"{label} not found: {task_id}")
        self.task_id = task_id
        self.role = role


class InvalidReferenceError(TaskTreeError):
    """A task references itself (self-parent, self-block) or the wrong owner."""

    error_kind = "InvalidReference"


class CircularReferenceError(TaskTreeError):
    """The requested edge would close a cycle in the hierarchy or blocking graph.

    Attributes:
        relation: "parent" or "blocking"
        task_id: Task whose edge was being changed
        target_id: Proposed parent or blocker
    """

    error_kind = "CircularReference"

    def __init__(self, relation: str, task_id: int, target_id: int):
        """Initialize circular reference error.

        Args:
            relation: Relation being modified ("parent" or "blocking")
            task_id: Task being modified
            target_id: Proposed new parent or blocker
        """
        if relation == "parent":
            message = (
                f"Cannot create circular parent-child relationship: "
                f"task {target_id} is a descendant of task {task_id}"
            )
        else:
            message = (
                f"Cannot create circular blocking relationship: "
                f"task {target_id} is (transitively) blocked by task {task_id}"
            )
        super().__init__(message)
        self.relation = relation
        self.task_id = task_id
        self.target_id = target_id


class TaskValidationError(TaskTreeError):
    """Input failed validation (empty title, bad status, derived status edit)."""

    error_kind = "ValidationError"
