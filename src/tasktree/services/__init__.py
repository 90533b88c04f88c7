"""Service layer for task hierarchy, blocking, status propagation and queues."""

from tasktree.services.blocking_manager import BlockingManager
from tasktree.services.queue_service import QueueService
from tasktree.services.status_propagator import StatusPropagator
from tasktree.services.task_service import TaskService

__all__ = [
    "BlockingManager",
    "QueueService",
    "StatusPropagator",
    "TaskService",
]
