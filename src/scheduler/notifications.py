"""Notification intents for finished runs.

The scheduler only says *that* someone should be told; delivering email,
SMS or webhook messages is left to whatever listens.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Any
import logging

from models import TaskSnapshot, ExecutionResult

logger = logging.getLogger(__name__)


@dataclass
class NotificationIntent:
    task_id: int
    description: str
    targets: Dict[str, str]
    result: ExecutionResult
    summary: str = field(default="")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "description": self.description,
            "targets": self.targets,
            "summary": self.summary,
            "result": self.result.to_dict()
        }


Listener = Callable[[NotificationIntent], None]


def log_listener(intent: NotificationIntent):
    logger.info(f"Notify {sorted(intent.targets)}: {intent.summary}")


class NotificationDispatcher:
    def __init__(self, listeners: Optional[List[Listener]] = None):
        self.listeners: List[Listener] = list(listeners) if listeners is not None else [log_listener]

    def emit(self, task: TaskSnapshot, result: ExecutionResult) -> Optional[NotificationIntent]:
        """Publish an intent for a terminal result of a task with targets."""
        targets = task.notification_targets
        if not targets or not result.status.is_terminal:
            return None

        intent = NotificationIntent(
            task_id=task.id,
            description=task.description,
            targets=targets,
            result=result,
            summary=f"Task '{task.description}' finished with {result.status.value} "
                    f"in {result.duration:.2f} seconds"
        )

        for listener in self.listeners:
            try:
                listener(intent)
            except Exception as e:
                logger.error(f"Notification listener failed for task {task.id}: {e}", exc_info=True)

        return intent
