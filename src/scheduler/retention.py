"""Old results cleanup."""

from datetime import datetime, timedelta
from typing import Dict, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError

from exceptions import RetentionIOError, TaskNotFound
from models import TaskSnapshot, CleanupType, utcnow
from .registry import TaskRegistry
from .results import ResultStore

logger = logging.getLogger(__name__)


class RetentionManager:
    """Applies each task's auto cleanup policy to its results.

    ``days`` drops results older than the threshold, ``results`` keeps only
    the threshold most recent ones. A threshold of 0 disables cleanup. The
    two policies are mutually exclusive per task.
    """

    def __init__(self, registry: TaskRegistry, result_store: ResultStore):
        self.registry = registry
        self.result_store = result_store

    def apply_retention(self, task: TaskSnapshot, now: Optional[datetime] = None) -> int:
        """Trim one task's results.

        Returns:
            Number of deleted results

        Raises:
            RetentionIOError: storage failed
        """
        threshold = task.auto_cleanup_num
        if threshold <= 0:
            return 0

        try:
            if task.auto_cleanup_type is CleanupType.DAYS:
                cutoff = (now or utcnow()) - timedelta(days=threshold)
                deleted = self.result_store.delete_started_before(task.id, cutoff)
            elif task.auto_cleanup_type is CleanupType.RESULTS:
                deleted = self.result_store.keep_latest(task.id, threshold)
            else:
                raise ValueError(f"Unsupported cleanup type: {task.auto_cleanup_type}")
        except (SQLAlchemyError, OSError) as e:
            raise RetentionIOError(f"Cleanup of task {task.id} failed: {e}") from e

        if deleted:
            logger.info(
                f"Removed {deleted} old results of task '{task.description}' "
                f"(ID: {task.id}, {task.auto_cleanup_type.value}={threshold})"
            )
        return deleted

    def run(self, now: Optional[datetime] = None) -> Dict[int, int]:
        """Sweep all tasks. A failure on one task is logged and skipped."""
        removed = {}
        try:
            task_ids = self.registry.all_ids()
        except SQLAlchemyError as e:
            logger.error(f"Retention sweep could not list tasks: {e}")
            return removed

        for task_id in task_ids:
            try:
                snapshot = self.registry.snapshot(task_id)
                removed[task_id] = self.apply_retention(snapshot, now)
            except TaskNotFound:
                continue
            except RetentionIOError as e:
                logger.error(str(e))
            except Exception as e:
                logger.error(f"Retention of task {task_id} failed: {e}", exc_info=True)

        return removed
