"""Durable catalog of configured tasks."""

import re
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import logging

from pydantic import HttpUrl, TypeAdapter, ValidationError

from config import settings
from database import DatabaseManager
from exceptions import ScheduleConflict, TaskNotFound, TaskValidationError, UnknownCommand
from executors import CommandCatalog
from models import (
    Task, TaskSnapshot, TaskStatus, TaskResult, CleanupType, ExecutionResult, ResultStatus, utcnow
)
from .cron_parser import ExpressionEvaluator
from .frequencies import normalize_frequency

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "description",
    "command",
    "parameters",
    "expression",
    "frequency",
    "timezone",
    "dont_overlap",
    "run_in_maintenance",
    "run_on_one_server",
    "max_runtime",
    "notification_email_address",
    "notification_phone_number",
    "notification_slack_webhook",
    "auto_cleanup_type",
    "auto_cleanup_num",
    "is_active",
)

_OPTIONAL_TEXT = (
    "parameters",
    "expression",
    "frequency",
    "notification_email_address",
    "notification_phone_number",
    "notification_slack_webhook",
)
_FLAGS = ("dont_overlap", "run_in_maintenance", "run_on_one_server", "is_active")
_SCHEDULE_FIELDS = ("expression", "frequency", "timezone")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\d{11,13}$")  # country code included, digits only
_webhook_url = TypeAdapter(HttpUrl)


class TaskRegistry:
    """CRUD over tasks plus the bookkeeping the scheduler needs.

    Every write re-validates the whole task: the schedule must be exactly one
    of a cron expression or a frequency, cron text must parse, frequency
    input is normalized to its catalog key. Writes to one task are serialized
    by a per-task lock; unrelated tasks never wait on each other.
    """

    def __init__(self, db_manager: DatabaseManager, evaluator: ExpressionEvaluator,
                 commands: Optional[CommandCatalog] = None):
        self.db_manager = db_manager
        self.evaluator = evaluator
        self.commands = commands
        self._locks: Dict[int, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _task_lock(self, task_id: int) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(task_id)
            if lock is None:
                lock = self._locks[task_id] = threading.RLock()
            return lock

    # Validation

    def _normalize(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise TaskValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")

        data = dict(fields)
        for key, value in data.items():
            if isinstance(value, str):
                data[key] = value.strip()
        for key in _OPTIONAL_TEXT:
            if key in data and not data[key]:
                data[key] = None
        for key in _FLAGS:
            if key in data:
                data[key] = bool(data[key])
        if "timezone" in data and not data["timezone"]:
            data["timezone"] = self.evaluator.default_timezone

        if data.get("frequency"):
            data["frequency"] = normalize_frequency(data["frequency"])
        if "auto_cleanup_type" in data:
            try:
                data["auto_cleanup_type"] = CleanupType(data["auto_cleanup_type"] or CleanupType.DAYS).value
            except ValueError:
                raise TaskValidationError(
                    f"auto_cleanup_type must be one of: {', '.join(c.value for c in CleanupType)}"
                ) from None
        return data

    def _validate_notifications(self, task: Task):
        if task.notification_email_address and not EMAIL_RE.match(task.notification_email_address):
            raise TaskValidationError(f"Invalid email address '{task.notification_email_address}'")

        if task.notification_phone_number and not PHONE_RE.match(task.notification_phone_number):
            raise TaskValidationError("Phone number must be 11 to 13 digits including country code")

        if task.notification_slack_webhook:
            try:
                _webhook_url.validate_python(task.notification_slack_webhook)
            except ValidationError:
                raise TaskValidationError(
                    f"Invalid webhook URL '{task.notification_slack_webhook}'"
                ) from None

    def _validate(self, task: Task):
        if not task.description:
            raise TaskValidationError("Description is required")
        if len(task.description) > 255:
            raise TaskValidationError("Description must be at most 255 characters")

        if not task.command:
            raise TaskValidationError("Command is required")
        if self.commands is not None and task.command not in self.commands:
            raise UnknownCommand(task.command)

        schedule = task.schedule
        self.evaluator.validate(schedule, task.timezone)

        if task.max_runtime is not None and task.max_runtime <= 0:
            raise TaskValidationError("max_runtime must be a positive number of seconds")
        if task.auto_cleanup_num is None or task.auto_cleanup_num < 0:
            raise TaskValidationError("auto_cleanup_num must be zero or a positive integer")

        self._validate_notifications(task)

    def _schedule_next(self, task: Task, now: datetime):
        if task.is_active:
            task.next_run_at = self.evaluator.next_run(task.schedule, now, task.timezone)
        else:
            task.next_run_at = None

    # CRUD

    def create(self, fields: Dict[str, Any], now: Optional[datetime] = None) -> Task:
        """Create a task; next run is computed from ``now``."""
        data = self._normalize(fields)
        data.setdefault("timezone", self.evaluator.default_timezone)
        data.setdefault("auto_cleanup_type", CleanupType.DAYS.value)
        data.setdefault("auto_cleanup_num", 0)
        for key in _FLAGS:
            data.setdefault(key, key == "is_active")

        task = Task(status=TaskStatus.IDLE.value, **data)
        self._validate(task)
        self._schedule_next(task, now or utcnow())

        with self.db_manager.get_session() as session:
            session.add(task)
            session.flush()
            logger.info(f"Created task '{task.description}' (ID: {task.id})")
            return task

    def get(self, task_id: int) -> Task:
        with self.db_manager.get_session() as session:
            task = session.get(Task, task_id)
            if task is None:
                raise TaskNotFound(task_id)
            return task

    def list(self, skip: int = 0, limit: int = 100,
             is_active: Optional[bool] = None) -> Tuple[int, List[Task]]:
        with self.db_manager.get_session() as session:
            query = session.query(Task)
            if is_active is not None:
                query = query.filter(Task.is_active == is_active)
            total = query.count()
            tasks = query.order_by(Task.id).offset(skip).limit(limit).all()
            return total, tasks

    def count(self, is_active: Optional[bool] = None) -> int:
        with self.db_manager.get_session() as session:
            query = session.query(Task)
            if is_active is not None:
                query = query.filter(Task.is_active == is_active)
            return query.count()

    def all_ids(self) -> List[int]:
        with self.db_manager.get_session() as session:
            return [row[0] for row in session.query(Task.id).order_by(Task.id).all()]

    def update(self, task_id: int, fields: Dict[str, Any], now: Optional[datetime] = None) -> Task:
        """Apply a partial update.

        Setting one schedule representation clears the other. Schedule or
        timezone changes move the next run relative to ``now``.
        """
        data = self._normalize(fields)
        if data.get("expression") and data.get("frequency"):
            raise ScheduleConflict("A task cannot have both a cron expression and a frequency")
        if data.get("expression"):
            data["frequency"] = None
        elif data.get("frequency"):
            data["expression"] = None

        with self._task_lock(task_id):
            with self.db_manager.get_session() as session:
                task = session.get(Task, task_id)
                if task is None:
                    raise TaskNotFound(task_id)

                was_active = task.is_active
                for key, value in data.items():
                    setattr(task, key, value)
                self._validate(task)

                if any(key in data for key in _SCHEDULE_FIELDS) or task.is_active != was_active:
                    self._schedule_next(task, now or utcnow())

                session.flush()
                logger.info(f"Updated task {task_id}")
                return task

    def delete(self, task_id: int, keep_results: Optional[bool] = None):
        """Delete a task. Results are removed too unless ``keep_results``."""
        if keep_results is None:
            keep_results = settings.keep_results_on_delete

        with self._task_lock(task_id):
            with self.db_manager.get_session() as session:
                task = session.get(Task, task_id)
                if task is None:
                    raise TaskNotFound(task_id)

                results = session.query(TaskResult).filter(TaskResult.task_id == task_id)
                if keep_results:
                    results.update({TaskResult.task_id: None}, synchronize_session=False)
                else:
                    results.delete(synchronize_session=False)
                session.delete(task)

        with self._locks_guard:
            self._locks.pop(task_id, None)
        logger.info(f"Deleted task {task_id}")

    def enable(self, task_id: int, now: Optional[datetime] = None) -> Task:
        return self.update(task_id, {"is_active": True}, now=now)

    def disable(self, task_id: int) -> Task:
        return self.update(task_id, {"is_active": False})

    # Scheduler bookkeeping

    def snapshot(self, task_id: int) -> TaskSnapshot:
        return self.get(task_id).snapshot()

    def list_due(self, now: datetime) -> List[TaskSnapshot]:
        """Active tasks whose next run is at or before ``now``.

        Ordered by next run, then by id, which is the dispatch order.
        """
        with self.db_manager.get_session() as session:
            tasks = (
                session.query(Task)
                .filter(Task.is_active.is_(True))
                .filter(Task.next_run_at.isnot(None))
                .filter(Task.next_run_at <= now)
                .order_by(Task.next_run_at, Task.id)
                .all()
            )

        snapshots = []
        for task in tasks:
            try:
                snapshots.append(task.snapshot())
            except TaskValidationError as e:
                logger.error(f"Task {task.id} has an unusable schedule, skipping: {e}")
        return snapshots

    def next_run_at(self, task_id: int) -> Optional[datetime]:
        with self.db_manager.get_session() as session:
            row = session.query(Task.next_run_at).filter(Task.id == task_id).first()
            if row is None:
                raise TaskNotFound(task_id)
            return row[0]

    def mark_running(self, task_id: int):
        with self._task_lock(task_id):
            with self.db_manager.get_session() as session:
                task = session.get(Task, task_id)
                if task is not None:
                    task.status = TaskStatus.RUNNING.value

    def record_completion(self, task_id: int, result: ExecutionResult, now: datetime,
                          recompute_next: bool = True) -> Optional[datetime]:
        """Store the outcome of a run on its task.

        The next run is computed from ``now``, the completion instant, so a
        task that missed slots while the service was down runs once, not once
        per missed slot.

        Returns:
            The new next run, or None if the task is gone or inactive
        """
        if not result.status.is_terminal:
            return None

        with self._task_lock(task_id):
            with self.db_manager.get_session() as session:
                task = session.get(Task, task_id)
                if task is None:
                    logger.info(f"Task {task_id} was deleted while running")
                    return None

                task.status = (
                    TaskStatus.SUCCEEDED.value if result.status is ResultStatus.SUCCESS
                    else TaskStatus.FAILED.value
                )
                task.last_run_at = result.started_at
                if recompute_next:
                    self._schedule_next(task, now)
                return task.next_run_at
