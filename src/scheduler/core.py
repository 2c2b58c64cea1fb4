"""Core scheduler implementation using APScheduler."""

import asyncio
import os
import socket
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Any, Tuple
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
import logging

from config import settings
from database import DatabaseManager
from exceptions import LockUnavailable
from executors import CommandCatalog, build_default_catalog
from models import Task, TaskSnapshot, ExecutionResult, ResultStatus, utcnow
from .cron_parser import ExpressionEvaluator
from .executor import TaskExecutor
from .locks import LockService, DatabaseLockService, InMemoryLockService, keep_alive, one_server_key, overlap_key
from .maintenance import MaintenanceMode
from .notifications import NotificationDispatcher
from .registry import TaskRegistry
from .results import ResultStore
from .retention import RetentionManager

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    IDLE = "idle"
    DUE = "due"
    DISPATCHING = "dispatching"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TickReport:
    """What one tick decided, task ids in dispatch order."""
    now: datetime
    dispatched: List[int] = field(default_factory=list)
    deferred: Dict[int, str] = field(default_factory=dict)


class SchedulerManager:
    """Decides each tick which tasks run and hands them to the executor.

    APScheduler only provides the clock: one interval job calls ``tick`` and
    another sweeps old results. Due-ness, constraints and dispatch live here
    so they behave the same whether the tick comes from APScheduler or from a
    direct call.
    """

    def __init__(self, db_manager: DatabaseManager,
                 commands: Optional[CommandCatalog] = None,
                 lock_service: Optional[LockService] = None,
                 maintenance: Optional[MaintenanceMode] = None,
                 notifier: Optional[NotificationDispatcher] = None,
                 server_id: Optional[str] = None,
                 clock: Callable[[], datetime] = utcnow,
                 max_workers: Optional[int] = None,
                 timezone: Optional[str] = None):
        self.db_manager = db_manager
        self.server_id = server_id or settings.server_id or f"{socket.gethostname()}:{os.getpid()}"
        self.clock = clock

        self.evaluator = ExpressionEvaluator(timezone or settings.scheduler_timezone)
        self.commands = commands if commands is not None else build_default_catalog()
        self.registry = TaskRegistry(db_manager, self.evaluator, self.commands)
        self.result_store = ResultStore(db_manager)
        self.lock_service = lock_service or self._default_lock_service()
        self.executor = TaskExecutor(
            self.commands, self.result_store, self.lock_service, self.server_id, clock=clock
        )
        self.retention = RetentionManager(self.registry, self.result_store)
        self.maintenance = maintenance or MaintenanceMode()
        self.notifier = notifier or NotificationDispatcher()

        self.scheduler = None
        self._slots = asyncio.Semaphore(max_workers or settings.max_workers)
        self._in_flight: Dict[Tuple[int, datetime], asyncio.Task] = {}
        self._states: Dict[int, TaskState] = {}

    def _default_lock_service(self) -> LockService:
        if settings.lock_backend == "memory":
            return InMemoryLockService()
        return DatabaseLockService(self.db_manager)

    def initialize(self):
        """Initialize and start the APScheduler clock. Needs a running event loop."""
        self.scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults=settings.scheduler_job_defaults,
            timezone=settings.scheduler_timezone
        )

        self.scheduler.add_job(
            func=self.tick,
            trigger=IntervalTrigger(seconds=settings.tick_interval),
            id="tick",
            name="Scheduling tick",
            replace_existing=True
        )
        self.scheduler.add_job(
            func=self.run_retention,
            trigger=IntervalTrigger(minutes=settings.retention_interval),
            id="retention",
            name="Old results cleanup",
            replace_existing=True
        )

        self.scheduler.start()
        logger.info(f"Scheduler started on {self.server_id} (tick every {settings.tick_interval}s)")

    # Tick

    def _set_state(self, task_id: int, state: TaskState):
        previous = self._states.get(task_id, TaskState.IDLE)
        if previous is not state:
            logger.debug(f"Task {task_id}: {previous.value} -> {state.value}")
        self._states[task_id] = state

    def _blocked_reason(self, task: TaskSnapshot, maintenance: bool) -> Optional[str]:
        if not task.is_active:
            return "inactive"
        if maintenance and not task.run_in_maintenance:
            return "maintenance"
        if (task.id, task.next_run_at) in self._in_flight:
            return "in_flight"
        if task.dont_overlap and (
                self.executor.is_running(task.id) or self.lock_service.is_held(overlap_key(task.id))):
            return "overlap"
        return None

    def _acquire_one_server_lock(self, task: TaskSnapshot) -> str:
        key = one_server_key(task.id, task.next_run_at)
        if not self.lock_service.acquire(key, self.server_id, self.executor.lease_ttl(task)):
            raise LockUnavailable(key)
        return key

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Dispatch every task that is due at ``now``.

        Never waits for a run to finish. A blocked task keeps its next run
        and is looked at again on the following tick.
        """
        now = now or self.clock()
        report = TickReport(now=now)

        try:
            due = self.registry.list_due(now)
            maintenance = self.maintenance.is_active()
        except Exception as e:
            logger.error(f"Tick at {now.isoformat()} could not read tasks: {e}", exc_info=True)
            return report

        for task in due:
            try:
                self._set_state(task.id, TaskState.DUE)
                reason = self._blocked_reason(task, maintenance)
                if reason:
                    logger.debug(f"Task {task.id} deferred: {reason}")
                    report.deferred[task.id] = reason
                    continue

                self._set_state(task.id, TaskState.DISPATCHING)
                lock_key = None
                if task.run_on_one_server:
                    lock_key = self._acquire_one_server_lock(task)
                    if self.registry.next_run_at(task.id) != task.next_run_at:
                        # Another server ran this slot and already moved on
                        self.lock_service.release(lock_key, self.server_id)
                        self._set_state(task.id, TaskState.IDLE)
                        report.deferred[task.id] = "handled"
                        continue

                self._dispatch(task, lock_key)
                report.dispatched.append(task.id)

            except LockUnavailable as e:
                logger.info(f"Task {task.id} deferred: {e}")
                self._set_state(task.id, TaskState.DUE)
                report.deferred[task.id] = "lock_unavailable"
            except Exception as e:
                logger.error(f"Failed to dispatch task {task.id}: {e}", exc_info=True)
                self._set_state(task.id, TaskState.DUE)
                report.deferred[task.id] = "error"

        if report.dispatched:
            logger.info(f"Tick at {now.isoformat()} dispatched tasks {report.dispatched}")
        return report

    def _dispatch(self, task: TaskSnapshot, lock_key: Optional[str]):
        key = (task.id, task.next_run_at)
        job = asyncio.get_running_loop().create_task(self._run(task, lock_key))
        self._in_flight[key] = job
        job.add_done_callback(lambda _: self._in_flight.pop(key, None))

    async def _run(self, task: TaskSnapshot, lock_key: Optional[str]) -> Optional[ExecutionResult]:
        renewal = None
        if lock_key:
            # Held until the result is recorded
            renewal = asyncio.ensure_future(
                keep_alive(self.lock_service, lock_key, self.server_id, self.executor.lease_ttl(task))
            )
        try:
            async with self._slots:
                self._set_state(task.id, TaskState.RUNNING)
                self.registry.mark_running(task.id)
                result = await self.executor.execute(task, due_at=task.next_run_at)
            self._complete(task, result, recompute_next=True)
            return result
        except Exception as e:
            logger.error(f"Error executing task {task.id}: {e}", exc_info=True)
            self._set_state(task.id, TaskState.FAILED)
            return None
        finally:
            if renewal is not None:
                renewal.cancel()
                self.lock_service.release(lock_key, self.server_id)

    def _complete(self, task: TaskSnapshot, result: ExecutionResult, recompute_next: bool):
        if result.status is ResultStatus.SKIPPED_OVERLAP:
            self._set_state(task.id, TaskState.DUE)
            return

        next_run = self.registry.record_completion(task.id, result, self.clock(), recompute_next)
        self._set_state(task.id, TaskState.COMPLETED if result.success else TaskState.FAILED)
        self.notifier.emit(task, result)

        if recompute_next and next_run is not None:
            logger.info(f"Next run of task {task.id} at {next_run.isoformat()}")
        self._set_state(task.id, TaskState.IDLE)

    async def drain(self):
        """Wait for every dispatched run to finish."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    # Administrative operations

    async def execute_task_now(self, task_id: int) -> ExecutionResult:
        """Execute a task immediately (manual trigger).

        Runs even when the task is disabled or the host is in maintenance,
        but still honors ``dont_overlap``. The next scheduled run stays put.
        """
        task = self.registry.snapshot(task_id)
        self.registry.mark_running(task_id)
        result = await self.executor.execute(task)
        self._complete(task, result, recompute_next=False)
        return result

    def run_retention(self) -> Dict[int, int]:
        return self.retention.run(self.clock())

    def task_details(self, task: Task) -> Dict[str, Any]:
        """Task fields plus the derived values shown by the admin layer."""
        details = task.to_dict()
        details["average_runtime"] = self.result_store.average_runtime(task.id)
        last = self.result_store.last_result(task.id)
        details["last_result"] = last.to_dict() if last else None
        details["schedule_description"] = self.evaluator.describe(task.schedule)
        return details

    def get_scheduler_status(self) -> Dict[str, Any]:
        """Get current scheduler status."""
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                jobs.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                    "trigger": str(job.trigger)
                })

        return {
            "running": bool(self.scheduler and self.scheduler.running),
            "server_id": self.server_id,
            "timezone": self.evaluator.default_timezone,
            "maintenance": self.maintenance.is_active(),
            "in_flight": len(self._in_flight),
            "executing": self.executor.running_count(),
            "jobs": jobs,
            "states": {task_id: state.value for task_id, state in self._states.items()
                       if state is not TaskState.IDLE}
        }

    def shutdown(self):
        """Shutdown the scheduler. Running executions are left to finish."""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")
