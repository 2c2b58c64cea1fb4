"""Runs dispatched tasks and records their results."""

import asyncio
import time
from collections import Counter
from datetime import datetime
from typing import Callable, Optional, Tuple
import logging

from config import settings
from exceptions import ExecutionFailed, ExecutionTimeout, UnknownCommand
from executors import CommandCatalog
from models import TaskSnapshot, ExecutionResult, ResultStatus, utcnow
from .locks import LockService, keep_alive, overlap_key
from .results import ResultStore

logger = logging.getLogger(__name__)


class TaskExecutor:
    """Executes task snapshots through the command catalog.

    Each run is written to the result store before ``execute`` returns, so
    the scheduler never acts on a result that is not durable.
    """

    def __init__(self, commands: CommandCatalog, result_store: ResultStore,
                 lock_service: LockService, server_id: str,
                 clock: Callable[[], datetime] = utcnow,
                 default_timeout: Optional[int] = None):
        self.commands = commands
        self.result_store = result_store
        self.lock_service = lock_service
        self.server_id = server_id
        self.clock = clock
        self.default_timeout = settings.execution_timeout if default_timeout is None else default_timeout
        self._running = Counter()

    def is_running(self, task_id: int) -> bool:
        return self._running[task_id] > 0

    def running_count(self) -> int:
        return sum(self._running.values())

    def timeout_for(self, task: TaskSnapshot) -> Optional[int]:
        return task.max_runtime or self.default_timeout or None

    def lease_ttl(self, task: TaskSnapshot) -> int:
        """Lease length for locks held across one run of ``task``."""
        timeout = self.timeout_for(task)
        return timeout + 60 if timeout else settings.lock_ttl

    async def execute(self, task: TaskSnapshot, due_at: Optional[datetime] = None) -> ExecutionResult:
        """Run a task once.

        With ``dont_overlap`` the run is refused when another run of the same
        task is active here or on another server; the returned result then
        has status SKIPPED_OVERLAP and is not stored.
        """
        if task.dont_overlap:
            if self.is_running(task.id) or not self.lock_service.acquire(
                    overlap_key(task.id), self.server_id, self.lease_ttl(task)):
                logger.info(f"Task '{task.description}' (ID: {task.id}) is still running, skipping")
                now = self.clock()
                return ExecutionResult(
                    task_id=task.id,
                    status=ResultStatus.SKIPPED_OVERLAP,
                    started_at=now,
                    finished_at=now,
                    duration=0.0,
                    server_id=self.server_id,
                    due_at=due_at
                )

        renewal = None
        if task.dont_overlap:
            renewal = asyncio.ensure_future(
                keep_alive(self.lock_service, overlap_key(task.id), self.server_id, self.lease_ttl(task))
            )

        self._running[task.id] += 1
        try:
            logger.info(f"Executing task '{task.description}' (ID: {task.id})")
            started_at = self.clock()
            started = time.monotonic()
            status, exit_code, output, error = await self._run(task)
            duration = time.monotonic() - started

            result = ExecutionResult(
                task_id=task.id,
                status=status,
                started_at=started_at,
                finished_at=self.clock(),
                duration=duration,
                server_id=self.server_id,
                due_at=due_at,
                exit_code=exit_code,
                output=output,
                error=error
            )
            self.result_store.append(result)
        finally:
            self._running[task.id] -= 1
            if self._running[task.id] <= 0:
                del self._running[task.id]
            if renewal is not None:
                renewal.cancel()
                self.lock_service.release(overlap_key(task.id), self.server_id)

        if result.success:
            logger.info(f"Task '{task.description}' executed successfully in {duration:.2f}s")
        else:
            logger.warning(f"Task '{task.description}' {result.status.value}: {result.error}")
        return result

    async def _run(self, task: TaskSnapshot) -> Tuple[ResultStatus, Optional[int], str, Optional[str]]:
        timeout = self.timeout_for(task)
        try:
            executor = self.commands.resolve(task.command)
            outcome = await executor.execute(task.parameters, timeout)
        except ExecutionTimeout as e:
            return ResultStatus.TIMEOUT, None, e.output, str(e)
        except ExecutionFailed as e:
            return ResultStatus.FAILURE, e.exit_code, e.output, str(e)
        except UnknownCommand as e:
            return ResultStatus.FAILURE, None, "", str(e)
        except Exception as e:
            logger.error(f"Task {task.id} execution error: {e}", exc_info=True)
            return ResultStatus.FAILURE, None, "", f"{type(e).__name__}: {e}"

        if outcome.success:
            return ResultStatus.SUCCESS, outcome.exit_code, outcome.output, None
        return ResultStatus.FAILURE, outcome.exit_code, outcome.output, f"Exit code: {outcome.exit_code}"
