"""Persistence of execution results."""

from datetime import datetime
from typing import List, Optional, Tuple
import logging

from sqlalchemy import func

from database import DatabaseManager
from models import TaskResult, ExecutionResult, ResultStatus

logger = logging.getLogger(__name__)


class ResultStore:
    """Append-only log of task runs, trimmed by the retention policy."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def append(self, result: ExecutionResult) -> ExecutionResult:
        """Persist a result. The row is committed when this returns."""
        if not result.status.is_terminal:
            raise ValueError(f"Refusing to store non-terminal result status '{result.status.value}'")

        with self.db_manager.get_session() as session:
            row = TaskResult(
                task_id=result.task_id,
                due_at=result.due_at,
                started_at=result.started_at,
                finished_at=result.finished_at,
                duration=result.duration,
                status=result.status.value,
                exit_code=result.exit_code,
                output=result.output,
                error=result.error,
                server_id=result.server_id
            )
            session.add(row)
            session.flush()
            result.id = row.id

        return result

    def list_for_task(self, task_id: int, skip: int = 0, limit: int = 100,
                      status: Optional[ResultStatus] = None) -> Tuple[int, List[ExecutionResult]]:
        """Results of a task, most recent first."""
        with self.db_manager.get_session() as session:
            query = session.query(TaskResult).filter(TaskResult.task_id == task_id)
            if status is not None:
                query = query.filter(TaskResult.status == status.value)

            total = query.count()
            rows = (
                query.order_by(TaskResult.started_at.desc(), TaskResult.id.desc())
                .offset(skip)
                .limit(limit)
                .all()
            )
            return total, [row.to_result() for row in rows]

    def count(self, task_id: int) -> int:
        with self.db_manager.get_session() as session:
            return session.query(TaskResult).filter(TaskResult.task_id == task_id).count()

    def last_result(self, task_id: int) -> Optional[ExecutionResult]:
        with self.db_manager.get_session() as session:
            row = (
                session.query(TaskResult)
                .filter(TaskResult.task_id == task_id)
                .order_by(TaskResult.started_at.desc(), TaskResult.id.desc())
                .first()
            )
            return row.to_result() if row else None

    def average_runtime(self, task_id: int) -> Optional[float]:
        """Mean duration in seconds, None when the task never ran."""
        with self.db_manager.get_session() as session:
            value = (
                session.query(func.avg(TaskResult.duration))
                .filter(TaskResult.task_id == task_id)
                .scalar()
            )
            return float(value) if value is not None else None

    def delete_started_before(self, task_id: int, cutoff: datetime,
                              preserve_latest: bool = True) -> int:
        """Delete results that started before ``cutoff``.

        With ``preserve_latest`` the most recent result survives even when it
        is older than the cutoff, so the task never loses its last run.
        """
        with self.db_manager.get_session() as session:
            query = session.query(TaskResult.id).filter(
                TaskResult.task_id == task_id,
                TaskResult.started_at < cutoff
            )

            if preserve_latest:
                latest = (
                    session.query(TaskResult.id)
                    .filter(TaskResult.task_id == task_id)
                    .order_by(TaskResult.started_at.desc(), TaskResult.id.desc())
                    .limit(1)
                    .scalar()
                )
                if latest is not None:
                    query = query.filter(TaskResult.id != latest)

            ids = [row[0] for row in query.all()]
            if ids:
                session.query(TaskResult).filter(TaskResult.id.in_(ids)).delete(synchronize_session=False)
            return len(ids)

    def keep_latest(self, task_id: int, count: int) -> int:
        """Delete everything but the ``count`` most recent results."""
        if count <= 0:
            raise ValueError("count must be positive")

        with self.db_manager.get_session() as session:
            ids = [
                row[0] for row in
                session.query(TaskResult.id)
                .filter(TaskResult.task_id == task_id)
                .order_by(TaskResult.started_at.desc(), TaskResult.id.desc())
                .offset(count)
                .all()
            ]
            if ids:
                session.query(TaskResult).filter(TaskResult.id.in_(ids)).delete(synchronize_session=False)
            return len(ids)
