"""Execution results and scheduler lock models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from sqlalchemy import Column, String, Integer, ForeignKey, Float, Text, Index

from .task import Base, UTCDateTime, utcnow


class ResultStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    SKIPPED_OVERLAP = "skipped_overlap"  # dispatch decision, never persisted

    @property
    def is_terminal(self) -> bool:
        return self is not ResultStatus.SKIPPED_OVERLAP


class TaskResult(Base):
    __tablename__ = "task_results"
    __table_args__ = (
        Index("ix_task_results_task_started", "task_id", "started_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL"))

    # Timing
    due_at = Column(UTCDateTime)  # null for manual executions
    started_at = Column(UTCDateTime, nullable=False)
    finished_at = Column(UTCDateTime, nullable=False)
    duration = Column(Float, nullable=False)  # seconds

    # Outcome
    status = Column(String(20), nullable=False)
    exit_code = Column(Integer)
    output = Column(Text)
    error = Column(Text)
    server_id = Column(String(255), nullable=False)

    def to_result(self) -> "ExecutionResult":
        return ExecutionResult(
            id=self.id,
            task_id=self.task_id,
            status=ResultStatus(self.status),
            started_at=self.started_at,
            finished_at=self.finished_at,
            duration=self.duration,
            server_id=self.server_id,
            due_at=self.due_at,
            exit_code=self.exit_code,
            output=self.output or "",
            error=self.error,
        )


class ScheduleLock(Base):
    __tablename__ = "scheduler_locks"

    lock_key = Column(String(255), primary_key=True)
    owner = Column(String(255), nullable=False)
    acquired_at = Column(UTCDateTime, default=utcnow, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)


@dataclass
class ExecutionResult:
    """Result of a task execution."""
    task_id: int
    status: ResultStatus
    started_at: datetime
    finished_at: datetime
    duration: float  # seconds
    server_id: str
    due_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    output: str = ""
    error: Optional[str] = None
    id: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status is ResultStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "status": self.status.value,
            "due_at": self.due_at.isoformat() if self.due_at else None,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration": self.duration,
            "exit_code": self.exit_code,
            "output": self.output,
            "error": self.error,
            "server_id": self.server_id
        }
