"""Database models for CronKeeper."""

from .task import Base, Task, TaskSnapshot, TaskStatus, CleanupType, UTCDateTime, utcnow
from .schedule import Schedule, CronSchedule, FrequencySchedule, schedule_from_fields
from .result import TaskResult, ScheduleLock, ExecutionResult, ResultStatus

__all__ = [
    "Base",
    "Task",
    "TaskSnapshot",
    "TaskStatus",
    "CleanupType",
    "UTCDateTime",
    "utcnow",
    "Schedule",
    "CronSchedule",
    "FrequencySchedule",
    "schedule_from_fields",
    "TaskResult",
    "ScheduleLock",
    "ExecutionResult",
    "ResultStatus"
]
