"""Task model and the immutable snapshot handed to executions."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any
from sqlalchemy import Column, String, Integer, Boolean, Text, DateTime
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from .schedule import Schedule, schedule_from_fields

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back timezone-aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class TaskStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CleanupType(str, Enum):
    DAYS = "days"  # drop results older than N days
    RESULTS = "results"  # keep only the N most recent results


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    description = Column(String(255), nullable=False)

    # Command catalog entry plus its free-form parameter string
    command = Column(String(255), nullable=False)
    parameters = Column(Text)

    # Exactly one of these is set, see models.schedule
    expression = Column(String(100))
    frequency = Column(String(50))
    timezone = Column(String(64), nullable=False, default="UTC")

    # Server settings
    dont_overlap = Column(Boolean, default=False, nullable=False)
    run_in_maintenance = Column(Boolean, default=False, nullable=False)
    run_on_one_server = Column(Boolean, default=False, nullable=False)
    max_runtime = Column(Integer)  # seconds, null falls back to settings

    # Notification targets, each optional
    notification_email_address = Column(String(255))
    notification_phone_number = Column(String(20))
    notification_slack_webhook = Column(String(500))

    # Old results cleanup
    auto_cleanup_type = Column(String(10), default=CleanupType.DAYS.value, nullable=False)
    auto_cleanup_num = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    # Maintained by the scheduler
    status = Column(String(20), default=TaskStatus.IDLE.value, nullable=False)
    last_run_at = Column(UTCDateTime)
    next_run_at = Column(UTCDateTime, index=True)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    @property
    def schedule(self) -> Schedule:
        return schedule_from_fields(self.expression, self.frequency)

    def snapshot(self) -> "TaskSnapshot":
        return TaskSnapshot(
            id=self.id,
            description=self.description,
            command=self.command,
            parameters=self.parameters or "",
            schedule=self.schedule,
            timezone=self.timezone,
            dont_overlap=bool(self.dont_overlap),
            run_in_maintenance=bool(self.run_in_maintenance),
            run_on_one_server=bool(self.run_on_one_server),
            max_runtime=self.max_runtime,
            notification_email_address=self.notification_email_address,
            notification_phone_number=self.notification_phone_number,
            notification_slack_webhook=self.notification_slack_webhook,
            auto_cleanup_type=CleanupType(self.auto_cleanup_type),
            auto_cleanup_num=self.auto_cleanup_num or 0,
            is_active=bool(self.is_active),
            next_run_at=self.next_run_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "command": self.command,
            "parameters": self.parameters,
            "type": "cron" if self.expression else "frequency",
            "expression": self.expression,
            "frequency": self.frequency,
            "timezone": self.timezone,
            "dont_overlap": self.dont_overlap,
            "run_in_maintenance": self.run_in_maintenance,
            "run_on_one_server": self.run_on_one_server,
            "max_runtime": self.max_runtime,
            "notification_email_address": self.notification_email_address,
            "notification_phone_number": self.notification_phone_number,
            "notification_slack_webhook": self.notification_slack_webhook,
            "auto_cleanup_type": self.auto_cleanup_type,
            "auto_cleanup_num": self.auto_cleanup_num,
            "is_active": self.is_active,
            "status": self.status,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }


@dataclass(frozen=True)
class TaskSnapshot:
    """Task parameters frozen at dispatch time.

    Edits made while a run is in flight land in the registry but never in
    the snapshot the run was started with.
    """
    id: int
    description: str
    command: str
    parameters: str
    schedule: Schedule
    timezone: str
    dont_overlap: bool = False
    run_in_maintenance: bool = False
    run_on_one_server: bool = False
    max_runtime: Optional[int] = None
    notification_email_address: Optional[str] = None
    notification_phone_number: Optional[str] = None
    notification_slack_webhook: Optional[str] = None
    auto_cleanup_type: CleanupType = CleanupType.DAYS
    auto_cleanup_num: int = 0
    is_active: bool = True
    next_run_at: Optional[datetime] = None

    @property
    def notification_targets(self) -> Dict[str, str]:
        targets = {
            "email": self.notification_email_address,
            "phone": self.notification_phone_number,
            "webhook": self.notification_slack_webhook,
        }
        return {kind: value for kind, value in targets.items() if value}
