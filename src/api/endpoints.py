"""API endpoints for task administration."""

from zoneinfo import available_timezones
from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional, Dict, Any, Literal
from pydantic import BaseModel, Field

from exceptions import RetentionIOError
from models import CleanupType, ResultStatus
from scheduler import SchedulerManager, FREQUENCIES
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def get_scheduler() -> SchedulerManager:
    """Get scheduler manager instance."""
    # Import here to avoid circular import
    from api.http_server import scheduler_manager
    if not scheduler_manager:
        raise RuntimeError("Scheduler not initialized")
    return scheduler_manager


# Pydantic models for request/response
class TaskCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    command: str = Field(..., min_length=1, max_length=255)
    parameters: Optional[str] = None
    # Which of expression / frequency the form used; the other one is dropped
    type: Optional[Literal["cron", "frequency"]] = None
    expression: Optional[str] = Field(None, max_length=100)
    frequency: Optional[str] = Field(None, max_length=50)
    timezone: Optional[str] = Field(None, max_length=64)
    dont_overlap: bool = False
    run_in_maintenance: bool = False
    run_on_one_server: bool = False
    max_runtime: Optional[int] = Field(None, ge=1)
    notification_email_address: Optional[str] = Field(None, max_length=255)
    notification_phone_number: Optional[str] = Field(None, max_length=20)
    notification_slack_webhook: Optional[str] = Field(None, max_length=500)
    auto_cleanup_type: CleanupType = CleanupType.DAYS
    auto_cleanup_num: int = Field(0, ge=0)
    is_active: bool = True


class TaskUpdate(BaseModel):
    description: Optional[str] = Field(None, min_length=1, max_length=255)
    command: Optional[str] = Field(None, min_length=1, max_length=255)
    parameters: Optional[str] = None
    type: Optional[Literal["cron", "frequency"]] = None
    expression: Optional[str] = Field(None, max_length=100)
    frequency: Optional[str] = Field(None, max_length=50)
    timezone: Optional[str] = Field(None, max_length=64)
    dont_overlap: Optional[bool] = None
    run_in_maintenance: Optional[bool] = None
    run_on_one_server: Optional[bool] = None
    max_runtime: Optional[int] = Field(None, ge=1)
    notification_email_address: Optional[str] = Field(None, max_length=255)
    notification_phone_number: Optional[str] = Field(None, max_length=20)
    notification_slack_webhook: Optional[str] = Field(None, max_length=500)
    auto_cleanup_type: Optional[CleanupType] = None
    auto_cleanup_num: Optional[int] = Field(None, ge=0)


class MaintenanceUpdate(BaseModel):
    enabled: bool
    message: str = ""


def _apply_schedule_type(fields: Dict[str, Any], schedule_type: Optional[str]) -> Dict[str, Any]:
    if schedule_type == "cron":
        fields["frequency"] = None
    elif schedule_type == "frequency":
        fields["expression"] = None
    return fields


# Task endpoints
@router.post("/tasks", status_code=201)
async def create_task(task: TaskCreate, scheduler: SchedulerManager = Depends(get_scheduler)):
    """Create a new task."""
    fields = _apply_schedule_type(task.model_dump(exclude={"type"}, exclude_none=True), task.type)
    db_task = scheduler.registry.create(fields, now=scheduler.clock())
    return scheduler.task_details(db_task)


@router.get("/tasks")
async def list_tasks(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    is_active: Optional[bool] = None,
    scheduler: SchedulerManager = Depends(get_scheduler)
):
    """List all tasks with optional filtering."""
    total, tasks = scheduler.registry.list(skip=skip, limit=limit, is_active=is_active)

    return {
        "total": total,
        "skip": skip,
        "limit": limit,
        "tasks": [scheduler.task_details(task) for task in tasks]
    }


@router.get("/tasks/{task_id}")
async def get_task(task_id: int, scheduler: SchedulerManager = Depends(get_scheduler)):
    """Get a specific task by ID."""
    return scheduler.task_details(scheduler.registry.get(task_id))


@router.put("/tasks/{task_id}")
async def update_task(
    task_id: int,
    task_update: TaskUpdate,
    scheduler: SchedulerManager = Depends(get_scheduler)
):
    """Update a task."""
    fields = _apply_schedule_type(
        task_update.model_dump(exclude={"type"}, exclude_unset=True),
        task_update.type
    )
    db_task = scheduler.registry.update(task_id, fields, now=scheduler.clock())
    return scheduler.task_details(db_task)


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: int, scheduler: SchedulerManager = Depends(get_scheduler)):
    """Delete a task and, unless configured otherwise, its results."""
    scheduler.registry.delete(task_id)
    return {"message": "Task deleted successfully"}


@router.post("/tasks/{task_id}/enable")
async def enable_task(task_id: int, scheduler: SchedulerManager = Depends(get_scheduler)):
    """Resume scheduling a task."""
    db_task = scheduler.registry.enable(task_id, now=scheduler.clock())
    return scheduler.task_details(db_task)


@router.post("/tasks/{task_id}/disable")
async def disable_task(task_id: int, scheduler: SchedulerManager = Depends(get_scheduler)):
    """Stop scheduling a task. History is kept and running executions finish."""
    db_task = scheduler.registry.disable(task_id)
    return scheduler.task_details(db_task)


@router.post("/tasks/{task_id}/execute")
async def execute_task_now(task_id: int, scheduler: SchedulerManager = Depends(get_scheduler)):
    """Execute a task immediately."""
    result = await scheduler.execute_task_now(task_id)

    if result.status is ResultStatus.SKIPPED_OVERLAP:
        raise HTTPException(status_code=409, detail="Task is already running")

    return {
        "message": f"Task {task_id} executed with status {result.status.value}",
        "result": result.to_dict()
    }


@router.get("/tasks/{task_id}/results")
async def get_task_results(
    task_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    status: Optional[ResultStatus] = None,
    scheduler: SchedulerManager = Depends(get_scheduler)
):
    """Get execution results for a task, most recent first."""
    # Verify task exists
    scheduler.registry.get(task_id)

    total, results = scheduler.result_store.list_for_task(task_id, skip=skip, limit=limit, status=status)

    return {
        "total": total,
        "skip": skip,
        "limit": limit,
        "results": [result.to_dict() for result in results]
    }


@router.post("/tasks/{task_id}/cleanup")
async def cleanup_task_results(task_id: int, scheduler: SchedulerManager = Depends(get_scheduler)):
    """Apply the task's cleanup policy now instead of waiting for the sweep."""
    snapshot = scheduler.registry.snapshot(task_id)
    try:
        deleted = scheduler.retention.apply_retention(snapshot, scheduler.clock())
    except RetentionIOError as e:
        logger.error(str(e))
        raise HTTPException(status_code=503, detail="Result storage unavailable")

    return {"deleted": deleted}


# Catalogs for the admin forms
@router.get("/frequencies")
async def list_frequencies():
    """List the frequencies a task can be scheduled with."""
    return {"frequencies": [frequency.to_dict() for frequency in FREQUENCIES]}


@router.get("/commands")
async def list_commands(scheduler: SchedulerManager = Depends(get_scheduler)):
    """List the commands a task can run."""
    return {"commands": scheduler.commands.list_commands()}


@router.get("/timezones")
async def list_timezones(scheduler: SchedulerManager = Depends(get_scheduler)):
    """List IANA timezones with the scheduler default."""
    return {
        "default": scheduler.evaluator.default_timezone,
        "timezones": sorted(available_timezones())
    }


# Maintenance mode
@router.get("/maintenance")
async def get_maintenance(scheduler: SchedulerManager = Depends(get_scheduler)):
    return {
        "enabled": scheduler.maintenance.is_active(),
        "message": scheduler.maintenance.message()
    }


@router.post("/maintenance")
async def set_maintenance(update: MaintenanceUpdate, scheduler: SchedulerManager = Depends(get_scheduler)):
    if update.enabled:
        scheduler.maintenance.enable(update.message)
    else:
        scheduler.maintenance.disable()
    return await get_maintenance(scheduler)


# Scheduler status endpoint
@router.get("/scheduler/status")
async def get_scheduler_status(scheduler: SchedulerManager = Depends(get_scheduler)):
    """Get current scheduler status and job information."""
    return scheduler.get_scheduler_status()
