"""
Admin Operations API Endpoints.

Maintenance endpoints for the task queue.
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional

from tasker.app.core.dependencies import get_task_service
from tasker.app.schemas.task import CleanupResponse, TaskListResponse, TaskResponse
from tasker.app.services.task_service import TaskService

router = APIRouter(prefix="/admin/ops/tasks", tags=["Admin - Ops"])


@router.post("/cleanup", response_model=CleanupResponse)
async def trigger_task_cleanup(service: TaskService = Depends(get_task_service)):
    """
    Delete succeeded and failed tasks.

    Upcoming and scheduled tasks are never removed.
    """
    rows_deleted = await service.cleanup()
    return CleanupResponse(message="Task cleanup completed", rows_deleted=rows_deleted)


@router.get("/failed", response_model=TaskListResponse)
async def list_failed_tasks(
    limit: Optional[int] = Query(100, ge=1, le=1000),
    service: TaskService = Depends(get_task_service)
):
    """List tasks that exhausted their attempts, most recent failure first."""
    tasks = await service.get_failed(limit)
    return TaskListResponse(tasks=[TaskResponse.model_validate(t) for t in tasks], total=len(tasks))


@router.get("/succeeded", response_model=TaskListResponse)
async def list_succeeded_tasks(
    limit: Optional[int] = Query(100, ge=1, le=1000),
    service: TaskService = Depends(get_task_service)
):
    """List succeeded tasks awaiting cleanup, most recent first."""
    tasks = await service.get_succeeded(limit)
    return TaskListResponse(tasks=[TaskResponse.model_validate(t) for t in tasks], total=len(tasks))
