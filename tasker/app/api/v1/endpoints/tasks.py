"""
Task API Endpoints.

Producer and observability surface of the task queue.
"""

from fastapi import APIRouter, Depends, Query, Response, status

from tasker.app.core.dependencies import get_task_service, get_supersession_checker
from tasker.app.models.task_enums import TaskType
from tasker.app.schemas.task import (
    TaskCreate,
    TaskCreateResponse,
    TaskResponse,
    TaskStatsResponse,
    CancelByReferenceResponse,
    SupersessionCheckRequest,
    SupersessionCheckResponse,
)
from tasker.app.services.supersession import SupersessionChecker
from tasker.app.services.task_service import TaskService

router = APIRouter(prefix="/tasks", tags=["Tasks"])


@router.post("", response_model=TaskCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate,
    service: TaskService = Depends(get_task_service)
):
    """
    Enqueue a task.

    Returns 409 if a task with the same reference_uid and type already exists.
    """
    task_id = await service.create(
        task_data.type,
        task_data.payload,
        scheduled_at=task_data.scheduled_at,
        max_attempts=task_data.max_attempts,
        reference_uid=task_data.reference_uid
    )
    return TaskCreateResponse(id=task_id)


@router.get("/stats", response_model=TaskStatsResponse)
async def get_task_stats(service: TaskService = Depends(get_task_service)):
    """Queue gauges for dashboards."""
    return TaskStatsResponse(**await service.stats())


@router.delete("/by-reference", response_model=CancelByReferenceResponse)
async def cancel_task_by_reference(
    reference_uid: str = Query(..., min_length=1),
    type: TaskType = Query(...),
    service: TaskService = Depends(get_task_service)
):
    """
    Cancel the task holding a dedup reference.

    Succeeds with a null id when nothing matched.
    """
    task_id = await service.cancel_with_reference(reference_uid, type)
    return CancelByReferenceResponse(id=task_id)


@router.post("/supersession-check", response_model=SupersessionCheckResponse)
async def check_supersession(
    req: SupersessionCheckRequest,
    checker: SupersessionChecker = Depends(get_supersession_checker)
):
    """Check whether a newer pending task exists for the same logical unit."""
    superseded = await checker.is_superseded(req.type, req.correlation_key, req.created_at)
    return SupersessionCheckResponse(superseded=superseded)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: str,
    service: TaskService = Depends(get_task_service)
):
    """Get a single task."""
    task = await service.get(task_id)
    return TaskResponse.model_validate(task)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_task(
    task_id: str,
    service: TaskService = Depends(get_task_service)
):
    """Cancel a task by ID. Returns 404 if it does not exist."""
    await service.cancel(task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
