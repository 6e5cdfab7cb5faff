"""
Task Pydantic schemas.

Defines request and response models for the task API.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Union, Dict, Any

from tasker.app.models.task_enums import TaskType


class TaskCreate(BaseModel):
    """Schema for enqueuing a task."""
    type: TaskType
    payload: Union[str, Dict[str, Any]] = Field(..., description="JSON string or object")
    scheduled_at: Optional[datetime] = Field(None, description="Earliest execution time; defaults to now")
    max_attempts: Optional[int] = Field(None, ge=1, description="Attempts ceiling")
    reference_uid: Optional[str] = Field(None, min_length=1, max_length=255, description="Dedup reference")


class TaskCreateResponse(BaseModel):
    id: str


class TaskResponse(BaseModel):
    """Schema for task response."""
    id: str
    type: str
    payload: str
    scheduled_at: datetime
    attempts: int
    max_attempts: int
    last_error: Optional[str]
    last_failed_attempt_at: Optional[datetime]
    succeeded_at: Optional[datetime]
    reference_uid: Optional[str]
    claimed_by: Optional[str]
    claim_expires_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class TaskListResponse(BaseModel):
    tasks: List[TaskResponse]
    total: int


class TaskStatsResponse(BaseModel):
    """Queue gauges, all computed against the same instant."""
    total: int
    upcoming: int
    not_yet_due: int
    failed: int
    succeeded: int


class CancelByReferenceResponse(BaseModel):
    id: Optional[str] = Field(None, description="Deleted task, or null if nothing matched")


class SupersessionCheckRequest(BaseModel):
    type: TaskType
    correlation_key: Union[int, str]
    created_at: datetime


class SupersessionCheckResponse(BaseModel):
    superseded: bool


class CleanupResponse(BaseModel):
    message: str
    rows_deleted: int
