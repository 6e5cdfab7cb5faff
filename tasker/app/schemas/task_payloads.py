"""
Task payload schemas.

One Pydantic model per task type. Payloads are stored as JSON strings and
only validated by the handler side (registry) and the supersession checker.
"""

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from datetime import datetime
from typing import Optional, Dict, Any, Type

from tasker.app.core.exceptions import ValidationError
from tasker.app.models.task_enums import TaskType


class SendEmailPayload(BaseModel):
    to: str = Field(..., min_length=3)
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None

    class Config:
        populate_by_name = True


class SendSmsPayload(BaseModel):
    to: str = Field(..., min_length=3)
    body: str
    sender_id: Optional[str] = Field(None, alias="senderId")

    class Config:
        populate_by_name = True


class SendWebhookPayload(BaseModel):
    subscriber_url: str = Field(..., alias="subscriberUrl")
    trigger_event: str = Field(..., alias="triggerEvent")
    secret: Optional[str] = None
    body: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True


class ScanWorkflowBodyPayload(BaseModel):
    """Re-scan a workflow step's message body; newer scans of the same step supersede older ones."""
    workflow_step_id: int = Field(..., alias="workflowStepId")
    user_id: Optional[int] = Field(None, alias="userId")
    created_at: Optional[datetime] = Field(None, alias="createdAt")


PAYLOAD_SCHEMAS: Dict[TaskType, Type[BaseModel]] = {
    TaskType.SEND_EMAIL: SendEmailPayload,
    TaskType.SEND_SMS: SendSmsPayload,
    TaskType.SEND_WEBHOOK: SendWebhookPayload,
    TaskType.SCAN_WORKFLOW_BODY: ScanWorkflowBodyPayload,
}


def validate_payload(schema: Type[BaseModel], raw_payload: str) -> BaseModel:
    """
    Parse a stored payload under a schema.

    Raises:
        ValidationError: If the payload is not JSON or does not match the schema
    """
    try:
        return schema.model_validate_json(raw_payload)
    except PydanticValidationError as exc:
        raise ValidationError(
            message=f"Payload does not match {schema.__name__}",
            details={"errors": exc.errors(include_url=False, include_context=False)}
        ) from exc
