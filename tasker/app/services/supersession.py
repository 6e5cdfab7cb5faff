"""
Supersession checks.

For task types where only the most recent request for a logical unit of
work matters, a producer asks whether a still-pending task for the same
unit was created after its own candidate before enqueuing it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Type, Union

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import Select, select

from tasker.app.core.clock import as_naive_utc
from tasker.app.core.exceptions import ValidationError
from tasker.app.models.task import Task
from tasker.app.models.task_enums import TaskType
from tasker.app.schemas.task_payloads import ScanWorkflowBodyPayload, validate_payload
from tasker.app.services import task_predicates as predicates
from tasker.app.services.task_service import parse_task_type
from tasker.app.services.task_store import TaskStore

logger = logging.getLogger("tasker")

_datetime_adapter = TypeAdapter(datetime)


@dataclass(frozen=True)
class SupersessionRule:
    """How to find the correlation key and creation time inside a payload."""
    payload_schema: Type[BaseModel]
    correlation_field: str  # JSON key in the stored payload
    correlation_attr: str  # attribute on the parsed model
    created_at_attr: str = "created_at"


DEFAULT_RULES: Dict[TaskType, SupersessionRule] = {
    TaskType.SCAN_WORKFLOW_BODY: SupersessionRule(
        payload_schema=ScanWorkflowBodyPayload,
        correlation_field="workflowStepId",
        correlation_attr="workflow_step_id",
    ),
}


def pending_payloads_query(task_type: TaskType, correlation_field: str) -> Select:
    # LIKE is only a portable prefilter; rows are matched exactly after parsing
    return select(Task.id, Task.payload).where(
        predicates.pending(),
        Task.type == task_type.value,
        Task.payload.like(f'%"{correlation_field}"%'),
    )


def _to_datetime(value: Union[datetime, str]) -> datetime:
    try:
        return as_naive_utc(_datetime_adapter.validate_python(value))
    except PydanticValidationError as exc:
        raise ValidationError(
            message=f"Invalid timestamp: {value}",
            details={"value": str(value)}
        ) from exc


class SupersessionChecker:
    """Per-type check for newer pending tasks of the same logical unit."""

    def __init__(self, store: TaskStore, rules: Optional[Mapping[TaskType, SupersessionRule]] = None):
        self.store = store
        self.rules = dict(DEFAULT_RULES if rules is None else rules)

    async def is_superseded(
        self,
        task_type: Union[TaskType, str],
        correlation_key: Any,
        candidate_created_at: Union[datetime, str]
    ) -> bool:
        """
        Check whether a pending task for the same key is newer than the candidate.

        Payloads that fail validation are skipped rather than failing the check.

        Args:
            task_type: Type to inspect; must have a registered rule
            correlation_key: Value of the rule's correlation field
            candidate_created_at: Creation time of the task about to be enqueued

        Returns:
            True if any matching pending task was created strictly later

        Raises:
            ValidationError: If the type has no rule or the timestamp is invalid
        """
        task_type = parse_task_type(task_type)
        rule = self.rules.get(task_type)
        if rule is None:
            raise ValidationError(
                message=f"No supersession rule for task type {task_type.value}",
                details={"type": task_type.value}
            )
        candidate = _to_datetime(candidate_created_at)

        rows = await self.store.raw_query(pending_payloads_query(task_type, rule.correlation_field))

        for row in rows:
            try:
                parsed = validate_payload(rule.payload_schema, row["payload"])
            except ValidationError:
                logger.debug("Skipping task with invalid payload", extra={"task_id": row["id"]})
                continue

            if str(getattr(parsed, rule.correlation_attr)) != str(correlation_key):
                continue

            created_at = getattr(parsed, rule.created_at_attr, None)
            if created_at is None:
                continue
            if as_naive_utc(created_at) > candidate:
                return True

        return False

    async def has_newer_scan_task_for_step_id(self, workflow_step_id: int, created_at: Union[datetime, str]) -> bool:
        return await self.is_superseded(TaskType.SCAN_WORKFLOW_BODY, workflow_step_id, created_at)
