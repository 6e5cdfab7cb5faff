"""
Task registry.

Pairs each task type with its payload schema and handler. Handlers are
resolved by type at dispatch time; a type without a registered handler
is a validation failure, not a silent skip.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel

from tasker.app.core.exceptions import ValidationError
from tasker.app.models.task import Task
from tasker.app.models.task_enums import TaskType
from tasker.app.schemas.task_payloads import PAYLOAD_SCHEMAS, validate_payload
from tasker.app.services.task_service import parse_task_type

TaskHandler = Callable[[Task, BaseModel], Awaitable[None]]


@dataclass(frozen=True)
class TaskDefinition:
    type: TaskType
    payload_schema: Type[BaseModel]
    handler: TaskHandler
    min_retry_interval_mins: Optional[float] = None


class TaskRegistry:

    def __init__(self):
        self._definitions: Dict[TaskType, TaskDefinition] = {}

    def register(
        self,
        task_type: Union[TaskType, str],
        payload_schema: Optional[Type[BaseModel]] = None,
        min_retry_interval_mins: Optional[float] = None
    ) -> Callable[[TaskHandler], TaskHandler]:
        """
        Decorator registering an async handler for a task type.

        The payload schema defaults to the one declared for the type.
        """
        task_type = parse_task_type(task_type)
        schema = payload_schema or PAYLOAD_SCHEMAS[task_type]

        def decorator(handler: TaskHandler) -> TaskHandler:
            if task_type in self._definitions:
                raise ValueError(f"Handler already registered for task type {task_type.value}")
            self._definitions[task_type] = TaskDefinition(
                type=task_type,
                payload_schema=schema,
                handler=handler,
                min_retry_interval_mins=min_retry_interval_mins
            )
            return handler
        return decorator

    def get(self, task_type: Union[TaskType, str]) -> TaskDefinition:
        """
        Raises:
            ValidationError: If the type is unknown or has no handler
        """
        task_type = parse_task_type(task_type)
        definition = self._definitions.get(task_type)
        if definition is None:
            raise ValidationError(
                message=f"No handler registered for task type {task_type.value}",
                details={"type": task_type.value}
            )
        return definition

    def parse_payload(self, task: Task) -> BaseModel:
        return validate_payload(self.get(task.type).payload_schema, task.payload)

    def registered_types(self) -> List[TaskType]:
        return list(self._definitions)
