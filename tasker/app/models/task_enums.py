"""
Task-related enumerations.
"""

import enum


class TaskType(str, enum.Enum):
    """
    Closed set of task types.

    The value is what gets persisted in the ``tasks.type`` column and
    selects both the payload schema and the handler.
    """
    SEND_EMAIL = "sendEmail"
    SEND_SMS = "sendSms"
    SEND_WEBHOOK = "sendWebhook"
    SCAN_WORKFLOW_BODY = "scanWorkflowBody"

    @classmethod
    def coerce(cls, value) -> "TaskType":
        """Accept a member or its persisted value; raise ValueError for anything else."""
        if isinstance(value, cls):
            return value
        return cls(value)


class TaskState(str, enum.Enum):
    """Derived task state; never persisted, always computed from the row."""
    NOT_YET_DUE = "NOT_YET_DUE"  # scheduled in the future
    UPCOMING = "UPCOMING"  # eligible for claiming
    SUCCEEDED = "SUCCEEDED"  # terminal
    FAILED = "FAILED"  # terminal, attempts exhausted
