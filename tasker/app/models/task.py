"""
Task database model.

A task is one unit of deferred work with its own schedule, retry state
and terminal outcome.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, Text, DateTime, UniqueConstraint, CheckConstraint, Index

from tasker.app.core.clock import utcnow
from tasker.app.core.config import settings
from tasker.app.db.session import Base
from tasker.app.models.task_enums import TaskState


def _new_task_id() -> str:
    return str(uuid.uuid4())


class Task(Base):
    """
    Task model.

    Only one row may exist per (reference_uid, type) when reference_uid is set,
    which gives producers idempotent create and targeted cancellation.
    The claim columns hold the lease of the worker currently executing the task.
    """
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=_new_task_id)

    type = Column(String(64), nullable=False, index=True)
    payload = Column(Text, nullable=False)

    # Schedule and retry state
    scheduled_at = Column(DateTime, default=utcnow, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=lambda: settings.task_default_max_attempts, nullable=False)
    last_error = Column(Text, nullable=True)
    last_failed_attempt_at = Column(DateTime, nullable=True)
    succeeded_at = Column(DateTime, nullable=True)

    # Dedup reference
    reference_uid = Column(String(255), nullable=True)

    # Lease
    claimed_by = Column(String(64), nullable=True)
    claimed_at = Column(DateTime, nullable=True)
    claim_expires_at = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("reference_uid", "type", name="uq_tasks_reference_uid_type"),
        CheckConstraint("attempts >= 0", name="ck_tasks_attempts_non_negative"),
        CheckConstraint("max_attempts >= 1", name="ck_tasks_max_attempts_positive"),
        Index("ix_tasks_upcoming", "succeeded_at", "scheduled_at", "attempts"),
    )

    def state_at(self, now: Optional[datetime] = None) -> TaskState:
        """Classify the task the same way the queue predicates do."""
        now = now or utcnow()
        if self.succeeded_at is not None:
            return TaskState.SUCCEEDED
        if self.attempts >= self.max_attempts:
            return TaskState.FAILED
        if self.scheduled_at <= now:
            return TaskState.UPCOMING
        return TaskState.NOT_YET_DUE

    def __repr__(self):
        return f"<Task(id={self.id}, type='{self.type}', attempts={self.attempts}/{self.max_attempts})>"
