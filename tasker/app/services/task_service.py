"""
Task lifecycle service.

Producer, worker-loop, observability and maintenance operations on the
task queue. Every "now" is captured at the moment of the call.
"""

import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import and_
from sqlalchemy.sql.elements import ColumnElement

from tasker.app.core.clock import as_naive_utc, utcnow
from tasker.app.core.config import settings
from tasker.app.core.exceptions import (
    ConflictError,
    LeaseLostError,
    NotFoundError,
    TaskAlreadySucceededError,
    ValidationError,
)
from tasker.app.models.task import Task
from tasker.app.models.task_enums import TaskType
from tasker.app.services import task_predicates as predicates
from tasker.app.services.task_store import TaskStore

logger = logging.getLogger("tasker")

# Oldest-due first; created_at and id only break ties
CLAIM_ORDER = (Task.scheduled_at.asc(), Task.created_at.asc(), Task.id.asc())


def parse_task_type(value: Union[TaskType, str]) -> TaskType:
    try:
        return TaskType.coerce(value)
    except ValueError as exc:
        raise ValidationError(
            message=f"Unknown task type: {value}",
            details={"type": str(value), "allowed": [t.value for t in TaskType]}
        ) from exc


def _released_lease() -> Dict[str, Any]:
    return {"claimed_by": None, "claimed_at": None, "claim_expires_at": None}


def _report_guard(claimed_by: Optional[str]) -> ColumnElement:
    guard = Task.succeeded_at.is_(None)
    if claimed_by is not None:
        guard = and_(guard, Task.claimed_by == claimed_by)
    return guard


class TaskService:
    """Lifecycle controller for tasks."""

    def __init__(self, store: TaskStore):
        self.store = store

    # --- Producer API ---

    async def create(
        self,
        type: Union[TaskType, str],
        payload: Union[str, Dict[str, Any]],
        scheduled_at: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
        reference_uid: Optional[str] = None
    ) -> str:
        """
        Enqueue a task.

        Args:
            type: Task type
            payload: Serialized payload, or a dict to serialize as JSON
            scheduled_at: Earliest execution time (defaults to now)
            max_attempts: Attempts ceiling (defaults to settings)
            reference_uid: Dedup reference, unique per task type

        Returns:
            ID of the new task

        Raises:
            ValidationError: Unknown type or max_attempts below 1
            ConflictError: A task with the same reference and type exists
        """
        task_type = parse_task_type(type)
        if max_attempts is None:
            max_attempts = settings.task_default_max_attempts
        if max_attempts < 1:
            raise ValidationError(
                message="max_attempts must be at least 1",
                details={"max_attempts": max_attempts}
            )
        if not isinstance(payload, str):
            payload = json.dumps(payload, default=str)

        now = utcnow()
        task = Task(
            type=task_type.value,
            payload=payload,
            scheduled_at=as_naive_utc(scheduled_at) if scheduled_at else now,
            attempts=0,
            max_attempts=max_attempts,
            reference_uid=reference_uid,
            created_at=now
        )
        task_id = await self.store.insert(task)

        logger.info("Task created", extra={
            "task_id": task_id,
            "task_type": task_type.value,
            "scheduled_at": task.scheduled_at.isoformat(),
            "max_attempts": max_attempts,
            "reference_uid": reference_uid
        })
        return task_id

    async def cancel(self, task_id: str) -> None:
        """
        Delete a task unconditionally.

        Raises:
            NotFoundError: If the task does not exist
        """
        await self.store.delete_by_id(task_id)
        logger.info("Task cancelled", extra={"task_id": task_id})

    async def cancel_with_reference(self, reference_uid: str, type: Union[TaskType, str]) -> Optional[str]:
        """
        Ensure no task holds the given reference.

        Returns:
            ID of the deleted task, or None if nothing matched
        """
        task_type = parse_task_type(type)
        try:
            task_id = await self.store.delete_by_reference(reference_uid, task_type.value)
        except NotFoundError:
            logger.warning(
                "Task with reference %s and type %s does not exist. No action taken.",
                reference_uid,
                task_type.value
            )
            return None

        logger.info("Task cancelled", extra={
            "task_id": task_id,
            "task_type": task_type.value,
            "reference_uid": reference_uid
        })
        return task_id

    # --- Worker-loop API ---

    async def claim_next_batch(self, limit: Optional[int] = None, lease_seconds: Optional[int] = None) -> List[Task]:
        """
        Lease the next batch of upcoming tasks, oldest-due first.

        Tasks already leased by another claim are skipped until their lease
        expires, so a crashed worker's tasks come back after the lease.

        Args:
            limit: Batch size (defaults to settings.task_batch_size)
            lease_seconds: Lease length (defaults to settings.task_claim_lease_seconds)
        """
        if limit is None:
            limit = settings.task_batch_size
        if lease_seconds is None:
            lease_seconds = settings.task_claim_lease_seconds
        if limit < 1:
            raise ValidationError(message="limit must be at least 1", details={"limit": limit})

        now = utcnow()
        claimed_by = uuid.uuid4().hex
        lease_until = now + timedelta(seconds=lease_seconds)

        tasks = await self.store.claim(
            where=predicates.claimable(now),
            order_by=CLAIM_ORDER,
            limit=limit,
            claimed_by=claimed_by,
            claimed_at=now,
            lease_until=lease_until
        )

        if tasks:
            logger.info("Task batch claimed", extra={
                "count": len(tasks),
                "claimed_by": claimed_by,
                "lease_until": lease_until.isoformat()
            })
        return tasks

    async def renew_lease(self, task: Task, lease_seconds: Optional[int] = None) -> Task:
        """
        Extend the lease a claim holds on one task.

        Only succeeds while the lease is still held by ``task.claimed_by`` and
        has not expired; an expired lease may already be in another worker's
        batch.

        Raises:
            NotFoundError: If the task no longer exists
            LeaseLostError: If the lease expired or another claim holds it
        """
        if lease_seconds is None:
            lease_seconds = settings.task_claim_lease_seconds

        now = utcnow()
        guard = and_(
            Task.succeeded_at.is_(None),
            Task.claimed_by == task.claimed_by,
            Task.claim_expires_at > now,
        )
        try:
            return await self.store.update_by_id(
                task.id,
                {"claim_expires_at": now + timedelta(seconds=lease_seconds)},
                guard=guard
            )
        except ConflictError as exc:
            raise LeaseLostError(task.id, task.claimed_by) from exc

    async def _rejected(self, task_id: str, claimed_by: Optional[str]) -> ConflictError:
        # The guard failed; tell a finished task apart from a lost lease
        task = await self.store.get_by_id(task_id)
        if task.succeeded_at is not None:
            return TaskAlreadySucceededError(task_id)
        return LeaseLostError(task_id, claimed_by)

    async def retry(
        self,
        task_id: str,
        last_error: Optional[str] = None,
        min_retry_interval_mins: Optional[float] = None,
        claimed_by: Optional[str] = None
    ) -> Task:
        """
        Record a failed attempt.

        Without a retry interval the schedule is left as is and the task is
        immediately claimable again. Workers pass ``claimed_by`` so a report
        from a claim that lost its lease is rejected.

        Raises:
            NotFoundError: If the task no longer exists
            TaskAlreadySucceededError: If the task already succeeded
            LeaseLostError: If ``claimed_by`` no longer holds the task
        """
        failed_attempt_time = utcnow()
        values = {
            "attempts": Task.attempts + 1,
            "last_failed_attempt_at": failed_attempt_time,
            **_released_lease()
        }
        if last_error is not None:
            values["last_error"] = last_error
        if min_retry_interval_mins:
            values["scheduled_at"] = failed_attempt_time + timedelta(minutes=min_retry_interval_mins)

        try:
            task = await self.store.update_by_id(task_id, values, guard=_report_guard(claimed_by))
        except ConflictError as exc:
            raise await self._rejected(task_id, claimed_by) from exc

        logger.warning("Task attempt failed", extra={
            "task_id": task_id,
            "attempts": task.attempts,
            "max_attempts": task.max_attempts,
            "next_run_at": task.scheduled_at.isoformat(),
            "last_error": last_error
        })
        return task

    async def succeed(self, task_id: str, claimed_by: Optional[str] = None) -> Task:
        """
        Mark a task as succeeded.

        succeeded_at is written once; a second call is rejected.

        Raises:
            NotFoundError: If the task no longer exists
            TaskAlreadySucceededError: If the task already succeeded
            LeaseLostError: If ``claimed_by`` no longer holds the task
        """
        values = {
            "attempts": Task.attempts + 1,
            "succeeded_at": utcnow(),
            **_released_lease()
        }
        try:
            task = await self.store.update_by_id(task_id, values, guard=_report_guard(claimed_by))
        except ConflictError as exc:
            raise await self._rejected(task_id, claimed_by) from exc

        logger.info("Task succeeded", extra={"task_id": task_id, "attempts": task.attempts})
        return task

    # --- Reads ---

    async def get(self, task_id: str) -> Task:
        return await self.store.get_by_id(task_id)

    async def get_failed(self, limit: Optional[int] = None) -> List[Task]:
        return await self.store.find_many(
            where=predicates.failed(), order_by=(Task.last_failed_attempt_at.desc(),), limit=limit
        )

    async def get_succeeded(self, limit: Optional[int] = None) -> List[Task]:
        return await self.store.find_many(
            where=predicates.succeeded(), order_by=(Task.succeeded_at.desc(),), limit=limit
        )

    # --- Observability API ---

    async def count(self) -> int:
        return await self.store.count()

    async def count_upcoming(self) -> int:
        return await self.store.count(predicates.upcoming(utcnow()))

    async def count_not_yet_due(self) -> int:
        return await self.store.count(predicates.not_yet_due(utcnow()))

    async def count_failed(self) -> int:
        return await self.store.count(predicates.failed())

    async def count_succeeded(self) -> int:
        return await self.store.count(predicates.succeeded())

    async def stats(self) -> Dict[str, int]:
        """All gauges against one instant, so the partition adds up."""
        now = utcnow()
        return {
            "total": await self.store.count(),
            "upcoming": await self.store.count(predicates.upcoming(now)),
            "not_yet_due": await self.store.count(predicates.not_yet_due(now)),
            "failed": await self.store.count(predicates.failed()),
            "succeeded": await self.store.count(predicates.succeeded()),
        }

    # --- Maintenance API ---

    async def cleanup(self) -> int:
        """
        Delete succeeded and failed tasks.

        Upcoming and not-yet-due tasks are never touched, so this is safe to
        run alongside workers.

        Returns:
            Number of tasks removed
        """
        rows_deleted = await self.store.delete_where(predicates.terminal())
        logger.info("Task cleanup completed", extra={"rows_deleted": rows_deleted})
        return rows_deleted
