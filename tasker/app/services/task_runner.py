"""
Task runner.

Reference worker loop: claim a batch, dispatch each task to its registered
handler and report the outcome back through succeed or retry.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from tasker.app.core.config import settings
from tasker.app.core.exceptions import LeaseLostError, NotFoundError, TaskAlreadySucceededError
from tasker.app.models.task import Task
from tasker.app.services.task_registry import TaskDefinition, TaskRegistry
from tasker.app.services.task_service import TaskService

logger = logging.getLogger("tasker")

# Reports that arrive after the task was cancelled, finished or reclaimed
MOOT_ERRORS = (NotFoundError, TaskAlreadySucceededError, LeaseLostError)


class HandlerTimeoutError(Exception):
    """Raised when a handler outlives the runner's deadline."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Handler timed out after {timeout_seconds}s")


@dataclass
class RunSummary:
    claimed: int = 0
    succeeded: int = 0
    retried: int = 0
    moot: int = 0  # task vanished, finished elsewhere or lost its lease


class TaskRunner:
    """
    Polls the queue and executes tasks one at a time.

    Each task's lease is renewed right before its handler runs, so a batch
    may take longer than one lease. A task whose lease ran out while it
    waited is skipped; it may already belong to another worker.
    Outcomes for tasks that were cancelled while running are dropped with a
    warning; they never stop the loop.
    """

    def __init__(
        self,
        service: TaskService,
        registry: TaskRegistry,
        handler_timeout_seconds: Optional[float] = settings.task_handler_timeout_seconds,
        lease_seconds: Optional[int] = None
    ):
        self.service = service
        self.registry = registry
        self.handler_timeout_seconds = handler_timeout_seconds
        self.lease_seconds = lease_seconds or settings.task_claim_lease_seconds
        self._stop = asyncio.Event()

    async def run_once(self, limit: Optional[int] = None) -> RunSummary:
        tasks = await self.service.claim_next_batch(limit, lease_seconds=self.lease_seconds)
        summary = RunSummary(claimed=len(tasks))

        for task in tasks:
            outcome = await self._execute(task)
            setattr(summary, outcome, getattr(summary, outcome) + 1)

        return summary

    async def run_forever(self, poll_interval_seconds: Optional[float] = None) -> None:
        """Poll until stop() is called, sleeping only after an empty batch."""
        if poll_interval_seconds is None:
            poll_interval_seconds = settings.task_poll_interval_seconds

        self._stop.clear()
        logger.info("Task runner started", extra={"poll_interval_seconds": poll_interval_seconds})
        while not self._stop.is_set():
            summary = await self.run_once()
            if summary.claimed:
                continue
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Task runner stopped")

    def stop(self) -> None:
        self._stop.set()

    async def _execute(self, task: Task) -> str:
        try:
            await self.service.renew_lease(task, self.lease_seconds)
        except MOOT_ERRORS as exc:
            return self._moot(task, exc)

        retry_interval = None
        try:
            definition = self.registry.get(task.type)
            retry_interval = definition.min_retry_interval_mins
            payload = self.registry.parse_payload(task)
            await self._call_handler(definition, task, payload)
        except HandlerTimeoutError as exc:
            logger.error("Task handler timed out", extra={"task_id": task.id, "task_type": task.type})
            return await self._report_failure(task, str(exc), retry_interval)
        except Exception as exc:
            logger.exception("Task handler failed", extra={"task_id": task.id, "task_type": task.type})
            return await self._report_failure(task, str(exc) or type(exc).__name__, retry_interval)

        try:
            await self.service.succeed(task.id, claimed_by=task.claimed_by)
        except MOOT_ERRORS as exc:
            return self._moot(task, exc)
        return "succeeded"

    async def _call_handler(self, definition: TaskDefinition, task: Task, payload: Any) -> None:
        if not self.handler_timeout_seconds:
            await definition.handler(task, payload)
            return

        # Run as a separate task so a TimeoutError raised by the handler
        # itself is not mistaken for our deadline
        job = asyncio.ensure_future(definition.handler(task, payload))
        try:
            done, _ = await asyncio.wait({job}, timeout=self.handler_timeout_seconds)
        finally:
            if not job.done():
                job.cancel()
        if not done:
            await asyncio.wait({job})
            raise HandlerTimeoutError(self.handler_timeout_seconds)
        job.result()

    async def _report_failure(self, task: Task, error: str, retry_interval: Optional[float]) -> str:
        try:
            await self.service.retry(
                task.id,
                last_error=error,
                min_retry_interval_mins=retry_interval,
                claimed_by=task.claimed_by
            )
        except MOOT_ERRORS as exc:
            return self._moot(task, exc)
        return "retried"

    @staticmethod
    def _moot(task: Task, exc: Exception) -> str:
        logger.warning("Task result discarded", extra={"task_id": task.id, "reason": str(exc)})
        return "moot"
