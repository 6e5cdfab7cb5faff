"""
Task store.

Durable CRUD over the ``tasks`` table. Every public method opens its own
session and transaction, so each call is atomic on its own and the store
is the transactional boundary for every mutation.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from sqlalchemy import select, update, delete, func, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.expression import Executable
from sqlalchemy.sql.elements import ColumnElement

from tasker.app.core.exceptions import ConflictError, NotFoundError, StoreError
from tasker.app.models.task import Task


class TaskStore:
    """Transactional data access for tasks."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Open a session with a transaction that commits on success.

        Storage failures that nobody classified are raised as StoreError.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            raise StoreError(
                message=f"Task store failure: {type(exc).__name__}",
                details={"error": str(exc)}
            ) from exc

    async def insert(self, task: Task) -> str:
        """
        Persist a new task.

        Returns:
            The new task ID

        Raises:
            ConflictError: If a task with the same (reference_uid, type) exists
        """
        async with self.transaction() as session:
            session.add(task)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise ConflictError(
                    message=f"Task with reference {task.reference_uid} and type {task.type} already exists",
                    details={"reference_uid": task.reference_uid, "type": task.type}
                ) from exc
            return task.id

    async def get_by_id(self, task_id: str) -> Task:
        async with self.transaction() as session:
            task = await session.get(Task, task_id)
            if task is None:
                raise NotFoundError("Task", task_id)
            return task

    async def find_many(
        self,
        where: Optional[ColumnElement] = None,
        order_by: Sequence[Any] = (),
        limit: Optional[int] = None
    ) -> List[Task]:
        """Select tasks matching a filter clause."""
        stmt = select(Task)
        if where is not None:
            stmt = stmt.where(where)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.transaction() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count(self, where: Optional[ColumnElement] = None) -> int:
        stmt = select(func.count(Task.id))
        if where is not None:
            stmt = stmt.where(where)

        async with self.transaction() as session:
            result = await session.execute(stmt)
            return result.scalar_one()

    async def update_by_id(
        self,
        task_id: str,
        values: Dict[str, Any],
        guard: Optional[ColumnElement] = None
    ) -> Task:
        """
        Apply a single-row update and return the updated task.

        Values may be column expressions such as ``Task.attempts + 1``; they
        are evaluated by the database inside the UPDATE statement.

        Args:
            task_id: Task to update
            values: Column values or expressions
            guard: Extra condition the row must satisfy

        Raises:
            NotFoundError: If the task does not exist
            ConflictError: If the task exists but the guard rejected the update
        """
        stmt = update(Task).where(Task.id == task_id)
        if guard is not None:
            stmt = stmt.where(guard)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        async with self.transaction() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                existing = await session.get(Task, task_id)
                if existing is None:
                    raise NotFoundError("Task", task_id)
                raise ConflictError(
                    message=f"Task with ID {task_id} rejected the update",
                    details={"id": task_id}
                )
            return await session.get(Task, task_id, populate_existing=True)

    async def delete_by_id(self, task_id: str) -> None:
        stmt = delete(Task).where(Task.id == task_id).execution_options(synchronize_session=False)

        async with self.transaction() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise NotFoundError("Task", task_id)

    async def delete_by_reference(self, reference_uid: str, task_type: str) -> str:
        """
        Delete the task holding a dedup reference.

        Returns:
            ID of the deleted task

        Raises:
            NotFoundError: If no task holds the reference
        """
        async with self.transaction() as session:
            result = await session.execute(
                select(Task.id)
                .where(Task.reference_uid == reference_uid, Task.type == task_type)
                .with_for_update()
            )
            task_id = result.scalar_one_or_none()
            if task_id is None:
                raise NotFoundError(
                    "Task",
                    reference_uid,
                    message=f"Task with reference {reference_uid} and type {task_type} not found"
                )

            await session.execute(
                delete(Task).where(Task.id == task_id).execution_options(synchronize_session=False)
            )
            return task_id

    async def delete_where(self, where: ColumnElement) -> int:
        """Bulk delete; returns the number of rows removed."""
        stmt = delete(Task).where(where).execution_options(synchronize_session=False)

        async with self.transaction() as session:
            result = await session.execute(stmt)
            return result.rowcount

    async def claim(
        self,
        where: ColumnElement,
        order_by: Sequence[Any],
        limit: int,
        claimed_by: str,
        claimed_at: datetime,
        lease_until: datetime
    ) -> List[Task]:
        """
        Atomically lease up to ``limit`` tasks matching ``where``.

        1. Lock candidate rows, skipping rows other claims hold locked
           (engines without row locks serialize writers instead).
        2. Stamp the lease with a conditional UPDATE that re-checks ``where``,
           so a row another claim leased in between is left alone.
        3. Read back exactly the rows stamped with ``claimed_by``.
        """
        async with self.transaction() as session:
            candidates = await session.execute(
                select(Task.id)
                .where(where)
                .order_by(*order_by)
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            task_ids = list(candidates.scalars().all())
            if not task_ids:
                return []

            await session.execute(
                update(Task)
                .where(Task.id.in_(task_ids), where)
                .values(
                    claimed_by=claimed_by,
                    claimed_at=claimed_at,
                    claim_expires_at=lease_until
                )
                .execution_options(synchronize_session=False)
            )

            result = await session.execute(
                select(Task).where(Task.claimed_by == claimed_by).order_by(*order_by)
            )
            return list(result.scalars().all())

    async def raw_query(
        self,
        statement: Union[str, Executable],
        params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Run a read-only statement and return rows as dicts.

        Only for payload-level filtering the structured predicates cannot express.
        Accepts SQL text or a Core select mixing predicates with payload filters.
        """
        if isinstance(statement, str):
            statement = text(statement)

        async with self.transaction() as session:
            result = await session.execute(statement, params or {})
            return [dict(row) for row in result.mappings().all()]
