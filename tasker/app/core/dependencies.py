"""
Service dependencies for FastAPI.

Builds the task store and services on top of the session factory, so tests
can swap the database by overriding get_session_factory alone.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from tasker.app.db.session import get_session_factory
from tasker.app.services.supersession import SupersessionChecker
from tasker.app.services.task_service import TaskService
from tasker.app.services.task_store import TaskStore


async def get_task_store(
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> TaskStore:
    return TaskStore(session_factory)


async def get_task_service(store: TaskStore = Depends(get_task_store)) -> TaskService:
    return TaskService(store)


async def get_supersession_checker(store: TaskStore = Depends(get_task_store)) -> SupersessionChecker:
    return SupersessionChecker(store)
