"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from tasker.app.api.v1.endpoints import tasks, admin_ops

router = APIRouter()

# Producer and observability endpoints
router.include_router(tasks.router)

# Maintenance endpoints
router.include_router(admin_ops.router)
