"""
Queue predicates.

Pure functions producing the SQL filter clauses that classify tasks.
Every clause that depends on the current time takes ``now`` explicitly;
callers capture it fresh at query time so a long-lived worker never
filters against a stale clock.
"""

from datetime import datetime

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from tasker.app.models.task import Task


def attempts_remaining() -> ColumnElement:
    # Column-to-column comparison evaluated by the database
    return Task.attempts < Task.max_attempts


def upcoming(now: datetime) -> ColumnElement:
    """Due, not succeeded and with attempts left."""
    return and_(
        Task.succeeded_at.is_(None),
        Task.scheduled_at <= now,
        attempts_remaining(),
    )


def not_yet_due(now: datetime) -> ColumnElement:
    """Scheduled in the future, not succeeded and with attempts left."""
    return and_(
        Task.succeeded_at.is_(None),
        Task.scheduled_at > now,
        attempts_remaining(),
    )


def succeeded() -> ColumnElement:
    return Task.succeeded_at.is_not(None)


def failed() -> ColumnElement:
    return and_(
        Task.attempts >= Task.max_attempts,
        Task.succeeded_at.is_(None),
    )


def terminal() -> ColumnElement:
    """Succeeded or failed; the set removed by cleanup."""
    return or_(succeeded(), failed())


def pending() -> ColumnElement:
    """Not terminal, regardless of due time: upcoming or not yet due."""
    return and_(Task.succeeded_at.is_(None), attempts_remaining())


def lease_available(now: datetime) -> ColumnElement:
    """No lease held, or the lease has expired."""
    return or_(
        Task.claim_expires_at.is_(None),
        Task.claim_expires_at <= now,
    )


def claimable(now: datetime) -> ColumnElement:
    return and_(upcoming(now), lease_available(now))
