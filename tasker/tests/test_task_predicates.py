"""
Queue predicate tests.

The four task states must partition the table at any instant.
"""

import pytest
from datetime import timedelta

from tasker.app.core.clock import utcnow
from tasker.app.models.task_enums import TaskState, TaskType
from tasker.app.services import task_predicates as predicates


async def _seed_every_state(service):
    now = utcnow()
    ids = {
        "upcoming": await service.create(TaskType.SEND_SMS, "{}", scheduled_at=now - timedelta(minutes=1)),
        "not_yet_due": await service.create(TaskType.SEND_SMS, "{}", scheduled_at=now + timedelta(hours=2)),
        "succeeded": await service.create(TaskType.SEND_SMS, "{}"),
        "failed": await service.create(TaskType.SEND_SMS, "{}", max_attempts=2),
        # Succeeded on the last allowed attempt: succeeded, never failed
        "succeeded_last_attempt": await service.create(TaskType.SEND_SMS, "{}", max_attempts=1),
        # Failed while its retry was scheduled in the future: failed, never not-yet-due
        "failed_backoff": await service.create(TaskType.SEND_SMS, "{}", max_attempts=1),
    }
    await service.succeed(ids["succeeded"])
    await service.retry(ids["failed"], last_error="1")
    await service.retry(ids["failed"], last_error="2")
    await service.succeed(ids["succeeded_last_attempt"])
    await service.retry(ids["failed_backoff"], last_error="1", min_retry_interval_mins=30)
    return ids


@pytest.mark.asyncio
async def test_states_partition_all_tasks(service):
    """Every task matches exactly one predicate."""
    ids = await _seed_every_state(service)
    now = utcnow()

    clauses = {
        TaskState.UPCOMING: predicates.upcoming(now),
        TaskState.NOT_YET_DUE: predicates.not_yet_due(now),
        TaskState.SUCCEEDED: predicates.succeeded(),
        TaskState.FAILED: predicates.failed(),
    }
    members = {
        state: {t.id for t in await service.store.find_many(where=clause)}
        for state, clause in clauses.items()
    }

    all_ids = set(ids.values())
    assert set().union(*members.values()) == all_ids
    assert sum(len(m) for m in members.values()) == len(all_ids)

    assert members[TaskState.UPCOMING] == {ids["upcoming"]}
    assert members[TaskState.NOT_YET_DUE] == {ids["not_yet_due"]}
    assert members[TaskState.SUCCEEDED] == {ids["succeeded"], ids["succeeded_last_attempt"]}
    assert members[TaskState.FAILED] == {ids["failed"], ids["failed_backoff"]}


@pytest.mark.asyncio
async def test_state_at_agrees_with_sql_predicates(service):
    await _seed_every_state(service)
    now = utcnow()

    for state, clause in (
        (TaskState.UPCOMING, predicates.upcoming(now)),
        (TaskState.NOT_YET_DUE, predicates.not_yet_due(now)),
        (TaskState.SUCCEEDED, predicates.succeeded()),
        (TaskState.FAILED, predicates.failed()),
    ):
        for task in await service.store.find_many(where=clause):
            assert task.state_at(now) == state


@pytest.mark.asyncio
async def test_stats_add_up(service):
    await _seed_every_state(service)

    stats = await service.stats()

    assert stats == {"total": 6, "upcoming": 1, "not_yet_due": 1, "failed": 2, "succeeded": 2}
    assert stats["upcoming"] + stats["not_yet_due"] + stats["failed"] + stats["succeeded"] == stats["total"]
    assert await service.count_upcoming() == 1
    assert await service.count_not_yet_due() == 1
    assert await service.count_failed() == 2
    assert await service.count_succeeded() == 2
    assert await service.count() == 6


@pytest.mark.asyncio
async def test_now_is_evaluated_per_call(service):
    """A task becomes upcoming once its time passes, without re-creating anything."""
    now = utcnow()
    task_id = await service.create(TaskType.SEND_SMS, "{}", scheduled_at=now + timedelta(minutes=10))

    assert await service.store.count(predicates.upcoming(now)) == 0
    later = now + timedelta(minutes=11)
    assert await service.store.count(predicates.upcoming(later)) == 1
    assert (await service.get(task_id)).state_at(later) == TaskState.UPCOMING


@pytest.mark.asyncio
async def test_due_exactly_now_is_upcoming(service):
    now = utcnow()
    await service.create(TaskType.SEND_SMS, "{}", scheduled_at=now)

    assert await service.store.count(predicates.upcoming(now)) == 1
    assert await service.store.count(predicates.not_yet_due(now)) == 0


@pytest.mark.asyncio
async def test_pending_is_upcoming_or_not_yet_due(service):
    ids = await _seed_every_state(service)

    pending = {t.id for t in await service.store.find_many(where=predicates.pending())}

    assert pending == {ids["upcoming"], ids["not_yet_due"]}
