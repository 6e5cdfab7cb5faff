"""
Supersession check tests.
"""

import json
import pytest
from datetime import datetime, timedelta, timezone

from tasker.app.core.clock import utcnow
from tasker.app.core.exceptions import ValidationError
from tasker.app.models.task_enums import TaskType
from tasker.app.services.supersession import SupersessionChecker, SupersessionRule
from tasker.app.schemas.task_payloads import ScanWorkflowBodyPayload, SendSmsPayload, validate_payload

T1 = datetime(2024, 5, 1, 9, 0, 0)
T2 = datetime(2024, 5, 1, 10, 0, 0)


def scan_payload(step_id, created_at=None, **extra):
    body = {"workflowStepId": step_id, "userId": 1, **extra}
    if created_at is not None:
        body["createdAt"] = created_at.isoformat()
    return json.dumps(body)


@pytest.fixture
async def two_scans(service):
    """Two pending scans of step 42 created at T1 < T2."""
    await service.create(TaskType.SCAN_WORKFLOW_BODY, scan_payload(42, T1))
    await service.create(TaskType.SCAN_WORKFLOW_BODY, scan_payload(42, T2))


@pytest.mark.asyncio
async def test_candidate_before_newest_is_superseded(checker, two_scans):
    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, T2 - timedelta(seconds=1)) is True
    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, T1) is True


@pytest.mark.asyncio
async def test_candidate_after_newest_is_not_superseded(checker, two_scans):
    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, T2 + timedelta(seconds=1)) is False


@pytest.mark.asyncio
async def test_equal_timestamp_is_not_superseded(checker, two_scans):
    """Only strictly newer tasks supersede."""
    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, T2) is False


@pytest.mark.asyncio
async def test_other_step_is_ignored(checker, two_scans):
    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 7, T1) is False
    # 4 is a substring of 42 in the raw payload; matching is exact
    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 4, T1) is False


@pytest.mark.asyncio
async def test_unparseable_payload_is_ignored(service, checker):
    """A malformed row does not block the check."""
    await service.create(TaskType.SCAN_WORKFLOW_BODY, '{"workflowStepId": 42, "createdAt": ')
    await service.create(
        TaskType.SCAN_WORKFLOW_BODY,
        json.dumps({"workflowStepId": "not-a-number", "createdAt": T2.isoformat()})
    )
    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, T1) is False

    await service.create(TaskType.SCAN_WORKFLOW_BODY, scan_payload(42, T2))
    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, T1) is True


@pytest.mark.asyncio
async def test_payload_without_created_at_never_supersedes(service, checker):
    await service.create(TaskType.SCAN_WORKFLOW_BODY, scan_payload(42))

    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, T1) is False


@pytest.mark.asyncio
async def test_finished_tasks_are_ignored(service, checker):
    succeeded_id = await service.create(TaskType.SCAN_WORKFLOW_BODY, scan_payload(42, T2))
    failed_id = await service.create(TaskType.SCAN_WORKFLOW_BODY, scan_payload(42, T2), max_attempts=1)
    await service.succeed(succeeded_id)
    await service.retry(failed_id, last_error="fatal")

    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, T1) is False


@pytest.mark.asyncio
async def test_other_task_types_are_ignored(service, checker):
    await service.create(TaskType.SEND_WEBHOOK, scan_payload(42, T2))

    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, T1) is False


@pytest.mark.asyncio
async def test_timezone_aware_and_string_candidates(checker, two_scans):
    aware = T1.replace(tzinfo=timezone.utc)
    assert await checker.is_superseded("scanWorkflowBody", "42", aware) is True
    assert await checker.has_newer_scan_task_for_step_id(42, "2024-05-01T10:30:00Z") is False
    assert await checker.has_newer_scan_task_for_step_id(42, "2024-05-01T09:30:00+00:00") is True


@pytest.mark.asyncio
async def test_type_without_rule_is_rejected(checker):
    with pytest.raises(ValidationError):
        await checker.is_superseded(TaskType.SEND_SMS, "x", T1)


@pytest.mark.asyncio
async def test_invalid_candidate_timestamp_is_rejected(checker):
    with pytest.raises(ValidationError):
        await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, "yesterday-ish")


@pytest.mark.asyncio
async def test_custom_rule(service, store):
    """New task types plug in a rule without changing the checker."""
    rule = SupersessionRule(payload_schema=SendSmsPayload, correlation_field="to", correlation_attr="to",
                            created_at_attr="created_at")
    checker = SupersessionChecker(store, rules={TaskType.SEND_SMS: rule})
    await service.create(TaskType.SEND_SMS, json.dumps({"to": "+15550100", "body": "hi"}))

    # SendSmsPayload has no created_at, so nothing can supersede
    assert await checker.is_superseded(TaskType.SEND_SMS, "+15550100", T1) is False
    with pytest.raises(ValidationError):
        await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, T1)


@pytest.mark.asyncio
async def test_not_yet_due_tasks_count_as_pending(service, checker):
    await service.create(
        TaskType.SCAN_WORKFLOW_BODY, scan_payload(42, T2), scheduled_at=utcnow() + timedelta(hours=1)
    )

    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, T1) is True


@pytest.mark.asyncio
async def test_snake_case_payload_keys_are_rejected(service, checker):
    """Stored scan payloads must use the camelCase keys the lookup filters on."""
    snake_case = json.dumps({"workflow_step_id": 42, "createdAt": T2.isoformat()})
    await service.create(TaskType.SCAN_WORKFLOW_BODY, snake_case)

    with pytest.raises(ValidationError):
        validate_payload(ScanWorkflowBodyPayload, snake_case)
    assert await checker.is_superseded(TaskType.SCAN_WORKFLOW_BODY, 42, T1) is False


@pytest.mark.asyncio
async def test_raw_query_accepts_sql_text(service, store):
    task_id = await service.create(TaskType.SEND_SMS, "{}")

    rows = await store.raw_query("SELECT id, type FROM tasks WHERE type = :type", {"type": "sendSms"})

    assert rows == [{"id": task_id, "type": "sendSms"}]
