import uuid
import pytest
from unittest.mock import AsyncMock
from models.base import TaskStatus
from models.task import Task
from services.tasks import TaskService


@pytest.fixture
def task():
    return Task(
        id=uuid.uuid4(),
        project_id=uuid.uuid4(),
        status=TaskStatus.PENDING,
        request_params=[],
        version=1,
        started_at=None,
        completed_at=None,
        result_count=None,
        error_message=None,
    )


@pytest.fixture
def service():
    return TaskService(AsyncMock())


@pytest.mark.asyncio
async def test_retry_after_failure_clears_previous_outcome(service, task):
    await service.update_status(task, TaskStatus.RUNNING)
    first_start = task.started_at
    await service.update_status(task, TaskStatus.FAILED, error_message="boom")
    assert task.completed_at is not None

    await service.update_status(task, TaskStatus.RUNNING)

    assert task.status == TaskStatus.RUNNING
    assert task.started_at == first_start
    assert task.completed_at is None
    assert task.error_message is None

    await service.update_status(task, TaskStatus.COMPLETED, result_count=3)

    assert task.status == TaskStatus.COMPLETED
    assert task.result_count == 3
    assert task.error_message is None
    assert task.completed_at is not None


@pytest.mark.asyncio
async def test_failure_keeps_message_and_no_count(service, task):
    await service.update_status(task, TaskStatus.RUNNING)
    await service.update_status(task, TaskStatus.FAILED, error_message="Server error 503")

    assert task.error_message == "Server error 503"
    assert task.result_count is None
    service.db.commit.assert_awaited()


@pytest.mark.asyncio
async def test_rerun_after_success_resets_count(service, task):
    await service.update_status(task, TaskStatus.RUNNING)
    await service.update_status(task, TaskStatus.COMPLETED, result_count=5)
    await service.update_status(task, TaskStatus.RUNNING)

    assert task.result_count is None
    assert task.completed_at is None
