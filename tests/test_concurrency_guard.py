"""
Tests for optimistic versioning of task updates.
"""

from datetime import timedelta

import pytest

from sprintflow.domain.errors import ConflictError, NotFoundError
from sprintflow.domain.models import TaskPatch, TaskStatus
from sprintflow.infra.repository import TaskRepository
from sprintflow.services.concurrency_guard import TaskConcurrencyGuard


@pytest.mark.asyncio
async def test_update_without_version_is_last_write_wins(db_session, factory, clock):
    task = await factory.task(title="Write docs")
    guard = TaskConcurrencyGuard(TaskRepository(session=db_session), clock=clock)

    first = await guard.apply(task.id, TaskPatch(title="Write API docs"))
    second = await guard.apply(task.id, TaskPatch(title="Write user docs"))

    assert first.after.title == "Write API docs"
    assert second.after.title == "Write user docs"
    assert second.after.updated_at > first.after.updated_at


@pytest.mark.asyncio
async def test_matching_version_applies_patch(db_session, factory, clock):
    task = await factory.task()
    guard = TaskConcurrencyGuard(TaskRepository(session=db_session), clock=clock)

    change = await guard.apply(task.id, TaskPatch(status=TaskStatus.IN_PROGRESS), expected_version=task.updated_at)

    assert change.before.status == TaskStatus.TODO
    assert change.after.status == TaskStatus.IN_PROGRESS
    assert change.after.updated_at > task.updated_at
    assert not change.completed


@pytest.mark.asyncio
async def test_stale_version_is_rejected_and_store_unchanged(db_session, factory, clock):
    task = await factory.task(title="Original")
    repo = TaskRepository(session=db_session)
    guard = TaskConcurrencyGuard(repo, clock=clock)

    stale = task.updated_at - timedelta(seconds=5)
    with pytest.raises(ConflictError) as exc_info:
        await guard.apply(task.id, TaskPatch(title="Overwritten"), expected_version=stale)

    assert exc_info.value.current_version == task.updated_at
    payload = exc_info.value.to_dict()
    assert payload["conflict"] is True
    assert payload["currentVersion"] == task.updated_at.isoformat()

    stored = await repo.get_by_id(task.id)
    assert stored.title == "Original"
    assert stored.updated_at == task.updated_at


@pytest.mark.asyncio
async def test_second_writer_with_same_version_conflicts(db_session, factory, clock):
    task = await factory.task()
    guard = TaskConcurrencyGuard(TaskRepository(session=db_session), clock=clock)

    await guard.apply(task.id, TaskPatch(title="Mine"), expected_version=task.updated_at)
    with pytest.raises(ConflictError):
        await guard.apply(task.id, TaskPatch(title="Theirs"), expected_version=task.updated_at)


@pytest.mark.asyncio
async def test_noop_patch_still_advances_version(db_session, factory, clock):
    task = await factory.task()
    guard = TaskConcurrencyGuard(TaskRepository(session=db_session), clock=clock)

    change = await guard.apply(task.id, TaskPatch(), expected_version=task.updated_at)

    assert change.after.updated_at > task.updated_at
    with pytest.raises(ConflictError):
        await guard.apply(task.id, TaskPatch(), expected_version=task.updated_at)


@pytest.mark.asyncio
async def test_version_advances_even_when_clock_stands_still(db_session, factory, clock):
    task = await factory.task()
    guard = TaskConcurrencyGuard(TaskRepository(session=db_session), clock=lambda: task.updated_at)

    change = await guard.apply(task.id, TaskPatch(title="Same instant"))

    assert change.after.updated_at == task.updated_at + timedelta(microseconds=1)


@pytest.mark.asyncio
async def test_compare_and_set_rejects_stale_write_at_store_level(db_session, factory):
    task = await factory.task(title="Original")
    repo = TaskRepository(session=db_session)

    written = await repo.update_if_version(
        task.id, {"title": "Late"}, expected_version=task.updated_at - timedelta(seconds=1)
    )

    assert written is False
    assert (await repo.get_by_id(task.id)).title == "Original"


@pytest.mark.asyncio
async def test_unknown_task_raises_not_found(db_session, clock):
    guard = TaskConcurrencyGuard(TaskRepository(session=db_session), clock=clock)
    with pytest.raises(NotFoundError):
        await guard.apply(999, TaskPatch(title="Nope"))
