"""
Task Concurrency Guard - Optimistic versioning for task mutations.

A task's updated_at is its version token. Callers that read a task and
send back its updated_at as `expected_version` only overwrite it if nobody
else wrote in between; callers that omit it get last-write-wins.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sprintflow.domain.errors import ConflictError, NotFoundError
from sprintflow.domain.models import Task, TaskPatch, TaskChange
from sprintflow.infra.repository import TaskRepository
from sprintflow.utils import utcnow

logger = logging.getLogger(__name__)


class TaskConcurrencyGuard:

    def __init__(self, task_repo: Optional[TaskRepository] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.task_repo = task_repo or TaskRepository()
        self.clock = clock

    def _next_version(self, current: datetime) -> datetime:
        # Strictly increasing, even if the clock has not moved
        now = self.clock()
        if now <= current:
            now = current + timedelta(microseconds=1)
        return now

    async def apply(self, task_id: int, patch: TaskPatch,
                    expected_version: Optional[datetime] = None,
                    organization_id: Optional[int] = None) -> TaskChange:
        """
        Apply a patch to a task and stamp a new version.

        Args:
            task_id: Task to modify
            patch: Fields to change; unset fields are left alone
            expected_version: updated_at the caller last saw, or None
            organization_id: When given, tasks of other organizations are invisible

        Returns:
            The task before and after the change

        Raises:
            NotFoundError: Task does not exist (in this organization)
            ConflictError: expected_version is stale; carries the current version
        """
        before = await self.task_repo.get_by_id(task_id, organization_id)
        if before is None:
            raise NotFoundError(f"Task {task_id} not found")

        if expected_version is not None and before.updated_at != expected_version:
            raise ConflictError(current_version=before.updated_at)

        values = patch.changes()
        values["updated_at"] = self._next_version(before.updated_at)

        # The read above is only a fast path; the write itself is a
        # compare-and-set so an interleaved writer still produces a conflict.
        written = await self.task_repo.update_if_version(task_id, values, expected_version, organization_id)
        if not written:
            current = await self.task_repo.get_by_id(task_id, organization_id)
            if current is None:
                raise NotFoundError(f"Task {task_id} not found")
            logger.info(f"Rejected stale update of task {task_id}")
            raise ConflictError(current_version=current.updated_at)

        after = await self.task_repo.get_by_id(task_id, organization_id)
        if after is None:
            raise NotFoundError(f"Task {task_id} not found")
        return TaskChange(before=before, after=after)
