"""
Task Service - The guarded task update operation.

Flow: concurrency guard -> store write -> (detached) completion cascade
-> notifications. Only the guard's errors reach the caller.
"""

import logging
from datetime import datetime
from typing import Optional

from sprintflow.domain.models import Task, TaskPatch, TaskChange, NotificationEvent
from sprintflow.services.background import BackgroundDispatcher
from sprintflow.services.completion_service import CompletionPropagator
from sprintflow.services.concurrency_guard import TaskConcurrencyGuard
from sprintflow.services.notifications import NotificationEmitter, LoggingNotificationEmitter, notify_safely

logger = logging.getLogger(__name__)


class TaskService:

    def __init__(self, guard: Optional[TaskConcurrencyGuard] = None,
                 propagator: Optional[CompletionPropagator] = None,
                 dispatcher: Optional[BackgroundDispatcher] = None,
                 notifier: Optional[NotificationEmitter] = None):
        self.guard = guard or TaskConcurrencyGuard()
        self.propagator = propagator or CompletionPropagator()
        self.dispatcher = dispatcher or BackgroundDispatcher()
        self.notifier = notifier or LoggingNotificationEmitter()

    async def update_task(self, task_id: int, patch: TaskPatch,
                          expected_version: Optional[datetime] = None,
                          actor_id: Optional[int] = None,
                          organization_id: Optional[int] = None) -> Task:
        """
        Update a task and kick off everything that follows from the change.

        Returns as soon as the task is written: the completion cascade is
        submitted to the dispatcher and not awaited.

        Raises:
            NotFoundError, ConflictError: from the concurrency guard
        """
        change = await self.guard.apply(task_id, patch, expected_version, organization_id)

        if change.completed:
            self.dispatcher.submit(
                self.propagator.on_task_completed, task_id,
                name=f"completion-cascade-task-{task_id}"
            )

        await self._send_notifications(change, actor_id)
        return change.after

    async def _send_notifications(self, change: TaskChange, actor_id: Optional[int]):
        before, after = change.before, change.after

        def event(kind: str, recipient: int) -> NotificationEvent:
            return NotificationEvent(
                kind=kind,
                organization_id=after.organization_id,
                project_id=after.project_id,
                item_type="task",
                item_id=after.id,
                title=after.title,
                recipient_id=recipient,
            )

        reassigned = after.assigned_to is not None and after.assigned_to != before.assigned_to
        if reassigned:
            await notify_safely(self.notifier, event("assigned", after.assigned_to))

        # Tell the creator when somebody else finishes their task
        if change.completed and after.created_by is not None and after.created_by != actor_id:
            await notify_safely(self.notifier, event("completed", after.created_by))

        if reassigned and actor_id is not None and after.assigned_to != actor_id:
            await notify_safely(self.notifier, event("updated", after.assigned_to))
