"""
Engine facade - the operations callers drive the engine with.

HTTP handlers (or any other transport) construct one WorkEngine and call
these methods; the return values are the documented response shapes.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from sprintflow.domain.errors import ConflictError, ValidationError
from sprintflow.domain.models import (
    ActiveTimer, Task, TaskPatch, TimeEntryCandidate, TimeEntryPatch, TimeTrackingPolicy,
)
from sprintflow.infra.repository import (
    TaskRepository, StoryRepository, SprintRepository, EpicRepository,
    ActiveTimerRepository, TimeEntryRepository, SettingsRepository, UserRepository,
)
from sprintflow.services.background import BackgroundDispatcher
from sprintflow.services.completion_service import CompletionPropagator
from sprintflow.services.concurrency_guard import TaskConcurrencyGuard
from sprintflow.services.notifications import NotificationEmitter, LoggingNotificationEmitter
from sprintflow.services.task_service import TaskService
from sprintflow.services.time_entry_service import TimeEntryService
from sprintflow.services.time_entry_validator import TimeEntryValidator
from sprintflow.services.timer_service import TimerManager
from sprintflow.utils import utcnow

logger = logging.getLogger(__name__)


def parse_version(value: Union[datetime, str, None]) -> Optional[datetime]:
    """Accept a version token as datetime or ISO string; normalize to naive UTC"""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_payload(model: Type[BaseModel], payload: Any) -> Any:
    """Validate a caller payload, reporting bad input as the engine's ValidationError"""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {model.__name__}: {e}") from e


class WorkEngine:
    """
    Wires repositories and services together.

    Args:
        session: Optional session shared by all repositories (tests, scripts)
        notifier: Notification emitter; defaults to logging
        default_policy: Policy used when no settings row exists
        clock: Time source for every service
    """

    def __init__(self, session: Optional[AsyncSession] = None,
                 notifier: Optional[NotificationEmitter] = None,
                 default_policy: Optional[TimeTrackingPolicy] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.notifier = notifier or LoggingNotificationEmitter()
        self.dispatcher = BackgroundDispatcher()

        task_repo = TaskRepository(session=session)
        settings_repo = SettingsRepository(session=session)
        user_repo = UserRepository(session=session)
        validator = TimeEntryValidator()

        self.propagator = CompletionPropagator(
            task_repo=task_repo,
            story_repo=StoryRepository(session=session),
            sprint_repo=SprintRepository(session=session),
            epic_repo=EpicRepository(session=session),
            notifier=self.notifier,
            clock=clock
        )
        self.tasks = TaskService(
            guard=TaskConcurrencyGuard(task_repo, clock=clock),
            propagator=self.propagator,
            dispatcher=self.dispatcher,
            notifier=self.notifier
        )
        self.timers = TimerManager(
            timer_repo=ActiveTimerRepository(session=session),
            task_repo=task_repo,
            settings_repo=settings_repo,
            user_repo=user_repo,
            validator=validator,
            default_policy=default_policy,
            clock=clock
        )
        self.time_entries = TimeEntryService(
            entry_repo=TimeEntryRepository(session=session),
            settings_repo=settings_repo,
            user_repo=user_repo,
            validator=validator,
            default_policy=default_policy,
            clock=clock
        )

    # Tasks

    async def update_task(self, task_id: int, patch: Union[TaskPatch, Dict[str, Any]],
                          expected_version: Union[datetime, str, None] = None,
                          actor_id: Optional[int] = None, *,
                          organization_id: int) -> Union[Task, Dict[str, Any]]:
        """
        Returns the updated task, or the conflict payload
        {error, conflict: True, currentVersion} when expected_version is stale.
        A task outside `organization_id` raises NotFoundError.
        """
        patch = parse_payload(TaskPatch, patch)
        try:
            return await self.tasks.update_task(
                task_id, patch, parse_version(expected_version), actor_id, organization_id
            )
        except ConflictError as e:
            return e.to_dict()

    async def check_project_completion(self, project_id: int) -> None:
        await self.propagator.check_project_completion(project_id)

    # Timers

    async def start_timer(self, user_id: int, organization_id: int, project_id: int,
                          task_id: Optional[int] = None, description: str = "",
                          **options) -> ActiveTimer:
        return await self.timers.start(user_id, organization_id, project_id, task_id, description, **options)

    async def pause_timer(self, user_id: int, organization_id: int) -> ActiveTimer:
        return await self.timers.pause(user_id, organization_id)

    async def resume_timer(self, user_id: int, organization_id: int) -> ActiveTimer:
        return await self.timers.resume(user_id, organization_id)

    async def update_timer(self, user_id: int, organization_id: int, **fields) -> ActiveTimer:
        return await self.timers.update(user_id, organization_id, **fields)

    async def stop_timer(self, user_id: int, organization_id: int,
                         final_description: Optional[str] = None) -> Dict[str, Any]:
        entry = await self.timers.stop(user_id, organization_id, final_description)
        return entry.to_wire()

    async def expire_timers(self) -> int:
        """Run one expiry sweep; returns how many timers were auto-stopped"""
        return len(await self.timers.expire_timers())

    # Time entries

    async def create_time_entry(self, payload: Union[TimeEntryCandidate, Dict[str, Any]]) -> Dict[str, Any]:
        entry = await self.time_entries.create_time_entry(parse_payload(TimeEntryCandidate, payload))
        return entry.to_wire()

    async def update_time_entry(self, entry_id: int, organization_id: int,
                                changes: Union[TimeEntryPatch, Dict[str, Any]]) -> Dict[str, Any]:
        entry = await self.time_entries.update_time_entry(
            entry_id, organization_id, parse_payload(TimeEntryPatch, changes)
        )
        return entry.to_wire()

    async def delete_time_entry(self, entry_id: int, organization_id: int) -> None:
        await self.time_entries.delete_time_entry(entry_id, organization_id)

    async def review_time_entries(self, entry_ids: List[int], approver_id: int, action: str) -> int:
        return await self.time_entries.review_entries(entry_ids, approver_id, action)

    async def shutdown(self):
        """Wait for detached work (completion cascades) to finish"""
        if self.dispatcher.pending:
            logger.info(f"Waiting for {self.dispatcher.pending} background task(s)")
        await self.dispatcher.drain()
