"""
Completion Service - Upward completion cascade.

When a task is done, its story may be complete; a completed story may
complete its sprint; a completed sprint may complete the epics whose stories
it holds. Every level re-reads its children instead of trusting counters, so
two tasks completing at the same time converge on the same result.

Architecture Decision: Best-effort cascade
The cascade runs after the task update has already succeeded. Errors at any
level are logged here and never re-raised: a broken cascade leaves a parent
incomplete until the next trigger or reconciliation pass, but never fails
the task update.
"""

import logging
from datetime import datetime
from typing import Callable, Optional, List

from sprintflow.domain.errors import InternalError
from sprintflow.domain.models import (
    NotificationEvent, Story, TaskStatus, StoryStatus, SprintStatus, EpicStatus,
)
from sprintflow.infra.repository import TaskRepository, StoryRepository, SprintRepository, EpicRepository
from sprintflow.services.notifications import NotificationEmitter, LoggingNotificationEmitter, notify_safely
from sprintflow.utils import utcnow

logger = logging.getLogger(__name__)


class CompletionPropagator:
    """
    Walks Task -> Story -> Sprint -> Epic marking parents completed.

    Parent writes are conditional ("only if not completed yet"), so each
    completion transition happens at most once no matter how many cascades
    race on it.
    """

    def __init__(self, task_repo: Optional[TaskRepository] = None,
                 story_repo: Optional[StoryRepository] = None,
                 sprint_repo: Optional[SprintRepository] = None,
                 epic_repo: Optional[EpicRepository] = None,
                 notifier: Optional[NotificationEmitter] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.task_repo = task_repo or TaskRepository()
        self.story_repo = story_repo or StoryRepository()
        self.sprint_repo = sprint_repo or SprintRepository()
        self.epic_repo = epic_repo or EpicRepository()
        self.notifier = notifier or LoggingNotificationEmitter()
        self.clock = clock

    async def on_task_completed(self, task_id: int) -> None:
        """
        Entry point after a task transitioned to done.
        """
        try:
            task = await self.task_repo.get_by_id(task_id)
            if task is None or task.status != TaskStatus.DONE or task.story_id is None:
                return
            await self.check_story_completion(task.story_id)
        except Exception as e:
            self._log_failure(f"Error handling completion of task {task_id}", e)

    async def check_story_completion(self, story_id: int) -> None:
        """Complete the story once every one of its tasks is done, then cascade"""
        try:
            story = await self.story_repo.get_by_id(story_id)
            if story is None:
                return

            tasks = await self.task_repo.get_by_story(story_id)
            if not tasks:
                return
            # Most calls end here: tasks finish one at a time
            if not all(t.status == TaskStatus.DONE for t in tasks):
                return

            if story.status != StoryStatus.COMPLETED:
                if await self.story_repo.mark_completed(story_id, self.clock()):
                    logger.info(f"Story {story_id} completed")
                    await self._announce("story", story)

            if story.sprint_id is not None:
                await self.check_sprint_completion(story.sprint_id)
        except Exception as e:
            self._log_failure(f"Error checking completion of story {story_id}", e)

    async def check_sprint_completion(self, sprint_id: int) -> None:
        """Complete the sprint once all its stories are completed, then check epics"""
        try:
            sprint = await self.sprint_repo.get_by_id(sprint_id)
            if sprint is None:
                return

            stories = await self.story_repo.find(sprint_id=sprint_id)
            if not stories:
                return
            if not all(s.status == StoryStatus.COMPLETED for s in stories):
                return

            if sprint.status != SprintStatus.COMPLETED:
                if await self.sprint_repo.mark_completed(sprint_id, self.clock()):
                    logger.info(f"Sprint {sprint_id} completed")
                    await self._announce("sprint", sprint)

            for epic_id in self._distinct_epics(stories):
                await self.check_epic_completion(epic_id)
        except Exception as e:
            self._log_failure(f"Error checking completion of sprint {sprint_id}", e)

    async def check_epic_completion(self, epic_id: int) -> None:
        """Complete the epic once every sprint reachable through its stories is completed"""
        try:
            epic = await self.epic_repo.get_by_id(epic_id)
            if epic is None or epic.status == EpicStatus.COMPLETED:
                return

            stories = await self.story_repo.find(epic_id=epic_id)
            sprint_ids = sorted({s.sprint_id for s in stories if s.sprint_id is not None})
            if not sprint_ids:
                return

            sprints = await self.sprint_repo.get_by_ids(sprint_ids)
            if not all(sp.status == SprintStatus.COMPLETED for sp in sprints):
                return

            if await self.epic_repo.mark_completed(epic_id, self.clock()):
                logger.info(f"Epic {epic_id} completed")
                await self._announce("epic", epic)
        except Exception as e:
            self._log_failure(f"Error checking completion of epic {epic_id}", e)

    async def check_project_completion(self, project_id: int) -> None:
        """
        Reconciliation pass: re-evaluate every story, sprint and epic of a
        project. Repairs parents left incomplete by a failed cascade.
        """
        try:
            stories = await self.story_repo.find(project_id=project_id)
            sprint_ids = []
            for story in stories:
                await self.check_story_completion(story.id)
                if story.sprint_id is not None and story.sprint_id not in sprint_ids:
                    sprint_ids.append(story.sprint_id)

            for sprint_id in sprint_ids:
                await self.check_sprint_completion(sprint_id)

            for epic_id in self._distinct_epics(stories):
                await self.check_epic_completion(epic_id)
        except Exception as e:
            self._log_failure(f"Error checking completion of project {project_id}", e)

    @staticmethod
    def _log_failure(message: str, exc: Exception) -> InternalError:
        error = InternalError(message, cause=exc)
        logger.error(f"[{error.code}] {error.message}: {exc}", exc_info=exc)
        return error

    @staticmethod
    def _distinct_epics(stories: List[Story]) -> List[int]:
        seen = []
        for story in stories:
            if story.epic_id is not None and story.epic_id not in seen:
                seen.append(story.epic_id)
        return seen

    async def _announce(self, item_type: str, item) -> None:
        await notify_safely(self.notifier, NotificationEvent(
            kind="work_item_completed",
            organization_id=item.organization_id,
            project_id=item.project_id,
            item_type=item_type,
            item_id=item.id,
            title=getattr(item, "title", None) or getattr(item, "name", None),
        ))
