"""
Data Seeder for SprintFlow.
Populates the database with a small project hierarchy for demos, then
completes its tasks to show the completion cascade.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sprintflow.domain.models import Task, Story, Sprint, Epic, User, SprintStatus, TaskStatus, TimeTrackingPolicy
from sprintflow.engine import WorkEngine
from sprintflow.infra.config import get_settings
from sprintflow.infra.db import DatabaseEngine, init_db
from sprintflow.infra.repository import (
    TaskRepository, StoryRepository, SprintRepository, EpicRepository, SettingsRepository, UserRepository,
)
from sprintflow.services.notifications import RecordingNotificationEmitter

ORG_ID = 1
PROJECT_ID = 1


async def seed():
    settings = get_settings()
    await init_db(settings.get_db_url())
    print("Starting data seeding...")

    user = await UserRepository().create(User(organization_id=ORG_ID, name="Demo User", billing_rate=85.0))
    await SettingsRepository().save(ORG_ID, None, TimeTrackingPolicy(
        require_approval=True,
        default_hourly_rate=60.0
    ))

    epic = await EpicRepository().create(Epic(organization_id=ORG_ID, project_id=PROJECT_ID, title="Onboarding"))
    sprint = await SprintRepository().create(Sprint(
        organization_id=ORG_ID, project_id=PROJECT_ID, name="Sprint 1", status=SprintStatus.ACTIVE
    ))

    task_repo = TaskRepository()
    story_repo = StoryRepository()
    task_ids = []
    for title, task_titles in [("Sign-up flow", ["Form", "Validation"]), ("Welcome email", ["Template"])]:
        story = await story_repo.create(Story(
            organization_id=ORG_ID, project_id=PROJECT_ID, title=title, sprint_id=sprint.id, epic_id=epic.id
        ))
        print(f"Created story: {title}")
        for task_title in task_titles:
            task = await task_repo.create(Task(
                organization_id=ORG_ID, project_id=PROJECT_ID, title=task_title,
                story_id=story.id, created_by=user.id
            ))
            task_ids.append(task.id)

    notifier = RecordingNotificationEmitter()
    engine = WorkEngine(notifier=notifier, default_policy=settings.default_policy)
    for task_id in task_ids:
        await engine.update_task(task_id, {"status": TaskStatus.DONE.value}, organization_id=ORG_ID)
    await engine.shutdown()

    for event in notifier.events:
        print(f"  {event.kind}: {event.item_type} {event.item_id} ({event.title})")

    await DatabaseEngine.reset()
    print("Seeding complete!")


if __name__ == "__main__":
    asyncio.run(seed())
