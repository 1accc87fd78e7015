"""
Pytest configuration and fixtures.
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root
sys.path.insert(0, str(Path(__file__).parent.parent))

from sprintflow.domain.models import (
    Task, Story, Sprint, Epic, User, TaskStatus, StoryStatus, SprintStatus,
)
from sprintflow.engine import WorkEngine
from sprintflow.infra.db import Base
from sprintflow.infra.repository import (
    TaskRepository, StoryRepository, SprintRepository, EpicRepository, UserRepository,
)
from sprintflow.services.notifications import RecordingNotificationEmitter

ORG_ID = 1
PROJECT_ID = 10
T0 = datetime(2026, 3, 2, 9, 0, 0)


class FakeClock:
    """Deterministic clock that tests move forward by hand"""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class Factory:
    """Creates work items straight through the repositories"""

    def __init__(self, session: AsyncSession):
        self.tasks = TaskRepository(session=session)
        self.stories = StoryRepository(session=session)
        self.sprints = SprintRepository(session=session)
        self.epics = EpicRepository(session=session)
        self.users = UserRepository(session=session)

    async def epic(self, title: str = "Epic") -> Epic:
        return await self.epics.create(Epic(organization_id=ORG_ID, project_id=PROJECT_ID, title=title))

    async def sprint(self, name: str = "Sprint", status: SprintStatus = SprintStatus.ACTIVE) -> Sprint:
        return await self.sprints.create(Sprint(
            organization_id=ORG_ID, project_id=PROJECT_ID, name=name, status=status
        ))

    async def story(self, title: str = "Story", sprint_id=None, epic_id=None,
                    status: StoryStatus = StoryStatus.IN_PROGRESS) -> Story:
        return await self.stories.create(Story(
            organization_id=ORG_ID, project_id=PROJECT_ID, title=title,
            sprint_id=sprint_id, epic_id=epic_id, status=status
        ))

    async def task(self, title: str = "Task", story_id=None, status: TaskStatus = TaskStatus.TODO,
                   created_by=None, assigned_to=None) -> Task:
        return await self.tasks.create(Task(
            organization_id=ORG_ID, project_id=PROJECT_ID, title=title, story_id=story_id,
            status=status, created_by=created_by, assigned_to=assigned_to
        ))

    async def user(self, name: str = "Ada", billing_rate=None) -> User:
        return await self.users.create(User(organization_id=ORG_ID, name=name, billing_rate=billing_rate))


@pytest_asyncio.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing"""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Create a new session for a test"""
    async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotificationEmitter()


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


@pytest_asyncio.fixture
async def engine(db_session, notifier, clock):
    """Fully wired engine on the test session"""
    work_engine = WorkEngine(session=db_session, notifier=notifier, clock=clock)
    yield work_engine
    await work_engine.shutdown()
