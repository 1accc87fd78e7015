"""
Repository Pattern Implementation.

Architecture Decision: Why Repository Pattern?
Separates data access logic from business logic. Makes it easy to:
- Switch database implementations
- Mock data for testing
- Keep every conditional write (compare-and-set) in one place

The services only ever see domain models; SQLAlchemy rows stay in here.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any, Iterable

from sqlalchemy import select, update, delete, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sprintflow.domain.errors import AlreadyRunning
from sprintflow.domain.models import (
    Task, Story, Sprint, Epic, ActiveTimer, TimeEntry, TimeTrackingPolicy, User,
    StoryStatus, SprintStatus, EpicStatus,
)
from sprintflow.infra.db import (
    TaskModel, StoryModel, SprintModel, EpicModel, ActiveTimerModel, TimeEntryModel,
    TimeTrackingSettingsModel, UserModel, get_engine,
)


class _Repository:
    """Session handling shared by all repositories"""

    def __init__(self, session: Optional[AsyncSession] = None):
        self.session = session

    async def _get_session(self) -> AsyncSession:
        """Get session - either injected or create new one"""
        if self.session:
            return self.session
        engine = get_engine()
        return engine.get_session()


class UserRepository(_Repository):
    """
    Handles user lookups needed for billing rate resolution.
    """

    async def get_by_id(self, user_id: int) -> Optional[User]:
        session = await self._get_session()
        async with session:
            result = await session.execute(select(UserModel).where(UserModel.id == user_id))
            model = result.scalar_one_or_none()
            return User.model_validate(model) if model else None

    async def get_billing_rate(self, user_id: int) -> Optional[float]:
        """Get the user's configured hourly billing rate, if any"""
        user = await self.get_by_id(user_id)
        return user.billing_rate if user else None

    async def create(self, user: User) -> User:
        session = await self._get_session()
        async with session:
            model = UserModel(
                organization_id=user.organization_id,
                name=user.name,
                email=user.email,
                billing_rate=user.billing_rate
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return User.model_validate(model)


class SettingsRepository(_Repository):
    """
    Resolves time-tracking policy for an organization/project pair.

    Lookup order: project override, organization default, then the
    application default passed in by the caller.
    """

    async def get_policy(self, organization_id: int, project_id: Optional[int]) -> Optional[TimeTrackingPolicy]:
        """Get the policy stored at exactly this scope"""
        session = await self._get_session()
        async with session:
            stmt = select(TimeTrackingSettingsModel).where(
                TimeTrackingSettingsModel.organization_id == organization_id
            )
            if project_id is None:
                stmt = stmt.where(TimeTrackingSettingsModel.project_id.is_(None))
            else:
                stmt = stmt.where(TimeTrackingSettingsModel.project_id == project_id)

            result = await session.execute(stmt.limit(1))
            model = result.scalars().first()
            return TimeTrackingPolicy(**model.policy) if model else None

    async def resolve(self, organization_id: int, project_id: Optional[int],
                      default: Optional[TimeTrackingPolicy] = None) -> TimeTrackingPolicy:
        policy = None
        if project_id is not None:
            policy = await self.get_policy(organization_id, project_id)
        if policy is None:
            policy = await self.get_policy(organization_id, None)
        if policy is None:
            policy = default if default is not None else TimeTrackingPolicy()
        return policy

    async def save(self, organization_id: int, project_id: Optional[int],
                   policy: TimeTrackingPolicy) -> TimeTrackingPolicy:
        """Create or replace the policy at this scope"""
        session = await self._get_session()
        async with session:
            stmt = select(TimeTrackingSettingsModel).where(
                TimeTrackingSettingsModel.organization_id == organization_id
            )
            if project_id is None:
                stmt = stmt.where(TimeTrackingSettingsModel.project_id.is_(None))
            else:
                stmt = stmt.where(TimeTrackingSettingsModel.project_id == project_id)

            result = await session.execute(stmt.limit(1))
            model = result.scalars().first()
            if model is None:
                model = TimeTrackingSettingsModel(organization_id=organization_id, project_id=project_id)
                session.add(model)
            # Reassign the whole dict so the JSON column is flagged dirty
            model.policy = policy.model_dump()
            await session.commit()
            return policy


class TaskRepository(_Repository):
    """
    Handles all Task-related database operations.

    Converts between domain models (Pydantic) and ORM models (SQLAlchemy).
    """

    async def get_by_id(self, task_id: int, organization_id: Optional[int] = None) -> Optional[Task]:
        """Get a specific task by ID, optionally only within one organization"""
        session = await self._get_session()
        async with session:
            stmt = select(TaskModel).where(TaskModel.id == task_id)
            if organization_id is not None:
                stmt = stmt.where(TaskModel.organization_id == organization_id)
            result = await session.execute(stmt)
            task_model = result.scalar_one_or_none()
            return Task.model_validate(task_model) if task_model else None

    async def get_by_story(self, story_id: int) -> List[Task]:
        """Get every task of a story"""
        session = await self._get_session()
        async with session:
            result = await session.execute(
                select(TaskModel).where(TaskModel.story_id == story_id).order_by(TaskModel.id)
            )
            return [Task.model_validate(tm) for tm in result.scalars().all()]

    async def create(self, task: Task) -> Task:
        """Create a new task"""
        session = await self._get_session()
        async with session:
            task_model = TaskModel(
                organization_id=task.organization_id,
                project_id=task.project_id,
                title=task.title,
                description=task.description,
                status=task.status.value,
                priority=task.priority,
                story_id=task.story_id,
                assigned_to=task.assigned_to,
                created_by=task.created_by,
                created_at=task.created_at,
                updated_at=task.updated_at
            )
            session.add(task_model)
            await session.commit()
            await session.refresh(task_model)
            return Task.model_validate(task_model)

    async def update_if_version(self, task_id: int, values: Dict[str, Any],
                                expected_version: Optional[datetime] = None,
                                organization_id: Optional[int] = None) -> bool:
        """
        Apply `values` to a task.

        With `expected_version` the write is a compare-and-set on updated_at:
        it only lands if the row still carries that version. With
        `organization_id` it only touches a task of that organization.
        Returns whether a row was written.
        """
        session = await self._get_session()
        async with session:
            stmt = update(TaskModel).where(TaskModel.id == task_id)
            if organization_id is not None:
                stmt = stmt.where(TaskModel.organization_id == organization_id)
            if expected_version is not None:
                stmt = stmt.where(TaskModel.updated_at == expected_version)
            result = await session.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1


class StoryRepository(_Repository):
    """
    Handles Story-related database operations.
    """

    async def get_by_id(self, story_id: int) -> Optional[Story]:
        session = await self._get_session()
        async with session:
            result = await session.execute(select(StoryModel).where(StoryModel.id == story_id))
            model = result.scalar_one_or_none()
            return Story.model_validate(model) if model else None

    async def find(self, sprint_id: Optional[int] = None, epic_id: Optional[int] = None,
                   project_id: Optional[int] = None) -> List[Story]:
        """Get stories filtered by sprint, epic and/or project"""
        session = await self._get_session()
        async with session:
            stmt = select(StoryModel)
            if sprint_id is not None:
                stmt = stmt.where(StoryModel.sprint_id == sprint_id)
            if epic_id is not None:
                stmt = stmt.where(StoryModel.epic_id == epic_id)
            if project_id is not None:
                stmt = stmt.where(StoryModel.project_id == project_id)
            result = await session.execute(stmt.order_by(StoryModel.id))
            return [Story.model_validate(m) for m in result.scalars().all()]

    async def create(self, story: Story) -> Story:
        session = await self._get_session()
        async with session:
            model = StoryModel(
                organization_id=story.organization_id,
                project_id=story.project_id,
                title=story.title,
                status=story.status.value,
                sprint_id=story.sprint_id,
                epic_id=story.epic_id,
                completed_at=story.completed_at,
                created_at=story.created_at,
                updated_at=story.updated_at
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return Story.model_validate(model)

    async def mark_completed(self, story_id: int, completed_at: datetime) -> bool:
        """
        Complete a story unless it already is. Returns True only for the
        call that performed the transition.
        """
        session = await self._get_session()
        async with session:
            result = await session.execute(
                update(StoryModel)
                .where(and_(
                    StoryModel.id == story_id,
                    StoryModel.status != StoryStatus.COMPLETED.value
                ))
                .values(status=StoryStatus.COMPLETED.value, completed_at=completed_at, updated_at=completed_at)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1


class SprintRepository(_Repository):
    """
    Handles Sprint-related database operations.
    """

    async def get_by_id(self, sprint_id: int) -> Optional[Sprint]:
        session = await self._get_session()
        async with session:
            result = await session.execute(select(SprintModel).where(SprintModel.id == sprint_id))
            model = result.scalar_one_or_none()
            return Sprint.model_validate(model) if model else None

    async def get_by_ids(self, sprint_ids: Iterable[int]) -> List[Sprint]:
        ids = list(sprint_ids)
        if not ids:
            return []
        session = await self._get_session()
        async with session:
            result = await session.execute(
                select(SprintModel).where(SprintModel.id.in_(ids)).order_by(SprintModel.id)
            )
            return [Sprint.model_validate(m) for m in result.scalars().all()]

    async def create(self, sprint: Sprint) -> Sprint:
        session = await self._get_session()
        async with session:
            model = SprintModel(
                organization_id=sprint.organization_id,
                project_id=sprint.project_id,
                name=sprint.name,
                status=sprint.status.value,
                start_date=sprint.start_date,
                end_date=sprint.end_date,
                actual_end_date=sprint.actual_end_date,
                updated_at=sprint.updated_at
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return Sprint.model_validate(model)

    async def mark_completed(self, sprint_id: int, ended_at: datetime) -> bool:
        """Complete a sprint unless it already is; records the actual end date"""
        session = await self._get_session()
        async with session:
            result = await session.execute(
                update(SprintModel)
                .where(and_(
                    SprintModel.id == sprint_id,
                    SprintModel.status != SprintStatus.COMPLETED.value
                ))
                .values(status=SprintStatus.COMPLETED.value, actual_end_date=ended_at, updated_at=ended_at)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1


class EpicRepository(_Repository):
    """
    Handles Epic-related database operations.
    """

    async def get_by_id(self, epic_id: int) -> Optional[Epic]:
        session = await self._get_session()
        async with session:
            result = await session.execute(select(EpicModel).where(EpicModel.id == epic_id))
            model = result.scalar_one_or_none()
            return Epic.model_validate(model) if model else None

    async def create(self, epic: Epic) -> Epic:
        session = await self._get_session()
        async with session:
            model = EpicModel(
                organization_id=epic.organization_id,
                project_id=epic.project_id,
                title=epic.title,
                status=epic.status.value,
                completed_at=epic.completed_at,
                updated_at=epic.updated_at
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return Epic.model_validate(model)

    async def mark_completed(self, epic_id: int, completed_at: datetime) -> bool:
        session = await self._get_session()
        async with session:
            result = await session.execute(
                update(EpicModel)
                .where(and_(
                    EpicModel.id == epic_id,
                    EpicModel.status != EpicStatus.COMPLETED.value
                ))
                .values(status=EpicStatus.COMPLETED.value, completed_at=completed_at, updated_at=completed_at)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1


class ActiveTimerRepository(_Repository):
    """
    Handles the active timer row of each (user, organization) pair.

    Every mutation is conditioned on the row version so that two requests
    racing on the same timer cannot both succeed.
    """

    async def get(self, user_id: int, organization_id: int) -> Optional[ActiveTimer]:
        """Get the active timer of a user, if any"""
        session = await self._get_session()
        async with session:
            result = await session.execute(
                select(ActiveTimerModel).where(and_(
                    ActiveTimerModel.user_id == user_id,
                    ActiveTimerModel.organization_id == organization_id
                ))
            )
            model = result.scalar_one_or_none()
            return ActiveTimer.model_validate(model) if model else None

    async def get_running(self) -> List[ActiveTimer]:
        """Get all timers that are currently running (not paused)"""
        session = await self._get_session()
        async with session:
            result = await session.execute(
                select(ActiveTimerModel).where(ActiveTimerModel.is_paused == False)
            )
            return [ActiveTimer.model_validate(m) for m in result.scalars().all()]

    async def create(self, timer: ActiveTimer) -> ActiveTimer:
        """
        Insert a new timer. The unique (user, organization) constraint turns a
        concurrent second start into AlreadyRunning; any other integrity
        failure (e.g. a dangling task reference) is re-raised as is.
        """
        session = await self._get_session()
        async with session:
            model = ActiveTimerModel(
                user_id=timer.user_id,
                organization_id=timer.organization_id,
                project_id=timer.project_id,
                task_id=timer.task_id,
                description=timer.description,
                category=timer.category,
                tags=list(timer.tags),
                start_time=timer.start_time,
                paused_at=None,
                total_paused_seconds=0,
                is_paused=False,
                max_session_hours=timer.max_session_hours,
                is_billable=timer.is_billable,
                hourly_rate=timer.hourly_rate,
                version=1
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                # The violated constraint is only reliably named on some
                # backends, so check for the conflicting row instead
                existing = await session.execute(
                    select(ActiveTimerModel.id).where(and_(
                        ActiveTimerModel.user_id == timer.user_id,
                        ActiveTimerModel.organization_id == timer.organization_id
                    ))
                )
                if existing.scalar_one_or_none() is not None:
                    raise AlreadyRunning()
                raise
            await session.refresh(model)
            return ActiveTimer.model_validate(model)

    async def transition(self, timer: ActiveTimer, values: Dict[str, Any],
                         expect_paused: Optional[bool] = None) -> Optional[ActiveTimer]:
        """
        Conditionally update a timer that still carries `timer.version` (and,
        if given, the expected pause state). Bumps the version.

        Returns the updated timer, or None when another request got there first.
        """
        session = await self._get_session()
        async with session:
            conditions = [
                ActiveTimerModel.id == timer.id,
                ActiveTimerModel.version == timer.version,
            ]
            if expect_paused is not None:
                conditions.append(ActiveTimerModel.is_paused == expect_paused)

            result = await session.execute(
                update(ActiveTimerModel)
                .where(and_(*conditions))
                .values(**values, version=timer.version + 1)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount != 1:
                return None

            fresh = await session.execute(select(ActiveTimerModel).where(ActiveTimerModel.id == timer.id))
            return ActiveTimer.model_validate(fresh.scalar_one())

    async def finalize(self, timer: ActiveTimer, entry: TimeEntry) -> Optional[TimeEntry]:
        """
        Delete the timer and persist its time entry in one transaction.

        Returns None (and writes nothing) if the timer was already stopped or
        changed since it was read.
        """
        session = await self._get_session()
        async with session:
            result = await session.execute(
                delete(ActiveTimerModel).where(and_(
                    ActiveTimerModel.id == timer.id,
                    ActiveTimerModel.version == timer.version
                )).execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                return None

            entry_model = TimeEntryRepository.to_model(entry)
            session.add(entry_model)
            await session.commit()
            await session.refresh(entry_model)
            return TimeEntry.model_validate(entry_model)


class TimeEntryRepository(_Repository):
    """
    Handles all TimeEntry-related database operations.
    """

    @staticmethod
    def to_model(entry: TimeEntry) -> TimeEntryModel:
        return TimeEntryModel(
            user_id=entry.user_id,
            organization_id=entry.organization_id,
            project_id=entry.project_id,
            task_id=entry.task_id,
            description=entry.description,
            start_time=entry.start_time,
            end_time=entry.end_time,
            duration_minutes=entry.duration_minutes,
            is_billable=entry.is_billable,
            hourly_rate=entry.hourly_rate,
            status=entry.status,
            is_approved=entry.is_approved,
            approved_by=entry.approved_by,
            approved_at=entry.approved_at,
            category=entry.category,
            tags=list(entry.tags),
            notes=entry.notes,
            source=entry.source.value,
            created_at=entry.created_at
        )

    async def create(self, entry: TimeEntry) -> TimeEntry:
        """Create a new time entry"""
        session = await self._get_session()
        async with session:
            entry_model = self.to_model(entry)
            session.add(entry_model)
            await session.commit()
            await session.refresh(entry_model)
            return TimeEntry.model_validate(entry_model)

    async def get_by_id(self, entry_id: int, organization_id: Optional[int] = None) -> Optional[TimeEntry]:
        session = await self._get_session()
        async with session:
            stmt = select(TimeEntryModel).where(TimeEntryModel.id == entry_id)
            if organization_id is not None:
                stmt = stmt.where(TimeEntryModel.organization_id == organization_id)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return TimeEntry.model_validate(model) if model else None

    async def get_by_user(self, user_id: int, organization_id: int,
                          start_date: Optional[datetime] = None,
                          end_date: Optional[datetime] = None) -> List[TimeEntry]:
        """Get a user's time entries, optionally filtered by date range"""
        session = await self._get_session()
        async with session:
            query = select(TimeEntryModel).where(and_(
                TimeEntryModel.user_id == user_id,
                TimeEntryModel.organization_id == organization_id
            ))

            if start_date:
                query = query.where(TimeEntryModel.start_time >= start_date)
            if end_date:
                query = query.where(TimeEntryModel.start_time <= end_date)

            result = await session.execute(query.order_by(TimeEntryModel.start_time.desc()))
            return [TimeEntry.model_validate(em) for em in result.scalars().all()]

    async def set_approval(self, entry_ids: List[int], approved: bool,
                           approver_id: int, approved_at: datetime) -> int:
        """Approve or reject entries. Returns count of modified rows."""
        session = await self._get_session()
        async with session:
            result = await session.execute(
                update(TimeEntryModel)
                .where(TimeEntryModel.id.in_(entry_ids))
                .values(is_approved=approved, approved_by=approver_id, approved_at=approved_at)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def update_unapproved(self, entry_id: int, organization_id: int, values: Dict[str, Any]) -> bool:
        """
        Apply `values` to an entry that is still unapproved.
        Returns False if the entry is gone or was approved in the meantime.
        """
        session = await self._get_session()
        async with session:
            result = await session.execute(
                update(TimeEntryModel)
                .where(and_(
                    TimeEntryModel.id == entry_id,
                    TimeEntryModel.organization_id == organization_id,
                    TimeEntryModel.is_approved == False
                ))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def delete_unapproved(self, entry_id: int, organization_id: int) -> bool:
        """Delete an entry unless it has been approved"""
        session = await self._get_session()
        async with session:
            result = await session.execute(
                delete(TimeEntryModel)
                .where(and_(
                    TimeEntryModel.id == entry_id,
                    TimeEntryModel.organization_id == organization_id,
                    TimeEntryModel.is_approved == False
                ))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1
