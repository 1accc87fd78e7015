"""
Timer Service - Per-user timer state machine.

States: Idle (no row) -> Running <-> Paused -> Stopped (row deleted, time
entry written). The timer lives in the database as one row per (user,
organization), never in process memory, so any server instance can serve
any request and the single-timer rule holds across all of them.

Durations are always derived from server clock readings: start time, pause
boundaries and stop time. Nothing a client reports about elapsed time is
trusted.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from sprintflow.domain.errors import (
    AlreadyRunning, DescriptionRequired, EngineError, NoActiveTimer, NotFoundError, TimeTrackingDisabled,
    TimerAlreadyPaused, TimerNotPaused, TimerStateChanged,
)
from sprintflow.domain.models import (
    ActiveTimer, TimeEntry, TimeEntryCandidate, TimeEntrySource, TimeTrackingPolicy,
)
from sprintflow.infra.repository import (
    ActiveTimerRepository, SettingsRepository, TaskRepository, UserRepository,
)
from sprintflow.services.time_entry_validator import TimeEntryValidator
from sprintflow.utils import utcnow, whole_minutes

logger = logging.getLogger(__name__)


class TimerManager:
    """
    The time tracking engine. Every transition is a conditional write on the
    timer row, so concurrent start/pause/resume/stop calls for the same user
    are serialized by the database: one wins, the others get a StateError.
    """

    def __init__(self, timer_repo: Optional[ActiveTimerRepository] = None,
                 settings_repo: Optional[SettingsRepository] = None,
                 user_repo: Optional[UserRepository] = None,
                 validator: Optional[TimeEntryValidator] = None,
                 default_policy: Optional[TimeTrackingPolicy] = None,
                 clock: Callable[[], datetime] = utcnow,
                 task_repo: Optional[TaskRepository] = None):
        self.timer_repo = timer_repo or ActiveTimerRepository()
        self.task_repo = task_repo or TaskRepository()
        self.settings_repo = settings_repo or SettingsRepository()
        self.user_repo = user_repo or UserRepository()
        self.validator = validator or TimeEntryValidator()
        self.default_policy = default_policy
        self.clock = clock

    async def _policy(self, organization_id: int, project_id: int) -> TimeTrackingPolicy:
        return await self.settings_repo.resolve(organization_id, project_id, self.default_policy)

    async def get_active(self, user_id: int, organization_id: int) -> Optional[ActiveTimer]:
        """Get the user's active timer, or None when idle"""
        return await self.timer_repo.get(user_id, organization_id)

    async def _require_active(self, user_id: int, organization_id: int) -> ActiveTimer:
        timer = await self.timer_repo.get(user_id, organization_id)
        if timer is None:
            raise NoActiveTimer()
        return timer

    async def start(self, user_id: int, organization_id: int, project_id: int,
                    task_id: Optional[int] = None, description: str = "",
                    category: Optional[str] = None, tags: Optional[List[str]] = None,
                    is_billable: bool = True, hourly_rate: Optional[float] = None) -> ActiveTimer:
        """
        Start tracking time. Idle -> Running.

        Raises:
            TimeTrackingDisabled: Policy disables tracking for this project
            DescriptionRequired: Policy requires a description and none was given
            NotFoundError: task_id is not a task of this organization
            AlreadyRunning: The user already has a timer in this organization
        """
        policy = await self._policy(organization_id, project_id)
        if not policy.allow_time_tracking:
            raise TimeTrackingDisabled()
        if policy.require_description and not description.strip():
            raise DescriptionRequired()

        if task_id is not None and await self.task_repo.get_by_id(task_id, organization_id) is None:
            raise NotFoundError(f"Task {task_id} not found")

        if await self.timer_repo.get(user_id, organization_id) is not None:
            raise AlreadyRunning()

        timer = ActiveTimer(
            user_id=user_id,
            organization_id=organization_id,
            project_id=project_id,
            task_id=task_id,
            description=description,
            category=category,
            tags=tags or [],
            start_time=self.clock(),
            max_session_hours=policy.max_session_hours,
            is_billable=is_billable and policy.allow_billable_time,
            hourly_rate=hourly_rate
        )
        # Two concurrent starts can both pass the check above; the unique
        # constraint lets only one insert through.
        timer = await self.timer_repo.create(timer)
        logger.info(f"Timer {timer.id} started for user {user_id} in organization {organization_id}")
        return timer

    async def pause(self, user_id: int, organization_id: int) -> ActiveTimer:
        """
        Pause the running timer. Running -> Paused.
        Records the pause boundary so the paused interval can be subtracted later.
        """
        timer = await self._require_active(user_id, organization_id)
        if timer.is_paused:
            raise TimerAlreadyPaused()

        updated = await self.timer_repo.transition(
            timer, {"is_paused": True, "paused_at": self.clock()}, expect_paused=False
        )
        if updated is None:
            raise TimerStateChanged()
        logger.debug(f"Timer {timer.id} paused")
        return updated

    async def resume(self, user_id: int, organization_id: int) -> ActiveTimer:
        """
        Resume the paused timer. Paused -> Running.
        The pause that just ended is added to the accumulated paused time.
        """
        timer = await self._require_active(user_id, organization_id)
        if not timer.is_paused:
            raise TimerNotPaused()

        now = self.clock()
        paused_for = 0
        if timer.paused_at is not None:
            paused_for = max(0, round((now - timer.paused_at).total_seconds()))

        updated = await self.timer_repo.transition(
            timer,
            {
                "is_paused": False,
                "paused_at": None,
                "total_paused_seconds": timer.total_paused_seconds + paused_for,
            },
            expect_paused=True
        )
        if updated is None:
            raise TimerStateChanged()
        logger.debug(f"Timer {timer.id} resumed after {paused_for}s pause")
        return updated

    async def update(self, user_id: int, organization_id: int,
                     description: Optional[str] = None, category: Optional[str] = None,
                     tags: Optional[List[str]] = None) -> ActiveTimer:
        """Change description/category/tags without changing state"""
        timer = await self._require_active(user_id, organization_id)

        values = {}
        if description is not None:
            values["description"] = description
        if category is not None:
            values["category"] = category
        if tags is not None:
            values["tags"] = list(tags)
        if not values:
            return timer

        updated = await self.timer_repo.transition(timer, values)
        if updated is None:
            raise TimerStateChanged()
        return updated

    async def stop(self, user_id: int, organization_id: int,
                   final_description: Optional[str] = None) -> TimeEntry:
        """
        Stop the timer and persist its time entry. Running|Paused -> Stopped.

        Raises:
            NoActiveTimer: Nothing to stop
            ValidationError: Policy rejected the entry; the timer keeps running
            TimerStateChanged: Another request changed or stopped the timer first
        """
        timer = await self._require_active(user_id, organization_id)
        entry = await self._finish(timer, self.clock(), final_description)
        logger.info(f"Timer {timer.id} stopped: {entry.duration_minutes} min recorded as entry {entry.id}")
        return entry

    async def auto_stop(self, user_id: int, organization_id: int) -> Optional[TimeEntry]:
        """
        Stop the timer if it ran for max_session_hours.

        The entry ends at the moment the limit was reached, not when this
        check happened to run. Returns None if the limit was not reached.
        """
        timer = await self.timer_repo.get(user_id, organization_id)
        if timer is None or not timer.is_expired(self.clock()):
            return None

        entry = await self._finish(timer, timer.session_limit_at(), None)
        logger.info(f"Timer {timer.id} auto-stopped after {timer.max_session_hours}h session limit")
        return entry

    async def expire_timers(self) -> List[TimeEntry]:
        """
        Auto-stop every running timer past its session limit.
        A failure on one timer is logged and does not stop the sweep.
        """
        now = self.clock()
        stopped = []
        for timer in await self.timer_repo.get_running():
            if not timer.is_expired(now):
                continue
            try:
                stopped.append(await self._finish(timer, timer.session_limit_at(), None))
                logger.info(f"Timer {timer.id} of user {timer.user_id} expired and was stopped")
            except TimerStateChanged:
                logger.debug(f"Timer {timer.id} changed during expiry sweep, skipping")
            except EngineError as e:
                logger.warning(f"Could not auto-stop timer {timer.id}: {e}")
            except Exception:
                logger.exception(f"Unexpected error auto-stopping timer {timer.id}")
        return stopped

    async def _finish(self, timer: ActiveTimer, stop_time: datetime,
                      final_description: Optional[str]) -> TimeEntry:
        """Shared stop path: measure, validate, then delete timer + insert entry atomically"""
        elapsed_seconds = timer.elapsed_seconds(stop_time)
        description = final_description if final_description else timer.description

        policy = await self._policy(timer.organization_id, timer.project_id)
        user_rate = await self.user_repo.get_billing_rate(timer.user_id)

        candidate = TimeEntryCandidate(
            user_id=timer.user_id,
            organization_id=timer.organization_id,
            project_id=timer.project_id,
            task_id=timer.task_id,
            description=description,
            start_time=timer.start_time,
            end_time=stop_time,
            duration_minutes=whole_minutes(elapsed_seconds),
            is_billable=timer.is_billable,
            hourly_rate=timer.hourly_rate,
            category=timer.category,
            tags=timer.tags,
            source=TimeEntrySource.TIMER
        )
        entry = self.validator.validate(candidate, policy, user_rate=user_rate, now=self.clock())

        saved = await self.timer_repo.finalize(timer, entry)
        if saved is None:
            raise TimerStateChanged()
        return saved
