"""
Domain Models using Pydantic for validation.

Architecture Decision: Why Pydantic?
Pydantic validates rows coming back from the store and requests coming in
from callers with the same model. `from_attributes` lets repositories turn
SQLAlchemy rows straight into domain objects.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict, field_validator

from sprintflow.utils import utcnow, whole_minutes


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"
    CANCELLED = "cancelled"


class StoryStatus(str, Enum):
    BACKLOG = "backlog"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SprintStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EpicStatus(str, Enum):
    BACKLOG = "backlog"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TimeEntrySource(str, Enum):
    TIMER = "timer"
    MANUAL = "manual"


# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------

class Task(BaseModel):
    """
    Smallest unit of work. Belongs to at most one Story.

    `updated_at` doubles as the optimistic-concurrency version token.
    """
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    organization_id: int
    project_id: int
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: str = "medium"

    story_id: Optional[int] = None
    assigned_to: Optional[int] = None
    created_by: Optional[int] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Story(BaseModel):
    """A user story. References a Sprint and an Epic, both optional."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    organization_id: int
    project_id: int
    title: str = Field(..., min_length=1, max_length=200)
    status: StoryStatus = StoryStatus.BACKLOG

    sprint_id: Optional[int] = None
    epic_id: Optional[int] = None

    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Sprint(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    organization_id: int
    project_id: int
    name: str = Field(..., min_length=1, max_length=200)
    status: SprintStatus = SprintStatus.PLANNING

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)


class Epic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    organization_id: int
    project_id: int
    title: str = Field(..., min_length=1, max_length=200)
    status: EpicStatus = EpicStatus.BACKLOG

    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)


class TaskPatch(BaseModel):
    """
    Partial update for a task. Only fields that were explicitly set are applied.
    """
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[str] = None
    story_id: Optional[int] = None
    assigned_to: Optional[int] = None

    @field_validator("title", "status", "priority")
    @classmethod
    def _not_null(cls, value):
        # Omit the field to leave it unchanged; the columns are NOT NULL
        if value is None:
            raise ValueError("may be omitted but not null")
        return value

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True)


class TaskChange(BaseModel):
    """Task state before and after a guarded mutation."""
    before: Task
    after: Task

    @property
    def completed(self) -> bool:
        """True when this change moved the task into its terminal status"""
        return self.before.status != TaskStatus.DONE and self.after.status == TaskStatus.DONE


# ---------------------------------------------------------------------------
# Time tracking
# ---------------------------------------------------------------------------

class RoundingRules(BaseModel):
    enabled: bool = False
    increment: int = Field(default=15, gt=0, description="Rounding increment in minutes")
    round_up: bool = True


class TimeTrackingPolicy(BaseModel):
    """
    Resolved time-tracking configuration for an organization/project pair.

    Every toggle has a default so a policy is always complete, whichever
    level (project, organization, application) it was resolved from.
    """
    model_config = ConfigDict(from_attributes=True)

    allow_time_tracking: bool = True
    allow_manual_time_submission: bool = True
    require_approval: bool = False
    allow_billable_time: bool = True
    default_hourly_rate: float = Field(default=0.0, ge=0)
    max_session_hours: float = Field(default=8.0, gt=0)
    require_description: bool = True
    require_category: bool = False
    allow_future_time: bool = False
    allow_past_time: bool = True
    past_time_limit_days: int = Field(default=30, ge=0)
    rounding: RoundingRules = Field(default_factory=RoundingRules)


class ActiveTimer(BaseModel):
    """
    The single in-flight timer of a user within an organization.

    Paused time is tracked as an accumulated total plus the start of the
    current pause, so elapsed time can always be derived from timestamps.
    """
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    user_id: int
    organization_id: int
    project_id: int
    task_id: Optional[int] = None
    description: str = ""
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    start_time: datetime
    paused_at: Optional[datetime] = None
    total_paused_seconds: int = 0
    is_paused: bool = False

    max_session_hours: float = 8.0
    is_billable: bool = True
    hourly_rate: Optional[float] = None
    version: int = 1

    def paused_seconds(self, now: datetime) -> float:
        """Accumulated pause time including the pause in progress"""
        current = 0.0
        if self.is_paused and self.paused_at is not None:
            current = max(0.0, (now - self.paused_at).total_seconds())
        return self.total_paused_seconds + current

    def elapsed_seconds(self, now: datetime) -> float:
        elapsed = (now - self.start_time).total_seconds() - self.paused_seconds(now)
        return max(0.0, elapsed)

    def elapsed_minutes(self, now: datetime) -> int:
        return whole_minutes(self.elapsed_seconds(now))

    def session_limit_at(self) -> datetime:
        """
        Wall-clock instant at which a running timer reaches its session limit.
        Only meaningful while running: a paused timer does not accrue time.
        """
        return (self.start_time
                + timedelta(seconds=self.total_paused_seconds)
                + timedelta(hours=self.max_session_hours))

    def is_expired(self, now: datetime) -> bool:
        return not self.is_paused and now >= self.session_limit_at()


class TimeEntryCandidate(BaseModel):
    """
    A time record awaiting validation: either the interval a timer measured
    or a manual submission.
    """
    user_id: int
    organization_id: int
    project_id: int
    task_id: Optional[int] = None
    description: str = ""
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    is_billable: bool = True
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    source: TimeEntrySource = TimeEntrySource.MANUAL

    @property
    def is_manual(self) -> bool:
        return self.source == TimeEntrySource.MANUAL


class TimeEntry(BaseModel):
    """
    A persisted, policy-validated record of time spent.
    """
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    user_id: int
    organization_id: int
    project_id: int
    task_id: Optional[int] = None
    description: str = ""
    start_time: datetime
    end_time: datetime
    duration_minutes: int = Field(default=0, ge=0)
    is_billable: bool = True
    hourly_rate: float = 0.0
    status: str = "completed"

    is_approved: bool = True
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None

    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    source: TimeEntrySource = TimeEntrySource.MANUAL
    created_at: datetime = Field(default_factory=utcnow)

    def to_wire(self) -> Dict[str, Any]:
        """Response shape handed back to API callers"""
        return {
            "id": self.id,
            "user": self.user_id,
            "project": self.project_id,
            "task": self.task_id,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "durationMinutes": self.duration_minutes,
            "isBillable": self.is_billable,
            "hourlyRate": self.hourly_rate,
            "status": self.status,
            "isApproved": self.is_approved,
        }


class TimeEntryPatch(BaseModel):
    """
    Edit of an unapproved time entry. Only fields that were explicitly set
    are applied; changing start or end recomputes the duration.
    """
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    is_billable: Optional[bool] = None
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = None

    @field_validator("start_time", "end_time", "duration_minutes", "is_billable", "hourly_rate", "tags")
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("may be omitted but not null")
        return value

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    organization_id: int
    name: str
    email: Optional[str] = None
    billing_rate: Optional[float] = None


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class NotificationEvent(BaseModel):
    """
    Event handed to the notification emitter.

    kind: 'assigned', 'completed', 'updated' or 'work_item_completed'
    """
    kind: str
    organization_id: int
    item_type: str = "task"
    item_id: int
    title: Optional[str] = None
    recipient_id: Optional[int] = None
    project_id: Optional[int] = None
    occurred_at: datetime = Field(default_factory=utcnow)
