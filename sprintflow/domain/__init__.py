"""Domain layer - Pure business entities and logic"""

from .models import (
    Task, Story, Sprint, Epic, TaskPatch, TaskChange,
    TaskStatus, StoryStatus, SprintStatus, EpicStatus,
    ActiveTimer, TimeEntry, TimeEntryCandidate, TimeEntryPatch, TimeEntrySource,
    TimeTrackingPolicy, RoundingRules, User, NotificationEvent,
)

__all__ = [
    "Task", "Story", "Sprint", "Epic", "TaskPatch", "TaskChange",
    "TaskStatus", "StoryStatus", "SprintStatus", "EpicStatus",
    "ActiveTimer", "TimeEntry", "TimeEntryCandidate", "TimeEntryPatch", "TimeEntrySource",
    "TimeTrackingPolicy", "RoundingRules", "User", "NotificationEvent",
]
