"""Infrastructure layer - Database, persistence and configuration"""

from .db import DatabaseEngine, get_engine, init_db
from .repository import (
    TaskRepository, StoryRepository, SprintRepository, EpicRepository,
    ActiveTimerRepository, TimeEntryRepository, SettingsRepository, UserRepository,
)

__all__ = [
    "DatabaseEngine", "get_engine", "init_db",
    "TaskRepository", "StoryRepository", "SprintRepository", "EpicRepository",
    "ActiveTimerRepository", "TimeEntryRepository", "SettingsRepository", "UserRepository",
]
