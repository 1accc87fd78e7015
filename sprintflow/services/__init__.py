"""Services layer - Business logic"""

from .background import BackgroundDispatcher
from .concurrency_guard import TaskConcurrencyGuard
from .completion_service import CompletionPropagator
from .task_service import TaskService
from .timer_service import TimerManager
from .time_entry_validator import TimeEntryValidator
from .time_entry_service import TimeEntryService

__all__ = [
    "BackgroundDispatcher", "TaskConcurrencyGuard", "CompletionPropagator", "TaskService",
    "TimerManager", "TimeEntryValidator", "TimeEntryService",
]
