"""
Engine error taxonomy.

Concurrency, validation and state errors are returned to the caller.
Cascade failures never leave the completion service.
"""

from datetime import datetime
from typing import Optional, Dict, Any


class EngineError(Exception):
    """Base class for every error the engine raises on purpose"""
    code = "engine_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class NotFoundError(EngineError):
    code = "not_found"


class ConflictError(EngineError):
    """A task was modified since the caller last read it"""
    code = "conflict"

    def __init__(self, current_version: datetime,
                 message: str = "Task was modified by another user. Please refresh and try again."):
        super().__init__(message)
        self.current_version = current_version

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "conflict": True,
            "currentVersion": self.current_version.isoformat(),
        }


# Validation

class ValidationError(EngineError):
    code = "validation_error"


class TimeTrackingDisabled(ValidationError):
    code = "time_tracking_disabled"

    def __init__(self, message: str = "Time tracking is not enabled"):
        super().__init__(message)


class ManualSubmissionDisabled(ValidationError):
    code = "manual_submission_disabled"

    def __init__(self, message: str = "Manual time submission not allowed"):
        super().__init__(message)


class InvalidTimeRange(ValidationError):
    code = "invalid_time_range"

    def __init__(self, message: str = "Start time cannot be after end time"):
        super().__init__(message)


class FutureTimeNotAllowed(ValidationError):
    code = "future_time_not_allowed"

    def __init__(self, message: str = "Future time logging not allowed"):
        super().__init__(message)


class PastTimeLimitExceeded(ValidationError):
    code = "past_time_limit_exceeded"

    def __init__(self, limit_days: Optional[int] = None):
        message = "Past time logging not allowed beyond limit"
        if limit_days is not None:
            message = f"{message} of {limit_days} days"
        super().__init__(message)
        self.limit_days = limit_days


class DescriptionRequired(ValidationError):
    code = "description_required"

    def __init__(self, message: str = "A description is required"):
        super().__init__(message)


class CategoryRequired(ValidationError):
    code = "category_required"

    def __init__(self, message: str = "A category is required"):
        super().__init__(message)


# Timer state

class StateError(EngineError):
    code = "state_error"


class AlreadyRunning(StateError):
    code = "already_running"

    def __init__(self, message: str = "A timer is already running for this user"):
        super().__init__(message)


class NoActiveTimer(StateError):
    code = "no_active_timer"

    def __init__(self, message: str = "No active timer found"):
        super().__init__(message)


class TimerAlreadyPaused(StateError):
    code = "timer_already_paused"

    def __init__(self, message: str = "Timer is already paused"):
        super().__init__(message)


class TimerNotPaused(StateError):
    code = "timer_not_paused"

    def __init__(self, message: str = "Timer is not paused"):
        super().__init__(message)


class TimerStateChanged(StateError):
    """Lost a race against another transition on the same timer"""
    code = "timer_state_changed"

    def __init__(self, message: str = "Timer was changed by another request. Please retry."):
        super().__init__(message)


class EntryApproved(StateError):
    """Approved time entries are frozen"""
    code = "entry_approved"

    def __init__(self, message: str = "Cannot modify approved time entry"):
        super().__init__(message)


class InternalError(EngineError):
    """
    Cascade failure. The completion service wraps the underlying exception
    in one of these and logs it; it is never raised to callers.
    """
    code = "internal_error"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
