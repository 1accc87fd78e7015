"""
Time Entry Validator - Policy checks and normalization for time records.

Both timer-derived and manually submitted records pass through here, so
every persisted TimeEntry has been checked against the same policy.
"""

import math
from datetime import datetime
from typing import Optional

from sprintflow.domain.errors import (
    TimeTrackingDisabled, ManualSubmissionDisabled, InvalidTimeRange, FutureTimeNotAllowed,
    PastTimeLimitExceeded, DescriptionRequired, CategoryRequired,
)
from sprintflow.domain.models import TimeEntry, TimeEntryCandidate, TimeTrackingPolicy, RoundingRules
from sprintflow.utils import utcnow, whole_minutes

SECONDS_PER_DAY = 24 * 60 * 60


def apply_rounding(duration_minutes: int, rules: RoundingRules) -> int:
    """
    Snap a duration to the configured increment.

    Example: increment 15, 37 minutes -> 45 rounding up, 30 rounding down.
    """
    if not rules.enabled:
        return duration_minutes
    increment = rules.increment
    if rules.round_up:
        return math.ceil(duration_minutes / increment) * increment
    return math.floor(duration_minutes / increment) * increment


def resolve_hourly_rate(requested: Optional[float], user_rate: Optional[float],
                        policy: TimeTrackingPolicy) -> float:
    """Explicit request rate, then the user's billing rate, then the policy default"""
    if requested is not None:
        return requested
    if user_rate is not None:
        return user_rate
    return policy.default_hourly_rate


class TimeEntryValidator:
    """
    Validates a candidate against a resolved policy and produces a
    normalized TimeEntry ready for persistence.
    """

    def validate(self, candidate: TimeEntryCandidate, policy: TimeTrackingPolicy,
                 user_rate: Optional[float] = None, now: Optional[datetime] = None) -> TimeEntry:
        """
        Args:
            candidate: The record to check
            policy: Resolved organization/project policy
            user_rate: The user's configured billing rate, if any
            now: Reference time for future/past checks (defaults to utcnow)

        Raises:
            ValidationError subclass describing the first failed check
        """
        now = now or utcnow()

        if not policy.allow_time_tracking:
            raise TimeTrackingDisabled()

        if candidate.is_manual and not policy.allow_manual_time_submission:
            raise ManualSubmissionDisabled()

        start = candidate.start_time
        end = candidate.end_time or now

        if start > end:
            raise InvalidTimeRange()

        if start > now and not policy.allow_future_time:
            raise FutureTimeNotAllowed()

        days_ago = math.ceil((now - start).total_seconds() / SECONDS_PER_DAY)
        if days_ago > policy.past_time_limit_days and not policy.allow_past_time:
            raise PastTimeLimitExceeded(policy.past_time_limit_days)

        if candidate.is_manual:
            if policy.require_description and not candidate.description.strip():
                raise DescriptionRequired()
            if policy.require_category and not (candidate.category or "").strip():
                raise CategoryRequired()

        if candidate.duration_minutes is not None:
            duration = candidate.duration_minutes
        else:
            duration = whole_minutes((end - start).total_seconds())

        return TimeEntry(
            user_id=candidate.user_id,
            organization_id=candidate.organization_id,
            project_id=candidate.project_id,
            task_id=candidate.task_id,
            description=candidate.description,
            start_time=start,
            end_time=end,
            duration_minutes=apply_rounding(duration, policy.rounding),
            is_billable=candidate.is_billable and policy.allow_billable_time,
            hourly_rate=resolve_hourly_rate(candidate.hourly_rate, user_rate, policy),
            status="completed",
            is_approved=not policy.require_approval,
            category=candidate.category,
            tags=list(candidate.tags),
            notes=candidate.notes,
            source=candidate.source,
            created_at=now,
        )
