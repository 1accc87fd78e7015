"""
Tests for time entry policy checks, rounding and rate resolution.
"""

from datetime import datetime, timedelta

import pytest

from sprintflow.domain.errors import (
    CategoryRequired, DescriptionRequired, FutureTimeNotAllowed, InvalidTimeRange,
    ManualSubmissionDisabled, PastTimeLimitExceeded, TimeTrackingDisabled,
)
from sprintflow.domain.models import RoundingRules, TimeEntryCandidate, TimeEntrySource, TimeTrackingPolicy
from sprintflow.services.time_entry_validator import TimeEntryValidator, apply_rounding, resolve_hourly_rate

NOW = datetime(2026, 3, 2, 17, 0, 0)


def candidate(**overrides):
    values = dict(
        user_id=1,
        organization_id=1,
        project_id=10,
        description="Pairing session",
        start_time=NOW - timedelta(hours=2),
        end_time=NOW - timedelta(hours=1),
    )
    values.update(overrides)
    return TimeEntryCandidate(**values)


def validate(entry, policy=None, user_rate=None):
    return TimeEntryValidator().validate(entry, policy or TimeTrackingPolicy(), user_rate=user_rate, now=NOW)


@pytest.mark.parametrize("minutes, round_up, expected", [
    (37, True, 45),
    (37, False, 30),
    (45, True, 45),
    (0, True, 0),
    (1, True, 15),
    (14, False, 0),
])
def test_rounding_snaps_to_increment(minutes, round_up, expected):
    rules = RoundingRules(enabled=True, increment=15, round_up=round_up)
    assert apply_rounding(minutes, rules) == expected


def test_rounding_disabled_keeps_duration():
    assert apply_rounding(37, RoundingRules(enabled=False)) == 37


def test_rate_precedence():
    policy = TimeTrackingPolicy(default_hourly_rate=40.0)
    assert resolve_hourly_rate(120.0, 85.0, policy) == 120.0
    assert resolve_hourly_rate(None, 85.0, policy) == 85.0
    assert resolve_hourly_rate(None, None, policy) == 40.0
    # An explicit zero rate is a real rate
    assert resolve_hourly_rate(0.0, 85.0, policy) == 0.0


def test_valid_manual_entry_is_normalized():
    entry = validate(candidate(hourly_rate=None), TimeTrackingPolicy(default_hourly_rate=40.0), user_rate=70.0)

    assert entry.duration_minutes == 60
    assert entry.hourly_rate == 70.0
    assert entry.is_approved is True
    assert entry.status == "completed"
    assert entry.source == TimeEntrySource.MANUAL
    assert entry.created_at == NOW


def test_tracking_disabled_is_checked_first():
    bad = candidate(start_time=NOW + timedelta(hours=1), end_time=NOW, description="")
    with pytest.raises(TimeTrackingDisabled):
        validate(bad, TimeTrackingPolicy(allow_time_tracking=False, allow_manual_time_submission=False))


def test_manual_submission_disabled_only_affects_manual_entries():
    policy = TimeTrackingPolicy(allow_manual_time_submission=False)
    with pytest.raises(ManualSubmissionDisabled):
        validate(candidate(), policy)

    entry = validate(candidate(source=TimeEntrySource.TIMER), policy)
    assert entry.source == TimeEntrySource.TIMER


def test_start_after_end_is_rejected():
    with pytest.raises(InvalidTimeRange):
        validate(candidate(start_time=NOW - timedelta(hours=1), end_time=NOW - timedelta(hours=2)))


def test_missing_end_defaults_to_now():
    entry = validate(candidate(start_time=NOW - timedelta(minutes=90), end_time=None))
    assert entry.end_time == NOW
    assert entry.duration_minutes == 90


def test_future_start_rejected_unless_allowed():
    future = candidate(start_time=NOW + timedelta(hours=1), end_time=NOW + timedelta(hours=2))
    with pytest.raises(FutureTimeNotAllowed):
        validate(future)

    assert validate(future, TimeTrackingPolicy(allow_future_time=True)).duration_minutes == 60


def test_past_limit_applies_only_when_past_time_disallowed():
    old = candidate(start_time=NOW - timedelta(days=10), end_time=NOW - timedelta(days=10) + timedelta(hours=1))

    with pytest.raises(PastTimeLimitExceeded) as exc_info:
        validate(old, TimeTrackingPolicy(allow_past_time=False, past_time_limit_days=7))
    assert exc_info.value.limit_days == 7

    assert validate(old, TimeTrackingPolicy(allow_past_time=True, past_time_limit_days=7)).duration_minutes == 60
    assert validate(old, TimeTrackingPolicy(allow_past_time=False, past_time_limit_days=10)).duration_minutes == 60


def test_partial_days_count_as_whole_days_for_past_limit():
    start = NOW - timedelta(days=7, minutes=1)
    with pytest.raises(PastTimeLimitExceeded):
        validate(candidate(start_time=start, end_time=start + timedelta(minutes=30)),
                 TimeTrackingPolicy(allow_past_time=False, past_time_limit_days=7))


def test_description_required_for_manual_entries():
    with pytest.raises(DescriptionRequired):
        validate(candidate(description="  "))

    assert validate(candidate(description=""), TimeTrackingPolicy(require_description=False)).description == ""


def test_category_required_when_configured():
    policy = TimeTrackingPolicy(require_category=True)
    with pytest.raises(CategoryRequired):
        validate(candidate(), policy)

    assert validate(candidate(category="meetings"), policy).category == "meetings"


def test_approval_and_billable_flags_follow_policy():
    entry = validate(candidate(is_billable=True),
                     TimeTrackingPolicy(require_approval=True, allow_billable_time=False))

    assert entry.is_approved is False
    assert entry.is_billable is False


def test_explicit_duration_is_rounded_not_recomputed():
    policy = TimeTrackingPolicy(rounding=RoundingRules(enabled=True, increment=15))
    entry = validate(candidate(duration_minutes=37), policy)
    assert entry.duration_minutes == 45
