"""
Tests for manual time entry submission and the approval workflow.
"""

from datetime import datetime, timedelta

import pytest

from sprintflow.domain.errors import (
    EntryApproved, InvalidTimeRange, ManualSubmissionDisabled, NotFoundError, ValidationError,
)
from sprintflow.domain.models import RoundingRules, TimeEntrySource, TimeTrackingPolicy
from sprintflow.engine import WorkEngine
from sprintflow.infra.repository import SettingsRepository, TimeEntryRepository

ORG_ID = 1
PROJECT_ID = 10
T0 = datetime(2026, 3, 2, 9, 0, 0)


def payload(**overrides):
    values = {
        "user_id": 1,
        "organization_id": ORG_ID,
        "project_id": PROJECT_ID,
        "description": "Backlog grooming",
        "start_time": T0 - timedelta(hours=3),
        "end_time": T0 - timedelta(hours=1, minutes=30),
    }
    values.update(overrides)
    return values


@pytest.mark.asyncio
async def test_create_returns_wire_shape(engine):
    wire = await engine.create_time_entry(payload(task_id=7))

    assert set(wire) == {
        "id", "user", "project", "task", "startTime", "endTime",
        "durationMinutes", "isBillable", "hourlyRate", "status", "isApproved",
    }
    assert wire["durationMinutes"] == 90
    assert wire["task"] == 7
    assert wire["project"] == PROJECT_ID
    assert wire["status"] == "completed"


@pytest.mark.asyncio
async def test_submitted_entries_are_always_manual(engine, db_session):
    wire = await engine.create_time_entry(payload(source=TimeEntrySource.TIMER.value))

    stored = await TimeEntryRepository(session=db_session).get_by_id(wire["id"])
    assert stored.source == TimeEntrySource.MANUAL


@pytest.mark.asyncio
async def test_project_policy_overrides_organization_policy(engine, db_session):
    settings = SettingsRepository(session=db_session)
    await settings.save(ORG_ID, None, TimeTrackingPolicy(allow_manual_time_submission=False))
    await settings.save(ORG_ID, PROJECT_ID, TimeTrackingPolicy(require_approval=True))

    wire = await engine.create_time_entry(payload())
    assert wire["isApproved"] is False

    with pytest.raises(ManualSubmissionDisabled):
        await engine.create_time_entry(payload(project_id=PROJECT_ID + 1))


@pytest.mark.asyncio
async def test_default_policy_used_when_nothing_stored(db_session, clock):
    work_engine = WorkEngine(
        session=db_session, clock=clock, default_policy=TimeTrackingPolicy(default_hourly_rate=55.0)
    )
    wire = await work_engine.create_time_entry(payload())

    assert wire["hourlyRate"] == 55.0


@pytest.mark.asyncio
async def test_settings_save_replaces_existing_row(db_session):
    settings = SettingsRepository(session=db_session)
    await settings.save(ORG_ID, None, TimeTrackingPolicy(max_session_hours=4))
    await settings.save(ORG_ID, None, TimeTrackingPolicy(max_session_hours=6))

    assert (await settings.resolve(ORG_ID, PROJECT_ID)).max_session_hours == 6


@pytest.mark.asyncio
async def test_user_billing_rate_applies_to_manual_entries(engine, factory):
    user = await factory.user(billing_rate=95.0)

    wire = await engine.create_time_entry(payload(user_id=user.id))

    assert wire["hourlyRate"] == 95.0


@pytest.mark.asyncio
async def test_review_approves_and_rejects(engine, db_session, clock):
    await SettingsRepository(session=db_session).save(ORG_ID, None, TimeTrackingPolicy(require_approval=True))
    first = await engine.create_time_entry(payload())
    second = await engine.create_time_entry(payload(description="Retro"))
    entries = TimeEntryRepository(session=db_session)

    clock.advance(hours=1)
    approved = await engine.review_time_entries([first["id"], second["id"]], approver_id=42, action="approve")

    assert approved == 2
    stored = await entries.get_by_id(first["id"])
    assert stored.is_approved is True
    assert stored.approved_by == 42
    assert stored.approved_at == clock()

    rejected = await engine.review_time_entries([second["id"]], approver_id=42, action="reject")
    assert rejected == 1
    assert (await entries.get_by_id(second["id"])).is_approved is False


@pytest.mark.asyncio
async def test_review_counts_only_existing_entries(engine):
    wire = await engine.create_time_entry(payload())

    assert await engine.review_time_entries([wire["id"], 9999], approver_id=1, action="approve") == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("ids, action", [
    ([], "approve"),
    ([1], "archive"),
])
async def test_review_rejects_bad_requests(engine, ids, action):
    with pytest.raises(ValidationError):
        await engine.review_time_entries(ids, approver_id=1, action=action)


@pytest.mark.asyncio
async def test_entries_listed_per_user_newest_first(engine, db_session):
    await engine.create_time_entry(payload(start_time=T0 - timedelta(days=2), end_time=T0 - timedelta(days=2) + timedelta(hours=1)))
    await engine.create_time_entry(payload())
    await engine.create_time_entry(payload(user_id=2))

    listed = await TimeEntryRepository(session=db_session).get_by_user(1, ORG_ID)

    assert len(listed) == 2
    assert listed[0].start_time > listed[1].start_time


async def pending_entry(engine, db_session, policy=None, **overrides):
    """Create an entry that still awaits approval, so it can be edited"""
    await SettingsRepository(session=db_session).save(
        ORG_ID, None, policy or TimeTrackingPolicy(require_approval=True)
    )
    return await engine.create_time_entry(payload(**overrides))


@pytest.mark.asyncio
async def test_edit_recomputes_duration_when_interval_changes(engine, db_session):
    wire = await pending_entry(engine, db_session)

    updated = await engine.update_time_entry(wire["id"], ORG_ID, {
        "end_time": T0 - timedelta(minutes=50),
        "description": "Grooming and estimation",
    })

    assert updated["durationMinutes"] == 130
    assert updated["endTime"] == (T0 - timedelta(minutes=50)).isoformat()
    stored = await TimeEntryRepository(session=db_session).get_by_id(wire["id"])
    assert stored.description == "Grooming and estimation"


@pytest.mark.asyncio
async def test_edit_applies_rounding_to_recomputed_duration(engine, db_session):
    policy = TimeTrackingPolicy(require_approval=True, rounding=RoundingRules(enabled=True, increment=15))
    wire = await pending_entry(engine, db_session, policy=policy)

    updated = await engine.update_time_entry(wire["id"], ORG_ID, {"start_time": T0 - timedelta(minutes=127)})

    assert updated["durationMinutes"] == 45


@pytest.mark.asyncio
async def test_edit_keeps_explicit_duration_without_interval_change(engine, db_session):
    wire = await pending_entry(engine, db_session)

    updated = await engine.update_time_entry(wire["id"], ORG_ID, {"duration_minutes": 75, "is_billable": False})

    assert updated["durationMinutes"] == 75
    assert updated["isBillable"] is False


@pytest.mark.asyncio
async def test_edit_rejects_inverted_interval(engine, db_session):
    wire = await pending_entry(engine, db_session)

    with pytest.raises(InvalidTimeRange):
        await engine.update_time_entry(wire["id"], ORG_ID, {"start_time": T0})


@pytest.mark.asyncio
async def test_approved_entry_cannot_be_edited_or_deleted(engine, db_session):
    wire = await engine.create_time_entry(payload())
    assert wire["isApproved"] is True

    with pytest.raises(EntryApproved, match="Cannot modify approved time entry"):
        await engine.update_time_entry(wire["id"], ORG_ID, {"description": "Rewritten"})
    with pytest.raises(EntryApproved, match="Cannot delete approved time entry"):
        await engine.delete_time_entry(wire["id"], ORG_ID)

    stored = await TimeEntryRepository(session=db_session).get_by_id(wire["id"])
    assert stored.description == "Backlog grooming"


@pytest.mark.asyncio
async def test_entry_approved_after_review_is_frozen(engine, db_session):
    wire = await pending_entry(engine, db_session)
    await engine.review_time_entries([wire["id"]], approver_id=42, action="approve")

    with pytest.raises(EntryApproved):
        await engine.update_time_entry(wire["id"], ORG_ID, {"notes": "late edit"})


@pytest.mark.asyncio
async def test_conditional_write_refuses_approved_entry(engine, db_session):
    entries = TimeEntryRepository(session=db_session)
    wire = await engine.create_time_entry(payload())

    assert await entries.update_unapproved(wire["id"], ORG_ID, {"description": "x"}) is False
    assert await entries.delete_unapproved(wire["id"], ORG_ID) is False


@pytest.mark.asyncio
async def test_delete_removes_pending_entry(engine, db_session):
    wire = await pending_entry(engine, db_session)

    await engine.delete_time_entry(wire["id"], ORG_ID)

    assert await TimeEntryRepository(session=db_session).get_by_id(wire["id"]) is None
    with pytest.raises(NotFoundError):
        await engine.delete_time_entry(wire["id"], ORG_ID)


@pytest.mark.asyncio
async def test_entries_of_another_organization_are_not_found(engine, db_session):
    wire = await pending_entry(engine, db_session)

    with pytest.raises(NotFoundError):
        await engine.update_time_entry(wire["id"], ORG_ID + 1, {"description": "Not yours"})
    with pytest.raises(NotFoundError):
        await engine.delete_time_entry(wire["id"], ORG_ID + 1)


@pytest.mark.asyncio
async def test_edit_rejects_null_interval(engine, db_session):
    wire = await pending_entry(engine, db_session)

    with pytest.raises(ValidationError):
        await engine.update_time_entry(wire["id"], ORG_ID, {"start_time": None})
