"""
Time Entry Service - Manual time submission and approval.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from sprintflow.domain.errors import EntryApproved, InvalidTimeRange, NotFoundError, ValidationError
from sprintflow.domain.models import (
    TimeEntry, TimeEntryCandidate, TimeEntryPatch, TimeEntrySource, TimeTrackingPolicy,
)
from sprintflow.infra.repository import TimeEntryRepository, SettingsRepository, UserRepository
from sprintflow.services.time_entry_validator import TimeEntryValidator, apply_rounding
from sprintflow.utils import utcnow, whole_minutes

logger = logging.getLogger(__name__)

REVIEW_ACTIONS = ("approve", "reject")


class TimeEntryService:

    def __init__(self, entry_repo: Optional[TimeEntryRepository] = None,
                 settings_repo: Optional[SettingsRepository] = None,
                 user_repo: Optional[UserRepository] = None,
                 validator: Optional[TimeEntryValidator] = None,
                 default_policy: Optional[TimeTrackingPolicy] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.entry_repo = entry_repo or TimeEntryRepository()
        self.settings_repo = settings_repo or SettingsRepository()
        self.user_repo = user_repo or UserRepository()
        self.validator = validator or TimeEntryValidator()
        self.default_policy = default_policy
        self.clock = clock

    async def create_time_entry(self, candidate: TimeEntryCandidate) -> TimeEntry:
        """
        Validate and persist a manually submitted time entry.

        Raises:
            ValidationError subclass when the policy rejects the entry
        """
        candidate = candidate.model_copy(update={"source": TimeEntrySource.MANUAL})
        policy = await self.settings_repo.resolve(
            candidate.organization_id, candidate.project_id, self.default_policy
        )
        user_rate = await self.user_repo.get_billing_rate(candidate.user_id)

        entry = self.validator.validate(candidate, policy, user_rate=user_rate, now=self.clock())
        entry = await self.entry_repo.create(entry)
        logger.info(f"Time entry {entry.id} created for user {entry.user_id}: {entry.duration_minutes} min")
        return entry

    async def update_time_entry(self, entry_id: int, organization_id: int,
                                patch: TimeEntryPatch) -> TimeEntry:
        """
        Edit an unapproved time entry.

        Changing start or end recomputes the duration from the new interval
        (rounded per policy); an explicit duration is otherwise kept.

        Raises:
            NotFoundError: No such entry in this organization
            EntryApproved: The entry was approved and is frozen
            InvalidTimeRange: The edit puts the start after the end
        """
        entry = await self._require_entry(entry_id, organization_id)
        if entry.is_approved:
            raise EntryApproved()

        values = patch.changes()
        if not values:
            return entry

        policy = await self.settings_repo.resolve(organization_id, entry.project_id, self.default_policy)
        if "start_time" in values or "end_time" in values:
            start = values.get("start_time", entry.start_time)
            end = values.get("end_time", entry.end_time)
            if start > end:
                raise InvalidTimeRange()
            values["duration_minutes"] = apply_rounding(
                whole_minutes((end - start).total_seconds()), policy.rounding
            )
        if "is_billable" in values:
            values["is_billable"] = values["is_billable"] and policy.allow_billable_time

        # Conditional on is_approved, so an approval racing this edit wins
        if not await self.entry_repo.update_unapproved(entry_id, organization_id, values):
            await self._require_entry(entry_id, organization_id)
            raise EntryApproved()

        logger.info(f"Time entry {entry_id} updated: {', '.join(sorted(values))}")
        return await self._require_entry(entry_id, organization_id)

    async def delete_time_entry(self, entry_id: int, organization_id: int) -> None:
        """
        Delete an unapproved time entry.

        Raises:
            NotFoundError: No such entry in this organization
            EntryApproved: The entry was approved and is frozen
        """
        entry = await self._require_entry(entry_id, organization_id)
        if entry.is_approved:
            raise EntryApproved("Cannot delete approved time entry")

        if not await self.entry_repo.delete_unapproved(entry_id, organization_id):
            await self._require_entry(entry_id, organization_id)
            raise EntryApproved("Cannot delete approved time entry")
        logger.info(f"Time entry {entry_id} deleted")

    async def _require_entry(self, entry_id: int, organization_id: int) -> TimeEntry:
        entry = await self.entry_repo.get_by_id(entry_id, organization_id)
        if entry is None:
            raise NotFoundError("Time entry not found")
        return entry

    async def review_entries(self, entry_ids: List[int], approver_id: int, action: str) -> int:
        """
        Approve or reject time entries.

        Returns:
            Number of entries modified
        """
        if not entry_ids:
            raise ValidationError("Time entry IDs are required")
        if action not in REVIEW_ACTIONS:
            raise ValidationError('Invalid action. Must be "approve" or "reject"')

        modified = await self.entry_repo.set_approval(
            entry_ids, approved=(action == "approve"), approver_id=approver_id, approved_at=self.clock()
        )
        verb = "Approved" if action == "approve" else "Rejected"
        logger.info(f"{verb} {modified} time entries by user {approver_id}")
        return modified
