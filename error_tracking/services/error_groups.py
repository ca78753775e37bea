"""
Operator-facing queries and status transitions on error groups.

Manual transitions are unconditional: any status may move to any other.
The only precondition is that the group exists. Every mutation is written
to the audit log.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from error_tracking.models.error_event import ErrorEvent
from error_tracking.models.error_group import (
    ErrorGroup,
    ErrorGroupFilter,
    ErrorGroupStats,
    ErrorGroupUpdate,
    ErrorStatus,
)
from error_tracking.storage.base import ErrorStorage
from error_tracking.utils.logging import get_logger, log_audit_event

logger = get_logger(__name__)


# Window used for the "active today" counter
ACTIVE_WINDOW = timedelta(hours=24)


class GroupNotFoundError(Exception):
    """Raised when an error group (or one of its events) does not exist."""
    pass


class ErrorGroupService:
    """Query and status service over an ErrorStorage."""

    def __init__(self, storage: ErrorStorage, clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ========== Queries ==========

    async def list_groups(self, filters: ErrorGroupFilter) -> Tuple[List[ErrorGroup], int]:
        return await self.storage.list_groups(filters)

    async def get_group(self, group_id: str) -> ErrorGroup:
        """
        Get an error group.

        Raises:
            GroupNotFoundError: If the group does not exist
        """
        group = await self.storage.get_group(group_id)
        if group is None:
            raise GroupNotFoundError(f"Error group {group_id} not found")
        return group

    async def list_events(self, group_id: str, page: int = 1, per_page: int = 20) -> Tuple[List[ErrorEvent], int]:
        """
        List a group's events, newest first.

        Raises:
            GroupNotFoundError: If the group does not exist
        """
        await self.get_group(group_id)
        return await self.storage.list_events(group_id, page, per_page)

    async def get_event(self, group_id: str, event_id: str) -> ErrorEvent:
        """
        Get one event of a group.

        Raises:
            GroupNotFoundError: If the event does not exist or belongs to another group
        """
        event = await self.storage.get_event(event_id)
        if event is None or event.group_id != group_id:
            raise GroupNotFoundError(f"Error event {event_id} not found in group {group_id}")
        return event

    async def get_stats(self) -> ErrorGroupStats:
        return await self.storage.get_stats(self._clock() - ACTIVE_WINDOW)

    # ========== Status transitions ==========

    async def resolve(self, group_id: str, operator: Optional[str] = None) -> ErrorGroup:
        return await self._set_status(group_id, ErrorStatus.RESOLVED, operator)

    async def ignore(self, group_id: str, operator: Optional[str] = None) -> ErrorGroup:
        return await self._set_status(group_id, ErrorStatus.IGNORED, operator)

    async def mute(self, group_id: str, operator: Optional[str] = None) -> ErrorGroup:
        return await self._set_status(group_id, ErrorStatus.MUTED, operator)

    async def reopen(self, group_id: str, operator: Optional[str] = None) -> ErrorGroup:
        return await self._set_status(group_id, ErrorStatus.UNRESOLVED, operator)

    def _status_changes(self, status: ErrorStatus, operator: Optional[str]) -> Dict[str, Any]:
        """Columns written for a status change; only 'resolved' keeps resolver fields."""
        if status == ErrorStatus.RESOLVED:
            return {"status": status, "resolved_at": self._clock(), "resolved_by": operator}
        return {"status": status, "resolved_at": None, "resolved_by": None}

    async def _set_status(self, group_id: str, status: ErrorStatus, operator: Optional[str]) -> ErrorGroup:
        changes = self._status_changes(status, operator)
        group = await self._apply(group_id, changes)
        log_audit_event(
            logger,
            action=f"error.{status.value}",
            resource_id=group_id,
            actor=operator,
            changes={"status": status.value}
        )
        return group

    async def update_group(
        self,
        group_id: str,
        update: ErrorGroupUpdate,
        operator: Optional[str] = None
    ) -> ErrorGroup:
        """
        Apply a partial update.

        Only fields present in the request are written, so an explicit
        ``assignedTo: null`` unassigns while an absent field is left alone.

        Raises:
            GroupNotFoundError: If the group does not exist
        """
        changes: Dict[str, Any] = {}
        audit_changes: Dict[str, Any] = {}

        if "status" in update.model_fields_set and update.status is not None:
            changes.update(self._status_changes(update.status, operator))
            audit_changes["status"] = update.status.value
        if "assigned_to" in update.model_fields_set:
            changes["assigned_to"] = update.assigned_to
            audit_changes["assigned_to"] = update.assigned_to

        if not changes:
            return await self.get_group(group_id)

        group = await self._apply(group_id, changes)
        log_audit_event(
            logger,
            action="error.update",
            resource_id=group_id,
            actor=operator,
            changes=audit_changes
        )
        return group

    async def delete_group(self, group_id: str, operator: Optional[str] = None) -> None:
        """
        Delete a group and its events.

        Raises:
            GroupNotFoundError: If the group does not exist
        """
        if not await self.storage.delete_group(group_id):
            raise GroupNotFoundError(f"Error group {group_id} not found")

        log_audit_event(logger, action="error.delete", resource_id=group_id, actor=operator)

    async def _apply(self, group_id: str, changes: Dict[str, Any]) -> ErrorGroup:
        group = await self.storage.update_group(group_id, changes)
        if group is None:
            raise GroupNotFoundError(f"Error group {group_id} not found")
        return group
