"""
Storage interface for error groups and events.

This module defines the abstract base class that every storage backend
implements. It covers the two write paths of ingestion (group upsert and
event insert, sharing one transaction) and the read/update paths used by
the operator API.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Type

from error_tracking.models.error_event import ErrorEvent
from error_tracking.models.error_group import ErrorGroup, ErrorGroupFilter, ErrorGroupStats
from error_tracking.models.error_report import ErrorLevel, ErrorPlatform


class StorageError(Exception):
    """Raised when a storage operation fails."""
    pass


# Columns an operator may change on an error group
UPDATABLE_GROUP_FIELDS = frozenset({"status", "resolved_at", "resolved_by", "assigned_to"})


class ErrorStorage(ABC):
    """Base interface for error group and event storage backends."""

    # Exceptions meaning the backend itself is unreachable, as opposed to a
    # problem with one report's data
    unavailable_errors: Tuple[Type[BaseException], ...] = ()

    async def initialize(self) -> None:
        """Open connections and prepare the schema. No-op by default."""

    async def close(self) -> None:
        """Release connections. No-op by default."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager:
        """
        Open a unit of work.

        Writes made through the yielded handle are committed when the block
        exits normally and rolled back when it raises.

        Returns:
            Async context manager yielding a backend-specific handle
        """
        pass

    @abstractmethod
    async def upsert_group(
        self,
        tx: Any,
        fingerprint: str,
        title: str,
        culprit: Optional[str],
        platform: ErrorPlatform,
        level: ErrorLevel,
        seen_at: datetime
    ) -> str:
        """
        Create the group for a fingerprint or record a new occurrence on it.

        Must be atomic under concurrent callers with the same fingerprint:
        exactly one group exists afterwards and no increment is lost. On an
        existing group: events_count += 1, last_seen_at bumped, a resolved
        or ignored group reopens (resolved_at/resolved_by cleared), a muted
        group stays muted, and level is raised if the new one is more severe.

        Args:
            tx: Handle from transaction()
            fingerprint: Group identity
            title: Title used when the group is created
            culprit: Culprit used when the group is created
            platform: Platform used when the group is created
            level: Level of the new occurrence
            seen_at: Time of the occurrence

        Returns:
            Group ID
        """
        pass

    @abstractmethod
    async def insert_event(self, tx: Any, event: ErrorEvent) -> str:
        """
        Append an event to its group.

        Args:
            tx: Handle from transaction()
            event: Event to store

        Returns:
            Event ID
        """
        pass

    @abstractmethod
    async def get_group(self, group_id: str) -> Optional[ErrorGroup]:
        """
        Get a group by ID.

        Returns:
            ErrorGroup if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_group_by_fingerprint(self, fingerprint: str) -> Optional[ErrorGroup]:
        """
        Get a group by fingerprint.

        Returns:
            ErrorGroup if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_groups(self, filters: ErrorGroupFilter) -> Tuple[List[ErrorGroup], int]:
        """
        List groups ordered by last_seen_at descending.

        Args:
            filters: Status/level/platform/title filters and pagination

        Returns:
            Tuple of (page of groups, total matching groups)
        """
        pass

    @abstractmethod
    async def update_group(self, group_id: str, changes: Dict[str, Any]) -> Optional[ErrorGroup]:
        """
        Apply operator changes to a group.

        Args:
            group_id: Group ID
            changes: Subset of UPDATABLE_GROUP_FIELDS

        Returns:
            Updated ErrorGroup, None if the group does not exist
        """
        pass

    @abstractmethod
    async def delete_group(self, group_id: str) -> bool:
        """
        Delete a group and all of its events.

        Returns:
            True if the group existed
        """
        pass

    @abstractmethod
    async def get_event(self, event_id: str) -> Optional[ErrorEvent]:
        """
        Get an event by ID.

        Returns:
            ErrorEvent if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_events(self, group_id: str, page: int, per_page: int) -> Tuple[List[ErrorEvent], int]:
        """
        List the events of a group, newest first.

        Returns:
            Tuple of (page of events, total events of the group)
        """
        pass

    @abstractmethod
    async def get_stats(self, since: datetime) -> ErrorGroupStats:
        """
        Count unresolved groups, unresolved fatal groups and groups seen since ``since``.
        """
        pass


def check_update_fields(changes: Dict[str, Any]) -> None:
    """
    Reject changes to columns operators may not write.

    Raises:
        ValueError: If an unknown field is present
    """
    unknown = set(changes) - UPDATABLE_GROUP_FIELDS
    if unknown:
        raise ValueError(f"Cannot update error group fields: {', '.join(sorted(unknown))}")
