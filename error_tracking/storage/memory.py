"""
In-process storage for error groups and events.

Used when no database is configured and throughout the tests. Group
upserts are serialized per fingerprint through an arena of asyncio locks;
the lock is held until the surrounding transaction ends, so a rollback can
restore the group snapshot without clobbering anyone else's update.
"""

import asyncio
import itertools
import zlib
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from error_tracking.models.error_event import ErrorEvent
from error_tracking.models.error_group import (
    REOPENABLE_STATUSES,
    ErrorGroup,
    ErrorGroupFilter,
    ErrorGroupStats,
    ErrorStatus,
)
from error_tracking.models.error_report import ErrorLevel, ErrorPlatform
from error_tracking.storage.base import ErrorStorage, StorageError, check_update_fields
from error_tracking.utils.logging import get_logger

logger = get_logger(__name__)


class _MemoryTransaction:
    """Locks held and undo actions recorded by one unit of work."""

    def __init__(self):
        self.locks: List[asyncio.Lock] = []
        self.undo: List[Callable[[], None]] = []


class InMemoryErrorStorage(ErrorStorage):
    """
    Error storage kept in process memory.

    A transaction locks at most one fingerprint shard in practice (one
    group upsert per report), so shard locks are never taken in
    conflicting orders.
    """

    def __init__(self, lock_shards: int = 64, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the store.

        Args:
            lock_shards: Number of fingerprint locks in the arena
            clock: Source of the current UTC time for updated_at stamps
        """
        if lock_shards < 1:
            raise ValueError("lock_shards must be at least 1")

        self._locks = [asyncio.Lock() for _ in range(lock_shards)]
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._group_ids = itertools.count(1)

        self._groups: Dict[str, ErrorGroup] = {}
        self._group_id_by_fingerprint: Dict[str, str] = {}
        self._events: Dict[str, ErrorEvent] = {}
        self._event_ids_by_group: Dict[str, List[str]] = defaultdict(list)

    def _lock_for(self, fingerprint: str) -> asyncio.Lock:
        return self._locks[zlib.crc32(fingerprint.encode("utf-8", errors="surrogatepass")) % len(self._locks)]

    @asynccontextmanager
    async def transaction(self):
        tx = _MemoryTransaction()
        try:
            yield tx
        except BaseException:
            for undo in reversed(tx.undo):
                undo()
            raise
        finally:
            for lock in reversed(tx.locks):
                lock.release()

    async def _hold(self, tx: _MemoryTransaction, fingerprint: str) -> None:
        lock = self._lock_for(fingerprint)
        if lock not in tx.locks:
            await lock.acquire()
            tx.locks.append(lock)

    # ========== Ingestion writes ==========

    async def upsert_group(
        self,
        tx: _MemoryTransaction,
        fingerprint: str,
        title: str,
        culprit: Optional[str],
        platform: ErrorPlatform,
        level: ErrorLevel,
        seen_at: datetime
    ) -> str:
        await self._hold(tx, fingerprint)

        group_id = self._group_id_by_fingerprint.get(fingerprint)

        if group_id is None:
            group_id = str(next(self._group_ids))
            self._groups[group_id] = ErrorGroup(
                id=group_id,
                fingerprint=fingerprint,
                title=title,
                culprit=culprit,
                platform=platform,
                level=level,
                status=ErrorStatus.UNRESOLVED,
                events_count=1,
                first_seen_at=seen_at,
                last_seen_at=seen_at,
                created_at=seen_at,
                updated_at=seen_at,
            )
            self._group_id_by_fingerprint[fingerprint] = group_id
            tx.undo.append(lambda: self._forget_group(group_id))
            logger.debug("Created error group", extra={"fingerprint": fingerprint, "group_id": group_id})
            return group_id

        previous = self._groups[group_id]
        changes: Dict[str, Any] = {
            "events_count": previous.events_count + 1,
            "last_seen_at": max(previous.last_seen_at, seen_at),
            "updated_at": seen_at,
        }
        if previous.status in REOPENABLE_STATUSES:
            changes.update(status=ErrorStatus.UNRESOLVED, resolved_at=None, resolved_by=None)
            logger.info(
                f"Error group reopened from {previous.status.value}",
                extra={"fingerprint": fingerprint, "group_id": group_id}
            )
        if level.rank > previous.level.rank:
            changes["level"] = level

        self._groups[group_id] = previous.model_copy(update=changes)
        tx.undo.append(lambda: self._groups.__setitem__(group_id, previous))
        return group_id

    async def insert_event(self, tx: _MemoryTransaction, event: ErrorEvent) -> str:
        if event.group_id not in self._groups:
            raise StorageError(f"Error group {event.group_id} does not exist")
        if event.id in self._events:
            raise StorageError(f"Duplicate error event id {event.id}")

        self._events[event.id] = event
        self._event_ids_by_group[event.group_id].append(event.id)

        def _undo() -> None:
            self._events.pop(event.id, None)
            ids = self._event_ids_by_group.get(event.group_id)
            if ids and event.id in ids:
                ids.remove(event.id)

        tx.undo.append(_undo)
        return event.id

    def _forget_group(self, group_id: str) -> None:
        group = self._groups.pop(group_id, None)
        if group is not None:
            self._group_id_by_fingerprint.pop(group.fingerprint, None)
        for event_id in self._event_ids_by_group.pop(group_id, []):
            self._events.pop(event_id, None)

    # ========== Operator reads and writes ==========

    async def get_group(self, group_id: str) -> Optional[ErrorGroup]:
        return self._groups.get(group_id)

    async def get_group_by_fingerprint(self, fingerprint: str) -> Optional[ErrorGroup]:
        group_id = self._group_id_by_fingerprint.get(fingerprint)
        return self._groups.get(group_id) if group_id else None

    async def list_groups(self, filters: ErrorGroupFilter) -> Tuple[List[ErrorGroup], int]:
        groups = list(self._groups.values())

        if filters.status:
            groups = [g for g in groups if g.status == filters.status]
        if filters.level:
            groups = [g for g in groups if g.level == filters.level]
        if filters.platform:
            groups = [g for g in groups if g.platform == filters.platform]
        if filters.search:
            needle = filters.search.lower()
            groups = [g for g in groups if needle in g.title.lower()]

        groups.sort(key=lambda g: (g.last_seen_at, int(g.id)), reverse=True)
        return groups[filters.offset:filters.offset + filters.per_page], len(groups)

    async def update_group(self, group_id: str, changes: Dict[str, Any]) -> Optional[ErrorGroup]:
        check_update_fields(changes)

        group = self._groups.get(group_id)
        if group is None:
            return None

        async with self._lock_for(group.fingerprint):
            # Re-read: the group may have changed or gone while waiting
            group = self._groups.get(group_id)
            if group is None:
                return None
            updated = group.model_copy(update={**changes, "updated_at": self._clock()})
            self._groups[group_id] = updated
            return updated

    async def delete_group(self, group_id: str) -> bool:
        group = self._groups.get(group_id)
        if group is None:
            return False

        async with self._lock_for(group.fingerprint):
            if group_id not in self._groups:
                return False
            self._forget_group(group_id)
            return True

    async def get_event(self, event_id: str) -> Optional[ErrorEvent]:
        return self._events.get(event_id)

    async def list_events(self, group_id: str, page: int, per_page: int) -> Tuple[List[ErrorEvent], int]:
        ids = self._event_ids_by_group.get(group_id, [])
        # Newest insert first among equal timestamps
        events = sorted(
            (self._events[event_id] for event_id in reversed(ids)),
            key=lambda e: e.created_at,
            reverse=True,
        )
        offset = (page - 1) * per_page
        return events[offset:offset + per_page], len(events)

    async def get_stats(self, since: datetime) -> ErrorGroupStats:
        groups = list(self._groups.values())
        return ErrorGroupStats(
            unresolved_count=sum(1 for g in groups if g.status == ErrorStatus.UNRESOLVED),
            fatal_count=sum(
                1 for g in groups
                if g.status == ErrorStatus.UNRESOLVED and g.level == ErrorLevel.FATAL
            ),
            active_today=sum(1 for g in groups if g.last_seen_at >= since),
        )
