"""Error group data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from .base import CamelModel
from .error_report import ErrorLevel, ErrorPlatform


class ErrorStatus(str, Enum):
    """Lifecycle status of an error group."""

    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"
    IGNORED = "ignored"
    MUTED = "muted"


# Statuses that a new occurrence flips back to unresolved. Muted stays muted.
REOPENABLE_STATUSES = frozenset({ErrorStatus.RESOLVED, ErrorStatus.IGNORED})


class ErrorGroup(CamelModel):
    """Deduplicated issue aggregating every event with the same fingerprint."""

    id: str
    fingerprint: str
    title: str
    culprit: Optional[str] = None
    platform: ErrorPlatform
    level: ErrorLevel
    status: ErrorStatus = ErrorStatus.UNRESOLVED
    events_count: int = 1
    first_seen_at: datetime
    last_seen_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    assigned_to: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ErrorGroupFilter(CamelModel):
    """Filters and pagination for listing error groups."""

    status: Optional[ErrorStatus] = None
    level: Optional[ErrorLevel] = None
    platform: Optional[ErrorPlatform] = None
    search: Optional[str] = Field(None, max_length=200)
    page: int = Field(1, ge=1)
    per_page: int = Field(20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


class ErrorGroupUpdate(CamelModel):
    """Operator update of an error group (status and/or assignee)."""

    status: Optional[ErrorStatus] = None
    assigned_to: Optional[str] = Field(None, max_length=100)


class ErrorGroupStats(CamelModel):
    """Headline counters for the error group overview."""

    unresolved_count: int
    fatal_count: int
    active_today: int
