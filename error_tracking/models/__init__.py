"""Data models for the error tracking service."""

from .api_response import (
    DeleteResponse,
    ErrorEventPage,
    ErrorGroupPage,
    IngestResponse,
    PageMeta,
)
from .error_event import ErrorEvent
from .error_group import (
    REOPENABLE_STATUSES,
    ErrorGroup,
    ErrorGroupFilter,
    ErrorGroupStats,
    ErrorGroupUpdate,
    ErrorStatus,
)
from .error_report import (
    Breadcrumb,
    ErrorLevel,
    ErrorPlatform,
    ErrorReport,
    RequestMeta,
)

__all__ = [
    # Report models
    "ErrorLevel",
    "ErrorPlatform",
    "Breadcrumb",
    "ErrorReport",
    "RequestMeta",
    # Group models
    "ErrorStatus",
    "REOPENABLE_STATUSES",
    "ErrorGroup",
    "ErrorGroupFilter",
    "ErrorGroupUpdate",
    "ErrorGroupStats",
    # Event models
    "ErrorEvent",
    # API response models
    "IngestResponse",
    "PageMeta",
    "ErrorGroupPage",
    "ErrorEventPage",
    "DeleteResponse",
]
