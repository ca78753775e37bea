"""
Error report data models.

These models describe the payload clients send to the ingestion endpoint.
Field limits bound the cost of a single report; a report that violates any
of them is dropped by the ingestion service without telling the client.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Optional
from uuid import UUID

from pydantic import Field, StringConstraints

from .base import CamelModel


MAX_MESSAGE_LENGTH = 8192
MAX_STACK_LENGTH = 65536
MAX_BREADCRUMBS = 100
MAX_FINGERPRINT_LENGTH = 64
MAX_TAG_VALUE_LENGTH = 200
MAX_IP_ADDRESS_LENGTH = 64


class ErrorLevel(str, Enum):
    """Severity of an error report."""

    FATAL = "fatal"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Numeric severity, higher is more severe."""
        return _LEVEL_RANKS[self]


_LEVEL_RANKS = {
    ErrorLevel.INFO: 1,
    ErrorLevel.WARNING: 2,
    ErrorLevel.ERROR: 3,
    ErrorLevel.FATAL: 4,
}


class ErrorPlatform(str, Enum):
    """Client platform that produced a report."""

    WEB = "web"
    MOBILE_IOS = "mobile_ios"
    MOBILE_ANDROID = "mobile_android"
    SERVER = "server"


class Breadcrumb(CamelModel):
    """Single entry of the trail leading up to an error."""

    timestamp: str
    category: str = Field(..., max_length=50)
    message: str = Field(..., max_length=1000)
    level: ErrorLevel = ErrorLevel.INFO
    data: Optional[Dict[str, Any]] = None


class ErrorReport(CamelModel):
    """Raw error report received from a client. Unknown fields are ignored."""

    message: str = Field(..., max_length=MAX_MESSAGE_LENGTH)
    stack_trace: Optional[str] = Field(None, max_length=MAX_STACK_LENGTH)
    level: ErrorLevel = ErrorLevel.ERROR
    platform: ErrorPlatform
    environment: str = Field("production", max_length=50)
    release: Optional[str] = Field(None, max_length=100)
    user_id: Optional[UUID] = None
    url: Optional[str] = Field(None, max_length=2048)
    component: Optional[str] = Field(None, max_length=200)
    action: Optional[str] = Field(None, max_length=200)
    breadcrumbs: List[Breadcrumb] = Field(default_factory=list, max_length=MAX_BREADCRUMBS)
    context: Dict[str, Any] = Field(default_factory=dict)
    tags: Dict[str, Annotated[str, StringConstraints(max_length=MAX_TAG_VALUE_LENGTH)]] = Field(
        default_factory=dict
    )
    fingerprint: Optional[str] = Field(None, max_length=MAX_FINGERPRINT_LENGTH)


class RequestMeta(CamelModel):
    """Request-level attributes copied onto every event of a batch."""

    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
