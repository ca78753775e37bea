"""Error event data models."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from .base import CamelModel
from .error_report import Breadcrumb, ErrorPlatform


class ErrorEvent(CamelModel):
    """Single stored occurrence of an error, owned by its group."""

    id: str
    group_id: str
    message: str
    stack_trace: Optional[str] = None
    platform: ErrorPlatform
    environment: str = "production"
    release: Optional[str] = None
    user_id: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    url: Optional[str] = None
    component: Optional[str] = None
    action: Optional[str] = None
    breadcrumbs: List[Breadcrumb] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    tags: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime
