"""API response data models."""

import math
from typing import List

from .base import CamelModel
from .error_event import ErrorEvent
from .error_group import ErrorGroup


class IngestResponse(CamelModel):
    """Acknowledgement returned by the ingestion endpoint."""

    accepted: int


class PageMeta(CamelModel):
    """Pagination metadata."""

    page: int
    per_page: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, per_page: int, total: int) -> "PageMeta":
        return cls(
            page=page,
            per_page=per_page,
            total=total,
            total_pages=math.ceil(total / per_page) if per_page else 0,
        )


class ErrorGroupPage(CamelModel):
    """Page of error groups."""

    data: List[ErrorGroup]
    meta: PageMeta


class ErrorEventPage(CamelModel):
    """Page of error events."""

    data: List[ErrorEvent]
    meta: PageMeta


class DeleteResponse(CamelModel):
    """Result of deleting an error group."""

    deleted: bool
