"""
Error tracking REST API endpoints.

The ingestion endpoint is public and always answers 202, whatever happens
to the reports. The operator endpoints require the admin API key.
"""

import ipaddress
import json
import math
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Header, Query, Request

from error_tracking.config import settings
from error_tracking.models.api_response import (
    DeleteResponse,
    ErrorEventPage,
    ErrorGroupPage,
    IngestResponse,
    PageMeta,
)
from error_tracking.models.error_event import ErrorEvent
from error_tracking.models.error_group import (
    ErrorGroup,
    ErrorGroupFilter,
    ErrorGroupStats,
    ErrorGroupUpdate,
    ErrorStatus,
)
from error_tracking.models.error_report import (
    MAX_IP_ADDRESS_LENGTH,
    ErrorLevel,
    ErrorPlatform,
    RequestMeta,
)
from error_tracking.services.error_groups import ErrorGroupService, GroupNotFoundError
from error_tracking.services.ingestion import IngestionService
from error_tracking.services.rate_limiter import get_rate_limiter
from error_tracking.storage import get_error_storage
from error_tracking.utils.logging import get_logger
from error_tracking.utils.metrics import IngestionStats

logger = get_logger(__name__)

router = APIRouter(prefix="/api/errors", tags=["errors"])

# Initialize services
storage = get_error_storage()
rate_limiter = get_rate_limiter()
stats = IngestionStats()
ingestion_service = IngestionService(storage, rate_limiter, stats=stats)
group_service = ErrorGroupService(storage)


async def verify_api_key(x_api_key: str = Header(None)) -> None:
    """
    Verify API key for operator endpoints.

    Raises:
        HTTPException: If API key is invalid or missing
    """
    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required")

    if x_api_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


async def require_enabled() -> None:
    """Hide the operator API while error tracking is switched off."""
    if not settings.error_tracking_enabled:
        raise HTTPException(status_code=404, detail="Not found")


operator_dependencies = [Depends(require_enabled), Depends(verify_api_key)]


def client_ip(request: Request) -> Optional[str]:
    """
    First X-Forwarded-For entry, else the peer address.

    The forwarded entry is client controlled, so it is only used when it
    parses as an IP address that fits the ip_address column.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        try:
            address = str(ipaddress.ip_address(first))
        except ValueError:
            logger.debug("Ignoring unparseable X-Forwarded-For entry")
        else:
            if len(address) <= MAX_IP_ADDRESS_LENGTH:
                return address
    return request.client.host if request.client else None


def _non_finite_to_none(constant: str) -> None:
    """JSON columns cannot hold NaN or Infinity, so they decode as null."""
    return None


def _finite_float(literal: str) -> Optional[float]:
    value = float(literal)
    return value if math.isfinite(value) else None


def _coerce_batch(payload: Any) -> List[Any]:
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list):
        return payload
    return []


# ========== Ingestion ==========

@router.post("", status_code=202, response_model=IngestResponse)
async def ingest_errors(
    request: Request,
    user_agent: Optional[str] = Header(None)
) -> IngestResponse:
    """
    Receive one error report or an array of them.

    The response is always 202 with the number of stored reports. Invalid,
    rate limited and failed reports are dropped without telling the client.
    """
    if not settings.error_tracking_enabled:
        return IngestResponse(accepted=0)

    try:
        body = await request.body()
        try:
            payload = json.loads(
                body,
                parse_constant=_non_finite_to_none,
                parse_float=_finite_float
            )
        except (ValueError, UnicodeDecodeError):
            logger.debug("Dropped error batch with malformed JSON body")
            return IngestResponse(accepted=0)

        reports = _coerce_batch(payload)
        if not reports:
            return IngestResponse(accepted=0)

        meta = RequestMeta(user_agent=user_agent, ip_address=client_ip(request))
        result = await ingestion_service.ingest(reports, meta)
        return IngestResponse(accepted=result.accepted)

    except Exception as e:
        logger.error(f"Error handling error report batch: {e}", exc_info=True)
        return IngestResponse(accepted=0)


# ========== Operator queries ==========

@router.get("", response_model=ErrorGroupPage, dependencies=operator_dependencies)
async def list_error_groups(
    status: Optional[ErrorStatus] = None,
    level: Optional[ErrorLevel] = None,
    platform: Optional[ErrorPlatform] = None,
    search: Optional[str] = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100, alias="perPage")
) -> ErrorGroupPage:
    """
    List error groups, most recently seen first.
    """
    filters = ErrorGroupFilter(
        status=status,
        level=level,
        platform=platform,
        search=search,
        page=page,
        per_page=per_page
    )
    try:
        groups, total = await group_service.list_groups(filters)
    except Exception as e:
        logger.error(f"Error listing error groups: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    return ErrorGroupPage(data=groups, meta=PageMeta.build(page, per_page, total))


@router.get("/stats", response_model=ErrorGroupStats, dependencies=operator_dependencies)
async def get_error_stats() -> ErrorGroupStats:
    """Unresolved, fatal and active-today counters."""
    try:
        return await group_service.get_stats()
    except Exception as e:
        logger.error(f"Error computing error stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/diagnostics", dependencies=operator_dependencies)
async def get_ingestion_diagnostics() -> Dict[str, Any]:
    """Ingestion counters of this process, including rate-limit drops per fingerprint."""
    summary = stats.get_summary()
    summary["circuit_breaker"] = ingestion_service.circuit_breaker.get_state().value
    return summary


@router.get("/{group_id}", response_model=ErrorGroup, dependencies=operator_dependencies)
async def get_error_group(group_id: str) -> ErrorGroup:
    try:
        return await group_service.get_group(group_id)
    except GroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting error group {group_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/{group_id}/events", response_model=ErrorEventPage, dependencies=operator_dependencies)
async def list_error_events(
    group_id: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100, alias="perPage")
) -> ErrorEventPage:
    """
    List the events of a group, newest first.
    """
    try:
        events, total = await group_service.list_events(group_id, page, per_page)
    except GroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error listing events of group {group_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    return ErrorEventPage(data=events, meta=PageMeta.build(page, per_page, total))


@router.get(
    "/{group_id}/events/{event_id}",
    response_model=ErrorEvent,
    dependencies=operator_dependencies
)
async def get_error_event(group_id: str, event_id: str) -> ErrorEvent:
    try:
        return await group_service.get_event(group_id, event_id)
    except GroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting event {event_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


# ========== Operator mutations ==========

@router.patch("/{group_id}", response_model=ErrorGroup, dependencies=operator_dependencies)
async def update_error_group(
    group_id: str,
    update: ErrorGroupUpdate,
    x_operator_id: Optional[str] = Header(None)
) -> ErrorGroup:
    """
    Change the status and/or assignee of a group.

    Fields absent from the body are left untouched; ``assignedTo: null``
    unassigns.
    """
    try:
        return await group_service.update_group(group_id, update, operator=x_operator_id)
    except GroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error updating error group {group_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.delete("/{group_id}", response_model=DeleteResponse, dependencies=operator_dependencies)
async def delete_error_group(
    group_id: str,
    x_operator_id: Optional[str] = Header(None)
) -> DeleteResponse:
    """Delete a group together with all of its events."""
    try:
        await group_service.delete_group(group_id, operator=x_operator_id)
    except GroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error deleting error group {group_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    return DeleteResponse(deleted=True)


async def _transition(action: str, group_id: str, operator: Optional[str]) -> ErrorGroup:
    handler = getattr(group_service, action)
    try:
        return await handler(group_id, operator=operator)
    except GroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error applying {action} to error group {group_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/{group_id}/resolve", response_model=ErrorGroup, dependencies=operator_dependencies)
async def resolve_error_group(group_id: str, x_operator_id: Optional[str] = Header(None)) -> ErrorGroup:
    return await _transition("resolve", group_id, x_operator_id)


@router.post("/{group_id}/ignore", response_model=ErrorGroup, dependencies=operator_dependencies)
async def ignore_error_group(group_id: str, x_operator_id: Optional[str] = Header(None)) -> ErrorGroup:
    return await _transition("ignore", group_id, x_operator_id)


@router.post("/{group_id}/mute", response_model=ErrorGroup, dependencies=operator_dependencies)
async def mute_error_group(group_id: str, x_operator_id: Optional[str] = Header(None)) -> ErrorGroup:
    return await _transition("mute", group_id, x_operator_id)


@router.post("/{group_id}/reopen", response_model=ErrorGroup, dependencies=operator_dependencies)
async def reopen_error_group(group_id: str, x_operator_id: Optional[str] = Header(None)) -> ErrorGroup:
    return await _transition("reopen", group_id, x_operator_id)
