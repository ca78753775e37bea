"""
Ingestion pipeline for raw error reports.

Every report in a batch goes through validation, fingerprinting, the
per-fingerprint rate limiter and a transactional group upsert plus event
insert. Reports are isolated from one another: a report that is invalid,
rate limited or fails to persist is counted and skipped, and the rest of
the batch carries on.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from error_tracking.models.error_event import ErrorEvent
from error_tracking.models.error_report import ErrorReport, RequestMeta
from error_tracking.services.fingerprint import compute_fingerprint
from error_tracking.services.rate_limiter import RateLimiter
from error_tracking.storage.base import ErrorStorage
from error_tracking.utils.logging import get_logger, log_error_with_context
from error_tracking.utils.metrics import IngestionStats, emit_metric, track_persistence
from error_tracking.utils.resilience import (
    CircuitBreaker,
    create_storage_circuit_breaker,
    log_batch_outcome,
)

logger = get_logger(__name__)


MAX_TITLE_LENGTH = 200
TITLE_ELLIPSIS = "..."


def extract_title(message: str) -> str:
    """
    Derive a group title from the first line of an error message.

    Lines longer than 200 characters are cut to 197 characters plus '...'.
    """
    first_line = message.split("\n", 1)[0]
    if len(first_line) > MAX_TITLE_LENGTH:
        return first_line[:MAX_TITLE_LENGTH - len(TITLE_ELLIPSIS)] + TITLE_ELLIPSIS
    return first_line


def derive_culprit(report: ErrorReport) -> Optional[str]:
    """Component when present, else URL, else None."""
    return report.component or report.url or None


@dataclass
class IngestResult:
    """Per-batch outcome counts."""

    received: int = 0
    accepted: int = 0
    invalid: int = 0
    rate_limited: int = 0
    failed: int = 0


class IngestionService:
    """
    Orchestrates validation, fingerprinting, rate limiting and persistence.

    The service never raises for a single bad report; the caller always gets
    an IngestResult back.
    """

    def __init__(
        self,
        storage: ErrorStorage,
        rate_limiter: RateLimiter,
        stats: Optional[IngestionStats] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        window_seconds: Optional[int] = None,
        max_per_window: Optional[int] = None,
        persistence_timeout: Optional[float] = None,
        fingerprint_algorithm: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the ingestion service.

        Settings supply any limit left as None.

        Args:
            storage: Error group and event storage
            rate_limiter: Per-fingerprint rate limiter
            stats: Diagnostics collector
            circuit_breaker: Breaker around persistence calls
            window_seconds: Rate limit window length
            max_per_window: Events accepted per fingerprint per window
            persistence_timeout: Upper bound on one report's persistence, in seconds
            fingerprint_algorithm: 'fnv1a' or 'legacy'
            clock: Source of the current UTC time
        """
        from error_tracking.config import settings

        self.storage = storage
        self.rate_limiter = rate_limiter
        self.stats = stats if stats is not None else IngestionStats()
        self.circuit_breaker = circuit_breaker or create_storage_circuit_breaker(storage.unavailable_errors)
        self.window_seconds = window_seconds or settings.rate_limit_window_seconds
        self.max_per_window = max_per_window or settings.rate_limit_max_per_window
        self.persistence_timeout = persistence_timeout or settings.persistence_timeout_seconds
        self.fingerprint_algorithm = fingerprint_algorithm or settings.fingerprint_algorithm
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def ingest(self, reports: List[Any], meta: Optional[RequestMeta] = None) -> IngestResult:
        """
        Process a batch of raw reports.

        Args:
            reports: Decoded JSON values, one per report
            meta: Request attributes copied onto every event

        Returns:
            IngestResult with per-outcome counts
        """
        meta = meta or RequestMeta()
        result = IngestResult(received=len(reports))
        self.stats.record_batch(len(reports))

        for raw in reports:
            try:
                report = ErrorReport.model_validate(raw)
            except ValidationError as e:
                result.invalid += 1
                self.stats.record_invalid()
                logger.debug(f"Dropped invalid error report: {e.error_count()} validation errors")
                continue

            fingerprint = None
            try:
                fingerprint = compute_fingerprint(
                    report.message,
                    report.stack_trace,
                    report.fingerprint,
                    self.fingerprint_algorithm
                )

                if not await self._allow(fingerprint):
                    result.rate_limited += 1
                    self.stats.record_rate_limited(fingerprint)
                    continue

                async with track_persistence(self.stats):
                    await self.circuit_breaker.call(
                        lambda: asyncio.wait_for(
                            self._persist(report, fingerprint, meta),
                            timeout=self.persistence_timeout
                        )
                    )

                result.accepted += 1
                self.stats.record_accepted()

            except Exception as e:
                result.failed += 1
                self.stats.record_failed()
                log_error_with_context(
                    logger,
                    "Failed to ingest error report",
                    e,
                    fingerprint=fingerprint,
                    platform=report.platform.value
                )

        log_batch_outcome(
            total_items=result.received,
            accepted_items=result.accepted,
            invalid_items=result.invalid,
            rate_limited_items=result.rate_limited,
            failed_items=result.failed
        )
        emit_metric("errors.ingest.accepted", result.accepted, received=result.received)

        return result

    async def _allow(self, fingerprint: str) -> bool:
        """Rate limit gate. A failing limiter backend lets the report through."""
        try:
            return await self.rate_limiter.allow(fingerprint, self.window_seconds, self.max_per_window)
        except Exception as e:
            logger.warning(
                f"Rate limiter unavailable, accepting report: {e}",
                extra={"fingerprint": fingerprint}
            )
            return True

    async def _persist(self, report: ErrorReport, fingerprint: str, meta: RequestMeta) -> str:
        """
        Upsert the group and insert the event in one transaction.

        Returns:
            ID of the stored event
        """
        now = self._clock()

        async with self.storage.transaction() as tx:
            group_id = await self.storage.upsert_group(
                tx,
                fingerprint=fingerprint,
                title=extract_title(report.message),
                culprit=derive_culprit(report),
                platform=report.platform,
                level=report.level,
                seen_at=now
            )

            event = ErrorEvent(
                id=str(uuid.uuid4()),
                group_id=group_id,
                message=report.message,
                stack_trace=report.stack_trace,
                platform=report.platform,
                environment=report.environment,
                release=report.release,
                user_id=str(report.user_id) if report.user_id else None,
                user_agent=meta.user_agent,
                ip_address=meta.ip_address,
                url=report.url,
                component=report.component,
                action=report.action,
                breadcrumbs=report.breadcrumbs,
                context=report.context,
                tags=report.tags,
                created_at=now
            )
            event_id = await self.storage.insert_event(tx, event)

        logger.debug(
            "Stored error event",
            extra={"fingerprint": fingerprint, "group_id": group_id, "event_id": event_id}
        )
        return event_id
