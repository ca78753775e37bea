"""
Ingestion diagnostics and metric emission.

This module provides metrics tracking for:
- Reports received, dropped as invalid, rate limited, failed and accepted
- Rate-limit drops per fingerprint
- Persistence latency

None of these numbers are ever returned to reporting clients; they exist
for operators only.
"""

import time
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from error_tracking.utils.logging import get_logger

logger = get_logger(__name__)


class IngestionStats:
    """
    Collects counters across all ingestion batches of a process.

    Tracks:
    - Outcome counts per report
    - Fingerprints dropped by the rate limiter
    - Persistence call latency
    """

    # Cap on the number of latency samples kept for the summary
    MAX_LATENCY_SAMPLES = 1000
    # Fingerprints kept in the drop counter once it is pruned
    MAX_TRACKED_FINGERPRINTS = 1000

    def __init__(self):
        self.started_at: datetime = datetime.now(timezone.utc)

        self.batches: int = 0
        self.received: int = 0
        self.invalid: int = 0
        self.rate_limited: int = 0
        self.failed: int = 0
        self.accepted: int = 0

        self.rate_limited_by_fingerprint: Counter = Counter()
        self.persistence_latencies: List[float] = []

    def record_batch(self, size: int) -> None:
        """
        Record a received batch.

        Args:
            size: Number of reports in the batch
        """
        self.batches += 1
        self.received += size

    def record_invalid(self) -> None:
        """Record a report dropped by validation."""
        self.invalid += 1

    def record_rate_limited(self, fingerprint: str) -> None:
        """
        Record a report dropped by the rate limiter.

        Args:
            fingerprint: Fingerprint of the dropped report
        """
        self.rate_limited += 1
        self.rate_limited_by_fingerprint[fingerprint] += 1
        if len(self.rate_limited_by_fingerprint) > 2 * self.MAX_TRACKED_FINGERPRINTS:
            self.rate_limited_by_fingerprint = Counter(
                dict(self.rate_limited_by_fingerprint.most_common(self.MAX_TRACKED_FINGERPRINTS))
            )

    def record_failed(self) -> None:
        """Record a report whose processing raised."""
        self.failed += 1

    def record_accepted(self) -> None:
        """Record a report stored as an event."""
        self.accepted += 1

    def record_persistence_latency(self, duration_ms: float) -> None:
        """
        Record the duration of one group upsert + event insert.

        Args:
            duration_ms: Duration in milliseconds
        """
        self.persistence_latencies.append(duration_ms)
        if len(self.persistence_latencies) > self.MAX_LATENCY_SAMPLES:
            del self.persistence_latencies[0]

    def get_summary(self, top_fingerprints: int = 10) -> Dict[str, Any]:
        """
        Get summary of collected counters.

        Args:
            top_fingerprints: Number of most rate-limited fingerprints to include

        Returns:
            Dictionary of counters
        """
        summary: Dict[str, Any] = {
            "started_at": self.started_at.isoformat(),
            "batches": self.batches,
            "received": self.received,
            "invalid": self.invalid,
            "rate_limited": self.rate_limited,
            "failed": self.failed,
            "accepted": self.accepted,
            "top_rate_limited": [
                {"fingerprint": fingerprint, "dropped": count}
                for fingerprint, count in self.rate_limited_by_fingerprint.most_common(top_fingerprints)
            ],
        }

        if self.persistence_latencies:
            latencies = self.persistence_latencies
            summary["persistence_latency"] = {
                "count": len(latencies),
                "min_ms": round(min(latencies), 2),
                "max_ms": round(max(latencies), 2),
                "avg_ms": round(sum(latencies) / len(latencies), 2),
            }

        return summary

    def reset(self) -> None:
        """Reset all counters."""
        self.__init__()


@asynccontextmanager
async def track_persistence(stats: Optional[IngestionStats]):
    """
    Context manager to time a persistence call.

    Usage:
        async with track_persistence(stats):
            await storage.insert_event(tx, event)

    Args:
        stats: Stats collector (optional)

    Yields:
        None
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        if stats is not None:
            stats.record_persistence_latency((time.perf_counter() - start_time) * 1000)


def emit_metric(metric_name: str, value: float, **tags: Any) -> None:
    """
    Emit a metric.

    Metrics are written as structured log lines so any log-based
    collector can pick them up.

    Args:
        metric_name: Metric name
        value: Metric value
        **tags: Metric tags/labels
    """
    logger.info(
        f"Metric: {metric_name}",
        extra={
            "metric_name": metric_name,
            "metric_value": value,
            "metric_tags": tags,
        }
    )
