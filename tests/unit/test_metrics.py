"""
Unit tests for ingestion diagnostics utilities.
"""

import pytest
from datetime import datetime

from error_tracking.utils.metrics import IngestionStats, emit_metric, track_persistence


def test_ingestion_stats_initialization():
    """Test stats start at zero."""
    stats = IngestionStats()

    assert isinstance(stats.started_at, datetime)
    assert stats.batches == 0
    assert stats.received == 0
    assert stats.invalid == 0
    assert stats.rate_limited == 0
    assert stats.failed == 0
    assert stats.accepted == 0
    assert stats.persistence_latencies == []


def test_ingestion_stats_record_batch():
    """Test recording batches."""
    stats = IngestionStats()

    stats.record_batch(3)
    stats.record_batch(2)

    assert stats.batches == 2
    assert stats.received == 5


def test_ingestion_stats_record_outcomes():
    """Test recording per-report outcomes."""
    stats = IngestionStats()

    stats.record_invalid()
    stats.record_failed()
    stats.record_accepted()
    stats.record_accepted()

    assert stats.invalid == 1
    assert stats.failed == 1
    assert stats.accepted == 2


def test_ingestion_stats_record_rate_limited_per_fingerprint():
    """Test rate-limit drops are counted per fingerprint."""
    stats = IngestionStats()

    stats.record_rate_limited("fp_a")
    stats.record_rate_limited("fp_a")
    stats.record_rate_limited("fp_b")

    assert stats.rate_limited == 3
    assert stats.rate_limited_by_fingerprint["fp_a"] == 2
    assert stats.rate_limited_by_fingerprint["fp_b"] == 1


def test_ingestion_stats_tracked_fingerprints_are_pruned():
    """Test the per-fingerprint counter keeps only the heaviest droppers."""
    stats = IngestionStats()
    stats.MAX_TRACKED_FINGERPRINTS = 3

    for _ in range(5):
        stats.record_rate_limited("hot")
    for i in range(20):
        stats.record_rate_limited(f"fp_{i}")

    assert stats.rate_limited == 25
    assert len(stats.rate_limited_by_fingerprint) <= 2 * stats.MAX_TRACKED_FINGERPRINTS
    assert stats.rate_limited_by_fingerprint["hot"] == 5


def test_ingestion_stats_latency_samples_are_capped():
    """Test that only the most recent latency samples are kept."""
    stats = IngestionStats()

    for i in range(IngestionStats.MAX_LATENCY_SAMPLES + 5):
        stats.record_persistence_latency(float(i))

    assert len(stats.persistence_latencies) == IngestionStats.MAX_LATENCY_SAMPLES
    assert stats.persistence_latencies[0] == 5.0


def test_ingestion_stats_get_summary():
    """Test getting the stats summary."""
    stats = IngestionStats()

    stats.record_batch(4)
    stats.record_accepted()
    stats.record_invalid()
    stats.record_rate_limited("fp_a")
    stats.record_rate_limited("fp_a")
    stats.record_rate_limited("fp_b")
    stats.record_persistence_latency(100.0)
    stats.record_persistence_latency(200.0)

    summary = stats.get_summary(top_fingerprints=1)

    assert summary["batches"] == 1
    assert summary["received"] == 4
    assert summary["accepted"] == 1
    assert summary["invalid"] == 1
    assert summary["rate_limited"] == 3
    assert summary["top_rate_limited"] == [{"fingerprint": "fp_a", "dropped": 2}]
    assert summary["persistence_latency"]["count"] == 2
    assert summary["persistence_latency"]["avg_ms"] == 150.0
    assert summary["persistence_latency"]["min_ms"] == 100.0
    assert summary["persistence_latency"]["max_ms"] == 200.0


def test_ingestion_stats_summary_without_latency():
    """Test that the latency block is omitted when nothing was persisted."""
    summary = IngestionStats().get_summary()

    assert "persistence_latency" not in summary
    assert summary["top_rate_limited"] == []


def test_ingestion_stats_reset():
    """Test resetting counters."""
    stats = IngestionStats()
    stats.record_batch(2)
    stats.record_rate_limited("fp")

    stats.reset()

    assert stats.received == 0
    assert stats.rate_limited == 0
    assert not stats.rate_limited_by_fingerprint


@pytest.mark.asyncio
async def test_track_persistence_records_latency():
    """Test that persistence timing is recorded."""
    stats = IngestionStats()

    async with track_persistence(stats):
        pass

    assert len(stats.persistence_latencies) == 1
    assert stats.persistence_latencies[0] >= 0


@pytest.mark.asyncio
async def test_track_persistence_records_latency_on_error():
    """Test that a failing persistence call is still timed."""
    stats = IngestionStats()

    with pytest.raises(RuntimeError):
        async with track_persistence(stats):
            raise RuntimeError("boom")

    assert len(stats.persistence_latencies) == 1


@pytest.mark.asyncio
async def test_track_persistence_without_stats():
    """Test that timing works without a collector."""
    async with track_persistence(None):
        pass


def test_emit_metric():
    """Test emitting a metric."""
    # This should not raise an exception
    emit_metric("test_metric", 42.0, tag1="value1", tag2="value2")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
