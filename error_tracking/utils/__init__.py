"""
Utility modules for the error tracking service.
"""

from error_tracking.utils.logging import (
    get_logger,
    setup_logging,
    log_audit_event,
    log_error_with_context,
)
from error_tracking.utils.metrics import (
    IngestionStats,
    track_persistence,
    emit_metric,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_audit_event",
    "log_error_with_context",
    "IngestionStats",
    "track_persistence",
    "emit_metric",
]
