"""Business logic services package."""

from error_tracking.services.redis_client import (
    RedisClient,
    RedisConnectionError
)
from error_tracking.services.rate_limiter import (
    RateLimiter,
    RedisRateLimiter,
    InMemoryRateLimiter,
    get_rate_limiter
)
from error_tracking.services.fingerprint import (
    compute_fingerprint,
    normalize_for_fingerprint
)
from error_tracking.services.ingestion import (
    IngestionService,
    IngestResult
)
from error_tracking.services.error_groups import (
    ErrorGroupService,
    GroupNotFoundError
)

__all__ = [
    'RedisClient',
    'RedisConnectionError',
    'RateLimiter',
    'RedisRateLimiter',
    'InMemoryRateLimiter',
    'get_rate_limiter',
    'compute_fingerprint',
    'normalize_for_fingerprint',
    'IngestionService',
    'IngestResult',
    'ErrorGroupService',
    'GroupNotFoundError'
]
