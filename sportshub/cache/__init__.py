"""
Adaptive caching layer: persistent store with content-aware TTL, request
deduplication, and stale-while-revalidate for derived team fixture lists.
"""
from .core import (
    CacheEntrySnapshot,
    CacheTier,
    MatchStatus,
    StaleRead,
    StatusGroup,
    classify_status,
)
from .keys import build_key, params_key
from .ttl_policies import (
    TTL_CONFIG,
    EndpointKind,
    cache_control_header,
    classify_records,
    compute_ttl,
    get_kind_for_endpoint,
    resolve_ttl,
)
from .coalescer import RequestDeduplicator
from .metrics import ApiMetrics
from .store import CacheStore
from .manager import CacheManager
from .team_fixtures import (
    CachedFixture,
    TeamFixturesStore,
    TeamFormService,
    calculate_form,
)

__all__ = [
    # Core types
    "CacheEntrySnapshot",
    "CacheTier",
    "MatchStatus",
    "StaleRead",
    "StatusGroup",
    "classify_status",
    # Keys
    "build_key",
    "params_key",
    # TTL policies
    "TTL_CONFIG",
    "EndpointKind",
    "cache_control_header",
    "classify_records",
    "compute_ttl",
    "get_kind_for_endpoint",
    "resolve_ttl",
    # Deduplication
    "RequestDeduplicator",
    "ApiMetrics",
    # Persistence
    "CacheStore",
    "TeamFixturesStore",
    # Orchestration
    "CacheManager",
    "TeamFormService",
    "CachedFixture",
    "calculate_form",
]
