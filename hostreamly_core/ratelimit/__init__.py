"""
Rate Limiting
=============

Fixed-window tiered limiting and progressive penalties over a shared
atomic counter store.

Author: Platform Engineering Team
Version: 1.0.0
"""

from hostreamly_core.ratelimit.store import (
    CounterWindow,
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
    TimeoutCounterStore,
    create_counter_store,
)
from hostreamly_core.ratelimit.window import (
    WindowResult,
    EndpointLimit,
    WindowLimiter,
    build_key,
    resolve_endpoint_limit,
    tier_limit,
)
from hostreamly_core.ratelimit.progressive import (
    ViolationTracker,
    ProgressiveLimiter,
    ProgressiveResult,
    multiplier_for,
    effective_limit,
)

__all__ = [
    # Store
    "CounterWindow",
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "TimeoutCounterStore",
    "create_counter_store",
    # Window
    "WindowResult",
    "EndpointLimit",
    "WindowLimiter",
    "build_key",
    "resolve_endpoint_limit",
    "tier_limit",
    # Progressive
    "ViolationTracker",
    "ProgressiveLimiter",
    "ProgressiveResult",
    "multiplier_for",
    "effective_limit",
]
