"""
Fixed Window Limiter
====================

Tiered fixed-window admission over a shared counter store.

The window opens on the first request for a key and closes when the
counter's TTL expires. A burst straddling two windows can admit up to
twice ``max_requests``; that is the price of O(1) work per request.

Keys are composed as ``scope:identity`` so endpoint classes never share
a counter:
    upload:user:42
    general:ip:203.0.113.9
    progressive:203.0.113.9

Author: Platform Engineering Team
Version: 1.0.0
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import structlog

from hostreamly_core.core.config import AdmissionSettings, get_settings
from hostreamly_core.quota.plans import Tier
from hostreamly_core.ratelimit.store import CounterStore

logger = structlog.get_logger(__name__)


@dataclass
class WindowResult:
    """Result of a window admission check."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # Unix timestamp
    count: int = 0
    retry_after: Optional[float] = None  # Seconds until retry allowed
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_headers(self) -> Dict[str, str]:
        """Convert to standard rate limit headers.

        Returns:
            Dict with X-RateLimit-* headers
        """
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(max(1, int(round(self.retry_after))))
        return headers


@dataclass(frozen=True)
class EndpointLimit:
    """Resolved window and ceiling for one caller on one endpoint class"""

    endpoint_class: str
    window_seconds: int
    max_requests: int
    message: str


def build_key(scope: str, *parts: str) -> str:
    """Compose a counter key from a scope and identity parts."""
    return ":".join((scope,) + tuple(str(p) for p in parts))


def resolve_endpoint_limit(
    tier: Tier,
    endpoint_class: str,
    method: Optional[str] = None,
    settings: Optional[AdmissionSettings] = None,
) -> EndpointLimit:
    """Resolve the window and request ceiling for a tier on an endpoint class.

    Precedence: per-method override, then per-tier override, then the
    endpoint's base ceiling.
    """
    settings = settings or get_settings()
    rule = settings.endpoint_rule(endpoint_class)

    if method and method.upper() in rule.method_limits:
        max_requests = rule.method_limits[method.upper()]
    else:
        max_requests = rule.tier_limits.get(tier.value, rule.max_requests)

    return EndpointLimit(
        endpoint_class=endpoint_class,
        window_seconds=rule.window_seconds,
        max_requests=max_requests,
        message=rule.message,
    )


def tier_limit(
    tier: Tier,
    endpoint_class: str,
    method: Optional[str] = None,
    settings: Optional[AdmissionSettings] = None,
) -> int:
    """Max requests per window for ``tier`` on ``endpoint_class``."""
    return resolve_endpoint_limit(tier, endpoint_class, method, settings).max_requests


class WindowLimiter:
    """
    Fixed-window limiter.

    Usage:
        limiter = WindowLimiter(store)
        result = await limiter.admit("general:ip:1.2.3.4", 900, 50)
        if not result.allowed:
            ...

    Store faults (``BackendUnavailable``) propagate; the caller owns the
    fail-open/closed decision.
    """

    def __init__(
        self,
        store: CounterStore,
        clock: Callable[[], float] = time.time,
        name: str = "window",
    ):
        self._store = store
        self._clock = clock
        self.name = name
        self._logger = structlog.get_logger(__name__).bind(limiter=name)

    async def admit(
        self,
        key: str,
        window_seconds: float,
        max_requests: int,
    ) -> WindowResult:
        """Count one request against ``key`` and decide.

        Args:
            key: Counter key (see ``build_key``)
            window_seconds: Window length
            max_requests: Ceiling for the window (inclusive)

        Returns:
            WindowResult with decision and header metadata
        """
        window = await self._store.increment_with_expiry(key, window_seconds)
        allowed = window.count <= max_requests

        result = WindowResult(
            allowed=allowed,
            limit=max_requests,
            remaining=max(0, max_requests - window.count),
            reset_at=window.expires_at,
            count=window.count,
        )

        if not allowed:
            result.retry_after = max(0.0, window.expires_at - self._clock())
            self._logger.info(
                "window_limit_reached",
                key=key,
                count=window.count,
                limit=max_requests,
            )

        return result

    async def reset(self, key: str) -> None:
        """Reset the window for a key."""
        await self._store.delete(key)


__all__ = [
    "WindowResult",
    "EndpointLimit",
    "WindowLimiter",
    "build_key",
    "resolve_endpoint_limit",
    "tier_limit",
]
