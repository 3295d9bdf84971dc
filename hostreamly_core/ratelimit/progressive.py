"""
Progressive Rate Limiting
=========================

Shrinks the request ceiling for network origins that keep hitting it.

Each denial from the progressive window records a violation against the
caller's IP. The violation count lives for 24 hours after the last
violation and only ever decays through that expiry. The live ceiling is
``max(1, base // min(2 ** violations, cap))``.

The progressive window is keyed by IP alone, never by user id, so the
penalty follows the network origin across accounts.

Author: Platform Engineering Team
Version: 1.0.0
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from hostreamly_core.core.errors import BackendUnavailable
from hostreamly_core.ratelimit.store import CounterStore
from hostreamly_core.ratelimit.window import WindowLimiter, WindowResult, build_key

logger = structlog.get_logger(__name__)

DEFAULT_MULTIPLIER_CAP = 16
DEFAULT_VIOLATION_TTL = 24 * 60 * 60


def multiplier_for(violations: int, cap: int = DEFAULT_MULTIPLIER_CAP) -> int:
    """Penalty multiplier: doubles per violation, capped."""
    if violations <= 0:
        return 1
    # Avoid building huge powers for long-lived offenders
    if violations >= cap.bit_length():
        return cap
    return min(2 ** violations, cap)


def effective_limit(
    base: int,
    violations: int,
    cap: int = DEFAULT_MULTIPLIER_CAP,
) -> int:
    """Ceiling after applying the violation multiplier, never below 1."""
    return max(1, base // multiplier_for(violations, cap))


class ViolationTracker:
    """
    Persists per-IP violation counts in the counter store.

    Usage:
        tracker = ViolationTracker(store)
        violations = await tracker.violations("203.0.113.9")
        new_count = await tracker.penalize("203.0.113.9")
    """

    def __init__(
        self,
        store: CounterStore,
        ttl_seconds: int = DEFAULT_VIOLATION_TTL,
        multiplier_cap: int = DEFAULT_MULTIPLIER_CAP,
    ):
        self._store = store
        self.ttl_seconds = ttl_seconds
        self.multiplier_cap = multiplier_cap

    @staticmethod
    def key_for(ip: str) -> str:
        return build_key("violations", ip)

    async def violations(self, ip: str) -> int:
        """Recorded violations for ``ip``; absent means zero."""
        value = await self._store.get(self.key_for(ip))
        return max(0, value or 0)

    async def penalize(self, ip: str) -> int:
        """Record one violation and re-arm the expiry. Returns the new count."""
        window = await self._store.increment_with_expiry(
            self.key_for(ip),
            self.ttl_seconds,
            refresh_ttl=True,
        )
        return window.count

    def multiplier_for(self, violations: int) -> int:
        return multiplier_for(violations, self.multiplier_cap)

    def effective_limit(self, base: int, violations: int) -> int:
        return effective_limit(base, violations, self.multiplier_cap)


@dataclass
class ProgressiveResult:
    """Outcome of a progressive limiter check"""

    window: WindowResult
    violations: int
    base_limit: int
    effective_limit: int
    new_violations: Optional[int] = None

    @property
    def allowed(self) -> bool:
        return self.window.allowed


class ProgressiveLimiter:
    """
    Window limiter whose ceiling shrinks with recorded violations.

    Must be given its own WindowLimiter instance; counters are scoped
    ``progressive:<ip>``.
    """

    def __init__(
        self,
        window_limiter: WindowLimiter,
        tracker: ViolationTracker,
        base_limit: int = 100,
        window_seconds: int = 15 * 60,
    ):
        self._window = window_limiter
        self._tracker = tracker
        self.base_limit = base_limit
        self.window_seconds = window_seconds
        self._logger = structlog.get_logger("progressive_limiter")

    async def admit(self, ip: str) -> ProgressiveResult:
        """Check ``ip`` against its penalised ceiling.

        A denial records a new violation. If recording fails the denial
        still stands; the fault is logged.

        Raises:
            BackendUnavailable: If the violation count or window cannot be read
        """
        violations = await self._tracker.violations(ip)
        limit = self._tracker.effective_limit(self.base_limit, violations)

        window = await self._window.admit(
            build_key("progressive", ip),
            self.window_seconds,
            limit,
        )

        result = ProgressiveResult(
            window=window,
            violations=violations,
            base_limit=self.base_limit,
            effective_limit=limit,
        )
        window.metadata.update(
            violations=violations,
            base_limit=self.base_limit,
            adjusted_limit=limit,
        )

        if not window.allowed:
            try:
                result.new_violations = await self._tracker.penalize(ip)
            except BackendUnavailable as e:
                self._logger.error(
                    "violation_record_failed",
                    ip=ip,
                    error=str(e),
                )
            else:
                self._logger.warning(
                    "progressive_violation",
                    ip=ip,
                    violations=result.new_violations,
                    adjusted_limit=limit,
                )

        return result


__all__ = [
    "DEFAULT_MULTIPLIER_CAP",
    "DEFAULT_VIOLATION_TTL",
    "multiplier_for",
    "effective_limit",
    "ViolationTracker",
    "ProgressiveResult",
    "ProgressiveLimiter",
]
