"""Unit tests for progressive rate limiting."""

from unittest.mock import AsyncMock

import pytest

from hostreamly_core.ratelimit.progressive import (
    ProgressiveLimiter,
    ViolationTracker,
    effective_limit,
    multiplier_for,
)
from hostreamly_core.ratelimit.window import WindowLimiter


def _limiter(store, clock, base_limit=100):
    tracker = ViolationTracker(store, ttl_seconds=86400)
    return ProgressiveLimiter(
        WindowLimiter(store, clock=clock, name="progressive"),
        tracker,
        base_limit=base_limit,
        window_seconds=900,
    ), tracker


class TestMultiplier:
    """Tests for the penalty formula."""

    def test_multiplier_sequence(self):
        """Test the multiplier doubles per violation and caps at 16."""
        assert [multiplier_for(v) for v in range(6)] == [1, 2, 4, 8, 16, 16]

    def test_multiplier_for_long_lived_offender(self):
        """Test very large violation counts stay at the cap."""
        assert multiplier_for(10_000) == 16

    def test_custom_cap(self):
        """Test a cap that is not a power of two."""
        assert multiplier_for(3, cap=10) == 8
        assert multiplier_for(4, cap=10) == 10

    def test_effective_limit(self):
        """Test the ceiling after penalties."""
        assert effective_limit(100, 0) == 100
        assert effective_limit(100, 3) == 12
        assert effective_limit(100, 9) == 6

    def test_effective_limit_never_below_one(self):
        """Test the ceiling floor."""
        assert effective_limit(10, 5) == 1
        assert effective_limit(1, 4) == 1


class TestViolationTracker:
    """Tests for ViolationTracker."""

    @pytest.mark.asyncio
    async def test_absent_means_zero(self, store):
        """Test an unseen IP has no violations."""
        tracker = ViolationTracker(store)

        assert await tracker.violations("1.2.3.4") == 0

    @pytest.mark.asyncio
    async def test_penalize_counts_and_refreshes(self, store, clock):
        """Test each violation extends the 24 hour decay."""
        tracker = ViolationTracker(store, ttl_seconds=86400)

        assert await tracker.penalize("1.2.3.4") == 1
        clock.advance(86000)
        assert await tracker.penalize("1.2.3.4") == 2
        clock.advance(86000)

        assert await tracker.violations("1.2.3.4") == 2

    @pytest.mark.asyncio
    async def test_violations_expire(self, store, clock):
        """Test violations decay only by expiry."""
        tracker = ViolationTracker(store, ttl_seconds=86400)
        await tracker.penalize("1.2.3.4")

        clock.advance(86400)

        assert await tracker.violations("1.2.3.4") == 0


class TestProgressiveLimiter:
    """Tests for ProgressiveLimiter."""

    @pytest.mark.asyncio
    async def test_penalised_ceiling(self, store, clock):
        """Test an IP with 3 violations gets 12 requests, then a 4th violation."""
        limiter, tracker = _limiter(store, clock)
        await store.set(tracker.key_for("203.0.113.9"), 3, 86400)

        for _ in range(12):
            result = await limiter.admit("203.0.113.9")
            assert result.allowed is True
            assert result.effective_limit == 12

        result = await limiter.admit("203.0.113.9")

        assert result.allowed is False
        assert result.violations == 3
        assert result.new_violations == 4
        assert await tracker.violations("203.0.113.9") == 4

    @pytest.mark.asyncio
    async def test_clean_ip_gets_base_limit(self, store, clock):
        """Test no penalty without violations."""
        limiter, _ = _limiter(store, clock, base_limit=3)

        results = [await limiter.admit("198.51.100.1") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[0].effective_limit == 3
        assert results[-1].new_violations == 1

    @pytest.mark.asyncio
    async def test_window_metadata(self, store, clock):
        """Test the window result carries the penalty details."""
        limiter, _ = _limiter(store, clock)

        result = await limiter.admit("198.51.100.1")

        assert result.window.metadata == {
            "violations": 0,
            "base_limit": 100,
            "adjusted_limit": 100,
        }

    @pytest.mark.asyncio
    async def test_denial_stands_when_penalize_fails(self, store, clock):
        """Test a failed violation write does not turn a denial into an admit."""
        from hostreamly_core.core.errors import BackendUnavailable

        limiter, tracker = _limiter(store, clock, base_limit=1)
        tracker.penalize = AsyncMock(side_effect=BackendUnavailable("down"))

        await limiter.admit("198.51.100.1")
        result = await limiter.admit("198.51.100.1")

        assert result.allowed is False
        assert result.new_violations is None
